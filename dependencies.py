#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""FastAPI dependencies for the marketplace server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Database session management.
- The Stripe payment gateway, which is unavailable until a secret key is
  configured.
- Service instantiation (tax, fee, cart partitioning, delivery, notification,
  checkout, order and webhook services).
"""

from typing import Any, AsyncGenerator, Optional

import config
import db
from exceptions import PaymentNotConfiguredError
from fastapi import Depends
from services.cart_partitioner import CartPartitioner
from services.checkout_service import CheckoutService
from services.delivery_service import DeliveryService
from services.fee_service import FeeCalculationService
from services.notification_service import NotificationService
from services.order_service import OrderService
from services.payment_gateway import StripeGateway
from services.tax_service import TaxCalculationService
from services.webhook_service import WebhookService
from sqlalchemy.ext.asyncio import AsyncSession


async def get_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for the marketplace DB session."""
  async with db.manager.session_factory() as session:
    yield session


def get_payment_gateway() -> StripeGateway:
  """Dependency provider for the Stripe gateway."""
  secret_key = config.FLAGS.stripe_secret_key
  if not secret_key:
    raise PaymentNotConfiguredError()
  return StripeGateway(secret_key)


def get_webhook_secret() -> Optional[str]:
  """Dependency provider for the webhook signing secret."""
  return config.FLAGS.stripe_webhook_secret


def get_tax_service(
    session: AsyncSession = Depends(get_db),
) -> TaxCalculationService:
  """Dependency provider for TaxCalculationService."""
  return TaxCalculationService(session)


def get_fee_service(
    session: AsyncSession = Depends(get_db),
) -> FeeCalculationService:
  """Dependency provider for FeeCalculationService."""
  return FeeCalculationService(session)


def get_notification_service(
    session: AsyncSession = Depends(get_db),
) -> NotificationService:
  """Dependency provider for NotificationService."""
  return NotificationService(session)


def get_delivery_service(
    session: AsyncSession = Depends(get_db),
    notification_service: NotificationService = Depends(
        get_notification_service
    ),
) -> DeliveryService:
  """Dependency provider for DeliveryService."""
  return DeliveryService(session, notification_service)


def get_cart_partitioner(
    session: AsyncSession = Depends(get_db),
    tax_service: TaxCalculationService = Depends(get_tax_service),
) -> CartPartitioner:
  """Dependency provider for CartPartitioner."""
  return CartPartitioner(session, tax_service)


def get_checkout_service(
    partitioner: CartPartitioner = Depends(get_cart_partitioner),
    fee_service: FeeCalculationService = Depends(get_fee_service),
    payment_gateway: Any = Depends(get_payment_gateway),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      partitioner, fee_service, payment_gateway, config.FLAGS.currency
  )


def get_order_service(
    session: AsyncSession = Depends(get_db),
    fee_service: FeeCalculationService = Depends(get_fee_service),
    delivery_service: DeliveryService = Depends(get_delivery_service),
    notification_service: NotificationService = Depends(
        get_notification_service
    ),
    payment_gateway: Any = Depends(get_payment_gateway),
) -> OrderService:
  """Dependency provider for OrderService."""
  return OrderService(
      session,
      fee_service,
      delivery_service,
      notification_service,
      payment_gateway,
      config.FLAGS.currency,
  )


def get_webhook_service(
    session: AsyncSession = Depends(get_db),
) -> WebhookService:
  """Dependency provider for WebhookService."""
  return WebhookService(session)
