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

"""Stripe webhook event handling.

Keeps tenants and orders in sync with events Stripe reports asynchronously:
Connect account onboarding, account disconnection, failed payments and
transfers to stores.
"""

import logging
from typing import Any, Dict

import db
from enums import OrderStatus
from enums import PaymentStatus
from enums import StripeAccountStatus
from enums import TenantStatus
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class WebhookService:
  """Applies verified Stripe events to the marketplace database."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def handle_event(self, event: Dict[str, Any]) -> None:
    """Dispatches an event by type. Unknown types are ignored."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    handlers = {
        "account.updated": self.handle_account_updated,
        "account.application.deauthorized": self.handle_account_deauthorized,
        "payment_intent.payment_failed": self.handle_payment_failed,
        "transfer.created": self.handle_transfer_created,
    }
    handler = handlers.get(event_type)
    if handler is None:
      logger.info("Unhandled webhook event type: %s", event_type)
      return
    await handler(event, obj)
    await self.session.commit()

  async def handle_account_updated(
      self, event: Dict[str, Any], account: Dict[str, Any]
  ) -> None:
    del event  # Unused.
    tenant = await db.get_tenant_by_stripe_account(
        self.session, account.get("id", "")
    )
    if not tenant:
      logger.warning("No tenant for Stripe account %s", account.get("id"))
      return

    charges_enabled = bool(account.get("charges_enabled"))
    payouts_enabled = bool(account.get("payouts_enabled"))
    details_submitted = bool(account.get("details_submitted"))
    is_active = charges_enabled and payouts_enabled

    tenant.stripe_account_status = (
        StripeAccountStatus.ACTIVE.value
        if is_active
        else StripeAccountStatus.ONBOARDING.value
    )
    tenant.stripe_onboarding_complete = details_submitted
    tenant.status = (
        TenantStatus.ACTIVE.value if is_active else TenantStatus.PENDING.value
    )
    if charges_enabled:
      await db.activate_tenant_entities(self.session, tenant)
    logger.info(
        "Tenant %s Stripe account is %s",
        tenant.id,
        tenant.stripe_account_status,
    )

  async def handle_account_deauthorized(
      self, event: Dict[str, Any], obj: Dict[str, Any]
  ) -> None:
    # Connect events name the account on the event itself.
    account_id = event.get("account") or obj.get("id")
    tenant = (
        await db.get_tenant_by_stripe_account(self.session, account_id)
        if account_id
        else None
    )
    if not tenant:
      logger.warning("No tenant for deauthorized account %s", account_id)
      return
    tenant.stripe_account_status = StripeAccountStatus.DISABLED.value
    tenant.status = TenantStatus.SUSPENDED.value
    logger.info("Tenant %s disconnected its Stripe account", tenant.id)

  async def handle_payment_failed(
      self, event: Dict[str, Any], intent: Dict[str, Any]
  ) -> None:
    del event  # Unused.
    updated = await db.update_orders_for_payment_intent(
        self.session,
        intent.get("id", ""),
        {
            "status": OrderStatus.CANCELLED.value,
            "payment_status": PaymentStatus.FAILED.value,
            "cancelled_at": db.utc_now(),
            "cancellation_reason": "Payment failed",
        },
    )
    logger.info(
        "Payment %s failed, cancelled %d order(s)", intent.get("id"), updated
    )

  async def handle_transfer_created(
      self, event: Dict[str, Any], transfer: Dict[str, Any]
  ) -> None:
    del event  # Unused.
    metadata = transfer.get("metadata") or {}
    order_ids = [o for o in (metadata.get("order_ids") or "").split(",") if o]
    updated = await db.set_order_transfer_id(
        self.session, order_ids, transfer.get("id", "")
    )
    logger.info(
        "Transfer %s recorded on %d order(s)", transfer.get("id"), updated
    )
