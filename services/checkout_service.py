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

"""Checkout service for creating marketplace payment intents.

This module provides the `CheckoutService` class, which turns a multi-store
cart into a single Stripe PaymentIntent.

Key responsibilities include:
- Partitioning the cart per store with authoritative totals.
- Computing the platform's marketplace commission.
- Resolving the Stripe customer for the buyer's email.
- Routing single-store payments directly to the store's Connect account, and
  recording a per-store breakdown so multi-store payments can be split into
  transfers once the order is confirmed.
"""

import json
import logging
import time
from typing import Any, Dict, Optional
import uuid

from models import CheckoutRequest
from models import CheckoutResponse
from models import FeeBreakdownEntry
from models import Partition
from models import StoreBreakdown
from models import TaxBreakdownEntry
import money
from services.cart_partitioner import CartPartitioner
from services.fee_service import FeeCalculationService

logger = logging.getLogger(__name__)


def new_transfer_group() -> str:
  """Returns a unique transfer group, e.g. checkout_1700000000000_ab12cd34."""
  return f"checkout_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def store_breakdown_metadata(partition: Partition) -> str:
  """Serializes the per-store totals stored on the payment intent."""
  return json.dumps([
      {
          "storeId": group.store_id,
          "total": money.to_amount(group.total),
          "accountId": group.stripe_account_id,
      }
      for group in partition.groups
  ])


class CheckoutService:
  """Service for building payment intents from carts."""

  def __init__(
      self,
      partitioner: CartPartitioner,
      fee_service: FeeCalculationService,
      payment_gateway: Any,
      currency: str = "usd",
  ):
    self.partitioner = partitioner
    self.fee_service = fee_service
    self.payment_gateway = payment_gateway
    self.currency = currency

  def build_intent_params(
      self,
      partition: Partition,
      platform_fee: int,
      request: CheckoutRequest,
      customer_id: Optional[str],
      transfer_group: str,
  ) -> Dict[str, Any]:
    """Builds the Stripe parameters for the order's payment intent."""
    params: Dict[str, Any] = {
        "amount": partition.total,
        "currency": self.currency,
        "automatic_payment_methods": {"enabled": True},
        "transfer_group": transfer_group,
        "metadata": {
            "store_breakdown": store_breakdown_metadata(partition),
            "platform_fee": str(money.to_amount(platform_fee)),
            "customer_email": request.customer_email or "",
            "shipping_address": request.shipping_address.model_dump_json(
                by_alias=True
            ),
        },
    }
    if customer_id:
      params["customer"] = customer_id

    # A single store is paid directly through a destination charge.
    if len(partition.groups) == 1 and partition.groups[0].stripe_account_id:
      params["application_fee_amount"] = platform_fee
      params["transfer_data"] = {
          "destination": partition.groups[0].stripe_account_id
      }
    return params

  async def create_payment_intent(
      self, request: CheckoutRequest
  ) -> CheckoutResponse:
    """Creates the payment intent for a cart.

    Args:
      request: The checkout request.

    Returns:
      The client secret and the totals the buyer is charged.

    Raises:
      EmptyCartError: If the cart is empty.
      InventoryUnavailableError: If any item is out of stock.
      StoreLookupError: If store records cannot be loaded.
      PaymentProviderError: If Stripe rejects a request.
    """
    partition = await self.partitioner.partition(
        request.items, request.shipping_address
    )
    state = request.shipping_address.state
    fees = await self.fee_service.calculate_fees(partition.total, state)
    platform_fee = fees.marketplace_commission

    customer_id = None
    if request.customer_email:
      customer_id = await self.payment_gateway.find_or_create_customer(
          email=request.customer_email,
          name=request.shipping_address.name,
          address={
              "line1": request.shipping_address.street or "",
              "city": request.shipping_address.city,
              "state": request.shipping_address.state,
              "postal_code": request.shipping_address.zip_code,
              "country": request.shipping_address.country,
          },
          user_id=request.customer_id,
      )

    transfer_group = new_transfer_group()
    intent = await self.payment_gateway.create_payment_intent(
        self.build_intent_params(
            partition, platform_fee, request, customer_id, transfer_group
        )
    )
    logger.info(
        "Created payment intent %s for %d store(s), amount %d",
        intent.id,
        len(partition.groups),
        partition.total,
    )

    return CheckoutResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        subtotal=money.to_amount(partition.subtotal),
        taxes=money.to_amount(partition.tax),
        tax_rate=partition.tax_result.tax_rate,
        tax_breakdown=[
            TaxBreakdownEntry(
                name=line.name,
                rate=line.rate,
                amount=money.to_amount(line.amount),
                type=line.type,
            )
            for line in partition.tax_result.breakdown
        ],
        shipping=money.to_amount(partition.shipping),
        total_amount=money.to_amount(partition.total),
        platform_fee=money.to_amount(platform_fee),
        platform_fee_breakdown=[
            FeeBreakdownEntry(
                name=line.name,
                type=line.type,
                amount=money.to_amount(line.amount),
                rate=line.rate,
            )
            for line in fees.breakdown
        ],
        store_breakdown=[
            StoreBreakdown(
                store_id=group.store_id,
                store_name=group.store_name,
                subtotal=money.to_amount(group.subtotal),
                taxes=money.to_amount(group.tax),
                shipping=money.to_amount(group.delivery_fee),
                total=money.to_amount(group.total),
                stripe_account_id=group.stripe_account_id,
            )
            for group in partition.groups
        ],
        transfer_group=transfer_group,
        inventory_verified=partition.inventory_verified,
    )
