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

"""Order service for materializing paid checkouts into store orders.

Once the buyer's payment intent has succeeded, `OrderService.confirm_order`
creates one order per store in the cart and fans out the follow-up work:
order items, inventory decrements, deliveries, store notifications and, for
multi-store payments, Connect transfers to each store.

Only the payment check and the duplicate check can fail the request. Every
later step commits on its own, and its result is reported back to the caller
as a `SideEffectOutcome` instead of being raised.
"""

import datetime
import json
import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

import db
from enums import FulfillmentType
from enums import MembershipRole
from enums import OrderStatus
from enums import PaymentStatus
from enums import SideEffectStatus
from exceptions import EmptyCartError
from exceptions import OrderAlreadyConfirmedError
from exceptions import PaymentNotCompletedError
from exceptions import ResourceNotFoundError
from models import CartItem
from models import ConfirmOrderRequest
from models import ConfirmOrderResponse
from models import CreatedOrder
from models import DeliveryDetail
from models import OrderDetail
from models import OrderItemDetail
from models import PaymentIntent
from models import side_effect
from models import SideEffectOutcome
import money
from services.cart_partitioner import group_by_store
from services.cart_partitioner import UNKNOWN_STORE_NAME
from services.delivery_service import DeliveryService
from services.fee_service import FeeCalculationService
from services.notification_service import NotificationService
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "succeeded"


def generate_order_number() -> str:
  """Returns a human-readable order number, e.g. ORD-20260101-3F9A1C."""
  today = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d")
  return f"ORD-{today}-{secrets.token_hex(3).upper()}"


def transfer_idempotency_key(intent: PaymentIntent, store_id: str) -> str:
  """One payout per store and payment, however often confirmation runs."""
  return f"transfer_{intent.id}_{store_id}"


def parse_store_breakdown(intent: PaymentIntent) -> List[Dict[str, Any]]:
  """Reads the per-store totals recorded on the intent at checkout."""
  raw = intent.metadata.get("store_breakdown")
  if not raw:
    return []
  try:
    breakdown = json.loads(raw)
  except ValueError as e:
    logger.error("Malformed store breakdown on %s: %s", intent.id, e)
    return []
  return breakdown if isinstance(breakdown, list) else []


class OrderService:
  """Service for confirming paid checkouts and reading orders."""

  def __init__(
      self,
      session: AsyncSession,
      fee_service: FeeCalculationService,
      delivery_service: DeliveryService,
      notification_service: NotificationService,
      payment_gateway: Any,
      currency: str = "usd",
  ):
    self.session = session
    self.fee_service = fee_service
    self.delivery_service = delivery_service
    self.notification_service = notification_service
    self.payment_gateway = payment_gateway
    self.currency = currency

  async def confirm_order(
      self, request: ConfirmOrderRequest
  ) -> ConfirmOrderResponse:
    """Creates the store orders for a succeeded payment.

    Args:
      request: The confirmation request with the cart and shipping address.

    Returns:
      The created orders and the outcome of every follow-up step.

    Raises:
      EmptyCartError: If the request carries no items.
      PaymentNotCompletedError: If the payment intent has not succeeded.
      OrderAlreadyConfirmedError: If orders already exist for the intent.
      PaymentProviderError: If the intent cannot be retrieved.
    """
    if not request.items:
      raise EmptyCartError()

    intent = await self.payment_gateway.retrieve_payment_intent(
        request.payment_intent_id
    )
    if intent.status != PAYMENT_SUCCEEDED:
      raise PaymentNotCompletedError(intent.status)

    existing = await db.get_orders_for_payment_intent(self.session, intent.id)
    if existing:
      raise OrderAlreadyConfirmedError(intent.id)

    created: List[CreatedOrder] = []
    outcomes: List[SideEffectOutcome] = []
    for store_id, items in group_by_store(request.items).items():
      order, store_outcomes = await self._create_store_order(
          request, intent, store_id, items
      )
      outcomes.extend(store_outcomes)
      if order:
        created.append(order)

    outcomes.extend(await self._create_transfers(request, intent, created))

    logger.info(
        "Confirmed payment %s: %d order(s), %d failed step(s)",
        intent.id,
        len(created),
        sum(1 for o in outcomes if o.status == SideEffectStatus.FAILED),
    )
    return ConfirmOrderResponse(
        success=True,
        orders=created,
        payment_intent_id=intent.id,
        message=f"Created {len(created)} order(s) successfully",
        side_effects=outcomes,
    )

  async def _create_store_order(
      self,
      request: ConfirmOrderRequest,
      intent: PaymentIntent,
      store_id: str,
      items: List[CartItem],
  ) -> Tuple[Optional[CreatedOrder], List[SideEffectOutcome]]:
    """Creates one store's order and runs its follow-up steps."""
    outcomes: List[SideEffectOutcome] = []
    address = request.shipping_address

    subtotal = sum(money.to_cents(i.price) * i.quantity for i in items)
    taxes = sum(money.to_cents(i.taxes) * i.quantity for i in items)
    delivery_fee = sum(
        money.to_cents(i.shipping_cost) * i.quantity for i in items
    )
    total = subtotal + taxes + delivery_fee
    fees = await self.fee_service.calculate_fees(total, address.state)
    store = await db.get_store(self.session, store_id)
    location = await db.get_primary_store_location(self.session, store_id)
    store_name = (
        store.name if store else items[0].store_name or UNKNOWN_STORE_NAME
    )
    tenant_id = store.tenant_id if store else None

    try:
      order = await db.create_order(
          self.session,
          {
              "order_number": generate_order_number(),
              "customer_id": request.customer_id,
              "store_id": store_id,
              "status": OrderStatus.CONFIRMED.value,
              "fulfillment_type": FulfillmentType.DELIVERY.value,
              "delivery_address": address.to_record(),
              "subtotal": subtotal,
              "tax_amount": taxes,
              "delivery_fee": delivery_fee,
              "platform_fee": fees.marketplace_commission,
              "total": total,
              "payment_status": PaymentStatus.PAID.value,
              "payment_method": "card",
              "stripe_payment_intent_id": intent.id,
              "customer_email": address.email,
              "customer_notes": address.delivery_notes or None,
          },
      )
      order_id = order.id
      order_number = order.order_number
      await self.session.commit()
    except IntegrityError as e:
      logger.error("Duplicate order for %s / %s: %s", intent.id, store_id, e)
      await self.session.rollback()
      outcomes.append(
          side_effect(
              "order",
              store_id,
              SideEffectStatus.FAILED,
              "An order already exists for this payment and store",
          )
      )
      return None, outcomes
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Error creating order for store %s: %s", store_id, e)
      await self.session.rollback()
      outcomes.append(
          side_effect("order", store_id, SideEffectStatus.FAILED, str(e))
      )
      return None, outcomes

    outcomes.append(
        side_effect("order", store_id, SideEffectStatus.OK, reference=order_id)
    )
    outcomes.append(await self._create_order_items(order_id, store_id, items))
    outcomes.extend(await self._decrement_inventory(store_id, items))

    delivery_id, delivery_outcomes = (
        await self.delivery_service.create_delivery_for_order(
            order_id, store_id, location, address, delivery_fee
        )
    )
    outcomes.extend(delivery_outcomes)
    outcomes.append(
        await self._notify_store_owner(
            store_id, tenant_id, order_id, order_number, total
        )
    )

    return (
        CreatedOrder(
            id=order_id,
            order_number=order_number,
            store_id=store_id,
            store_name=store_name,
            total=money.to_amount(total),
            delivery_id=delivery_id,
        ),
        outcomes,
    )

  async def _create_order_items(
      self, order_id: str, store_id: str, items: List[CartItem]
  ) -> SideEffectOutcome:
    rows = []
    for item in items:
      price = money.to_cents(item.price)
      tax = money.to_cents(item.taxes)
      rows.append({
          "product_id": item.product_id,
          "inventory_id": item.inventory_ref,
          "product_name": item.product_name,
          "quantity": item.quantity,
          "unit_price": price,
          "subtotal": price * item.quantity,
          "discount_amount": 0,
          "tax_amount": tax * item.quantity,
          "total": (price + tax) * item.quantity,
      })
    try:
      await db.create_order_items(self.session, order_id, rows)
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Error creating order items for %s: %s", order_id, e)
      await self.session.rollback()
      return side_effect(
          "order_items", store_id, SideEffectStatus.FAILED, str(e)
      )
    return side_effect("order_items", store_id, SideEffectStatus.OK)

  async def _decrement_inventory(
      self, store_id: str, items: List[CartItem]
  ) -> List[SideEffectOutcome]:
    outcomes = []
    for item in items:
      inventory_id = item.inventory_ref
      if not inventory_id:
        continue
      try:
        reserved = await db.reserve_stock(
            self.session, inventory_id, item.quantity
        )
        await self.session.commit()
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Failed to decrement inventory %s: %s", inventory_id, e)
        await self.session.rollback()
        outcomes.append(
            side_effect(
                "inventory",
                store_id,
                SideEffectStatus.FAILED,
                str(e),
                reference=inventory_id,
            )
        )
        continue

      if reserved:
        outcomes.append(
            side_effect(
                "inventory",
                store_id,
                SideEffectStatus.OK,
                reference=inventory_id,
            )
        )
      else:
        logger.warning(
            "Inventory %s not found or could not be decremented", inventory_id
        )
        outcomes.append(
            side_effect(
                "inventory",
                store_id,
                SideEffectStatus.FAILED,
                "Inventory not found or insufficient stock",
                reference=inventory_id,
            )
        )
    return outcomes

  async def _notify_store_owner(
      self,
      store_id: str,
      tenant_id: Optional[str],
      order_id: str,
      order_number: str,
      total: int,
  ) -> SideEffectOutcome:
    if not tenant_id:
      return side_effect(
          "store_notification",
          store_id,
          SideEffectStatus.SKIPPED,
          "Store has no owning tenant",
      )
    try:
      user_ids = await self.notification_service.notify_tenant(
          tenant_id,
          [MembershipRole.OWNER.value],
          1,
          "order",
          "New Order Received",
          f"Order #{order_number} received for ${money.to_amount(total):.2f}",
          action_url=f"/dashboard/store/orders/{order_id}",
          data={"orderId": order_id, "orderNumber": order_number},
      )
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Notification error for order %s: %s", order_id, e)
      await self.session.rollback()
      return side_effect(
          "store_notification", store_id, SideEffectStatus.FAILED, str(e)
      )

    if not user_ids:
      return side_effect(
          "store_notification",
          store_id,
          SideEffectStatus.SKIPPED,
          "Store has no owner to notify",
      )
    return side_effect(
        "store_notification",
        store_id,
        SideEffectStatus.OK,
        reference=user_ids[0],
    )

  async def _create_transfers(
      self,
      request: ConfirmOrderRequest,
      intent: PaymentIntent,
      created: List[CreatedOrder],
  ) -> List[SideEffectOutcome]:
    """Pays each store its share of a multi-store payment.

    Single-store payments are routed at charge time, so nothing is
    transferred for them. Only stores whose order was created by this call are
    paid.
    """
    breakdown = parse_store_breakdown(intent)
    if len(breakdown) <= 1 or not created:
      return []

    outcomes = []
    for entry in breakdown:
      store_id = entry.get("storeId")
      account_id = entry.get("accountId")
      if not account_id:
        outcomes.append(
            side_effect(
                "transfer",
                store_id,
                SideEffectStatus.SKIPPED,
                "Store has no connected payment account",
            )
        )
        continue

      order_ids = [o.id for o in created if o.store_id == store_id]
      if not order_ids:
        outcomes.append(
            side_effect(
                "transfer",
                store_id,
                SideEffectStatus.SKIPPED,
                "No order was created for this store",
            )
        )
        continue

      platform_fee, amount = (
          await self.fee_service.calculate_store_transfer_amount(
              money.to_cents(entry.get("total") or 0),
              request.shipping_address.state,
          )
      )
      if amount <= 0:
        outcomes.append(
            side_effect(
                "transfer",
                store_id,
                SideEffectStatus.SKIPPED,
                "Nothing to transfer after platform fees",
            )
        )
        continue

      params: Dict[str, Any] = {
          "amount": amount,
          "currency": self.currency,
          "destination": account_id,
          "metadata": {
              "store_id": store_id,
              "platform_fee": str(platform_fee),
              "order_ids": ",".join(order_ids),
          },
      }
      if intent.transfer_group:
        params["transfer_group"] = intent.transfer_group

      try:
        transfer_id = await self.payment_gateway.create_transfer(
            params, idempotency_key=transfer_idempotency_key(intent, store_id)
        )
      except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("Error creating transfer for store %s: %s", store_id, e)
        outcomes.append(
            side_effect("transfer", store_id, SideEffectStatus.FAILED, str(e))
        )
        continue

      outcomes.append(
          side_effect(
              "transfer", store_id, SideEffectStatus.OK, reference=transfer_id
          )
      )
      try:
        await db.set_order_transfer_id(self.session, order_ids, transfer_id)
        await self.session.commit()
      except Exception as e:  # pylint: disable=broad-exception-caught
        # The transfer.created webhook records it later.
        logger.error("Error recording transfer %s: %s", transfer_id, e)
        await self.session.rollback()
    return outcomes


async def load_order_detail(
    session: AsyncSession, order_id: str
) -> OrderDetail:
  """Loads an order with its items and delivery.

  Raises:
    ResourceNotFoundError: If the order does not exist.
  """
  order = await db.get_order(session, order_id)
  if not order:
    raise ResourceNotFoundError(f"Order {order_id} not found")

  items = await db.get_order_items(session, order_id)
  delivery = await db.get_delivery_for_order(session, order_id)
  return OrderDetail(
      id=order.id,
      order_number=order.order_number,
      store_id=order.store_id,
      customer_id=order.customer_id,
      status=order.status,
      payment_status=order.payment_status,
      fulfillment_type=order.fulfillment_type,
      delivery_address=order.delivery_address,
      subtotal=money.to_amount(order.subtotal),
      tax_amount=money.to_amount(order.tax_amount),
      delivery_fee=money.to_amount(order.delivery_fee),
      platform_fee=money.to_amount(order.platform_fee),
      total=money.to_amount(order.total),
      stripe_payment_intent_id=order.stripe_payment_intent_id,
      stripe_transfer_id=order.stripe_transfer_id,
      created_at=order.created_at,
      items=[
          OrderItemDetail(
              id=item.id,
              product_id=item.product_id,
              inventory_id=item.inventory_id,
              product_name=item.product_name,
              quantity=item.quantity,
              unit_price=money.to_amount(item.unit_price),
              subtotal=money.to_amount(item.subtotal),
              tax_amount=money.to_amount(item.tax_amount),
              total=money.to_amount(item.total),
          )
          for item in items
      ],
      delivery=(
          DeliveryDetail(
              id=delivery.id,
              delivery_company_id=delivery.delivery_company_id,
              driver_id=delivery.driver_id,
              status=delivery.status,
              delivery_fee=money.to_amount(delivery.delivery_fee),
              estimated_pickup_time=delivery.estimated_pickup_time,
              estimated_delivery_time=delivery.estimated_delivery_time,
          )
          if delivery
          else None
      ),
  )
