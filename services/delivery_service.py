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

"""Delivery service for dispatching confirmed orders.

This module encapsulates choosing a delivery company for a store, creating the
delivery record, assigning a driver and notifying the delivery company. Every
step is best-effort: an order stays valid without a delivery, which can be
assigned later from the dashboard.
"""

import datetime
import logging
from typing import List, Optional, Tuple

import db
from enums import DeliveryStatus
from enums import MembershipRole
from enums import SideEffectStatus
from models import ShippingAddress
from models import SideEffectOutcome
from models import side_effect
from services.notification_service import NotificationService
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PICKUP_ETA = datetime.timedelta(minutes=30)
DELIVERY_ETA = datetime.timedelta(minutes=60)
MAX_COMPANY_RECIPIENTS = 5


class DeliveryService:
  """Service for creating and assigning deliveries."""

  def __init__(
      self, session: AsyncSession, notification_service: NotificationService
  ):
    self.session = session
    self.notification_service = notification_service

  async def choose_delivery_company(
      self, store_id: str
  ) -> Optional[db.DeliveryCompany]:
    """Picks the store's best active partner, or any active company."""
    preferences = await db.get_enabled_delivery_preferences(
        self.session, store_id
    )
    for _, company in preferences:
      if company.is_active:
        return company
    # TODO: match companies by coverage area once zones are modelled.
    return await db.get_any_active_delivery_company(self.session)

  async def create_delivery_for_order(
      self,
      order_id: str,
      store_id: str,
      location: Optional[db.StoreLocation],
      address: ShippingAddress,
      fee_cents: int,
  ) -> Tuple[Optional[str], List[SideEffectOutcome]]:
    """Creates and dispatches the delivery of one order.

    Args:
      order_id: The order to deliver.
      store_id: The store the order is picked up from.
      location: The store's primary location, used as the pickup address.
      address: The buyer's shipping address.
      fee_cents: The delivery fee charged for this order.

    Returns:
      The delivery ID (None when no delivery was created) and the outcome of
      every step attempted.
    """
    outcomes: List[SideEffectOutcome] = []

    try:
      company = await self.choose_delivery_company(store_id)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Error choosing delivery company for %s: %s", order_id, e)
      await self.session.rollback()
      outcomes.append(
          side_effect("delivery", store_id, SideEffectStatus.FAILED, str(e))
      )
      return None, outcomes

    if company is None:
      logger.warning("No delivery company available for order %s", order_id)
      outcomes.append(
          side_effect(
              "delivery",
              store_id,
              SideEffectStatus.SKIPPED,
              "No delivery company available",
          )
      )
      return None, outcomes

    company_id = company.id
    company_tenant_id = company.tenant_id
    now = datetime.datetime.now(datetime.timezone.utc)
    pickup_address = None
    if location:
      pickup_address = {
          "street": location.address_line1,
          "city": location.city,
          "state": location.state,
          "zip_code": location.zip_code,
      }

    try:
      delivery = await db.create_delivery(
          self.session,
          {
              "order_id": order_id,
              "delivery_company_id": company_id,
              "status": DeliveryStatus.PENDING.value,
              "delivery_fee": fee_cents,
              "pickup_address": pickup_address,
              "dropoff_address": {
                  "name": address.name,
                  "street": address.street,
                  "city": address.city,
                  "state": address.state,
                  "zip_code": address.zip_code,
                  "phone": address.phone,
                  "email": address.email,
              },
              "customer_notes": address.delivery_notes or None,
              "recipient_name": address.name,
              "estimated_pickup_time": (now + PICKUP_ETA).isoformat(),
              "estimated_delivery_time": (now + DELIVERY_ETA).isoformat(),
          },
      )
      delivery_id = delivery.id
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Error creating delivery for order %s: %s", order_id, e)
      await self.session.rollback()
      outcomes.append(
          side_effect("delivery", store_id, SideEffectStatus.FAILED, str(e))
      )
      return None, outcomes

    outcomes.append(
        side_effect(
            "delivery", store_id, SideEffectStatus.OK, reference=delivery_id
        )
    )
    outcomes.append(await self._auto_assign(delivery, store_id))
    outcomes.append(
        await self._notify_company(
            company_tenant_id, delivery_id, order_id, store_id
        )
    )
    return delivery_id, outcomes

  async def _auto_assign(
      self, delivery: db.Delivery, store_id: str
  ) -> SideEffectOutcome:
    delivery_id = delivery.id
    try:
      driver = await db.auto_assign_delivery(self.session, delivery)
      driver_id = driver.id if driver else None
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Error auto-assigning delivery %s: %s", delivery_id, e)
      await self.session.rollback()
      return side_effect(
          "driver_assignment", store_id, SideEffectStatus.FAILED, str(e)
      )

    if driver_id is None:
      logger.info("No available driver for delivery %s", delivery_id)
      return side_effect(
          "driver_assignment",
          store_id,
          SideEffectStatus.SKIPPED,
          "No available driver",
      )
    return side_effect(
        "driver_assignment", store_id, SideEffectStatus.OK, reference=driver_id
    )

  async def _notify_company(
      self,
      tenant_id: Optional[str],
      delivery_id: str,
      order_id: str,
      store_id: str,
  ) -> SideEffectOutcome:
    if not tenant_id:
      return side_effect(
          "delivery_notification",
          store_id,
          SideEffectStatus.SKIPPED,
          "Delivery company has no tenant",
      )
    try:
      user_ids = await self.notification_service.notify_tenant(
          tenant_id,
          [MembershipRole.OWNER.value, MembershipRole.ADMIN.value],
          MAX_COMPANY_RECIPIENTS,
          "delivery",
          "New Delivery Available",
          "A new delivery is ready for assignment",
          action_url=f"/dashboard/delivery/deliveries/{delivery_id}",
          data={"deliveryId": delivery_id, "orderId": order_id},
      )
      await self.session.commit()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Delivery notification error for %s: %s", delivery_id, e)
      await self.session.rollback()
      return side_effect(
          "delivery_notification", store_id, SideEffectStatus.FAILED, str(e)
      )

    if not user_ids:
      return side_effect(
          "delivery_notification",
          store_id,
          SideEffectStatus.SKIPPED,
          "No delivery company members to notify",
      )
    return side_effect("delivery_notification", store_id, SideEffectStatus.OK)

