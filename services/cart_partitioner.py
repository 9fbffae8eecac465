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

"""Cart partitioning for multi-store checkouts.

A marketplace cart can hold items from several stores. `CartPartitioner`
validates stock, groups the items by store, and computes each store's
subtotal, share of the order tax, and delivery fee. The totals it produces are
the authoritative amounts charged to the buyer.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import db
from exceptions import EmptyCartError
from exceptions import InventoryUnavailableError
from exceptions import StoreLookupError
from models import CartItem
from models import Partition
from models import ShippingAddress
from models import StoreGroup
import money
from services.tax_service import TaxCalculationService
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

UNKNOWN_STORE_NAME = "Unknown Store"
DEFAULT_DELIVERY_FEE_CENTS = 499


def delivery_fee_for(
    subtotal_cents: int, delivery_settings: Optional[Dict[str, Any]]
) -> int:
  """Returns a store's delivery fee in cents for a given store subtotal.

  A positive free-delivery threshold reached by the subtotal waives the fee.
  Otherwise the store's configured fee applies, or the marketplace default
  when the store has none.
  """
  settings = delivery_settings or {}
  threshold = settings.get("free_delivery_threshold")
  if (
      threshold
      and threshold > 0
      and subtotal_cents >= money.to_cents(threshold)
  ):
    return 0
  fee = settings.get("delivery_fee")
  if fee is None:
    return DEFAULT_DELIVERY_FEE_CENTS
  return money.to_cents(fee)


def group_by_store(items: Sequence[CartItem]) -> Dict[str, List[CartItem]]:
  """Groups items by store, keeping the order in which stores first appear."""
  groups: Dict[str, List[CartItem]] = {}
  for item in items:
    groups.setdefault(item.store_id, []).append(item)
  return groups


class CartPartitioner:
  """Splits a cart into per-store groups with authoritative totals."""

  def __init__(self, session: AsyncSession, tax_service: TaxCalculationService):
    self.session = session
    self.tax_service = tax_service

  async def check_availability(self, items: Sequence[CartItem]) -> bool:
    """Rejects the cart if any item is short on stock.

    Returns:
      True when stock was verified, False when the check could not run and
      was skipped.

    Raises:
      InventoryUnavailableError: If any inventory row cannot cover the
        requested quantity.
    """
    requested = [
        (item.inventory_ref, item.quantity)
        for item in items
        if item.inventory_ref
    ]
    if not requested:
      return True

    try:
      availability = await db.check_inventory_availability(
          self.session, requested
      )
    except SQLAlchemyError as e:
      logger.warning("Inventory check failed, continuing unverified: %s", e)
      return False

    short = {
        row["inventory_id"]: row
        for row in availability
        if not row["is_available"]
    }
    if short:
      unavailable = []
      reported = set()
      for item in items:
        row = short.get(item.inventory_ref)
        if row and item.inventory_ref not in reported:
          reported.add(item.inventory_ref)
          unavailable.append({
              "productName": item.product_name,
              "available": row["available_quantity"],
              "requested": row["requested_quantity"],
          })
      raise InventoryUnavailableError(unavailable)
    return True

  async def partition(
      self, items: Sequence[CartItem], address: ShippingAddress
  ) -> Partition:
    """Validates and partitions a cart.

    Args:
      items: The cart lines.
      address: The shipping address, used for tax.

    Returns:
      The per-store groups and the order totals, all in cents.

    Raises:
      EmptyCartError: If `items` is empty.
      InventoryUnavailableError: If stock is insufficient.
      StoreLookupError: If the stores cannot be loaded.
    """
    if not items:
      raise EmptyCartError()

    inventory_verified = await self.check_availability(items)
    items_by_store = group_by_store(items)

    try:
      stores = {
          store.id: store
          for store in await db.get_stores(self.session, list(items_by_store))
      }
    except SQLAlchemyError as e:
      logger.error("Error fetching stores: %s", e)
      raise StoreLookupError() from e

    groups = []
    for store_id, store_items in items_by_store.items():
      store = stores.get(store_id)
      if store is None:
        logger.warning("Store %s not found, using defaults", store_id)
      subtotal = sum(
          money.to_cents(item.price) * item.quantity for item in store_items
      )
      delivery_settings = store.delivery_settings if store else None
      groups.append(
          StoreGroup(
              store_id=store_id,
              store_name=store.name if store else UNKNOWN_STORE_NAME,
              stripe_account_id=(
                  store.tenant.stripe_account_id
                  if store and store.tenant
                  else None
              ),
              items=store_items,
              subtotal=subtotal,
              delivery_fee=delivery_fee_for(subtotal, delivery_settings),
          )
      )

    tax_result = await self.tax_service.calculate_taxes(items, address)
    portions = money.allocate(
        tax_result.tax_amount, [group.subtotal for group in groups]
    )
    for group, portion in zip(groups, portions):
      group.tax = portion

    return Partition(
        groups=groups,
        subtotal=sum(group.subtotal for group in groups),
        tax=sum(portions),
        shipping=sum(group.delivery_fee for group in groups),
        tax_result=tax_result,
        inventory_verified=inventory_verified,
    )
