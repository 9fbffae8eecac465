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

"""Tax calculation service.

Computes sales and alcohol taxes for a cart from the rates configured for the
buyer's state. Rates are matched by the `applies_to` field of each rate:
every item, alcoholic items only, or items in a list of categories.
"""

import logging
from typing import List, Optional, Sequence

import db
from enums import TaxAppliesTo
from models import CartItem
from models import ShippingAddress
from models import TaxLine
from models import TaxResult
import money
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_TAX_RATE = 0.08


def _line_cents(item: CartItem) -> int:
  return money.to_cents(item.price) * item.quantity


def taxable_amount(items: Sequence[CartItem], rate: db.TaxRate) -> int:
  """Returns the amount in cents of `items` that `rate` applies to."""
  total = 0
  for item in items:
    if rate.applies_to == TaxAppliesTo.ALL.value:
      total += _line_cents(item)
    elif rate.applies_to == TaxAppliesTo.ALCOHOL.value and item.is_alcohol:
      total += _line_cents(item)
    elif (
        rate.applies_to == TaxAppliesTo.SPECIFIC_CATEGORIES.value
        and rate.categories
        and item.category in rate.categories
    ):
      total += _line_cents(item)
  return total


class TaxCalculationService:
  """Service for computing taxes from the configured rate tables."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def get_rates_for_state(self, state: Optional[str]) -> List[db.TaxRate]:
    """Returns the active state-level rates for a state code or name."""
    try:
      us_state = await db.resolve_state(self.session, state)
      if not us_state:
        logger.warning("Could not resolve state: %s", state)
        return []
      return await db.get_active_state_tax_rates(self.session, us_state.id)
    except SQLAlchemyError as e:
      logger.error("Error fetching tax rates for %s: %s", state, e)
      return []

  async def calculate_taxes(
      self, items: Sequence[CartItem], address: ShippingAddress
  ) -> TaxResult:
    """Calculates the taxes owed on `items` shipped to `address`."""
    subtotal = sum(_line_cents(item) for item in items)
    rates = await self.get_rates_for_state(address.state)

    breakdown = []
    for rate in rates:
      taxable = taxable_amount(items, rate)
      if taxable <= 0:
        continue
      breakdown.append(
          TaxLine(
              name=rate.name,
              rate=rate.rate,
              amount=money.apply_rate(taxable, rate.rate),
              type=rate.tax_type,
          )
      )

    tax_amount = sum(line.amount for line in breakdown)
    return TaxResult(
        subtotal=subtotal,
        tax_amount=tax_amount,
        tax_rate=tax_amount / subtotal if subtotal > 0 else 0.0,
        breakdown=breakdown,
    )

  async def estimated_tax_rate(self, state: Optional[str] = None) -> float:
    """Returns the state sales tax rate, shown before checkout totals exist."""
    if not state:
      return DEFAULT_ESTIMATED_TAX_RATE
    for rate in await self.get_rates_for_state(state):
      if rate.tax_type == "sales" and rate.rate:
        return rate.rate
    return DEFAULT_ESTIMATED_TAX_RATE
