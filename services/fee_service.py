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

"""Platform fee calculation service.

Fees are configured per fee type in the `platform_fees` table. A fee scoped to
the buyer's state replaces the global fee of the same type. Each fee is
computed as a percentage of the order amount, a fixed amount, or a percentage
picked from amount tiers.
"""

import logging
from typing import Dict, List, Optional, Tuple

import db
from enums import FeeCalculationType
from enums import FeeType
from enums import RateScope
from models import FeeLine
from models import FeeResult
import money
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_PERCENT = 10.0


def calculate_single_fee(
    fee: db.PlatformFee, amount_cents: int
) -> Tuple[int, Optional[float]]:
  """Computes one fee for an amount.

  Args:
    fee: The fee configuration.
    amount_cents: The order amount in cents.

  Returns:
    The fee in cents and the rate applied, or None for fixed fees.
  """
  if fee.calculation_type == FeeCalculationType.PERCENTAGE.value:
    return money.apply_rate(amount_cents, fee.value), fee.value

  if fee.calculation_type == FeeCalculationType.FIXED.value:
    return money.to_cents(fee.value), None

  if fee.calculation_type == FeeCalculationType.TIERED.value:
    if not fee.tiers:
      return 0, None
    for tier in fee.tiers:
      upper = tier.get("max")
      if amount_cents >= money.to_cents(tier["min"]) and (
          upper is None or amount_cents <= money.to_cents(upper)
      ):
        return money.apply_rate(amount_cents, tier["rate"]), tier["rate"]
    # No tier matched; fall back to the first one.
    first_rate = fee.tiers[0]["rate"]
    return money.apply_rate(amount_cents, first_rate), first_rate

  logger.warning(
      "Unknown calculation type %s for fee %s", fee.calculation_type, fee.name
  )
  return 0, None


class FeeCalculationService:
  """Service for computing marketplace fees."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def _fees_by_type(
      self, state: Optional[str]
  ) -> Dict[str, db.PlatformFee]:
    try:
      fees = await db.get_active_platform_fees(self.session)
      us_state = await db.resolve_state(self.session, state) if state else None
    except SQLAlchemyError as e:
      logger.error("Error fetching platform fees: %s", e)
      return {}

    state_id = us_state.id if us_state else None
    by_type: Dict[str, db.PlatformFee] = {}
    for fee in fees:
      if fee.scope == RateScope.STATE.value:
        if state_id and fee.state_id == state_id:
          by_type[fee.fee_type] = fee
      elif fee.fee_type not in by_type:
        by_type[fee.fee_type] = fee
    return by_type

  async def calculate_fees(
      self, amount_cents: int, state: Optional[str] = None
  ) -> FeeResult:
    """Calculates every platform fee for an order amount in cents."""
    result = FeeResult()
    breakdown: List[FeeLine] = []
    fees = await self._fees_by_type(state)

    for fee_type, fee in fees.items():
      amount, rate = calculate_single_fee(fee, amount_cents)
      breakdown.append(
          FeeLine(name=fee.name, type=fee_type, amount=amount, rate=rate)
      )
      if fee_type == FeeType.MARKETPLACE_COMMISSION.value:
        result.marketplace_commission = amount
        result.marketplace_commission_rate = rate or 0.0
      elif fee_type == FeeType.PROCESSING_FEE.value:
        result.processing_fee = amount
        result.processing_fee_rate = rate or 0.0
      elif fee_type == FeeType.DELIVERY_PLATFORM_FEE.value:
        result.delivery_platform_fee = amount

    result.total_platform_fees = (
        result.marketplace_commission
        + result.processing_fee
        + result.delivery_platform_fee
    )
    result.breakdown = breakdown
    return result

  async def marketplace_commission_percent(
      self, state: Optional[str] = None
  ) -> float:
    """Returns the commission as a percentage (10.0 for 10%), for display."""
    fee = (await self._fees_by_type(state)).get(
        FeeType.MARKETPLACE_COMMISSION.value
    )
    if not fee:
      return DEFAULT_COMMISSION_PERCENT
    return fee.value * 100

  async def calculate_store_transfer_amount(
      self, store_total_cents: int, state: Optional[str] = None
  ) -> Tuple[int, int]:
    """Splits a store's total into the platform's cut and the store payout.

    Only the marketplace commission is withheld from store transfers.

    Returns:
      (platform_fee, transfer_amount) in cents.
    """
    fees = await self.calculate_fees(store_total_cents, state)
    platform_fee = fees.marketplace_commission
    return platform_fee, store_total_cents - platform_fee
