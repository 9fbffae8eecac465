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

"""Tests for platform fee calculation."""

from absl.testing import absltest
import db
import fixtures
from services.fee_service import calculate_single_fee
from services.fee_service import FeeCalculationService

TIERS = [
    {"min": 0, "max": 100, "rate": 0.15},
    {"min": 100.01, "max": 500, "rate": 0.12},
    {"min": 500.01, "max": None, "rate": 0.10},
]


class CalculateSingleFeeTest(absltest.TestCase):

  def test_percentage(self):
    fee = db.PlatformFee(calculation_type="percentage", value=0.10)
    self.assertEqual(calculate_single_fee(fee, 5949), (595, 0.10))

  def test_fixed(self):
    fee = db.PlatformFee(calculation_type="fixed", value=0.30)
    self.assertEqual(calculate_single_fee(fee, 5949), (30, None))

  def test_tiered_picks_matching_tier(self):
    fee = db.PlatformFee(calculation_type="tiered", tiers=TIERS)
    self.assertEqual(calculate_single_fee(fee, 5000), (750, 0.15))
    self.assertEqual(calculate_single_fee(fee, 20000), (2400, 0.12))
    self.assertEqual(calculate_single_fee(fee, 100000), (10000, 0.10))

  def test_tiered_falls_back_to_first_tier(self):
    fee = db.PlatformFee(
        calculation_type="tiered", tiers=[{"min": 10, "max": 20, "rate": 0.2}]
    )
    self.assertEqual(calculate_single_fee(fee, 500), (100, 0.2))

  def test_tiered_without_tiers_is_zero(self):
    fee = db.PlatformFee(calculation_type="tiered", tiers=[])
    self.assertEqual(calculate_single_fee(fee, 5000), (0, None))

  def test_unknown_calculation_type_is_zero(self):
    fee = db.PlatformFee(calculation_type="bogus", value=0.5, name="Odd")
    self.assertEqual(calculate_single_fee(fee, 5000), (0, None))


class FeeCalculationServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.db = fixtures.TempDatabase()
    self.db.setup()

  def tearDown(self):
    self.db.close()
    super().tearDown()

  def _add_rows(self, *rows):
    async def run(session):
      session.add_all(rows)
      await session.commit()

    self.db.run(run)

  def _fees(self, amount_cents, state=None):
    async def run(session):
      return await FeeCalculationService(session).calculate_fees(
          amount_cents, state
      )

    return self.db.run(run)

  def test_global_commission(self):
    result = self._fees(5949, "CA")

    self.assertEqual(result.marketplace_commission, 595)
    self.assertAlmostEqual(result.marketplace_commission_rate, 0.10)
    self.assertEqual(result.total_platform_fees, 595)
    self.assertLen(result.breakdown, 1)
    self.assertEqual(result.breakdown[0].type, "marketplace_commission")

  def test_state_fee_overrides_global_for_that_state_only(self):
    self._add_rows(
        db.PlatformFee(
            id="fee_ny_commission",
            scope="state",
            state_id="st_ny",
            name="NY Commission",
            fee_type="marketplace_commission",
            calculation_type="percentage",
            value=0.05,
            is_active=True,
        )
    )
    self.assertEqual(self._fees(10000, "NY").marketplace_commission, 500)
    self.assertEqual(self._fees(10000, "New York").marketplace_commission, 500)
    self.assertEqual(self._fees(10000, "CA").marketplace_commission, 1000)
    self.assertEqual(self._fees(10000).marketplace_commission, 1000)

  def test_processing_and_delivery_fees_add_up(self):
    self._add_rows(
        db.PlatformFee(
            id="fee_processing",
            scope="global",
            name="Processing",
            fee_type="processing_fee",
            calculation_type="percentage",
            value=0.029,
            is_active=True,
        ),
        db.PlatformFee(
            id="fee_delivery",
            scope="global",
            name="Delivery Platform Fee",
            fee_type="delivery_platform_fee",
            calculation_type="fixed",
            value=1.0,
            is_active=True,
        ),
    )
    result = self._fees(10000)

    self.assertEqual(result.marketplace_commission, 1000)
    self.assertEqual(result.processing_fee, 290)
    self.assertEqual(result.delivery_platform_fee, 100)
    self.assertEqual(result.total_platform_fees, 1390)
    self.assertLen(result.breakdown, 3)

  def test_inactive_and_expired_fees_are_ignored(self):
    self._add_rows(
        db.PlatformFee(
            id="fee_inactive",
            scope="global",
            name="Old Processing",
            fee_type="processing_fee",
            calculation_type="fixed",
            value=5.0,
            is_active=False,
        ),
        db.PlatformFee(
            id="fee_expired",
            scope="global",
            name="Expired Delivery Fee",
            fee_type="delivery_platform_fee",
            calculation_type="fixed",
            value=2.0,
            is_active=True,
            end_date="2000-01-01T00:00:00+00:00",
        ),
        db.PlatformFee(
            id="fee_future",
            scope="global",
            name="Future Delivery Fee",
            fee_type="delivery_platform_fee",
            calculation_type="fixed",
            value=3.0,
            is_active=True,
            effective_date="2999-01-01T00:00:00+00:00",
        ),
    )
    result = self._fees(10000)

    self.assertEqual(result.processing_fee, 0)
    self.assertEqual(result.delivery_platform_fee, 0)
    self.assertEqual(result.total_platform_fees, 1000)

  def test_no_fees_configured(self):
    self.db.close()
    self.db = fixtures.TempDatabase()
    self.db.setup(seed=False)

    async def run(session):
      service = FeeCalculationService(session)
      return (
          await service.calculate_fees(10000),
          await service.marketplace_commission_percent(),
      )

    result, percent = self.db.run(run)
    self.assertEqual(result.total_platform_fees, 0)
    self.assertEmpty(result.breakdown)
    self.assertEqual(percent, 10.0)

  def test_commission_percent_for_display(self):
    async def run(session):
      return await FeeCalculationService(
          session
      ).marketplace_commission_percent("CA")

    self.assertAlmostEqual(self.db.run(run), 10.0)

  def test_store_transfer_amount(self):
    async def run(session):
      return await FeeCalculationService(
          session
      ).calculate_store_transfer_amount(4959, "CA")

    platform_fee, transfer = self.db.run(run)
    self.assertEqual(platform_fee, 496)
    self.assertEqual(transfer, 4463)


if __name__ == "__main__":
  absltest.main()
