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

"""Tests for order confirmation and fan-out."""

import asyncio
import json

from absl.testing import absltest
import db
from enums import SideEffectStatus
from exceptions import EmptyCartError
from exceptions import OrderAlreadyConfirmedError
from exceptions import PaymentNotCompletedError
from exceptions import ResourceNotFoundError
import fixtures
from models import ConfirmOrderRequest
from services.delivery_service import DeliveryService
from services.fee_service import FeeCalculationService
from services.notification_service import NotificationService
from services.order_service import generate_order_number
from services.order_service import load_order_detail
from services.order_service import OrderService
from services.order_service import parse_store_breakdown
from sqlalchemy import select

TWO_STORE_BREAKDOWN = [
    {"storeId": "s1", "total": 49.59, "accountId": "acct_s1"},
    {"storeId": "s2", "total": 15.89, "accountId": "acct_s2"},
]


def confirmed_items():
  """The two-store cart as the storefront echoes it back after payment."""
  return [
      fixtures.cart_item(
          "s1",
          40.0,
          inventory_id="inv_1",
          taxes=3.6,
          shipping_cost=5.99,
      ),
      fixtures.cart_item(
          "s2",
          10.0,
          inventory_id="inv_2",
          taxes=0.9,
          shipping_cost=4.99,
      ),
  ]


class OrderServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.db = fixtures.TempDatabase()
    self.db.setup()
    self.gateway = fixtures.FakePaymentGateway()

  def tearDown(self):
    self.db.close()
    super().tearDown()

  def _add_intent(self, intent_id="pi_multi", breakdown=None, **kwargs):
    if breakdown is None:
      breakdown = TWO_STORE_BREAKDOWN
    return self.gateway.add_intent(
        intent_id,
        metadata={"store_breakdown": json.dumps(breakdown)},
        **kwargs,
    )

  def _request(self, intent_id="pi_multi", items=None):
    return ConfirmOrderRequest(
        payment_intent_id=intent_id,
        customer_id="buyer_1",
        shipping_address=fixtures.ca_address(delivery_notes="Ring twice"),
        items=items if items is not None else confirmed_items(),
    )

  def _service(self, session):
    notifications = NotificationService(session)
    return OrderService(
        session,
        FeeCalculationService(session),
        DeliveryService(session, notifications),
        notifications,
        self.gateway,
    )

  def _confirm(self, intent_id="pi_multi", items=None):
    request = self._request(intent_id, items)

    async def run(session):
      return await self._service(session).confirm_order(request)

    return self.db.run(run)

  def _query(self, fn):
    return self.db.run(fn)

  def _orders(self, intent_id="pi_multi"):
    async def run(session):
      return await db.get_orders_for_payment_intent(session, intent_id)

    return self._query(run)

  def _statuses(self, response):
    return {
        (o.step, o.store_id): o.status
        for o in response.side_effects
        if o.step != "inventory"
    }

  def test_creates_one_order_per_store(self):
    self._add_intent()
    response = self._confirm()

    self.assertTrue(response.success)
    self.assertEqual(response.payment_intent_id, "pi_multi")
    self.assertEqual(response.message, "Created 2 order(s) successfully")
    self.assertEqual(
        [(o.store_id, o.store_name, o.total) for o in response.orders],
        [("s1", "Store One", 49.59), ("s2", "Store Two", 15.89)],
    )
    for order in response.orders:
      self.assertRegex(order.order_number, r"^ORD-\d{8}-[0-9A-F]{6}$")

    orders = {o.store_id: o for o in self._orders()}
    s1 = orders["s1"]
    self.assertEqual(
        (s1.subtotal, s1.tax_amount, s1.delivery_fee, s1.total),
        (4000, 360, 599, 4959),
    )
    self.assertEqual(s1.platform_fee, 496)
    self.assertEqual(s1.status, "confirmed")
    self.assertEqual(s1.payment_status, "paid")
    self.assertEqual(s1.fulfillment_type, "delivery")
    self.assertEqual(s1.customer_id, "buyer_1")
    self.assertEqual(s1.customer_email, "jane@example.com")
    self.assertEqual(s1.customer_notes, "Ring twice")
    self.assertEqual(s1.delivery_address["notes"], "Ring twice")
    self.assertEqual(orders["s2"].platform_fee, 159)

  def test_payment_not_succeeded(self):
    self._add_intent(status="requires_payment_method")

    with self.assertRaises(PaymentNotCompletedError) as cm:
      self._confirm()

    self.assertEqual(cm.exception.status_code, 400)
    self.assertEqual(cm.exception.status, "requires_payment_method")
    self.assertEmpty(self._orders())

  def test_second_confirmation_is_rejected(self):
    self._add_intent()
    self._confirm()

    with self.assertRaises(OrderAlreadyConfirmedError) as cm:
      self._confirm()

    self.assertEqual(cm.exception.status_code, 409)
    self.assertLen(self._orders(), 2)
    self.assertLen(self.gateway.transfers, 2)

  def test_confirmation_without_items_is_rejected(self):
    self._add_intent()

    for _ in range(3):
      with self.assertRaises(EmptyCartError) as cm:
        self._confirm(items=[])
      self.assertEqual(cm.exception.status_code, 400)

    self.assertEmpty(self._orders())
    self.assertEmpty(self.gateway.transfer_requests)

  def test_concurrent_confirmations_pay_each_store_once(self):
    self._add_intent()

    async def confirm_once():
      async with self.db.session_factory() as session:
        try:
          return await self._service(session).confirm_order(self._request())
        except OrderAlreadyConfirmedError:
          return None

    async def race():
      return await asyncio.gather(confirm_once(), confirm_once())

    responses = [r for r in asyncio.run(race()) if r is not None]

    self.assertLen(self._orders(), 2)
    self.assertEqual(sum(len(r.orders) for r in responses), 2)
    self.assertLen(self.gateway.transfer_requests, 2)
    self.assertCountEqual(
        [t["destination"] for t in self.gateway.transfers],
        ["acct_s1", "acct_s2"],
    )

  def test_store_without_new_order_is_not_paid(self):
    self._add_intent()

    response = self._confirm(items=confirmed_items()[:1])

    statuses = self._statuses(response)
    self.assertEqual(statuses[("transfer", "s1")], SideEffectStatus.OK)
    self.assertEqual(statuses[("transfer", "s2")], SideEffectStatus.SKIPPED)
    self.assertEqual(
        [t["destination"] for t in self.gateway.transfers], ["acct_s1"]
    )

  def test_order_uses_stored_store_name(self):
    self._add_intent()
    items = confirmed_items()
    items[0].store_name = "Renamed By Client"
    items[1].store_name = ""

    response = self._confirm(items=items)

    self.assertEqual(
        [o.store_name for o in response.orders], ["Store One", "Store Two"]
    )

  def test_unknown_store_keeps_submitted_name(self):
    self._add_intent(breakdown=[])

    response = self._confirm(
        items=[fixtures.cart_item("s9", 10.0, store_name="Pop-up Shop")]
    )

    self.assertEqual(response.orders[0].store_name, "Pop-up Shop")
    statuses = self._statuses(response)
    self.assertEqual(
        statuses[("store_notification", "s9")], SideEffectStatus.SKIPPED
    )

  def test_items_and_inventory(self):
    self._add_intent()
    response = self._confirm()

    async def run(session):
      items = await db.get_order_items(session, response.orders[0].id)
      rows = (
          await session.execute(
              select(db.Inventory).order_by(db.Inventory.id)
          )
      ).scalars()
      return items, {r.id: (r.quantity, r.version) for r in rows}

    items, inventory = self._query(run)
    self.assertLen(items, 1)
    self.assertEqual(items[0].inventory_id, "inv_1")
    self.assertEqual(items[0].quantity, 1)
    self.assertEqual(items[0].unit_price, 4000)
    self.assertEqual(items[0].subtotal, 4000)
    self.assertEqual(items[0].tax_amount, 360)
    self.assertEqual(items[0].total, 4360)
    self.assertEqual(inventory, {"inv_1": (9, 1), "inv_2": (4, 1)})

    inventory_outcomes = [
        o for o in response.side_effects if o.step == "inventory"
    ]
    self.assertEqual(
        [(o.reference, o.status) for o in inventory_outcomes],
        [("inv_1", SideEffectStatus.OK), ("inv_2", SideEffectStatus.OK)],
    )

  def test_insufficient_stock_at_confirmation_is_reported(self):
    self._add_intent()
    items = confirmed_items()
    items[1].quantity = 6

    response = self._confirm(items=items)

    self.assertLen(response.orders, 2)
    failed = [
        o
        for o in response.side_effects
        if o.step == "inventory" and o.status == SideEffectStatus.FAILED
    ]
    self.assertLen(failed, 1)
    self.assertEqual(failed[0].reference, "inv_2")

  def test_deliveries_and_notifications(self):
    self._add_intent()
    response = self._confirm()

    statuses = self._statuses(response)
    self.assertEqual(statuses[("delivery", "s1")], SideEffectStatus.OK)
    self.assertEqual(statuses[("delivery", "s2")], SideEffectStatus.OK)
    # Only one driver is available, so the second delivery waits.
    self.assertEqual(
        statuses[("driver_assignment", "s1")], SideEffectStatus.OK
    )
    self.assertEqual(
        statuses[("driver_assignment", "s2")], SideEffectStatus.SKIPPED
    )
    self.assertEqual(
        statuses[("store_notification", "s1")], SideEffectStatus.OK
    )
    self.assertEqual(
        statuses[("delivery_notification", "s1")], SideEffectStatus.OK
    )

    s1_order = response.orders[0]

    async def run(session):
      delivery = await db.get_delivery_for_order(session, s1_order.id)
      driver = await session.get(db.Driver, "d1")
      notified = {
          user_id: await db.get_notifications(session, user_id)
          for user_id in (
              "u_s1_owner",
              "u_s1_staff",
              "u_dc_owner",
              "u_dc_admin",
              "u_dc_staff",
          )
      }
      return delivery, driver, notified

    delivery, driver, notified = self._query(run)
    self.assertEqual(delivery.id, s1_order.delivery_id)
    self.assertEqual(delivery.delivery_company_id, "dc1")
    self.assertEqual(delivery.driver_id, "d1")
    self.assertEqual(delivery.status, "assigned")
    self.assertEqual(delivery.delivery_fee, 599)
    self.assertEqual(delivery.pickup_address["city"], "San Francisco")
    self.assertEqual(delivery.dropoff_address["zip_code"], "94105")
    self.assertFalse(driver.is_available)

    self.assertLen(notified["u_s1_owner"], 1)
    self.assertEqual(notified["u_s1_owner"][0].title, "New Order Received")
    self.assertEqual(
        notified["u_s1_owner"][0].body,
        f"Order #{s1_order.order_number} received for $49.59",
    )
    self.assertEmpty(notified["u_s1_staff"])
    self.assertLen(notified["u_dc_owner"], 2)
    self.assertLen(notified["u_dc_admin"], 2)
    self.assertEqual(notified["u_dc_admin"][0].title, "New Delivery Available")
    self.assertEmpty(notified["u_dc_staff"])

  def test_no_delivery_company(self):
    async def deactivate(session):
      company = await session.get(db.DeliveryCompany, "dc1")
      company.is_active = False
      await session.commit()

    self._query(deactivate)
    self._add_intent()
    response = self._confirm()

    statuses = self._statuses(response)
    self.assertEqual(statuses[("delivery", "s1")], SideEffectStatus.SKIPPED)
    self.assertNotIn(("driver_assignment", "s1"), statuses)
    self.assertIsNone(response.orders[0].delivery_id)
    self.assertLen(response.orders, 2)

  def test_multi_store_transfers(self):
    self._add_intent()
    response = self._confirm()

    transfers = {t["destination"]: t for t in self.gateway.transfers}
    self.assertEqual(set(transfers), {"acct_s1", "acct_s2"})
    s1 = transfers["acct_s1"]
    self.assertEqual(s1["amount"], 4959 - 496)
    self.assertEqual(s1["currency"], "usd")
    self.assertEqual(s1["transfer_group"], "checkout_test_group")
    self.assertEqual(s1["metadata"]["store_id"], "s1")
    self.assertEqual(s1["metadata"]["platform_fee"], "496")
    self.assertEqual(s1["metadata"]["order_ids"], response.orders[0].id)
    self.assertEqual(transfers["acct_s2"]["amount"], 1589 - 159)
    self.assertEqual(
        self.gateway.transfer_requests,
        ["transfer_pi_multi_s1", "transfer_pi_multi_s2"],
    )

    transfer_ids = {o.store_id: o.stripe_transfer_id for o in self._orders()}
    self.assertEqual(set(transfer_ids.values()), {"tr_1", "tr_2"})

  def test_failed_transfer_is_reported(self):
    self.gateway.failing_destinations.add("acct_s2")
    self._add_intent()

    response = self._confirm()

    statuses = self._statuses(response)
    self.assertEqual(statuses[("transfer", "s1")], SideEffectStatus.OK)
    self.assertEqual(statuses[("transfer", "s2")], SideEffectStatus.FAILED)
    self.assertLen(response.orders, 2)
    self.assertLen(self.gateway.transfers, 1)

  def test_store_without_account_is_not_transferred(self):
    self._add_intent(
        breakdown=[
            TWO_STORE_BREAKDOWN[0],
            {"storeId": "s2", "total": 15.89, "accountId": None},
        ]
    )
    response = self._confirm()

    statuses = self._statuses(response)
    self.assertEqual(statuses[("transfer", "s2")], SideEffectStatus.SKIPPED)
    self.assertEqual(
        [t["destination"] for t in self.gateway.transfers], ["acct_s1"]
    )

  def test_single_store_payment_has_no_transfers(self):
    self._add_intent(breakdown=[TWO_STORE_BREAKDOWN[0]])
    response = self._confirm(items=confirmed_items()[:1])

    self.assertLen(response.orders, 1)
    self.assertEmpty(self.gateway.transfers)
    self.assertNotIn(
        "transfer", [o.step for o in response.side_effects]
    )

  def test_get_order(self):
    self._add_intent()
    response = self._confirm()
    order_id = response.orders[0].id

    async def run(session):
      return await load_order_detail(session, order_id)

    detail = self._query(run)
    self.assertEqual(detail.id, order_id)
    self.assertEqual(detail.total, 49.59)
    self.assertEqual(detail.stripe_payment_intent_id, "pi_multi")
    self.assertLen(detail.items, 1)
    self.assertEqual(detail.items[0].unit_price, 40.0)
    self.assertEqual(detail.delivery.id, response.orders[0].delivery_id)
    self.assertEqual(detail.delivery.delivery_fee, 5.99)

  def test_get_missing_order(self):
    async def run(session):
      return await load_order_detail(session, "missing")

    with self.assertRaises(ResourceNotFoundError) as cm:
      self._query(run)
    self.assertEqual(cm.exception.status_code, 404)


class HelpersTest(absltest.TestCase):

  def test_order_numbers_are_unique(self):
    numbers = {generate_order_number() for _ in range(50)}
    self.assertLen(numbers, 50)

  def test_parse_store_breakdown(self):
    gateway = fixtures.FakePaymentGateway()
    good = gateway.add_intent(
        "pi_a", metadata={"store_breakdown": json.dumps(TWO_STORE_BREAKDOWN)}
    )
    bad = gateway.add_intent("pi_b", metadata={"store_breakdown": "{nope"})
    missing = gateway.add_intent("pi_c")

    self.assertEqual(parse_store_breakdown(good), TWO_STORE_BREAKDOWN)
    self.assertEqual(parse_store_breakdown(bad), [])
    self.assertEqual(parse_store_breakdown(missing), [])


if __name__ == "__main__":
  absltest.main()
