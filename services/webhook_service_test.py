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

"""Tests for Stripe webhook event handling."""

from absl.testing import absltest
import db
import fixtures
from services.webhook_service import WebhookService


def event(event_type, obj, **extra):
  return {"type": event_type, "data": {"object": obj}, **extra}


class WebhookServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.db = fixtures.TempDatabase()
    self.db.setup()

  def tearDown(self):
    self.db.close()
    super().tearDown()

  def _handle(self, evt):
    async def run(session):
      await WebhookService(session).handle_event(evt)

    self.db.run(run)

  def _get(self, model, key):
    async def run(session):
      return await session.get(model, key)

    return self.db.run(run)

  def _add_rows(self, *rows):
    async def run(session):
      session.add_all(rows)
      await session.commit()

    self.db.run(run)

  def _add_order(self, order_id, store_id="s1", intent_id="pi_1"):
    self._add_rows(
        db.Order(
            id=order_id,
            order_number=f"ORD-{order_id}",
            store_id=store_id,
            status="confirmed",
            fulfillment_type="delivery",
            delivery_address={},
            subtotal=1000,
            tax_amount=90,
            delivery_fee=499,
            platform_fee=159,
            total=1589,
            payment_status="paid",
            payment_method="card",
            stripe_payment_intent_id=intent_id,
        )
    )

  def test_account_fully_enabled(self):
    self._add_rows(
        db.Tenant(
            id="t_new",
            name="New Store Inc",
            type="owner_store",
            status="pending",
            stripe_account_id="acct_new",
            stripe_account_status="onboarding",
        ),
        db.Store(id="s_new", tenant_id="t_new", name="New", is_active=False),
    )

    self._handle(
        event(
            "account.updated",
            {
                "id": "acct_new",
                "charges_enabled": True,
                "payouts_enabled": True,
                "details_submitted": True,
            },
        )
    )

    tenant = self._get(db.Tenant, "t_new")
    self.assertEqual(tenant.status, "active")
    self.assertEqual(tenant.stripe_account_status, "active")
    self.assertTrue(tenant.stripe_onboarding_complete)
    self.assertTrue(self._get(db.Store, "s_new").is_active)

  def test_account_still_onboarding(self):
    self._handle(
        event(
            "account.updated",
            {
                "id": "acct_s2",
                "charges_enabled": True,
                "payouts_enabled": False,
                "details_submitted": False,
            },
        )
    )

    tenant = self._get(db.Tenant, "t_s2")
    self.assertEqual(tenant.status, "pending")
    self.assertEqual(tenant.stripe_account_status, "onboarding")
    self.assertFalse(tenant.stripe_onboarding_complete)

  def test_delivery_company_activated(self):
    async def deactivate(session):
      company = await session.get(db.DeliveryCompany, "dc1")
      company.is_active = False
      await session.commit()

    self.db.run(deactivate)
    self._handle(
        event(
            "account.updated",
            {"id": "acct_dc", "charges_enabled": True},
        )
    )
    self.assertTrue(self._get(db.DeliveryCompany, "dc1").is_active)

  def test_unknown_account_is_ignored(self):
    self._handle(event("account.updated", {"id": "acct_unknown"}))
    self.assertEqual(self._get(db.Tenant, "t_s1").status, "active")

  def test_account_deauthorized(self):
    self._handle(
        event(
            "account.application.deauthorized",
            {"id": "ca_platform_app"},
            account="acct_s1",
        )
    )

    tenant = self._get(db.Tenant, "t_s1")
    self.assertEqual(tenant.status, "suspended")
    self.assertEqual(tenant.stripe_account_status, "disabled")
    self.assertEqual(self._get(db.Tenant, "t_s2").status, "active")

  def test_payment_failed_cancels_orders(self):
    self._add_order("o1", "s1")
    self._add_order("o2", "s2")
    self._add_order("o3", "s1", intent_id="pi_other")

    self._handle(
        event("payment_intent.payment_failed", {"id": "pi_1"})
    )

    for order_id in ("o1", "o2"):
      order = self._get(db.Order, order_id)
      self.assertEqual(order.status, "cancelled")
      self.assertEqual(order.payment_status, "failed")
      self.assertEqual(order.cancellation_reason, "Payment failed")
      self.assertIsNotNone(order.cancelled_at)
    self.assertEqual(self._get(db.Order, "o3").status, "confirmed")

  def test_transfer_created_records_transfer(self):
    self._add_order("o1", "s1")
    self._add_order("o2", "s2")

    self._handle(
        event(
            "transfer.created",
            {"id": "tr_9", "metadata": {"store_id": "s1", "order_ids": "o1"}},
        )
    )

    self.assertEqual(self._get(db.Order, "o1").stripe_transfer_id, "tr_9")
    self.assertIsNone(self._get(db.Order, "o2").stripe_transfer_id)

  def test_unhandled_event_type(self):
    self._handle(event("charge.refunded", {"id": "ch_1"}))
    self.assertEqual(self._get(db.Tenant, "t_s1").status, "active")


if __name__ == "__main__":
  absltest.main()
