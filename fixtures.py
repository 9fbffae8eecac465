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

"""Shared test fixtures: a temporary database, seed data and a fake gateway.

The seeded marketplace has two stores in California:
- `s1` (Store One), tenant `t_s1` with Stripe account `acct_s1`, a 5.99
  delivery fee that is waived from 50.00, inventory `inv_1` (10 units) and a
  preferred delivery company `dc1` with one available driver `d1`.
- `s2` (Store Two), tenant `t_s2` with Stripe account `acct_s2`, no delivery
  settings and inventory `inv_2` (5 units).
California charges a 9% sales tax on every item and the marketplace takes a
10% commission.
"""

import asyncio
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Set

import db
from exceptions import PaymentProviderError
from models import CartItem
from models import PaymentIntent
from models import ShippingAddress
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool


class TempDatabase:
  """A throwaway SQLite database with the marketplace schema."""

  def __init__(self) -> None:
    self.test_dir = tempfile.mkdtemp()
    self.path = os.path.join(self.test_dir, "test_marketplace.db")
    # NullPool: each asyncio.run() call gets fresh connections.
    self.engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.path}", echo=False, poolclass=NullPool
    )
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

  def setup(self, seed: bool = True) -> None:
    """Creates the schema and, optionally, the standard seed data."""

    async def init() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)
      if seed:
        async with self.session_factory() as session:
          await seed_marketplace(session)

    asyncio.run(init())

  def run(self, fn) -> Any:
    """Runs `fn(session)` with a fresh session and returns its result."""

    async def runner() -> Any:
      async with self.session_factory() as session:
        return await fn(session)

    return asyncio.run(runner())

  def close(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)


async def seed_marketplace(session: AsyncSession) -> None:
  """Seeds the standard two-store marketplace."""
  session.add_all([
      db.UsState(id="st_ca", code="CA", name="California"),
      db.UsState(id="st_ny", code="NY", name="New York"),
      db.TaxRate(
          id="tax_ca",
          scope="state",
          state_id="st_ca",
          name="California Sales Tax",
          rate=0.09,
          tax_type="sales",
          applies_to="all",
          is_active=True,
      ),
      db.PlatformFee(
          id="fee_commission",
          scope="global",
          name="Marketplace Commission",
          fee_type="marketplace_commission",
          calculation_type="percentage",
          value=0.10,
          is_active=True,
      ),
      db.Tenant(
          id="t_s1",
          name="Store One Inc",
          type="owner_store",
          status="active",
          stripe_account_id="acct_s1",
          stripe_account_status="active",
      ),
      db.Tenant(
          id="t_s2",
          name="Store Two Inc",
          type="owner_store",
          status="active",
          stripe_account_id="acct_s2",
          stripe_account_status="active",
      ),
      db.Tenant(
          id="t_dc",
          name="Delivery Co",
          type="delivery_company",
          status="active",
          stripe_account_id="acct_dc",
      ),
      db.TenantMembership(tenant_id="t_s1", user_id="u_s1_owner", role="owner"),
      db.TenantMembership(tenant_id="t_s1", user_id="u_s1_staff", role="staff"),
      db.TenantMembership(tenant_id="t_s2", user_id="u_s2_owner", role="owner"),
      db.TenantMembership(tenant_id="t_dc", user_id="u_dc_owner", role="owner"),
      db.TenantMembership(tenant_id="t_dc", user_id="u_dc_admin", role="admin"),
      db.TenantMembership(tenant_id="t_dc", user_id="u_dc_staff", role="staff"),
      db.Store(
          id="s1",
          tenant_id="t_s1",
          name="Store One",
          is_active=True,
          delivery_settings={
              "delivery_fee": 5.99,
              "free_delivery_threshold": 50,
          },
      ),
      db.Store(id="s2", tenant_id="t_s2", name="Store Two", is_active=True),
      db.StoreLocation(
          id="loc_s1",
          store_id="s1",
          address_line1="1 Main St",
          city="San Francisco",
          state="CA",
          zip_code="94105",
          is_primary=True,
      ),
      db.Inventory(id="inv_1", store_id="s1", product_id="p1", quantity=10),
      db.Inventory(id="inv_2", store_id="s2", product_id="p2", quantity=5),
      db.DeliveryCompany(
          id="dc1", tenant_id="t_dc", name="Delivery Co", is_active=True
      ),
      db.StoreDeliveryPreference(
          store_id="s1", delivery_company_id="dc1", priority=1, is_enabled=True
      ),
      db.Driver(
          id="d1",
          delivery_company_id="dc1",
          name="Dana",
          is_active=True,
          is_available=True,
      ),
  ])
  await session.commit()


def ca_address(**overrides: Any) -> ShippingAddress:
  values: Dict[str, Any] = {
      "name": "Jane Buyer",
      "street": "500 Howard St",
      "city": "San Francisco",
      "state": "CA",
      "zip_code": "94105",
      "country": "US",
      "email": "jane@example.com",
      "phone": "555-0100",
  }
  values.update(overrides)
  return ShippingAddress(**values)


def cart_item(
    store_id: str,
    price: float,
    quantity: int = 1,
    inventory_id: Optional[str] = None,
    **overrides: Any,
) -> CartItem:
  values: Dict[str, Any] = {
      "id": inventory_id,
      "inventory_id": inventory_id,
      "product_id": f"prod_{store_id}",
      "product_name": f"Bottle from {store_id}",
      "store_id": store_id,
      "store_name": {"s1": "Store One", "s2": "Store Two"}.get(store_id, ""),
      "price": price,
      "quantity": quantity,
      "is_alcohol": True,
  }
  values.update(overrides)
  return CartItem(**values)


def two_store_cart() -> List[CartItem]:
  """S1 subtotal 40.00, S2 subtotal 10.00."""
  return [
      cart_item("s1", 20.0, quantity=2, inventory_id="inv_1"),
      cart_item("s2", 10.0, quantity=1, inventory_id="inv_2"),
  ]


class FakePaymentGateway:
  """In-memory stand-in for StripeGateway."""

  def __init__(self) -> None:
    self.intents: Dict[str, PaymentIntent] = {}
    self.intent_params: List[Dict[str, Any]] = []
    self.customers: Dict[str, str] = {}
    self.transfers: List[Dict[str, Any]] = []
    self.transfer_keys: Dict[str, str] = {}
    self.transfer_requests: List[Optional[str]] = []
    self.failing_destinations: Set[str] = set()

  async def find_or_create_customer(
      self,
      email: str,
      name: Optional[str] = None,
      address: Optional[Dict[str, Any]] = None,
      user_id: Optional[str] = None,
  ) -> str:
    del name, address, user_id  # Unused.
    if email not in self.customers:
      self.customers[email] = f"cus_{len(self.customers) + 1}"
    return self.customers[email]

  async def create_payment_intent(
      self, params: Dict[str, Any]
  ) -> PaymentIntent:
    self.intent_params.append(params)
    intent = PaymentIntent(
        id=f"pi_{len(self.intent_params)}",
        client_secret=f"pi_{len(self.intent_params)}_secret",
        status="requires_payment_method",
        amount=params["amount"],
        currency=params["currency"],
        transfer_group=params.get("transfer_group"),
        metadata=dict(params.get("metadata", {})),
    )
    self.intents[intent.id] = intent
    return intent

  async def retrieve_payment_intent(
      self, payment_intent_id: str
  ) -> PaymentIntent:
    if payment_intent_id not in self.intents:
      raise PaymentProviderError(
          f"No such payment_intent: '{payment_intent_id}'"
      )
    return self.intents[payment_intent_id]

  async def create_transfer(
      self, params: Dict[str, Any], idempotency_key: Optional[str] = None
  ) -> str:
    if params["destination"] in self.failing_destinations:
      raise PaymentProviderError("Insufficient available balance")
    self.transfer_requests.append(idempotency_key)
    # Stripe replays the original transfer for a repeated key.
    if idempotency_key in self.transfer_keys:
      return self.transfer_keys[idempotency_key]
    self.transfers.append(params)
    transfer_id = f"tr_{len(self.transfers)}"
    if idempotency_key:
      self.transfer_keys[idempotency_key] = transfer_id
    return transfer_id

  def add_intent(
      self,
      intent_id: str,
      status: str = "succeeded",
      metadata: Optional[Dict[str, str]] = None,
      transfer_group: Optional[str] = "checkout_test_group",
  ) -> PaymentIntent:
    intent = PaymentIntent(
        id=intent_id,
        client_secret=f"{intent_id}_secret",
        status=status,
        amount=0,
        currency="usd",
        transfer_group=transfer_group,
        metadata=metadata or {},
    )
    self.intents[intent_id] = intent
    return intent

  def mark_succeeded(self, intent_id: str) -> None:
    self.intents[intent_id] = self.intents[intent_id].model_copy(
        update={"status": "succeeded"}
    )
