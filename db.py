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

"""Database management and persistence layer for the marketplace server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so the server and
  the operator scripts can share the database file.
- Declarative Models: Tenants, stores, inventory, tax and platform fee
  configuration, orders, deliveries and notifications. Money columns hold
  integer cents.
- Data Access Helpers: A suite of asynchronous functions for the queries and
  updates issued by the checkout flow.
"""

import datetime
import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Sequence
from typing import Tuple
import uuid

from enums import DeliveryStatus
from enums import RateScope
from enums import TenantType
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import UniqueConstraint
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import selectinload
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def new_id() -> str:
  return str(uuid.uuid4())


def utc_now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_path: str) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{database_path}"
    self.engine = create_async_engine(url, echo=False)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Tenant(Base):
  __tablename__ = "tenants"

  id = Column(String, primary_key=True, default=new_id)
  name = Column(String)
  type = Column(String)  # 'owner_store' or 'delivery_company'
  status = Column(String, default="pending")
  stripe_account_id = Column(String, nullable=True, index=True)
  stripe_account_status = Column(String, nullable=True)
  stripe_onboarding_complete = Column(Boolean, default=False)

  stores = relationship("Store", back_populates="tenant")


class TenantMembership(Base):
  __tablename__ = "tenant_memberships"

  id = Column(String, primary_key=True, default=new_id)
  tenant_id = Column(String, ForeignKey("tenants.id"), index=True)
  user_id = Column(String)
  role = Column(String)  # 'owner', 'admin', 'staff'


class Store(Base):
  __tablename__ = "stores"

  id = Column(String, primary_key=True, default=new_id)
  tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True)
  name = Column(String)
  is_active = Column(Boolean, default=True)
  # {delivery_enabled, pickup_enabled, delivery_fee, free_delivery_threshold,
  #  minimum_order}, amounts in currency units as edited on the dashboard.
  delivery_settings = Column(JSON, nullable=True)

  tenant = relationship("Tenant", back_populates="stores")


class StoreLocation(Base):
  __tablename__ = "store_locations"

  id = Column(String, primary_key=True, default=new_id)
  store_id = Column(String, ForeignKey("stores.id"), index=True)
  address_line1 = Column(String)
  city = Column(String)
  state = Column(String)
  zip_code = Column(String)
  latitude = Column(Float, nullable=True)
  longitude = Column(Float, nullable=True)
  is_primary = Column(Boolean, default=False)


class Inventory(Base):
  __tablename__ = "inventory"

  id = Column(String, primary_key=True, default=new_id)
  store_id = Column(String, ForeignKey("stores.id"), index=True)
  product_id = Column(String)
  quantity = Column(Integer, default=0)
  version = Column(Integer, default=0, nullable=False)


class UsState(Base):
  __tablename__ = "us_states"

  id = Column(String, primary_key=True, default=new_id)
  code = Column(String, unique=True)  # e.g., 'CA'
  name = Column(String)


class TaxRate(Base):
  __tablename__ = "tax_rates"

  id = Column(String, primary_key=True, default=new_id)
  scope = Column(String)  # 'state', 'county', 'city'
  state_id = Column(String, ForeignKey("us_states.id"), nullable=True)
  name = Column(String)
  rate = Column(Float)  # Decimal fraction, 0.0825 = 8.25%
  tax_type = Column(String)  # 'sales', 'alcohol', 'excise'
  applies_to = Column(String, default="all")
  categories = Column(JSON, nullable=True)
  is_active = Column(Boolean, default=True)


class PlatformFee(Base):
  __tablename__ = "platform_fees"

  id = Column(String, primary_key=True, default=new_id)
  scope = Column(String)  # 'global' or 'state'
  state_id = Column(String, ForeignKey("us_states.id"), nullable=True)
  name = Column(String)
  fee_type = Column(String)
  calculation_type = Column(String)  # 'percentage', 'fixed', 'tiered'
  value = Column(Float)  # Rate for percentage, currency units for fixed
  tiers = Column(JSON, nullable=True)  # [{min, max, rate}], currency units
  is_active = Column(Boolean, default=True)
  effective_date = Column(String, nullable=True)
  end_date = Column(String, nullable=True)


class Order(Base):
  __tablename__ = "orders"
  __table_args__ = (
      UniqueConstraint(
          "stripe_payment_intent_id",
          "store_id",
          name="uq_orders_payment_intent_store",
      ),
  )

  id = Column(String, primary_key=True, default=new_id)
  order_number = Column(String, unique=True)
  customer_id = Column(String, nullable=True)
  store_id = Column(String, index=True)
  status = Column(String)
  fulfillment_type = Column(String)
  delivery_address = Column(JSON)
  subtotal = Column(Integer)  # In cents
  tax_amount = Column(Integer)  # In cents
  delivery_fee = Column(Integer)  # In cents
  platform_fee = Column(Integer)  # In cents
  total = Column(Integer)  # In cents
  payment_status = Column(String)
  payment_method = Column(String)
  stripe_payment_intent_id = Column(String, index=True)
  stripe_transfer_id = Column(String, nullable=True)
  customer_email = Column(String, nullable=True)
  customer_notes = Column(String, nullable=True)
  created_at = Column(String, default=utc_now)
  cancelled_at = Column(String, nullable=True)
  cancellation_reason = Column(String, nullable=True)


class OrderItem(Base):
  __tablename__ = "order_items"

  id = Column(String, primary_key=True, default=new_id)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  product_id = Column(String)
  inventory_id = Column(String, nullable=True)
  product_name = Column(String)
  quantity = Column(Integer)
  unit_price = Column(Integer)  # In cents
  subtotal = Column(Integer)  # In cents
  discount_amount = Column(Integer, default=0)  # In cents
  tax_amount = Column(Integer)  # In cents
  total = Column(Integer)  # In cents


class DeliveryCompany(Base):
  __tablename__ = "delivery_companies"

  id = Column(String, primary_key=True, default=new_id)
  tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True)
  name = Column(String)
  is_active = Column(Boolean, default=True)


class StoreDeliveryPreference(Base):
  __tablename__ = "store_delivery_preferences"

  id = Column(String, primary_key=True, default=new_id)
  store_id = Column(String, ForeignKey("stores.id"), index=True)
  delivery_company_id = Column(String, ForeignKey("delivery_companies.id"))
  priority = Column(Integer, default=0)  # Lower is preferred
  is_enabled = Column(Boolean, default=True)


class Driver(Base):
  __tablename__ = "drivers"

  id = Column(String, primary_key=True, default=new_id)
  delivery_company_id = Column(
      String, ForeignKey("delivery_companies.id"), index=True
  )
  name = Column(String)
  is_active = Column(Boolean, default=True)
  is_available = Column(Boolean, default=True)


class Delivery(Base):
  __tablename__ = "deliveries"

  id = Column(String, primary_key=True, default=new_id)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  delivery_company_id = Column(String, ForeignKey("delivery_companies.id"))
  driver_id = Column(String, ForeignKey("drivers.id"), nullable=True)
  status = Column(String)
  delivery_fee = Column(Integer)  # In cents
  pickup_address = Column(JSON, nullable=True)
  dropoff_address = Column(JSON)
  customer_notes = Column(String, nullable=True)
  recipient_name = Column(String, nullable=True)
  estimated_pickup_time = Column(String)
  estimated_delivery_time = Column(String)
  assigned_at = Column(String, nullable=True)
  created_at = Column(String, default=utc_now)


class Notification(Base):
  __tablename__ = "notifications"

  id = Column(String, primary_key=True, default=new_id)
  user_id = Column(String, index=True)
  type = Column(String)  # 'order', 'delivery'
  title = Column(String)
  body = Column(String)
  action_url = Column(String, nullable=True)
  data = Column(JSON, nullable=True)
  is_read = Column(Boolean, default=False)
  created_at = Column(String, default=utc_now)


# --- Data Access Helpers ---


async def get_stores(
    session: AsyncSession, store_ids: Sequence[str]
) -> List[Store]:
  """Retrieves stores by ID together with their owning tenant."""
  result = await session.execute(
      select(Store)
      .options(selectinload(Store.tenant))
      .where(Store.id.in_(list(store_ids)))
  )
  return list(result.scalars().all())


async def get_store(session: AsyncSession, store_id: str) -> Optional[Store]:
  """Retrieves a store by ID."""
  return await session.get(Store, store_id)


async def get_primary_store_location(
    session: AsyncSession, store_id: str
) -> Optional[StoreLocation]:
  """Retrieves the primary physical location of a store, if any."""
  result = await session.execute(
      select(StoreLocation)
      .where(StoreLocation.store_id == store_id)
      .where(StoreLocation.is_primary.is_(True))
      .limit(1)
  )
  return result.scalar_one_or_none()


async def check_inventory_availability(
    session: AsyncSession, requested: Iterable[Tuple[str, int]]
) -> List[Dict[str, Any]]:
  """Compares requested quantities against on-hand inventory.

  Quantities requested for the same inventory row are summed. Rows that do not
  exist are reported with zero available quantity.

  Args:
    session: The database session to use.
    requested: (inventory_id, quantity) pairs.

  Returns:
    One dict per inventory id with `inventory_id`, `available_quantity`,
    `requested_quantity` and `is_available`.
  """
  totals: Dict[str, int] = {}
  for inventory_id, quantity in requested:
    totals[inventory_id] = totals.get(inventory_id, 0) + quantity
  if not totals:
    return []

  result = await session.execute(
      select(Inventory.id, Inventory.quantity).where(
          Inventory.id.in_(list(totals))
      )
  )
  on_hand = {row.id: row.quantity or 0 for row in result}

  availability = []
  for inventory_id, quantity in totals.items():
    available = on_hand.get(inventory_id, 0)
    availability.append({
        "inventory_id": inventory_id,
        "available_quantity": available,
        "requested_quantity": quantity,
        "is_available": available >= quantity,
    })
  return availability


async def reserve_stock(
    session: AsyncSession, inventory_id: str, quantity: int
) -> bool:
  """Atomically decrements inventory if sufficient stock exists.

  The availability check and the decrement are a single conditional UPDATE,
  so concurrent checkouts cannot drive the quantity negative. The row version
  is bumped on every successful decrement.
  """
  stmt = (
      update(Inventory)
      .where(Inventory.id == inventory_id)
      .where(Inventory.quantity >= quantity)
      .values(
          quantity=Inventory.quantity - quantity,
          version=Inventory.version + 1,
      )
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def resolve_state(
    session: AsyncSession, state_input: Optional[str]
) -> Optional[UsState]:
  """Resolves a US state by postal code first, then by name."""
  if not state_input:
    return None
  value = state_input.strip()
  result = await session.execute(
      select(UsState).where(UsState.code == value.upper()).limit(1)
  )
  state = result.scalar_one_or_none()
  if state:
    return state

  result = await session.execute(
      select(UsState).where(func.lower(UsState.name) == value.lower()).limit(1)
  )
  return result.scalar_one_or_none()


async def get_active_state_tax_rates(
    session: AsyncSession, state_id: str
) -> List[TaxRate]:
  """Retrieves active state-level tax rates for a state."""
  result = await session.execute(
      select(TaxRate)
      .where(TaxRate.is_active.is_(True))
      .where(TaxRate.scope == RateScope.STATE.value)
      .where(TaxRate.state_id == state_id)
      .order_by(TaxRate.name)
  )
  return list(result.scalars().all())


async def get_active_platform_fees(
    session: AsyncSession, now: Optional[str] = None
) -> List[PlatformFee]:
  """Retrieves platform fees that are active and within their date window."""
  now = now or utc_now()
  result = await session.execute(
      select(PlatformFee).where(PlatformFee.is_active.is_(True))
  )
  fees = []
  for fee in result.scalars().all():
    if fee.effective_date and fee.effective_date > now:
      continue
    if fee.end_date and fee.end_date < now:
      continue
    fees.append(fee)
  return fees


async def get_orders_for_payment_intent(
    session: AsyncSession, payment_intent_id: str
) -> List[Order]:
  """Retrieves every order created for a payment intent."""
  result = await session.execute(
      select(Order).where(Order.stripe_payment_intent_id == payment_intent_id)
  )
  return list(result.scalars().all())


async def create_order(session: AsyncSession, fields: Dict[str, Any]) -> Order:
  """Adds a new order and flushes it so constraint violations surface here."""
  order = Order(id=new_id(), **fields)
  session.add(order)
  await session.flush()
  return order


async def create_order_items(
    session: AsyncSession, order_id: str, items: List[Dict[str, Any]]
) -> List[OrderItem]:
  """Adds the line items of an order."""
  rows = [OrderItem(id=new_id(), order_id=order_id, **item) for item in items]
  session.add_all(rows)
  await session.flush()
  return rows


async def get_order(session: AsyncSession, order_id: str) -> Optional[Order]:
  """Retrieves an order by ID."""
  return await session.get(Order, order_id)


async def get_order_items(
    session: AsyncSession, order_id: str
) -> List[OrderItem]:
  """Retrieves the items of an order."""
  result = await session.execute(
      select(OrderItem).where(OrderItem.order_id == order_id)
  )
  return list(result.scalars().all())


async def get_delivery_for_order(
    session: AsyncSession, order_id: str
) -> Optional[Delivery]:
  """Retrieves the delivery attached to an order, if any."""
  result = await session.execute(
      select(Delivery).where(Delivery.order_id == order_id).limit(1)
  )
  return result.scalar_one_or_none()


async def get_enabled_delivery_preferences(
    session: AsyncSession, store_id: str
) -> List[Tuple[StoreDeliveryPreference, DeliveryCompany]]:
  """Retrieves a store's enabled delivery partners, best priority first."""
  result = await session.execute(
      select(StoreDeliveryPreference, DeliveryCompany)
      .join(
          DeliveryCompany,
          DeliveryCompany.id == StoreDeliveryPreference.delivery_company_id,
      )
      .where(StoreDeliveryPreference.store_id == store_id)
      .where(StoreDeliveryPreference.is_enabled.is_(True))
      .order_by(StoreDeliveryPreference.priority.asc())
  )
  return [(row[0], row[1]) for row in result.all()]


async def get_any_active_delivery_company(
    session: AsyncSession,
) -> Optional[DeliveryCompany]:
  """Retrieves any active delivery company."""
  result = await session.execute(
      select(DeliveryCompany)
      .where(DeliveryCompany.is_active.is_(True))
      .order_by(DeliveryCompany.name)
      .limit(1)
  )
  return result.scalar_one_or_none()


async def create_delivery(
    session: AsyncSession, fields: Dict[str, Any]
) -> Delivery:
  """Adds a new delivery record."""
  delivery = Delivery(id=new_id(), **fields)
  session.add(delivery)
  await session.flush()
  return delivery


async def auto_assign_delivery(
    session: AsyncSession, delivery: Delivery
) -> Optional[Driver]:
  """Assigns the first available driver of the delivery's company.

  Returns:
    The assigned driver, or None when the company has no available driver.
  """
  result = await session.execute(
      select(Driver)
      .where(Driver.delivery_company_id == delivery.delivery_company_id)
      .where(Driver.is_active.is_(True))
      .where(Driver.is_available.is_(True))
      .order_by(Driver.name)
      .limit(1)
  )
  driver = result.scalar_one_or_none()
  if not driver:
    return None

  driver.is_available = False
  delivery.driver_id = driver.id
  delivery.status = DeliveryStatus.ASSIGNED.value
  delivery.assigned_at = utc_now()
  await session.flush()
  return driver


async def get_tenant_member_ids(
    session: AsyncSession,
    tenant_id: str,
    roles: Sequence[str],
    limit: int,
) -> List[str]:
  """Retrieves user IDs of tenant members holding one of `roles`."""
  result = await session.execute(
      select(TenantMembership.user_id)
      .where(TenantMembership.tenant_id == tenant_id)
      .where(TenantMembership.role.in_(list(roles)))
      .order_by(TenantMembership.role.desc(), TenantMembership.user_id)
      .limit(limit)
  )
  return list(result.scalars().all())


async def create_notification(
    session: AsyncSession,
    user_id: str,
    notification_type: str,
    title: str,
    body: str,
    action_url: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
  """Adds a notification for a user."""
  notification = Notification(
      id=new_id(),
      user_id=user_id,
      type=notification_type,
      title=title,
      body=body,
      action_url=action_url,
      data=data,
  )
  session.add(notification)
  await session.flush()
  return notification


async def get_notifications(
    session: AsyncSession, user_id: str
) -> List[Notification]:
  """Retrieves a user's notifications, oldest first."""
  result = await session.execute(
      select(Notification)
      .where(Notification.user_id == user_id)
      .order_by(Notification.created_at)
  )
  return list(result.scalars().all())


async def get_tenant_by_stripe_account(
    session: AsyncSession, account_id: str
) -> Optional[Tenant]:
  """Retrieves the tenant owning a Stripe Connect account."""
  result = await session.execute(
      select(Tenant).where(Tenant.stripe_account_id == account_id).limit(1)
  )
  return result.scalar_one_or_none()


async def activate_tenant_entities(
    session: AsyncSession, tenant: Tenant
) -> None:
  """Activates the stores or delivery companies owned by a tenant."""
  if tenant.type == TenantType.OWNER_STORE.value:
    await session.execute(
        update(Store).where(Store.tenant_id == tenant.id).values(is_active=True)
    )
  elif tenant.type == TenantType.DELIVERY_COMPANY.value:
    await session.execute(
        update(DeliveryCompany)
        .where(DeliveryCompany.tenant_id == tenant.id)
        .values(is_active=True)
    )


async def update_orders_for_payment_intent(
    session: AsyncSession, payment_intent_id: str, values: Dict[str, Any]
) -> int:
  """Updates every order created for a payment intent."""
  result = await session.execute(
      update(Order)
      .where(Order.stripe_payment_intent_id == payment_intent_id)
      .values(**values)
  )
  return result.rowcount


async def set_order_transfer_id(
    session: AsyncSession, order_ids: Sequence[str], transfer_id: str
) -> int:
  """Records the Stripe transfer that paid out the given orders."""
  if not order_ids:
    return 0
  result = await session.execute(
      update(Order)
      .where(Order.id.in_(list(order_ids)))
      .values(stripe_transfer_id=transfer_id)
  )
  return result.rowcount
