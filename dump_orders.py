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

"""Utility script to dump marketplace orders.

This script reads from the configured marketplace SQLite database and prints a
summary of all stored orders, grouped by payment intent, including their line
items, platform fee, transfer and delivery state. It is useful for debugging
and verifying the state of the server.

Usage:
  uv run dump_orders.py --database_path=...
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import db
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", None, "Path to marketplace DB")


def _fmt(cents) -> str:
  return f"${(cents or 0) / 100.0:.2f}"


async def dump_orders():
  """Queries the database and prints all orders."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  async with session_factory() as session:
    result = await session.execute(
        select(db.Order).order_by(
            db.Order.stripe_payment_intent_id, db.Order.created_at
        )
    )
    orders = result.scalars().all()

    if not orders:
      print("No orders found.")
      await engine.dispose()
      return

    current_intent = None
    for order in orders:
      if order.stripe_payment_intent_id != current_intent:
        current_intent = order.stripe_payment_intent_id
        print(f"Payment: {current_intent}")
        print("=" * 60)

      print(
          f"Order: {order.order_number} ({order.id}) store={order.store_id}"
          f" [{order.status}/{order.payment_status}]"
      )
      for item in await db.get_order_items(session, order.id):
        print(
            f"  - {item.product_name} (ID: {item.product_id}) x{item.quantity}"
            f" @ {_fmt(item.unit_price)} = {_fmt(item.total)}"
        )
      print(
          f"  subtotal {_fmt(order.subtotal)}  tax {_fmt(order.tax_amount)}"
          f"  delivery {_fmt(order.delivery_fee)}  total {_fmt(order.total)}"
      )
      print(
          f"  platform fee {_fmt(order.platform_fee)}"
          f"  transfer {order.stripe_transfer_id or '-'}"
      )
      delivery = await db.get_delivery_for_order(session, order.id)
      if delivery:
        print(
            f"  delivery {delivery.id} [{delivery.status}]"
            f" company={delivery.delivery_company_id}"
            f" driver={delivery.driver_id or '-'}"
        )
      else:
        print("  (No delivery)")
      print("-" * 60)

  await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
