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

"""Utility script to dump inventory data.

This script reads the current inventory levels of every store from the
configured marketplace SQLite database and outputs them to standard output in
CSV format.

Usage:
  uv run dump_inventory.py --database_path=...
"""

import asyncio
import csv
import sys
from absl import app as absl_app
from absl import flags
from db import Inventory
from db import Store
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", None, "Path to marketplace DB")


async def dump_inventory():
  """Queries the database and prints current inventory levels."""
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
        select(Inventory, Store.name)
        .outerjoin(Store, Store.id == Inventory.store_id)
        .order_by(Store.name, Inventory.product_id)
    )

    writer = csv.writer(sys.stdout)
    writer.writerow(
        ["inventory_id", "store", "product_id", "quantity", "version"]
    )
    for item, store_name in result.all():
      writer.writerow([
          item.id,
          store_name or item.store_id,
          item.product_id,
          item.quantity,
          item.version,
      ])

  await engine.dispose()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
