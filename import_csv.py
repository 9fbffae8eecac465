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

"""Database initialization script for the marketplace server.

This script imports tenants, stores, inventory, tax and fee configuration and
delivery partners from CSV files into the configured SQLite database. It
clears the existing rows of every imported table before populating it. Files
that are missing from the data directory are skipped.

Usage:
  uv run import_csv.py --database_path=... --data_dir=...
"""

import asyncio
import csv
import json
import logging
import os
from typing import Any, Callable, Dict, List, Tuple
from absl import app as absl_app
from absl import flags
import db
from sqlalchemy import delete

FLAGS = flags.FLAGS
flags.DEFINE_string("database_path", "marketplace.db", "Path to marketplace DB")
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing the CSV files",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _bool(value: str) -> bool:
  return value.strip().lower() in ("1", "true", "yes")


def _optional(convert: Callable[[str], Any]) -> Callable[[str], Any]:
  return lambda value: convert(value) if value != "" else None


# (file name, model, column converters). Columns without a converter are
# imported as strings; empty strings become NULL. Ordered parents first.
TABLES: List[Tuple[str, Any, Dict[str, Callable[[str], Any]]]] = [
    ("us_states.csv", db.UsState, {}),
    (
        "tenants.csv",
        db.Tenant,
        {"stripe_onboarding_complete": _bool},
    ),
    ("tenant_memberships.csv", db.TenantMembership, {}),
    (
        "stores.csv",
        db.Store,
        {"is_active": _bool, "delivery_settings": _optional(json.loads)},
    ),
    (
        "store_locations.csv",
        db.StoreLocation,
        {
            "latitude": _optional(float),
            "longitude": _optional(float),
            "is_primary": _bool,
        },
    ),
    ("inventory.csv", db.Inventory, {"quantity": int}),
    (
        "tax_rates.csv",
        db.TaxRate,
        {
            "rate": float,
            "is_active": _bool,
            "categories": _optional(json.loads),
        },
    ),
    (
        "platform_fees.csv",
        db.PlatformFee,
        {
            "value": float,
            "is_active": _bool,
            "tiers": _optional(json.loads),
        },
    ),
    ("delivery_companies.csv", db.DeliveryCompany, {"is_active": _bool}),
    (
        "store_delivery_preferences.csv",
        db.StoreDeliveryPreference,
        {"priority": int, "is_enabled": _bool},
    ),
    (
        "drivers.csv",
        db.Driver,
        {"is_active": _bool, "is_available": _bool},
    ),
]


def read_rows(
    path: str, converters: Dict[str, Callable[[str], Any]]
) -> List[Dict[str, Any]]:
  """Reads a CSV file into dicts, converting typed columns."""
  rows = []
  with open(path, "r") as f:
    reader = csv.DictReader(f)
    for row in reader:
      values = {}
      for column, raw in row.items():
        if column in converters:
          values[column] = converters[column](raw)
        else:
          values[column] = raw if raw != "" else None
      rows.append(values)
  return rows


async def import_csv_data() -> None:
  """Reads CSV files and populates the database."""
  data_dir = FLAGS.data_dir
  # Ensure tables exist
  await db.manager.init_db(FLAGS.database_path)

  try:
    async with db.manager.session_factory() as session:
      for file_name, model, _ in reversed(TABLES):
        if os.path.exists(os.path.join(data_dir, file_name)):
          logger.info("Clearing existing %s...", model.__tablename__)
          await session.execute(delete(model))

      for file_name, model, converters in TABLES:
        path = os.path.join(data_dir, file_name)
        if not os.path.exists(path):
          logger.info("Skipping %s (not found)", file_name)
          continue
        logger.info("Importing %s from CSV...", model.__tablename__)
        session.add_all(model(**row) for row in read_rows(path, converters))
        await session.flush()

      await session.commit()

    logger.info("Database populated from CSVs.")
  finally:
    await db.manager.close()


def main(argv) -> None:
  """Main entry point for the CSV import script."""
  del argv
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
