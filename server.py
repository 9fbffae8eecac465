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

"""Marketplace Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import MarketplaceError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.checkout import router as checkout_router
from routes.order import router as order_router
from routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Marketplace Checkout Service",
    version=config.SERVER_VERSION,
    description=(
        "Multi-store checkout, order fan-out and Stripe Connect payouts"
    ),
    lifespan=config.lifespan,
)


@app.exception_handler(MarketplaceError)
async def marketplace_exception_handler(
    request: Request, exc: MarketplaceError
):
  """Converts marketplace exceptions to JSON error responses."""
  del request  # Unused.
  return JSONResponse(status_code=exc.status_code, content=exc.to_content())


app.include_router(checkout_router)
app.include_router(order_router)
app.include_router(webhooks_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Marketplace Checkout Server."""
  del argv  # Unused.

  if config.FLAGS.database_path is None or config.FLAGS.port is None:
    logger.error("Both --database_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if not config.FLAGS.stripe_secret_key:
    logger.warning(
        "No Stripe secret key configured; checkout will answer 503."
    )

  uvicorn.run(app, host=config.FLAGS.host, port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
