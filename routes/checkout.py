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

"""Checkout routes for the marketplace server."""

import logging
from typing import Optional

import dependencies
from exceptions import InternalError
from exceptions import MarketplaceError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from models import CheckoutRequest
from models import CheckoutResponse
from models import ConfirmOrderRequest
from models import ConfirmOrderResponse
from models import PricingEstimate
from services.checkout_service import CheckoutService
from services.fee_service import FeeCalculationService
from services.order_service import OrderService
from services.tax_service import TaxCalculationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    operation_id="create_checkout",
)
async def create_checkout(
    checkout_req: CheckoutRequest = Body(...),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> CheckoutResponse:
  """Creates the payment intent for a multi-store cart."""
  try:
    return await checkout_service.create_payment_intent(checkout_req)
  except MarketplaceError:
    raise
  except Exception as e:  # pylint: disable=broad-exception-caught
    logger.exception("Error creating payment intent")
    raise InternalError("Failed to create payment intent") from e


@router.post(
    "/confirm-order",
    response_model=ConfirmOrderResponse,
    operation_id="confirm_order",
)
async def confirm_order(
    confirm_req: ConfirmOrderRequest = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> ConfirmOrderResponse:
  """Creates one order per store once the payment has succeeded."""
  try:
    return await order_service.confirm_order(confirm_req)
  except MarketplaceError:
    raise
  except Exception as e:  # pylint: disable=broad-exception-caught
    logger.exception("Error confirming order")
    raise InternalError("Failed to confirm order") from e


@router.get(
    "/checkout/estimate",
    response_model=PricingEstimate,
    operation_id="get_pricing_estimate",
)
async def get_pricing_estimate(
    state: Optional[str] = Query(None),
    tax_service: TaxCalculationService = Depends(dependencies.get_tax_service),
    fee_service: FeeCalculationService = Depends(dependencies.get_fee_service),
) -> PricingEstimate:
  """Returns the estimated tax rate and commission for a buyer's state."""
  return PricingEstimate(
      state=state,
      estimated_tax_rate=await tax_service.estimated_tax_rate(state),
      marketplace_commission_percent=(
          await fee_service.marketplace_commission_percent(state)
      ),
  )
