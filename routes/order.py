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

"""Order management routes for the marketplace server."""

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from models import OrderDetail
from services.order_service import load_order_detail
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter()


@router.get(
    "/orders/{id}",
    response_model=OrderDetail,
    operation_id="get_order",
)
async def get_order(
    order_id: str = Path(..., alias="id"),
    session: AsyncSession = Depends(dependencies.get_db),
) -> OrderDetail:
  """Get an order by ID."""
  return await load_order_detail(session, order_id)
