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

"""Stripe webhook receiver."""

import logging
from typing import Optional

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import WebhookAck
from services.payment_gateway import construct_webhook_event
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/stripe",
    response_model=WebhookAck,
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    webhook_secret: Optional[str] = Depends(dependencies.get_webhook_secret),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
) -> WebhookAck:
  """Receives a signed Stripe event."""
  payload = await request.body()
  event = construct_webhook_event(payload, stripe_signature, webhook_secret)
  logger.info("Received webhook event %s", event.get("type"))
  await webhook_service.handle_event(event)
  return WebhookAck(received=True)
