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

"""Stripe payment gateway.

This module wraps the Stripe SDK behind the small surface the checkout flow
needs: customer lookup, payment intents, Connect transfers and webhook
signature verification. Stripe errors are converted to `PaymentProviderError`
carrying the provider's message, and intents are returned as plain
`PaymentIntent` models so callers never handle SDK objects.
"""

import json
import logging
from typing import Any, Dict, Optional

from exceptions import PaymentProviderError
from exceptions import WebhookNotConfiguredError
from exceptions import WebhookSignatureError
from models import PaymentIntent
import stripe

logger = logging.getLogger(__name__)


def _provider_message(e: stripe.StripeError) -> str:
  return getattr(e, "user_message", None) or str(e)


def _to_payment_intent(intent: Any) -> PaymentIntent:
  metadata = intent.metadata or {}
  return PaymentIntent(
      id=intent.id,
      client_secret=intent.client_secret,
      status=intent.status,
      amount=intent.amount,
      currency=intent.currency,
      transfer_group=intent.transfer_group,
      metadata={k: str(metadata[k]) for k in metadata.keys()},
  )


class StripeGateway:
  """Payment gateway backed by the Stripe API."""

  def __init__(self, secret_key: str):
    self._client = stripe.StripeClient(secret_key)

  async def find_or_create_customer(
      self,
      email: str,
      name: Optional[str] = None,
      address: Optional[Dict[str, Any]] = None,
      user_id: Optional[str] = None,
  ) -> str:
    """Returns the ID of the customer with `email`, creating one if needed."""
    try:
      existing = await self._client.customers.list_async(
          params={"email": email, "limit": 1}
      )
      if existing.data:
        return existing.data[0].id

      params: Dict[str, Any] = {"email": email}
      if name:
        params["name"] = name
      if address:
        params["address"] = address
      if user_id:
        params["metadata"] = {"user_id": user_id}
      customer = await self._client.customers.create_async(params=params)
      logger.info("Created Stripe customer %s", customer.id)
      return customer.id
    except stripe.StripeError as e:
      raise PaymentProviderError(_provider_message(e)) from e

  async def create_payment_intent(
      self, params: Dict[str, Any]
  ) -> PaymentIntent:
    """Creates a payment intent from raw Stripe parameters."""
    try:
      intent = await self._client.payment_intents.create_async(params=params)
    except stripe.StripeError as e:
      raise PaymentProviderError(_provider_message(e)) from e
    return _to_payment_intent(intent)

  async def retrieve_payment_intent(
      self, payment_intent_id: str
  ) -> PaymentIntent:
    """Retrieves a payment intent by ID."""
    try:
      intent = await self._client.payment_intents.retrieve_async(
          payment_intent_id
      )
    except stripe.StripeError as e:
      raise PaymentProviderError(_provider_message(e)) from e
    return _to_payment_intent(intent)

  async def create_transfer(
      self, params: Dict[str, Any], idempotency_key: Optional[str] = None
  ) -> str:
    """Creates a Connect transfer and returns its ID.

    Stripe answers a repeated `idempotency_key` with the original transfer
    instead of creating a new one.
    """
    options: Dict[str, Any] = {}
    if idempotency_key:
      options["idempotency_key"] = idempotency_key
    try:
      transfer = await self._client.transfers.create_async(
          params=params, options=options
      )
    except stripe.StripeError as e:
      raise PaymentProviderError(_provider_message(e)) from e
    return transfer.id


def construct_webhook_event(
    payload: bytes, signature: Optional[str], secret: Optional[str]
) -> Dict[str, Any]:
  """Verifies a webhook payload signature and returns the decoded event.

  Raises:
    WebhookNotConfiguredError: If no signing secret is configured.
    WebhookSignatureError: If the signature or the payload is invalid.
  """
  if not secret:
    raise WebhookNotConfiguredError()
  if not signature:
    raise WebhookSignatureError("Missing Stripe-Signature header")
  try:
    body = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(body, signature, secret)
    return json.loads(body)
  except stripe.SignatureVerificationError as e:
    logger.warning("Webhook signature verification failed: %s", e)
    raise WebhookSignatureError() from e
  except ValueError as e:
    logger.warning("Malformed webhook payload: %s", e)
    raise WebhookSignatureError("Invalid webhook payload") from e
