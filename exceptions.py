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

"""Custom exceptions for the marketplace checkout server."""

from typing import Any, Dict, List, Optional


class MarketplaceError(Exception):
  """Base class for all marketplace exceptions."""

  def __init__(
      self,
      message: str,
      code: str = "INTERNAL_ERROR",
      status_code: int = 500,
      extra: Optional[Dict[str, Any]] = None,
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    self.extra = extra or {}
    super().__init__(self.message)

  def to_content(self) -> Dict[str, Any]:
    """Returns the JSON body sent to the client."""
    return {"error": self.message, "code": self.code, **self.extra}


class ResourceNotFoundError(MarketplaceError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class EmptyCartError(MarketplaceError):
  """Raised when a checkout request carries no items."""

  def __init__(self, message: str = "No items in cart"):
    super().__init__(message, code="EMPTY_CART", status_code=400)


class InventoryUnavailableError(MarketplaceError):
  """Raised when one or more items cannot be supplied in full."""

  def __init__(self, unavailable_items: List[Dict[str, Any]]):
    super().__init__(
        "Some items are no longer available in the requested quantity",
        code="OUT_OF_STOCK",
        status_code=409,
        extra={"unavailableItems": unavailable_items},
    )
    self.unavailable_items = unavailable_items


class StoreLookupError(MarketplaceError):
  """Raised when store records cannot be loaded."""

  def __init__(self, message: str = "Failed to fetch store information"):
    super().__init__(message, code="STORE_LOOKUP_FAILED", status_code=500)


class PaymentNotConfiguredError(MarketplaceError):
  """Raised when no payment provider credentials are configured."""

  def __init__(
      self,
      message: str = (
          "Payment processing is not configured. Please contact support."
      ),
  ):
    super().__init__(message, code="PAYMENT_NOT_CONFIGURED", status_code=503)


class PaymentProviderError(MarketplaceError):
  """Raised when the payment provider rejects a request."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_PROVIDER_ERROR", status_code=400)


class PaymentNotCompletedError(MarketplaceError):
  """Raised when an order is confirmed for a payment that has not succeeded."""

  def __init__(self, status: str):
    super().__init__(
        "Payment not completed",
        code="PAYMENT_NOT_COMPLETED",
        status_code=400,
        extra={"status": status},
    )
    self.status = status


class OrderAlreadyConfirmedError(MarketplaceError):
  """Raised when orders already exist for a payment intent."""

  def __init__(self, payment_intent_id: str):
    super().__init__(
        f"Orders for payment {payment_intent_id} have already been created",
        code="ORDER_ALREADY_CONFIRMED",
        status_code=409,
    )


class WebhookNotConfiguredError(MarketplaceError):
  """Raised when a webhook arrives but no signing secret is configured."""

  def __init__(self, message: str = "Webhook not configured"):
    super().__init__(message, code="WEBHOOK_NOT_CONFIGURED", status_code=503)


class WebhookSignatureError(MarketplaceError):
  """Raised when a webhook payload fails signature verification."""

  def __init__(
      self, message: str = "Webhook signature verification failed"
  ):
    super().__init__(message, code="INVALID_SIGNATURE", status_code=400)


class InternalError(MarketplaceError):
  """Raised for unexpected failures, carrying a generic client message."""

  def __init__(self, message: str):
    super().__init__(message, code="INTERNAL_ERROR", status_code=500)
