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

"""Request, response and internal models for the marketplace server.

API models use camelCase aliases on the wire and carry money as currency
units. Internal models (tax and fee results, store groups, payment intents)
carry money as integer cents.
"""

from typing import Any, Dict, List, Optional

from enums import SideEffectStatus
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
  """Base model serialized with camelCase field names."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class ShippingAddress(CamelModel):
  name: Optional[str] = None
  street: Optional[str] = None
  city: str
  state: str
  zip_code: str
  country: str
  email: Optional[str] = None
  phone: Optional[str] = None
  delivery_notes: Optional[str] = None

  def to_record(self) -> Dict[str, Any]:
    """Returns the address in the shape stored on orders and deliveries."""
    return {
        "name": self.name,
        "street": self.street,
        "city": self.city,
        "state": self.state,
        "zip_code": self.zip_code,
        "country": self.country,
        "phone": self.phone,
        "email": self.email,
        "notes": self.delivery_notes or None,
    }


class CartItem(CamelModel):
  """A cart line as submitted by the storefront."""

  id: Optional[str] = None
  inventory_id: Optional[str] = None
  product_id: str
  product_name: str
  store_id: str
  store_name: str = ""
  price: float = Field(ge=0)
  quantity: int = Field(gt=0)
  taxes: float = 0
  shipping_cost: float = 0
  category: Optional[str] = None
  is_alcohol: bool = False

  @property
  def inventory_ref(self) -> Optional[str]:
    return self.inventory_id or self.id


class CheckoutRequest(CamelModel):
  items: List[CartItem] = []
  customer_id: Optional[str] = None
  customer_email: Optional[str] = None
  shipping_address: ShippingAddress


class ConfirmOrderRequest(CamelModel):
  payment_intent_id: str
  customer_id: Optional[str] = None
  shipping_address: ShippingAddress
  items: List[CartItem] = []


# --- Responses ---


class TaxBreakdownEntry(CamelModel):
  name: str
  rate: float
  amount: float
  type: str


class FeeBreakdownEntry(CamelModel):
  name: str
  type: str
  amount: float
  rate: Optional[float] = None


class StoreBreakdown(CamelModel):
  store_id: str
  store_name: str
  subtotal: float
  taxes: float
  shipping: float
  total: float
  stripe_account_id: Optional[str] = None


class CheckoutResponse(CamelModel):
  client_secret: Optional[str] = None
  payment_intent_id: str
  subtotal: float
  taxes: float
  tax_rate: float
  tax_breakdown: List[TaxBreakdownEntry]
  shipping: float
  total_amount: float
  platform_fee: float
  platform_fee_breakdown: List[FeeBreakdownEntry]
  store_breakdown: List[StoreBreakdown]
  transfer_group: str
  inventory_verified: bool = True


class PricingEstimate(CamelModel):
  """Rates shown on the cart page before checkout totals exist."""

  state: Optional[str] = None
  estimated_tax_rate: float
  marketplace_commission_percent: float


class CreatedOrder(CamelModel):
  id: str
  order_number: str
  store_id: str
  store_name: str
  total: float
  delivery_id: Optional[str] = None


class SideEffectOutcome(CamelModel):
  """Result of one best-effort step performed while materializing orders."""

  step: str
  store_id: Optional[str] = None
  status: SideEffectStatus
  reason: Optional[str] = None
  reference: Optional[str] = None


def side_effect(
    step: str,
    store_id: Optional[str],
    status: SideEffectStatus,
    reason: Optional[str] = None,
    reference: Optional[str] = None,
) -> SideEffectOutcome:
  return SideEffectOutcome(
      step=step,
      store_id=store_id,
      status=status,
      reason=reason,
      reference=reference,
  )


class ConfirmOrderResponse(CamelModel):
  success: bool = True
  orders: List[CreatedOrder]
  payment_intent_id: str
  message: str
  side_effects: List[SideEffectOutcome] = []


class OrderItemDetail(CamelModel):
  id: str
  product_id: str
  inventory_id: Optional[str] = None
  product_name: str
  quantity: int
  unit_price: float
  subtotal: float
  tax_amount: float
  total: float


class DeliveryDetail(CamelModel):
  id: str
  delivery_company_id: str
  driver_id: Optional[str] = None
  status: str
  delivery_fee: float
  estimated_pickup_time: Optional[str] = None
  estimated_delivery_time: Optional[str] = None


class OrderDetail(CamelModel):
  id: str
  order_number: str
  store_id: str
  customer_id: Optional[str] = None
  status: str
  payment_status: str
  fulfillment_type: str
  delivery_address: Optional[Dict[str, Any]] = None
  subtotal: float
  tax_amount: float
  delivery_fee: float
  platform_fee: float
  total: float
  stripe_payment_intent_id: Optional[str] = None
  stripe_transfer_id: Optional[str] = None
  created_at: Optional[str] = None
  items: List[OrderItemDetail] = []
  delivery: Optional[DeliveryDetail] = None


class WebhookAck(CamelModel):
  received: bool = True


# --- Internal values (integer cents) ---


class PaymentIntent(BaseModel):
  """Provider-neutral view of a payment intent."""

  id: str
  client_secret: Optional[str] = None
  status: str
  amount: int
  currency: str
  transfer_group: Optional[str] = None
  metadata: Dict[str, str] = {}


class TaxLine(BaseModel):
  name: str
  rate: float
  amount: int
  type: str


class TaxResult(BaseModel):
  subtotal: int = 0
  tax_amount: int = 0
  tax_rate: float = 0.0
  breakdown: List[TaxLine] = []


class FeeLine(BaseModel):
  name: str
  type: str
  amount: int
  rate: Optional[float] = None


class FeeResult(BaseModel):
  marketplace_commission: int = 0
  marketplace_commission_rate: float = 0.0
  processing_fee: int = 0
  processing_fee_rate: float = 0.0
  delivery_platform_fee: int = 0
  total_platform_fees: int = 0
  breakdown: List[FeeLine] = []


class StoreGroup(BaseModel):
  """The items of one store within a cart, with that store's totals."""

  store_id: str
  store_name: str
  stripe_account_id: Optional[str] = None
  items: List[CartItem] = []
  subtotal: int = 0
  tax: int = 0
  delivery_fee: int = 0

  @property
  def total(self) -> int:
    return self.subtotal + self.tax + self.delivery_fee


class Partition(BaseModel):
  groups: List[StoreGroup]
  subtotal: int
  tax: int
  shipping: int
  tax_result: TaxResult
  inventory_verified: bool = True

  @property
  def total(self) -> int:
    return self.subtotal + self.tax + self.shipping
