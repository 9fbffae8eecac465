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

"""Enumerations for the marketplace checkout server.

This module defines the string enums stored in the database and returned by
the API: order, payment and delivery states, tenant kinds and roles, and the
configuration vocabularies of the tax and platform fee tables.
"""

import enum


class OrderStatus(str, enum.Enum):
  CONFIRMED = "confirmed"
  CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
  PAID = "paid"
  FAILED = "failed"


class FulfillmentType(str, enum.Enum):
  DELIVERY = "delivery"


class DeliveryStatus(str, enum.Enum):
  PENDING = "pending"
  ASSIGNED = "assigned"


class TenantType(str, enum.Enum):
  OWNER_STORE = "owner_store"
  DELIVERY_COMPANY = "delivery_company"


class TenantStatus(str, enum.Enum):
  PENDING = "pending"
  ACTIVE = "active"
  SUSPENDED = "suspended"


class StripeAccountStatus(str, enum.Enum):
  ONBOARDING = "onboarding"
  ACTIVE = "active"
  DISABLED = "disabled"


class MembershipRole(str, enum.Enum):
  OWNER = "owner"
  ADMIN = "admin"
  STAFF = "staff"


class TaxAppliesTo(str, enum.Enum):
  ALL = "all"
  ALCOHOL = "alcohol"
  SPECIFIC_CATEGORIES = "specific_categories"


class FeeType(str, enum.Enum):
  MARKETPLACE_COMMISSION = "marketplace_commission"
  PROCESSING_FEE = "processing_fee"
  DELIVERY_PLATFORM_FEE = "delivery_platform_fee"


class FeeCalculationType(str, enum.Enum):
  PERCENTAGE = "percentage"
  FIXED = "fixed"
  TIERED = "tiered"


class RateScope(str, enum.Enum):
  GLOBAL = "global"
  STATE = "state"
  COUNTY = "county"
  CITY = "city"


class SideEffectStatus(str, enum.Enum):
  """Result of one best-effort step while materializing orders."""

  OK = "ok"
  FAILED = "failed"
  SKIPPED = "skipped"
