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

"""Fixed-point money helpers.

All amounts inside the server are integer minor units (cents). Clients send
and receive currency units, so conversion happens only at the API boundary.
"""

import decimal
from decimal import Decimal
from typing import List, Sequence, Union

Amount = Union[int, float, str, Decimal]

_CENT = Decimal("0.01")


def to_cents(amount: Amount) -> int:
  """Converts a currency amount (e.g. 4.99) to cents, rounding half-up."""
  value = Decimal(str(amount)).quantize(_CENT, rounding=decimal.ROUND_HALF_UP)
  return int(value * 100)


def to_amount(cents: int) -> float:
  """Converts integer cents back to a currency amount for JSON responses."""
  return float(Decimal(cents) / 100)


def apply_rate(cents: int, rate: Amount) -> int:
  """Multiplies an amount in cents by a decimal rate, rounding half-up."""
  value = Decimal(cents) * Decimal(str(rate))
  return int(value.quantize(Decimal(1), rounding=decimal.ROUND_HALF_UP))


def allocate(total_cents: int, weights: Sequence[int]) -> List[int]:
  """Splits `total_cents` proportionally to `weights` (largest remainder).

  Every share is first floored, then the cents left over are handed out one at
  a time to the shares with the largest fractional remainder. Ties go to the
  earlier weight. The shares always sum to `total_cents`.

  Args:
    total_cents: The amount to split. Must be non-negative.
    weights: Non-negative weights, e.g. per-store subtotals in cents.

  Returns:
    One share per weight, in input order.
  """
  weight_sum = sum(weights)
  if weight_sum <= 0:
    return [0] * len(weights)

  shares = []
  remainders = []
  for index, weight in enumerate(weights):
    share, remainder = divmod(total_cents * weight, weight_sum)
    shares.append(share)
    remainders.append((remainder, index))

  leftover = total_cents - sum(shares)
  remainders.sort(key=lambda r: (-r[0], r[1]))
  for _, index in remainders[:leftover]:
    shares[index] += 1
  return shares
