"""
Payment amount and reference utilities
Amounts are computed locally; no gateway is contacted.
"""

import random
import string
import time
from dataclasses import dataclass, field
from typing import List, Optional

from models import ColorModeEnum, UrgencyEnum

# Pricing (in rupees)
PRICING = {
    'monochrome_per_page': 2,
    'color_per_page': 5,
    'urgent_surcharge': 5,
}

_BASE36 = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class PaymentQuote:
    base_amount: float
    urgent_surcharge: float
    total_amount: float
    breakdown: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'base_amount': self.base_amount,
            'urgent_surcharge': self.urgent_surcharge,
            'total_amount': self.total_amount,
            'breakdown': list(self.breakdown),
        }


def calculate_payment_amount(page_count: int, copies: int, color_mode, urgency) -> PaymentQuote:
    """
    Calculate the amount owed for a job

    Args:
        page_count: pages in the document
        copies: number of copies
        color_mode: monochrome or color
        urgency: normal or urgent (urgent adds a flat surcharge)

    Returns:
        PaymentQuote with a human-readable breakdown
    """
    if ColorModeEnum(color_mode) == ColorModeEnum.COLOR:
        per_page_rate = PRICING['color_per_page']
    else:
        per_page_rate = PRICING['monochrome_per_page']

    base_amount = page_count * copies * per_page_rate
    is_urgent = UrgencyEnum(urgency) == UrgencyEnum.URGENT
    urgent_surcharge = PRICING['urgent_surcharge'] if is_urgent else 0

    breakdown = [f"{page_count} pages × {copies} copies × ₹{per_page_rate} = ₹{base_amount}"]
    if is_urgent:
        breakdown.append(f"Urgent processing fee: ₹{urgent_surcharge}")

    return PaymentQuote(
        base_amount=float(base_amount),
        urgent_surcharge=float(urgent_surcharge),
        total_amount=float(base_amount + urgent_surcharge),
        breakdown=breakdown,
    )


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_payment_reference(now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """Generate a local payment reference like DEMO_<time>_<random>"""
    rng = rng or random.SystemRandom()
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(rng.choice(_BASE36) for _ in range(6))
    return f"DEMO_{_to_base36(now_ms)}_{suffix}"
