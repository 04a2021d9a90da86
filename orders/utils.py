import datetime
import re
import secrets
import string
from decimal import Decimal, ROUND_HALF_UP

from django.utils import timezone

ALNUM = string.ascii_uppercase + string.digits
TWO_PLACES = Decimal("0.01")


def generate_order_number(prefix="ORD"):
    # e.g., ORD-20240101120000-7KQ2Z
    ts = timezone.now().strftime("%Y%m%d%H%M%S")
    rand = "".join(secrets.choice(ALNUM) for _ in range(5))
    return f"{prefix}-{ts}-{rand}"


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def estimate_delivery(created_at: datetime.datetime, pincode: str) -> datetime.date:
    """Fixed 3-6 day window keyed on the pincode so it never changes between reads."""
    digits = re.sub(r"\D", "", pincode or "")
    extra = int(digits) % 4 if digits else 0
    return timezone.localdate(created_at) + datetime.timedelta(days=3 + extra)
