"""Amount parsing for report cell values"""

import math
from typing import Any, Optional


def parse_amount(value: Any) -> Optional[float]:
    """
    Parse a report cell value into a float.

    Thousands separators are stripped. Empty, missing, or unparsable values
    return None (absent), which is distinct from a parsed zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).replace(",", "").strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None
