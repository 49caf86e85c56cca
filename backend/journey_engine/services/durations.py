import re
from datetime import timedelta
from typing import Optional

_DELAY_PATTERN = re.compile(r"^(\d+)\s*([smhd])$", re.IGNORECASE)

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def parse_delay(delay: Optional[str]) -> timedelta:
    """
    Parse a journey builder delay such as "15m", "3h" or "2d".

    Empty values and "0" mean no delay. Anything else that does not match the
    format raises ValueError instead of quietly becoming zero.
    """
    if delay is None:
        return timedelta(0)
    text = str(delay).strip()
    if not text or text == "0":
        return timedelta(0)
    match = _DELAY_PATTERN.match(text)
    if not match:
        raise ValueError(f"Invalid delay '{delay}', expected a number followed by s, m, h or d")
    value = int(match.group(1))
    unit = match.group(2).lower()
    return timedelta(seconds=value * _UNIT_SECONDS[unit])
