from __future__ import annotations

import re
from typing import Any, Iterable

BUSINESS_ID_RE = re.compile(r"^\d{6}$")


def is_business_id(value: Any) -> bool:
    # Business ids are 6-digit numeric strings; ints are a legacy representation.
    return isinstance(value, str) and bool(BUSINESS_ID_RE.match(value))


def next_business_id(existing: Iterable[Any], prefix: int) -> str:
    """Next free id after the highest valid one, or the first id of the prefix block."""
    highest = 0
    for v in existing:
        if is_business_id(v):
            highest = max(highest, int(v))
    nxt = highest + 1 if highest else prefix * 1000 + 1
    if nxt > 999999 or nxt < 100000:
        raise ValueError("business_id_space_exhausted")
    return str(nxt)
