"""
ticketing.py - Human-facing ticket codes.

Two formats are issued and recognised:
- GRV-YYYY-NNNNNN         (current)
- ISSUE-<epoch-ms>-<NNNN> (legacy, still accepted on lookup)
"""

import random
import re
from datetime import datetime
from typing import Optional, Union

from .timeutil import UTC

GRV_PATTERN = re.compile(r"^GRV-\d{4}-\d{6}$")
ISSUE_PATTERN = re.compile(r"^ISSUE-\d+-\d{4}$")

STYLE_GRV = "GRV"
STYLE_ISSUE = "ISSUE"

# Attempts before giving up on finding a free code.
MAX_TICKET_ATTEMPTS = 5


def generate_ticket_code(
    style: str = STYLE_GRV,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    rng = rng or random.SystemRandom()
    now = now or datetime.now(UTC)

    if style == STYLE_GRV:
        return f"GRV-{now.year:04d}-{rng.randint(0, 999999):06d}"
    if style == STYLE_ISSUE:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        epoch_ms = int(now.timestamp() * 1000)
        return f"ISSUE-{epoch_ms}-{rng.randint(0, 9999):04d}"
    raise ValueError(f"Unknown ticket code style: {style}")


def is_ticket_code(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(GRV_PATTERN.match(value) or ISSUE_PATTERN.match(value))


def parse_grievance_ref(ref: Union[int, str]) -> Union[int, str]:
    """
    Normalise a grievance reference into an integer id or a ticket code.

    Raises ValueError for anything that is neither.
    """
    if isinstance(ref, bool):
        raise ValueError(f"Not a grievance reference: {ref!r}")
    if isinstance(ref, int):
        return ref
    text = str(ref).strip()
    if text.isdigit():
        return int(text)
    upper = text.upper()
    if is_ticket_code(upper):
        return upper
    raise ValueError(f"Not a grievance reference: {ref!r}")
