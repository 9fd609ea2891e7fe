"""Typed short identifiers (AIDs).

An AID is ``<lowercase type tag>-<6 lowercase alphanumerics>``, e.g.
``g-a1b2c3``. Uniqueness is not guaranteed here; the goals table primary
key is the backstop and callers regenerate on a duplicate-key failure.
"""

from __future__ import annotations

import re
import secrets
import string
from typing import Optional

from .errors import InvalidTypeTag

AID_REGISTRY = {
    "A": "Archive (Documents)",
    "B": "Base (Logistics, Inventory)",
    "C": "Contractor (Legal entities)",
    "D": "Deal (Sales deals)",
    "E": "Employee (Staff)",
    "F": "Finance (Transactions)",
    "G": "Goal",
    "H": "Human (Natural persons)",
    "I": "Invoice (Bills)",
    "J": "Journal (System logs)",
    "K": "Key (API keys, tokens)",
    "L": "Location (Geo points)",
    "M": "Message (Messages)",
    "N": "Notice (Notifications)",
    "O": "Outreach (Marketing)",
    "P": "Product (Products)",
    "Q": "Qualification (Assessments)",
    "R": "Routine (Automation)",
    "S": "Segment (Segments)",
    "T": "Text (Content)",
    "U": "University (LMS / Education)",
    "V": "Vote (Surveys)",
    "W": "Wallet (Wallets)",
    "X": "Xpanse (Spaces)",
    "Y": "Yard (Gamification)",
    "Z": "Zoo (Animals)",
}

AID_ALPHABET = string.ascii_lowercase + string.digits
AID_RANDOM_LENGTH = 6
AID_PATTERN = re.compile(r"^[a-z]-[a-z0-9]{6}$")


def generate_id(type_tag: str) -> str:
    """Generate a new AID for ``type_tag`` (a single registry letter)."""
    if not isinstance(type_tag, str) or type_tag.upper() not in AID_REGISTRY or len(type_tag) != 1:
        raise InvalidTypeTag(
            f"Invalid AID prefix: {type_tag!r}. Valid prefixes: {', '.join(AID_REGISTRY)}"
        )
    random_part = "".join(secrets.choice(AID_ALPHABET) for _ in range(AID_RANDOM_LENGTH))
    return f"{type_tag.lower()}-{random_part}"


def generate_goal_id() -> str:
    """Goal ids always use the ``G`` tag."""
    return generate_id("G")


def is_valid_aid(value: str) -> bool:
    return isinstance(value, str) and AID_PATTERN.match(value) is not None


def get_aid_prefix(value: str) -> Optional[str]:
    """Return the upper-case type tag of ``value``, or None if it is not an AID."""
    if not is_valid_aid(value):
        return None
    prefix = value[0].upper()
    return prefix if prefix in AID_REGISTRY else None


def get_entity_type_description(prefix: str) -> str:
    try:
        return AID_REGISTRY[prefix.upper()]
    except KeyError:
        raise InvalidTypeTag(f"Invalid AID prefix: {prefix!r}") from None
