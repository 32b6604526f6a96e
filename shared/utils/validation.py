"""
shared/utils/validation.py
Domain validators shared by schemas and routers.
"""

import re
from typing import Optional

from shared.utils.constants import AGE_GROUPS, UK_COUNTIES

FA_NUMBER_PATTERN = re.compile(r"^[0-9]{8,10}$")

# Loose UK postcode shape, e.g. "SW1A 1AA", "M1 1AE", "B33 8TH"
POSTCODE_PATTERN = re.compile(r"^[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}$", re.IGNORECASE)


def is_valid_fa_number(value: Optional[str]) -> bool:
    """An FA number is 8 to 10 digits, nothing else."""
    if not isinstance(value, str):
        return False
    return bool(FA_NUMBER_PATTERN.fullmatch(value))


def normalise_postcode(value: str) -> str:
    compact = re.sub(r"\s+", "", value).upper()
    return f"{compact[:-3]} {compact[-3:]}"


def is_valid_postcode(value: str) -> bool:
    return bool(POSTCODE_PATTERN.fullmatch(value.strip()))


def is_known_county(value: str) -> bool:
    return value in UK_COUNTIES


def is_known_age_group(value: str) -> bool:
    return value in AGE_GROUPS
