# Overview: Format checks for a candidate QR code string, independent of storage.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..time_utils import utcnow
from .code_format import CodeComponents, parse_code
from .sequence_service import is_valid_sequence


MIN_CODE_LENGTH = 13
MAX_CODE_LENGTH = 20

MEDICINE_TYPES = ("F", "I", "H", "B")

ACTIVE_INGREDIENT_RE = re.compile(r"^[0-9]{3}$")
PRODUCER_RE = re.compile(r"^[A-Z]$")
TWO_DIGITS_RE = re.compile(r"^[0-9]{2}$")

DEFAULT_YEAR_WINDOW = 5


@dataclass
class CodeValidationResult:
    is_valid: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    components: Optional[CodeComponents] = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "components": self.components.to_dict() if self.components else None,
        }


def validate_code(
    code: str,
    *,
    now: Optional[datetime] = None,
    year_window: int = DEFAULT_YEAR_WINDOW,
) -> CodeValidationResult:
    """
    Check a code string's shape and field values.

    Never raises for bad input. Length and parse failures stop early; field
    problems are all collected. A year far from the current one is only a
    warning, since codes stay in circulation across years.
    """
    result = CodeValidationResult()

    if not isinstance(code, str) or not (MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH):
        result.errors.append("Invalid QR code length")
        return result

    components = parse_code(code)
    if components is None:
        result.errors.append("Unable to parse QR code components")
        return result

    if not TWO_DIGITS_RE.match(components.year):
        result.errors.append("Invalid year in QR code")
    else:
        current_year = (now or utcnow()).year % 100
        if abs(int(components.year) - current_year) > year_window:
            result.warnings.append("QR code year is unusual")

    if not TWO_DIGITS_RE.match(components.month) or not 1 <= int(components.month) <= 12:
        result.errors.append("Invalid month in QR code")

    if components.medicine_type not in MEDICINE_TYPES:
        result.errors.append("Invalid medicine type code")

    if not ACTIVE_INGREDIENT_RE.match(components.active_ingredient):
        result.errors.append("Invalid active ingredient code")

    if not PRODUCER_RE.match(components.producer):
        result.errors.append("Invalid producer code")

    if not is_valid_sequence(components.sequence):
        result.errors.append("Invalid sequence format")

    result.is_valid = not result.errors
    if result.is_valid:
        result.components = components
    return result
