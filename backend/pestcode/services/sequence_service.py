# Overview: Sequence regimes and the per-scope sequence allocator.

"""
Sequence allocation

Each (year, month, funding source, medicine type, active ingredient,
producer, package type) scope owns one counter. The counter walks through
three regimes and never goes back:

    NUMERIC       0001 .. 9999    plain decimal
    ALPHA_SUFFIX  000A .. 999Z    letter first, then the three digits
    ALPHA_INFIX   00A1 .. 99Z9    trailing digit, then letter, then leading digits

Transitions:
    9999 -> 000A                  enters ALPHA_SUFFIX
    999Z -> 001A                  enters ALPHA_INFIX (001A, not 000A; kept as issued
                                  by earlier releases so existing codes stay valid)
    001A -> 00A1                  first value with alpha-infix shape
    99Z9 -> SequenceExhaustedError

"001A" has alpha-suffix shape, so the regime cannot be read back from the
value alone once a scope has rolled over. The allocator stores the regime
on the sequence row; the pure helpers fall back to the value's shape when
no regime is given.

CONCURRENCY: allocate_next() reads the row under SELECT ... FOR UPDATE and
writes with a conditional UPDATE keyed on the value it read. A writer that
loses the race gets StaleWriteError and is retried from a fresh read.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..models.qrcode import SEQUENCE_STATUS_EXHAUSTED
from ..time_utils import utcnow, code_period
from .code_format import CodeIdentity
from .concurrency import run_with_retry, StaleWriteError


INITIAL_SEQUENCE = "0000"

NUMERIC_MAX = "9999"
ALPHA_SUFFIX_START = "000A"
ALPHA_INFIX_ENTRY = "001A"
ALPHA_INFIX_START = "00A1"


class Regime(Enum):
    NUMERIC = "numeric"
    ALPHA_SUFFIX = "alpha_suffix"
    ALPHA_INFIX = "alpha_infix"


REGIME_PATTERNS = {
    Regime.NUMERIC: re.compile(r"^[0-9]{4}$"),
    Regime.ALPHA_SUFFIX: re.compile(r"^[0-9]{3}[A-Z]$"),
    Regime.ALPHA_INFIX: re.compile(r"^[0-9]{2}[A-Z][0-9]$"),
}

REGIME_ORDER = [Regime.NUMERIC, Regime.ALPHA_SUFFIX, Regime.ALPHA_INFIX]


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


class InvalidSequenceError(SequenceError, ValueError):
    """The stored value does not belong to the regime it is tagged with."""
    pass


class SequenceExhaustedError(SequenceError):
    """The alpha-infix regime is used up; the scope cannot issue more codes this month."""
    pass


def detect_regime(value: str) -> Optional[Regime]:
    """Regime by shape alone, or None."""
    if not isinstance(value, str):
        return None
    for regime in REGIME_ORDER:
        if REGIME_PATTERNS[regime].match(value):
            return regime
    return None


def is_valid_sequence(value: str) -> bool:
    return detect_regime(value) is not None


def _next_letter(letter: str) -> str:
    return chr(ord(letter) + 1)


def _next_numeric(value: str) -> tuple[Regime, str]:
    number = int(value)
    if number >= 9999:
        return Regime.ALPHA_SUFFIX, ALPHA_SUFFIX_START
    return Regime.NUMERIC, f"{number + 1:04d}"


def _next_alpha_suffix(value: str) -> tuple[Regime, str]:
    digits, letter = value[:3], value[3]

    if letter != "Z":
        return Regime.ALPHA_SUFFIX, digits + _next_letter(letter)

    number = int(digits) + 1
    if number > 999:
        return Regime.ALPHA_INFIX, ALPHA_INFIX_ENTRY
    return Regime.ALPHA_SUFFIX, f"{number:03d}A"


def _next_alpha_infix(value: str) -> tuple[Regime, str]:
    if value == ALPHA_INFIX_ENTRY:
        return Regime.ALPHA_INFIX, ALPHA_INFIX_START

    lead, letter, trail = value[:2], value[2], value[3]

    digit = int(trail) + 1
    if digit <= 9:
        return Regime.ALPHA_INFIX, f"{lead}{letter}{digit}"

    if letter != "Z":
        return Regime.ALPHA_INFIX, f"{lead}{_next_letter(letter)}1"

    number = int(lead) + 1
    if number > 99:
        raise SequenceExhaustedError(f"Sequence exhausted after {value}")
    return Regime.ALPHA_INFIX, f"{number:02d}A1"


_INCREMENTERS: dict[Regime, Callable[[str], tuple[Regime, str]]] = {
    Regime.NUMERIC: _next_numeric,
    Regime.ALPHA_SUFFIX: _next_alpha_suffix,
    Regime.ALPHA_INFIX: _next_alpha_infix,
}


def _belongs_to(value: str, regime: Regime) -> bool:
    if regime is Regime.ALPHA_INFIX and value == ALPHA_INFIX_ENTRY:
        return True
    return bool(REGIME_PATTERNS[regime].match(value))


def advance_sequence(current: str, regime: Optional[Regime] = None) -> tuple[Regime, str]:
    """
    Next (regime, value) after current.

    Raises:
        InvalidSequenceError: current does not fit the regime (or any regime)
        SequenceExhaustedError: current is the last alpha-infix value
    """
    if regime is None:
        regime = detect_regime(current)
        if regime is None:
            raise InvalidSequenceError(f"Invalid sequence format: {current!r}")
    elif not isinstance(current, str) or not _belongs_to(current, regime):
        raise InvalidSequenceError(f"Sequence {current!r} is not a {regime.value} value")

    return _INCREMENTERS[regime](current)


def increment_sequence(current: str, regime: Optional[Regime] = None) -> str:
    """Next sequence value after current (regime taken from shape when omitted)."""
    return advance_sequence(current, regime)[1]


def sequence_ordinal(value: str, regime: Optional[Regime] = None) -> int:
    """
    Position of a value in issuing order within one scope.

    Strictly increasing along the allocation path, so allocated values can
    be compared across regimes.
    """
    if regime is None:
        regime = detect_regime(value)
        if regime is None:
            raise InvalidSequenceError(f"Invalid sequence format: {value!r}")

    if regime is Regime.NUMERIC:
        return int(value)

    suffix_base = 10_000
    if regime is Regime.ALPHA_SUFFIX:
        return suffix_base + int(value[:3]) * 26 + (ord(value[3]) - ord("A"))

    infix_base = suffix_base + 1000 * 26
    if value == ALPHA_INFIX_ENTRY:
        return infix_base
    lead, letter, trail = int(value[:2]), ord(value[2]) - ord("A"), int(value[3])
    return infix_base + 1 + lead * 26 * 9 + letter * 9 + (trail - 1)


class SequenceAllocator:
    """
    Finds or opens the sequence row for a scope and hands out its next value.

    The repository is the storage collaborator; clock supplies "now" for the
    scope period and last_generated.
    """

    def __init__(
        self,
        repository,
        *,
        clock: Callable = utcnow,
        attempts: int = 5,
        backoff_base: float = 0.05,
    ):
        self.repository = repository
        self._clock = clock
        self._attempts = attempts
        self._backoff_base = backoff_base

    def current_period(self) -> tuple[str, str]:
        return code_period(self._clock())

    def get_or_create(self, identity: CodeIdentity, is_bulk: bool = False):
        """
        Sequence row for identity in the current month, created on first use.

        Unit scopes ignore the identity's package type. Safe against a
        concurrent creator: the loser of the unique-constraint race re-reads
        the winner's row.
        """
        year, month = self.current_period()
        package_type_code = identity.package_type_code if is_bulk else None

        sequence = self.repository.find_sequence(year, month, identity, package_type_code)
        if sequence:
            return sequence

        try:
            sequence = self.repository.create_sequence(
                year=year,
                month=month,
                identity=identity,
                package_type_code=package_type_code,
                current_sequence=INITIAL_SEQUENCE,
                regime=Regime.NUMERIC.value,
            )
            self.repository.commit()
        except IntegrityError:
            self.repository.rollback()
            sequence = self.repository.find_sequence(year, month, identity, package_type_code)
            if sequence is None:
                raise
        return sequence

    def allocate_next(self, sequence_id: int) -> str:
        """
        Advance the sequence and commit before returning the new value.

        Not idempotent: every call consumes a value and bumps total_generated,
        whatever the caller later does with it.

        Raises:
            SequenceError: sequence row not found
            SequenceExhaustedError: the scope has no values left
        """
        def _op() -> str:
            sequence = self.repository.lock_sequence(sequence_id)
            if sequence is None:
                raise SequenceError(f"Sequence {sequence_id} not found")

            if sequence.status == SEQUENCE_STATUS_EXHAUSTED:
                raise SequenceExhaustedError(f"Sequence {sequence_id} is exhausted")

            current = sequence.current_sequence
            current_regime = Regime(sequence.regime)

            try:
                regime, value = advance_sequence(current, current_regime)
            except SequenceExhaustedError:
                self.repository.mark_sequence_exhausted(sequence_id)
                self.repository.commit()
                current_app.logger.warning(
                    "QR sequence %s exhausted at %s", sequence_id, current
                )
                raise

            updated = self.repository.compare_and_set_sequence(
                sequence_id,
                expected_sequence=current,
                expected_regime=current_regime.value,
                new_sequence=value,
                new_regime=regime.value,
                now=self._clock(),
            )
            if not updated:
                raise StaleWriteError(f"Sequence {sequence_id} changed during allocation")

            self.repository.commit()

            if regime is not current_regime:
                current_app.logger.info(
                    "QR sequence %s moved from %s to %s regime at %s",
                    sequence_id, current_regime.value, regime.value, value,
                )
            return value

        return run_with_retry(
            _op,
            session=self.repository.session,
            attempts=self._attempts,
            backoff_base=self._backoff_base,
        )
