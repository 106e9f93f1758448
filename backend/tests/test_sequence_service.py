# Overview: Pytest coverage for sequence regimes and the sequence allocator.

"""
Sequence Tests

Pure increments across the three regimes, then allocation against the
database: scope creation, monotonic values across regime changes, new
month scopes and exhaustion.
"""

from datetime import datetime

import pytest

from pestcode.models import QRCodeSequence
from pestcode.models.qrcode import SEQUENCE_STATUS_EXHAUSTED
from pestcode.services.code_format import CodeIdentity
from pestcode.services.sequence_service import (
    Regime,
    SequenceError,
    SequenceExhaustedError,
    InvalidSequenceError,
    advance_sequence,
    detect_regime,
    increment_sequence,
    is_valid_sequence,
    sequence_ordinal,
)


IDENTITY = CodeIdentity(
    funding_source_code="1",
    medicine_type_code="F",
    active_ingredient_code="111",
    producer_code="B",
    package_type_code="K",
)


class TestIncrementSequence:
    @pytest.mark.parametrize("current, expected", [
        ("0000", "0001"),
        ("0009", "0010"),
        ("0999", "1000"),
        ("9999", "000A"),
        ("000A", "000B"),
        ("003A", "003B"),
        ("003Z", "004A"),
        ("999Z", "001A"),
        ("00A1", "00A2"),
        ("00A9", "00B1"),
        ("02A9", "02B1"),
        ("00Z9", "01A1"),
        ("98Z9", "99A1"),
    ])
    def test_next_value(self, current, expected):
        assert increment_sequence(current) == expected

    def test_last_infix_value_is_exhausted(self):
        with pytest.raises(SequenceExhaustedError):
            increment_sequence("99Z9")

    @pytest.mark.parametrize("bad", ["ABCD", "12", "0A0A", "", None])
    def test_invalid_format(self, bad):
        with pytest.raises(InvalidSequenceError):
            increment_sequence(bad)

    def test_regime_changes_are_reported(self):
        assert advance_sequence("9999") == (Regime.ALPHA_SUFFIX, "000A")
        assert advance_sequence("999Z") == (Regime.ALPHA_INFIX, "001A")

    def test_infix_entry_value_continues_in_infix(self):
        """001A looks alpha-suffix; tagged as infix it moves to 00A1."""
        assert advance_sequence("001A", Regime.ALPHA_INFIX) == (Regime.ALPHA_INFIX, "00A1")
        assert increment_sequence("001A") == "001B"

    def test_value_not_in_given_regime(self):
        with pytest.raises(InvalidSequenceError):
            advance_sequence("0001", Regime.ALPHA_INFIX)


class TestRegimeHelpers:
    def test_detect_regime(self):
        assert detect_regime("0042") is Regime.NUMERIC
        assert detect_regime("042Q") is Regime.ALPHA_SUFFIX
        assert detect_regime("04Q2") is Regime.ALPHA_INFIX
        assert detect_regime("Q042") is None

    def test_is_valid_sequence(self):
        assert is_valid_sequence("0001")
        assert not is_valid_sequence("AAAA")

    def test_ordinal_increases_along_allocation_path(self):
        path = [("9998", None), ("9999", None), ("000A", None), ("999Z", None),
                ("001A", Regime.ALPHA_INFIX), ("00A1", None), ("00A9", None), ("00B1", None), ("99Z9", None)]
        ordinals = [sequence_ordinal(v, r) for v, r in path]
        assert ordinals == sorted(ordinals)
        assert len(set(ordinals)) == len(ordinals)


class TestSequenceAllocator:
    def test_get_or_create_opens_scope_at_sentinel(self, allocator, db_session):
        seq = allocator.get_or_create(IDENTITY, is_bulk=False)

        assert (seq.year, seq.month) == ("25", "07")
        assert seq.current_sequence == "0000"
        assert seq.regime == Regime.NUMERIC.value
        assert seq.package_type_code == ""
        assert seq.total_generated == 0

    def test_get_or_create_is_idempotent(self, allocator, db_session):
        first = allocator.get_or_create(IDENTITY, is_bulk=True)
        second = allocator.get_or_create(IDENTITY, is_bulk=True)
        assert first.id == second.id
        assert db_session.query(QRCodeSequence).count() == 1

    def test_get_or_create_reads_back_concurrent_winner(self, allocator, repository, db_session, monkeypatch):
        winner = repository.create_sequence(
            year="25", month="07", identity=IDENTITY, package_type_code=None,
            current_sequence="0007", regime=Regime.NUMERIC.value,
        )
        repository.commit()
        winner_id = winner.id

        # First lookup misses, as if the other creator had not committed yet
        find_sequence = repository.find_sequence
        misses = [None]

        def stale_first_read(*args):
            if misses:
                return misses.pop()
            return find_sequence(*args)

        monkeypatch.setattr(repository, "find_sequence", stale_first_read)

        seq = allocator.get_or_create(IDENTITY, is_bulk=False)

        assert seq.id == winner_id
        assert seq.current_sequence == "0007"
        assert db_session.query(QRCodeSequence).count() == 1

    def test_unit_and_bulk_scopes_are_separate(self, allocator, db_session):
        unit = allocator.get_or_create(IDENTITY, is_bulk=False)
        bulk = allocator.get_or_create(IDENTITY, is_bulk=True)
        assert unit.id != bulk.id
        assert bulk.package_type_code == "K"

    def test_allocate_next_persists_and_counts(self, allocator, db_session):
        seq = allocator.get_or_create(IDENTITY)

        assert allocator.allocate_next(seq.id) == "0001"
        assert allocator.allocate_next(seq.id) == "0002"

        db_session.refresh(seq)
        assert seq.current_sequence == "0002"
        assert seq.total_generated == 2
        assert seq.last_generated == datetime(2025, 7, 15, 9, 30)

    def test_lost_compare_and_swap_is_retried(self, allocator, repository, db_session, monkeypatch):
        seq = allocator.get_or_create(IDENTITY)

        compare_and_set = repository.compare_and_set_sequence
        outcomes = [False]

        def lose_once(sequence_id, **kwargs):
            if outcomes:
                return outcomes.pop()
            return compare_and_set(sequence_id, **kwargs)

        monkeypatch.setattr(repository, "compare_and_set_sequence", lose_once)

        assert allocator.allocate_next(seq.id) == "0001"
        assert outcomes == []

        db_session.refresh(seq)
        assert seq.current_sequence == "0001"
        assert seq.total_generated == 1

    def test_allocation_is_monotonic_across_regimes(self, allocator, db_session):
        seq = allocator.get_or_create(IDENTITY)
        seq.current_sequence = "9998"
        db_session.commit()

        values = [allocator.allocate_next(seq.id) for _ in range(3)]
        assert values == ["9999", "000A", "000B"]

        ordinals = [sequence_ordinal(v) for v in values]
        assert ordinals == sorted(ordinals)

    def test_suffix_rollover_enters_infix_and_stays(self, allocator, db_session):
        seq = allocator.get_or_create(IDENTITY)
        seq.current_sequence = "999Y"
        seq.regime = Regime.ALPHA_SUFFIX.value
        db_session.commit()

        values = [allocator.allocate_next(seq.id) for _ in range(4)]
        assert values == ["999Z", "001A", "00A1", "00A2"]

        db_session.refresh(seq)
        assert seq.regime == Regime.ALPHA_INFIX.value

    def test_new_month_starts_fresh_scope(self, allocator, clock, db_session):
        july = allocator.get_or_create(IDENTITY)
        allocator.allocate_next(july.id)
        allocator.allocate_next(july.id)

        clock.now = datetime(2025, 8, 1, 0, 5)
        august = allocator.get_or_create(IDENTITY)

        assert august.id != july.id
        assert (august.year, august.month) == ("25", "08")
        assert allocator.allocate_next(august.id) == "0001"

    def test_exhaustion_marks_sequence(self, allocator, db_session):
        seq = allocator.get_or_create(IDENTITY)
        seq.current_sequence = "99Z9"
        seq.regime = Regime.ALPHA_INFIX.value
        seq.total_generated = 7
        db_session.commit()

        with pytest.raises(SequenceExhaustedError):
            allocator.allocate_next(seq.id)

        db_session.refresh(seq)
        assert seq.status == SEQUENCE_STATUS_EXHAUSTED
        assert seq.current_sequence == "99Z9"
        assert seq.total_generated == 7

        # Further allocations keep failing without touching the row
        with pytest.raises(SequenceExhaustedError):
            allocator.allocate_next(seq.id)

    def test_unknown_sequence(self, allocator, db_session):
        with pytest.raises(SequenceError):
            allocator.allocate_next(99999)
