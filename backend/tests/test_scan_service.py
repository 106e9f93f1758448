# Overview: Pytest coverage for scan processing and the scan audit trail.

"""
Scan Tests

AUDIT COMPLETENESS: every scan() call adds exactly one scan log row, for
every outcome, including storage errors.
"""

import pytest
from sqlalchemy import Text
from sqlalchemy.exc import OperationalError

from pestcode.models import QRCodeData, QRCodeScanLog
from pestcode.models.qrcode import (
    CODE_STATUS_EXPIRED,
    SCAN_RESULT_SUCCESS,
    SCAN_RESULT_INVALID_FORMAT,
    SCAN_RESULT_NOT_FOUND,
    SCAN_RESULT_EXPIRED,
    SCAN_RESULT_ERROR,
)
from pestcode.services.generation_service import GenerateRequest
from pestcode.services.scan_service import ScanContext
from pestcode.validation import ValidationError


CONTEXT = ScanContext(location="Kios Tani Makmur", device_info="Android 14", notes="field check")


@pytest.fixture
def code(generator, stock, master):
    return generator.generate(GenerateRequest(medicine_stock_id=stock.id, quantity=1), "admin").codes[0]


def _log_count(db_session):
    return db_session.query(QRCodeScanLog).count()


class TestScanOutcomes:
    def test_success_updates_counters(self, scanner, code, db_session):
        outcome = scanner.scan(code.qr_code_string, "ppl01", "DISTRIBUTION", CONTEXT)

        assert outcome.success
        assert outcome.result == SCAN_RESULT_SUCCESS
        assert outcome.message == "QR code scanned successfully"
        assert outcome.code.id == code.id

        refreshed = db_session.get(QRCodeData, code.id)
        assert refreshed.scanned_count == 1
        assert refreshed.last_scanned_by == "ppl01"
        assert refreshed.last_scanned_at is not None

        log = outcome.scan_log
        assert log.qr_code_id == code.id
        assert log.purpose == "DISTRIBUTION"
        assert log.location == "Kios Tani Makmur"
        assert log.device_info == "Android 14"
        assert log.notes == "field check"

    def test_repeated_scans_count_up(self, scanner, code, db_session):
        for _ in range(3):
            scanner.scan(code.qr_code_string, "ppl01", "VERIFICATION")
        assert db_session.get(QRCodeData, code.id).scanned_count == 3

    def test_invalid_format(self, scanner, db_session):
        outcome = scanner.scan("25131X111B0001", "ppl01", "VERIFICATION", CONTEXT)

        assert not outcome.success
        assert outcome.result == SCAN_RESULT_INVALID_FORMAT
        assert "Invalid month in QR code" in outcome.message
        assert outcome.scan_log.qr_code_id is None
        assert outcome.scan_log.qr_code_string == "25131X111B0001"

    def test_garbage_string_is_logged(self, scanner, db_session):
        outcome = scanner.scan("hello", "ppl01", "AUDIT")
        assert outcome.result == SCAN_RESULT_INVALID_FORMAT
        assert outcome.scan_log.qr_code_string == "hello"

    def test_oversized_string_is_logged_in_full(self, scanner, db_session):
        garbage = "X" * 300
        outcome = scanner.scan(garbage, "ppl01", "AUDIT")

        assert outcome.result == SCAN_RESULT_INVALID_FORMAT
        assert db_session.query(QRCodeScanLog).one().qr_code_string == garbage

    def test_logged_string_column_is_unbounded(self):
        assert isinstance(QRCodeScanLog.__table__.c.qr_code_string.type, Text)

    def test_not_found(self, scanner, db_session):
        outcome = scanner.scan("25071F111B0999", "ppl01", "INVENTORY_CHECK")

        assert not outcome.success
        assert outcome.result == SCAN_RESULT_NOT_FOUND
        assert outcome.message == "QR code not found in system"
        assert outcome.code is None

    def test_expired_code_is_left_untouched(self, scanner, generator, code, db_session):
        generator.update_status(code.id, CODE_STATUS_EXPIRED, "admin")

        outcome = scanner.scan(code.qr_code_string, "ppl01", "TRANSACTION")

        assert not outcome.success
        assert outcome.result == SCAN_RESULT_EXPIRED
        assert outcome.scan_log.qr_code_id == code.id
        refreshed = db_session.get(QRCodeData, code.id)
        assert refreshed.scanned_count == 0
        assert refreshed.last_scanned_by is None

    def test_storage_error_is_logged_as_error(self, scanner, repository, code, db_session, monkeypatch):
        def boom(code_string):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(repository, "find_code_by_string", boom)

        outcome = scanner.scan(code.qr_code_string, "ppl01", "VERIFICATION")

        assert not outcome.success
        assert outcome.result == SCAN_RESULT_ERROR
        assert outcome.message.startswith("Scan failed:")
        assert outcome.scan_log.notes.startswith("Error:")
        assert outcome.scan_log.qr_code_id is None

    def test_unknown_purpose_is_rejected_without_logging(self, scanner, db_session):
        with pytest.raises(ValidationError):
            scanner.scan("25071F111B0001", "ppl01", "SHOPPING")
        assert _log_count(db_session) == 0


class TestAuditCompleteness:
    def test_one_log_per_call(self, scanner, generator, code, db_session):
        attempts = [
            code.qr_code_string,     # SUCCESS
            "25071F111B0999",        # NOT_FOUND
            "XX",                    # INVALID_FORMAT
            code.qr_code_string,     # SUCCESS
        ]
        for i, attempt in enumerate(attempts, start=1):
            scanner.scan(attempt, "ppl01", "AUDIT")
            assert _log_count(db_session) == i

        generator.update_status(code.id, CODE_STATUS_EXPIRED, "admin")
        scanner.scan(code.qr_code_string, "ppl01", "AUDIT")
        assert _log_count(db_session) == len(attempts) + 1

        results = [log.result for log in db_session.query(QRCodeScanLog).order_by(QRCodeScanLog.id)]
        assert results == [
            SCAN_RESULT_SUCCESS,
            SCAN_RESULT_NOT_FOUND,
            SCAN_RESULT_INVALID_FORMAT,
            SCAN_RESULT_SUCCESS,
            SCAN_RESULT_EXPIRED,
        ]

    def test_list_scan_logs(self, scanner, code, db_session):
        scanner.scan(code.qr_code_string, "ppl01", "AUDIT")
        scanner.scan("25071F111B0999", "ppl02", "AUDIT")

        by_code = scanner.list_scan_logs(qr_code_id=code.id)
        assert by_code["count"] == 1
        assert by_code["items"][0]["result"] == SCAN_RESULT_SUCCESS

        failed = scanner.list_scan_logs(result=SCAN_RESULT_NOT_FOUND, page=1, per_page=5)
        assert [log["scanned_by"] for log in failed["items"]] == ["ppl02"]
        assert failed["pagination"]["total"] == 1
