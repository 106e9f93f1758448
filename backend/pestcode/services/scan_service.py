# Overview: Processes scans of printed codes and keeps the scan audit trail.

"""
Scan Service

AUDIT: every call to scan() appends exactly one QRCodeScanLog row, whatever
the outcome. Outcomes are checked in order:

    1. format invalid        -> INVALID_FORMAT (no code reference)
    2. unknown code string   -> NOT_FOUND
    3. code status EXPIRED   -> EXPIRED (code untouched)
    4. otherwise             -> SUCCESS, scanned_count + 1, last scanned by/at

A storage error part way through rolls the session back and records an
ERROR entry instead, so the attempt is still on record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import QRCodeData, QRCodeScanLog
from ..models.qrcode import (
    CODE_STATUS_EXPIRED,
    SCAN_PURPOSES,
    SCAN_RESULT_SUCCESS,
    SCAN_RESULT_INVALID_FORMAT,
    SCAN_RESULT_NOT_FOUND,
    SCAN_RESULT_EXPIRED,
    SCAN_RESULT_ERROR,
)
from ..time_utils import utcnow
from ..validation import ValidationError
from .code_validation import validate_code, DEFAULT_YEAR_WINDOW


@dataclass(frozen=True)
class ScanContext:
    location: Optional[str] = None
    device_info: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ScanOutcome:
    success: bool
    result: str
    message: str
    scan_log: QRCodeScanLog
    code: Optional[QRCodeData] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "result": self.result,
            "message": self.message,
            "qr_code": self.code.to_dict() if self.code is not None else None,
            "scan_log": self.scan_log.to_dict(),
        }


class ScanProcessor:
    def __init__(self, repository, *, clock: Callable = utcnow, year_window: int = DEFAULT_YEAR_WINDOW):
        self.repository = repository
        self._clock = clock
        self._year_window = year_window

    def _log(self, code_string: str, actor: str, purpose: str, result: str,
             context: ScanContext, *, code_id: int | None = None,
             notes: str | None = None) -> QRCodeScanLog:
        log = self.repository.append_scan_log(
            qr_code_id=code_id,
            qr_code_string=code_string,
            scanned_by=actor,
            scanned_at=self._clock(),
            purpose=purpose,
            result=result,
            location=context.location,
            device_info=context.device_info,
            notes=notes if notes is not None else context.notes,
        )
        self.repository.commit()
        return log

    def scan(self, code_string: str, actor: str, purpose: str,
             context: ScanContext | None = None) -> ScanOutcome:
        """
        Record one scan attempt and report its outcome.

        Raises:
            ValidationError: purpose is not a known scan purpose (nothing is logged)
        """
        if purpose not in SCAN_PURPOSES:
            raise ValidationError(f"purpose must be one of {', '.join(SCAN_PURPOSES)}")
        context = context or ScanContext()
        code_string = "" if code_string is None else str(code_string)

        try:
            validation = validate_code(code_string, now=self._clock(), year_window=self._year_window)
            if not validation.is_valid:
                log = self._log(code_string, actor, purpose, SCAN_RESULT_INVALID_FORMAT, context)
                return ScanOutcome(False, SCAN_RESULT_INVALID_FORMAT, ", ".join(validation.errors), log)

            code = self.repository.find_code_by_string(code_string)
            if code is None:
                log = self._log(code_string, actor, purpose, SCAN_RESULT_NOT_FOUND, context)
                return ScanOutcome(False, SCAN_RESULT_NOT_FOUND, "QR code not found in system", log)

            if code.status == CODE_STATUS_EXPIRED:
                log = self._log(code_string, actor, purpose, SCAN_RESULT_EXPIRED, context, code_id=code.id)
                return ScanOutcome(False, SCAN_RESULT_EXPIRED, "QR code has expired", log, code)

            self.repository.increment_scan(code.id, actor, self._clock())
            log = self._log(code_string, actor, purpose, SCAN_RESULT_SUCCESS, context, code_id=code.id)
            return ScanOutcome(True, SCAN_RESULT_SUCCESS, "QR code scanned successfully", log, code)

        except SQLAlchemyError as exc:
            self.repository.rollback()
            current_app.logger.exception("QR scan of %r by %s failed", code_string, actor)
            log = self._log(
                code_string, actor, purpose, SCAN_RESULT_ERROR, context, notes=f"Error: {exc}"
            )
            return ScanOutcome(False, SCAN_RESULT_ERROR, f"Scan failed: {exc}", log)

    def list_scan_logs(self, **filters) -> dict:
        result = self.repository.list_scan_logs(**filters)
        result["items"] = [log.to_dict() for log in result["items"]]
        return result
