# Overview: Generates QR codes for a medicine stock and manages generated codes.

"""
Generation Service

FLOW (per call):
    stock lookup -> master check -> sequence scope -> loop quantity times:
        allocate -> format -> render -> persist

PARTIAL FAILURE: each loop item runs in its own transaction. An item that
fails is rolled back, counted and reported with its 1-based index; the
loop carries on. Allocation commits before rendering, so a failed item
still consumes its sequence value (sequence gaps are expected).

WHOLE-CALL FAILURES: bad request values, a missing stock, a stock whose
medicine has no ACTIVE master, or a bulk request for a stock without a
package type raise before anything is allocated.

DELETE GUARD: a code that has been scanned (counter or scan log) cannot be
deleted; scan logs are immutable and keep pointing at it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import QRCodeData
from ..models.qrcode import (
    CODE_STATUSES,
    CODE_STATUS_GENERATED,
    CODE_STATUS_PRINTED,
)
from ..time_utils import utcnow
from ..validation import (
    ValidationError,
    NotFoundError,
    CodeInUseError,
    enforce_rules_generate,
    enforce_rules_bulk_generate,
    normalize_batch_info,
)
from .code_format import CodeIdentity, format_code, parse_code
from .qr_image import ImageRenderError
from .concurrency import StaleWriteError
from .sequence_service import SequenceError


ITEM_ERRORS = (SequenceError, StaleWriteError, ImageRenderError, SQLAlchemyError)


@dataclass
class GenerateRequest:
    medicine_stock_id: int
    quantity: int
    is_bulk_package: bool = False
    batch_info: Optional[dict] = None
    notes: Optional[str] = None


@dataclass
class BulkGenerateRequest:
    medicine_stock_id: int
    total_quantity: int
    bulk_package_size: int
    batch_info: Optional[dict] = None
    notes: Optional[str] = None


@dataclass
class GenerationResult:
    success: bool = False
    generated: int = 0
    failed: int = 0
    codes: list[QRCodeData] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def merge(self, other: "GenerationResult") -> "GenerationResult":
        self.generated += other.generated
        self.failed += other.failed
        self.codes.extend(other.codes)
        self.errors.extend(other.errors)
        self.success = self.generated > 0
        return self

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "generated": self.generated,
            "failed": self.failed,
            "codes": [c.to_dict() for c in self.codes],
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class _Scope:
    """Detached copy of a sequence row's key; survives per-item rollbacks."""
    sequence_id: int
    year: str
    month: str
    funding_source_code: str
    medicine_type_code: str
    active_ingredient_code: str
    producer_code: str
    package_type_code: Optional[str]

    @classmethod
    def from_sequence(cls, sequence) -> "_Scope":
        return cls(
            sequence_id=sequence.id,
            year=sequence.year,
            month=sequence.month,
            funding_source_code=sequence.funding_source_code,
            medicine_type_code=sequence.medicine_type_code,
            active_ingredient_code=sequence.active_ingredient_code,
            producer_code=sequence.producer_code,
            package_type_code=sequence.package_type_code or None,
        )


def bulk_notes(bulk_package_size: int, notes: Optional[str]) -> str:
    return f"Bulk package ({bulk_package_size} items per package). {notes or ''}".strip()


class QRCodeGenerator:
    """
    Orchestrates code generation over injected collaborators:
    repository (storage), allocator (SequenceAllocator), renderer
    (callable str -> data URL) and clock.
    """

    def __init__(self, repository, allocator, renderer: Callable[[str], str], *, clock: Callable = utcnow):
        self.repository = repository
        self.allocator = allocator
        self.renderer = renderer
        self._clock = clock

    # ---- generation ----

    def _render(self, code_string: str) -> str:
        """Any renderer failure counts against the current item only."""
        try:
            return self.renderer(code_string)
        except ImageRenderError:
            raise
        except Exception as exc:
            raise ImageRenderError(f"Failed to generate QR code image: {exc}") from exc

    def _load_identity(self, medicine_stock_id: int, is_bulk: bool) -> CodeIdentity:
        stock = self.repository.get_stock_for_qr(medicine_stock_id)
        if stock is None:
            raise NotFoundError("Medicine stock not found")
        if stock.medicine is None:
            raise NotFoundError("Medicine for stock not found")

        identity = CodeIdentity.from_stock(stock)
        if is_bulk and not identity.package_type_code:
            raise ValidationError("Medicine stock has no package type for bulk package codes")

        if self.repository.find_active_master_for_medicine(identity) is None:
            raise ValidationError(
                f"No active QR code master registered for codes {identity.prefix}"
            )
        return identity

    def _run(
        self,
        *,
        medicine_stock_id: int,
        quantity: int,
        is_bulk: bool,
        batch_info: Optional[dict],
        notes: Optional[str],
        actor: str,
    ) -> GenerationResult:
        identity = self._load_identity(medicine_stock_id, is_bulk)
        scope = _Scope.from_sequence(self.allocator.get_or_create(identity, is_bulk))

        result = GenerationResult()

        for index in range(1, quantity + 1):
            try:
                value = self.allocator.allocate_next(scope.sequence_id)
                code_string = format_code(scope, value, is_bulk)
                image = self._render(code_string)

                code = self.repository.create_code(
                    qr_code_string=code_string,
                    qr_code_image=image,
                    medicine_stock_id=medicine_stock_id,
                    is_bulk_package=is_bulk,
                    components=parse_code(code_string).to_dict(),
                    batch_info=batch_info,
                    generated_at=self._clock(),
                    generated_by=actor,
                    status=CODE_STATUS_GENERATED,
                    notes=notes,
                )
                self.repository.commit()
            except ITEM_ERRORS as exc:
                self.repository.rollback()
                result.failed += 1
                result.errors.append({
                    "index": index,
                    "is_bulk_package": is_bulk,
                    "message": f"Failed to generate QR code {index}: {exc}",
                })
                current_app.logger.warning(
                    "QR generation item %s for stock %s failed: %s", index, medicine_stock_id, exc
                )
                continue

            result.codes.append(code)
            result.generated += 1

        result.success = result.generated > 0
        current_app.logger.info(
            "QR generation for stock %s by %s: %s generated, %s failed (bulk=%s)",
            medicine_stock_id, actor, result.generated, result.failed, is_bulk,
        )
        return result

    def generate(self, request: GenerateRequest, actor: str) -> GenerationResult:
        """
        Generate request.quantity codes for one stock.

        Raises:
            ValidationError: bad quantity/batch info, no active master,
                bulk request for a stock without package type
            NotFoundError: stock does not exist
        """
        enforce_rules_generate(request.quantity)
        batch_info = normalize_batch_info(request.batch_info)

        return self._run(
            medicine_stock_id=request.medicine_stock_id,
            quantity=request.quantity,
            is_bulk=bool(request.is_bulk_package),
            batch_info=batch_info,
            notes=request.notes,
            actor=actor,
        )

    def bulk_generate(self, request: BulkGenerateRequest, actor: str) -> GenerationResult:
        """
        Unit codes for every item plus one bulk code per package.

        total_quantity unit codes, then ceil(total_quantity / bulk_package_size)
        bulk codes; results are concatenated in that order.
        """
        enforce_rules_bulk_generate(request.total_quantity, request.bulk_package_size)
        batch_info = normalize_batch_info(request.batch_info)

        # Refuse up front rather than after the unit codes are issued
        self._load_identity(request.medicine_stock_id, is_bulk=True)

        packages = math.ceil(request.total_quantity / request.bulk_package_size)

        result = self._run(
            medicine_stock_id=request.medicine_stock_id,
            quantity=request.total_quantity,
            is_bulk=False,
            batch_info=batch_info,
            notes=request.notes,
            actor=actor,
        )
        bulk = self._run(
            medicine_stock_id=request.medicine_stock_id,
            quantity=packages,
            is_bulk=True,
            batch_info=batch_info,
            notes=bulk_notes(request.bulk_package_size, request.notes),
            actor=actor,
        )
        return result.merge(bulk)

    # ---- code management ----

    def get_code(self, code_id: int) -> QRCodeData:
        code = self.repository.find_code_by_id(code_id)
        if code is None:
            raise NotFoundError("QR code not found")
        return code

    def list_codes(self, **filters) -> dict:
        result = self.repository.list_codes(**filters)
        result["items"] = [c.to_dict() for c in result["items"]]
        return result

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in CODE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(CODE_STATUSES)}")

    def update_status(self, code_id: int, status: str, actor: str) -> QRCodeData:
        self._check_status(status)
        code = self.get_code(code_id)
        previous = code.status
        code = self.repository.update_code_status(code, status)
        self.repository.commit()
        current_app.logger.info(
            "QR code %s status %s -> %s by %s", code_id, previous, status, actor
        )
        return code

    def bulk_update_status(self, code_ids: list[int], status: str, actor: str) -> int:
        self._check_status(status)
        updated = self.repository.bulk_update_code_status(list(code_ids), status)
        self.repository.commit()
        current_app.logger.info(
            "QR codes bulk status -> %s by %s: %s updated", status, actor, updated
        )
        return updated

    def mark_printed(self, code_id: int, actor: str) -> QRCodeData:
        """Stamp printed_at/by; a GENERATED code moves to PRINTED."""
        code = self.get_code(code_id)
        code = self.repository.mark_printed(code, actor, self._clock())
        if code.status == CODE_STATUS_GENERATED:
            code = self.repository.update_code_status(code, CODE_STATUS_PRINTED)
        self.repository.commit()
        return code

    def _ensure_deletable(self, code: QRCodeData) -> None:
        if (code.scanned_count or 0) > 0 or self.repository.code_has_scan_logs(code.id):
            raise CodeInUseError("Cannot delete QR code that has been scanned")

    def delete_code(self, code_id: int) -> None:
        """
        Raises:
            NotFoundError: no such code
            CodeInUseError: the code has been scanned
        """
        code = self.get_code(code_id)
        self._ensure_deletable(code)
        self.repository.delete_code(code)
        self.repository.commit()
        current_app.logger.info("QR code %s deleted", code_id)

    def bulk_delete(self, code_ids: list[int]) -> dict:
        """Delete what can be deleted; report the rest per id."""
        deleted: list[int] = []
        refused: list[dict] = []

        for code_id in code_ids:
            code = self.repository.find_code_by_id(code_id)
            if code is None:
                refused.append({"id": code_id, "message": "QR code not found"})
                continue
            try:
                self._ensure_deletable(code)
            except CodeInUseError as exc:
                refused.append({"id": code_id, "message": str(exc)})
                continue
            self.repository.delete_code(code)
            deleted.append(code_id)

        self.repository.commit()
        return {"deleted": deleted, "refused": refused}

    # ---- reporting ----

    def statistics(self) -> dict:
        return self.repository.statistics(self._clock())

    def system_health(self) -> dict:
        return self.repository.system_health()
