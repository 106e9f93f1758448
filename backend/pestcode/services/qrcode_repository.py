# Overview: Database access for masters, sequences, generated codes and scan logs.

"""
QR Code Repository

All SQL for the QR code engine lives here; services only see model rows
and plain dicts. The repository never commits on its own except where a
method says so: callers own the unit of work through commit()/rollback().

PACKAGE TYPE: unit scopes and unit-only masters store package_type_code as
"" so unique constraints cover them. None/"" are mapped at this boundary.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_, update
from sqlalchemy.orm import joinedload

from ..models import (
    Medicine,
    MedicineStock,
    QRCodeMaster,
    QRCodeSequence,
    QRCodeData,
    QRCodeScanLog,
)
from ..models.qrcode import (
    MASTER_STATUS_ACTIVE,
    SEQUENCE_STATUS_ACTIVE,
    SEQUENCE_STATUS_EXHAUSTED,
    CODE_STATUS_USED,
    SCAN_RESULT_SUCCESS,
)
from .code_format import CodeIdentity, BULK_SEPARATOR
from .concurrency import lock_for_update


DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100

RECENT_GENERATION_DAYS = 30
MOST_SCANNED_LIMIT = 10


def _package_key(package_type_code: Optional[str]) -> str:
    return package_type_code or ""


def paginate(query, page: int | None, per_page: int | None) -> dict:
    """
    Page a query the way list endpoints report it.

    page=None returns everything without pagination metadata.
    """
    if page is None:
        rows = query.all()
        return {"items": rows, "count": len(rows)}

    per_page = min(per_page or DEFAULT_PER_PAGE, MAX_PER_PAGE)
    page = max(page, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": rows,
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


class QRCodeRepository:
    def __init__(self, session):
        self.session = session

    # ---- unit of work ----

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # ---- stocks ----

    def get_stock_for_qr(self, stock_id: int) -> Optional[MedicineStock]:
        return (
            self.session.query(MedicineStock)
            .options(joinedload(MedicineStock.medicine))
            .filter(MedicineStock.id == stock_id)
            .one_or_none()
        )

    # ---- masters ----

    def _master_identity_filter(self, query, identity: CodeIdentity):
        return query.filter(
            QRCodeMaster.funding_source_code == identity.funding_source_code,
            QRCodeMaster.medicine_type_code == identity.medicine_type_code,
            QRCodeMaster.active_ingredient_code == identity.active_ingredient_code,
            QRCodeMaster.producer_code == identity.producer_code,
        )

    def find_master(self, identity: CodeIdentity) -> Optional[QRCodeMaster]:
        """Exact match on all five codes (package type "" for unit-only)."""
        q = self._master_identity_filter(self.session.query(QRCodeMaster), identity)
        return q.filter(
            QRCodeMaster.package_type_code == _package_key(identity.package_type_code)
        ).one_or_none()

    def find_active_master_for_medicine(self, identity: CodeIdentity) -> Optional[QRCodeMaster]:
        """Any ACTIVE master for the four medicine codes, whatever its package type."""
        q = self._master_identity_filter(self.session.query(QRCodeMaster), identity)
        return (
            q.filter(QRCodeMaster.status == MASTER_STATUS_ACTIVE)
            .order_by(QRCodeMaster.id.asc())
            .first()
        )

    def find_master_by_id(self, master_id: int) -> Optional[QRCodeMaster]:
        return self.session.get(QRCodeMaster, master_id)

    def create_master(self, fields: dict, actor: str) -> QRCodeMaster:
        data = dict(fields)
        data["package_type_code"] = _package_key(data.get("package_type_code"))
        master = QRCodeMaster(**data, created_by=actor, updated_by=actor)
        self.session.add(master)
        self.session.flush()
        return master

    def update_master(self, master: QRCodeMaster, patch: dict, actor: str) -> QRCodeMaster:
        for key, value in patch.items():
            setattr(master, key, value)
        master.updated_by = actor
        self.session.flush()
        return master

    def delete_master(self, master: QRCodeMaster) -> None:
        self.session.delete(master)
        self.session.flush()

    def list_masters(
        self,
        *,
        status: str | None = None,
        medicine_type_code: str | None = None,
        search: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
    ) -> dict:
        q = self.session.query(QRCodeMaster)
        if status:
            q = q.filter(QRCodeMaster.status == status)
        if medicine_type_code:
            q = q.filter(QRCodeMaster.medicine_type_code == medicine_type_code)
        if search:
            like = f"%{search}%"
            q = q.filter(
                or_(
                    QRCodeMaster.funding_source_name.ilike(like),
                    QRCodeMaster.medicine_type_name.ilike(like),
                    QRCodeMaster.active_ingredient_name.ilike(like),
                    QRCodeMaster.producer_name.ilike(like),
                )
            )
        q = q.order_by(QRCodeMaster.created_at.desc(), QRCodeMaster.id.desc())
        return paginate(q, page, per_page)

    def has_codes_for_master(self, master: QRCodeMaster) -> bool:
        """
        True if any generated code carries this master's identity.

        Codes are matched positionally: four period characters, then
        S T III P, then "-K" for masters with a package type.
        """
        pattern = (
            "____"
            + master.funding_source_code
            + master.medicine_type_code
            + master.active_ingredient_code
            + master.producer_code
        )
        if master.package_type_code:
            pattern += BULK_SEPARATOR + master.package_type_code
        pattern += "%"

        hit = (
            self.session.query(QRCodeData.id)
            .filter(QRCodeData.qr_code_string.like(pattern))
            .first()
        )
        return hit is not None

    # ---- sequences ----

    def find_sequence(
        self,
        year: str,
        month: str,
        identity: CodeIdentity,
        package_type_code: Optional[str],
    ) -> Optional[QRCodeSequence]:
        return (
            self.session.query(QRCodeSequence)
            .filter(
                QRCodeSequence.year == year,
                QRCodeSequence.month == month,
                QRCodeSequence.funding_source_code == identity.funding_source_code,
                QRCodeSequence.medicine_type_code == identity.medicine_type_code,
                QRCodeSequence.active_ingredient_code == identity.active_ingredient_code,
                QRCodeSequence.producer_code == identity.producer_code,
                QRCodeSequence.package_type_code == _package_key(package_type_code),
            )
            .one_or_none()
        )

    def lock_sequence(self, sequence_id: int) -> Optional[QRCodeSequence]:
        """Fresh read of the row under SELECT ... FOR UPDATE."""
        q = self.session.query(QRCodeSequence).filter(QRCodeSequence.id == sequence_id)
        return lock_for_update(q).populate_existing().one_or_none()

    def create_sequence(
        self,
        *,
        year: str,
        month: str,
        identity: CodeIdentity,
        package_type_code: Optional[str],
        current_sequence: str,
        regime: str,
    ) -> QRCodeSequence:
        sequence = QRCodeSequence(
            year=year,
            month=month,
            funding_source_code=identity.funding_source_code,
            medicine_type_code=identity.medicine_type_code,
            active_ingredient_code=identity.active_ingredient_code,
            producer_code=identity.producer_code,
            package_type_code=_package_key(package_type_code),
            current_sequence=current_sequence,
            regime=regime,
            total_generated=0,
            status=SEQUENCE_STATUS_ACTIVE,
        )
        self.session.add(sequence)
        self.session.flush()
        return sequence

    def compare_and_set_sequence(
        self,
        sequence_id: int,
        *,
        expected_sequence: str,
        expected_regime: str,
        new_sequence: str,
        new_regime: str,
        now: datetime,
    ) -> bool:
        """
        Conditional advance: only applies if the row still holds the value
        and regime the caller read. Returns False when another writer won.
        """
        stmt = (
            update(QRCodeSequence)
            .where(
                QRCodeSequence.id == sequence_id,
                QRCodeSequence.current_sequence == expected_sequence,
                QRCodeSequence.regime == expected_regime,
                QRCodeSequence.status == SEQUENCE_STATUS_ACTIVE,
            )
            .values(
                current_sequence=new_sequence,
                regime=new_regime,
                total_generated=QRCodeSequence.total_generated + 1,
                last_generated=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def mark_sequence_exhausted(self, sequence_id: int) -> None:
        self.session.execute(
            update(QRCodeSequence)
            .where(QRCodeSequence.id == sequence_id)
            .values(status=SEQUENCE_STATUS_EXHAUSTED)
            .execution_options(synchronize_session=False)
        )

    def list_sequences(
        self,
        *,
        year: str | None = None,
        month: str | None = None,
        status: str | None = None,
    ) -> list[QRCodeSequence]:
        q = self.session.query(QRCodeSequence)
        if year:
            q = q.filter(QRCodeSequence.year == year)
        if month:
            q = q.filter(QRCodeSequence.month == month)
        if status:
            q = q.filter(QRCodeSequence.status == status)
        return q.order_by(
            QRCodeSequence.year.desc(),
            QRCodeSequence.month.desc(),
            QRCodeSequence.id.asc(),
        ).all()

    # ---- generated codes ----

    def create_code(self, **fields) -> QRCodeData:
        code = QRCodeData(**fields)
        self.session.add(code)
        self.session.flush()
        return code

    def find_code_by_string(self, code_string: str) -> Optional[QRCodeData]:
        return (
            self.session.query(QRCodeData)
            .filter(QRCodeData.qr_code_string == code_string)
            .one_or_none()
        )

    def find_code_by_id(self, code_id: int) -> Optional[QRCodeData]:
        return self.session.get(QRCodeData, code_id)

    def update_code_status(self, code: QRCodeData, status: str) -> QRCodeData:
        code.status = status
        self.session.flush()
        return code

    def bulk_update_code_status(self, code_ids: list[int], status: str) -> int:
        if not code_ids:
            return 0
        result = self.session.execute(
            update(QRCodeData)
            .where(QRCodeData.id.in_(code_ids))
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def mark_printed(self, code: QRCodeData, actor: str, now: datetime) -> QRCodeData:
        code.printed_at = now
        code.printed_by = actor
        self.session.flush()
        return code

    def increment_scan(self, code_id: int, actor: str, now: datetime) -> None:
        """scanned_count + 1 in one statement so concurrent scans are not lost."""
        self.session.execute(
            update(QRCodeData)
            .where(QRCodeData.id == code_id)
            .values(
                scanned_count=QRCodeData.scanned_count + 1,
                last_scanned_at=now,
                last_scanned_by=actor,
            )
            .execution_options(synchronize_session=False)
        )

    def code_has_scan_logs(self, code_id: int) -> bool:
        hit = (
            self.session.query(QRCodeScanLog.id)
            .filter(QRCodeScanLog.qr_code_id == code_id)
            .first()
        )
        return hit is not None

    def delete_code(self, code: QRCodeData) -> None:
        self.session.delete(code)
        self.session.flush()

    def list_codes(
        self,
        *,
        medicine_stock_id: int | None = None,
        is_bulk_package: bool | None = None,
        status: str | None = None,
        generated_by: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        search: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
    ) -> dict:
        q = self.session.query(QRCodeData)
        if medicine_stock_id is not None:
            q = q.filter(QRCodeData.medicine_stock_id == medicine_stock_id)
        if is_bulk_package is not None:
            q = q.filter(QRCodeData.is_bulk_package == is_bulk_package)
        if status:
            q = q.filter(QRCodeData.status == status)
        if generated_by:
            q = q.filter(QRCodeData.generated_by == generated_by)
        if date_from:
            q = q.filter(QRCodeData.generated_at >= date_from)
        if date_to:
            q = q.filter(QRCodeData.generated_at <= date_to)
        if search:
            q = q.filter(QRCodeData.qr_code_string.ilike(f"%{search}%"))
        q = q.order_by(QRCodeData.generated_at.desc(), QRCodeData.id.desc())
        return paginate(q, page, per_page)

    # ---- scan logs ----

    def append_scan_log(
        self,
        *,
        qr_code_string: str,
        scanned_by: str,
        purpose: str,
        result: str,
        scanned_at: datetime,
        qr_code_id: int | None = None,
        location: str | None = None,
        device_info: str | None = None,
        notes: str | None = None,
    ) -> QRCodeScanLog:
        log = QRCodeScanLog(
            qr_code_id=qr_code_id,
            qr_code_string=qr_code_string,
            scanned_by=scanned_by,
            scanned_at=scanned_at,
            purpose=purpose,
            result=result,
            location=location,
            device_info=device_info,
            notes=notes,
        )
        self.session.add(log)
        self.session.flush()
        return log

    def list_scan_logs(
        self,
        *,
        qr_code_id: int | None = None,
        scanned_by: str | None = None,
        purpose: str | None = None,
        result: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int | None = None,
        per_page: int | None = None,
    ) -> dict:
        q = self.session.query(QRCodeScanLog)
        if qr_code_id is not None:
            q = q.filter(QRCodeScanLog.qr_code_id == qr_code_id)
        if scanned_by:
            q = q.filter(QRCodeScanLog.scanned_by == scanned_by)
        if purpose:
            q = q.filter(QRCodeScanLog.purpose == purpose)
        if result:
            q = q.filter(QRCodeScanLog.result == result)
        if date_from:
            q = q.filter(QRCodeScanLog.scanned_at >= date_from)
        if date_to:
            q = q.filter(QRCodeScanLog.scanned_at <= date_to)
        q = q.order_by(QRCodeScanLog.scanned_at.desc(), QRCodeScanLog.id.desc())
        return paginate(q, page, per_page)

    # ---- reporting ----

    def statistics(self, now: datetime) -> dict:
        total_generated = self.session.query(func.count(QRCodeData.id)).scalar() or 0
        total_printed = (
            self.session.query(func.count(QRCodeData.id))
            .filter(QRCodeData.printed_at.isnot(None))
            .scalar()
            or 0
        )
        total_scanned = (
            self.session.query(func.count(QRCodeData.id))
            .filter(QRCodeData.scanned_count > 0)
            .scalar()
            or 0
        )
        total_used = (
            self.session.query(func.count(QRCodeData.id))
            .filter(QRCodeData.status == CODE_STATUS_USED)
            .scalar()
            or 0
        )
        recent_generation = (
            self.session.query(func.count(QRCodeData.id))
            .filter(QRCodeData.generated_at >= now - timedelta(days=RECENT_GENERATION_DAYS))
            .scalar()
            or 0
        )

        by_status = dict(
            self.session.query(QRCodeData.status, func.count(QRCodeData.id))
            .group_by(QRCodeData.status)
            .all()
        )

        # Medicine type is the 6th character of every code
        type_col = func.substr(QRCodeData.qr_code_string, 6, 1)
        by_medicine_type = dict(
            self.session.query(type_col, func.count(QRCodeData.id))
            .group_by(type_col)
            .all()
        )

        most_scanned = (
            self.session.query(QRCodeData)
            .options(joinedload(QRCodeData.medicine_stock).joinedload(MedicineStock.medicine))
            .filter(QRCodeData.scanned_count > 0)
            .order_by(QRCodeData.scanned_count.desc(), QRCodeData.id.asc())
            .limit(MOST_SCANNED_LIMIT)
            .all()
        )

        total_scan_logs = self.session.query(func.count(QRCodeScanLog.id)).scalar() or 0
        successful_scans = (
            self.session.query(func.count(QRCodeScanLog.id))
            .filter(QRCodeScanLog.result == SCAN_RESULT_SUCCESS)
            .scalar()
            or 0
        )

        return {
            "generation": {
                "total_generated": total_generated,
                "total_printed": total_printed,
                "recent_generation": recent_generation,
                "by_status": by_status,
                "by_medicine_type": by_medicine_type,
            },
            "scanning": {
                "total_scanned": total_scanned,
                "total_used": total_used,
                "total_scan_logs": total_scan_logs,
                "successful_scans": successful_scans,
                "failed_scans": total_scan_logs - successful_scans,
                "success_rate": (
                    successful_scans / total_scan_logs * 100 if total_scan_logs else 0.0
                ),
                "most_scanned": [
                    {
                        "id": c.id,
                        "qr_code_string": c.qr_code_string,
                        "scanned_count": c.scanned_count,
                        "medicine_name": (
                            c.medicine_stock.medicine.name
                            if c.medicine_stock and c.medicine_stock.medicine
                            else None
                        ),
                    }
                    for c in most_scanned
                ],
            },
        }

    def system_health(self) -> dict:
        def _count(model, *criteria) -> int:
            return self.session.query(func.count(model.id)).filter(*criteria).scalar() or 0

        active = _count(QRCodeSequence, QRCodeSequence.status == SEQUENCE_STATUS_ACTIVE)
        exhausted = _count(QRCodeSequence, QRCodeSequence.status == SEQUENCE_STATUS_EXHAUSTED)
        return {
            "sequences": {"active": active, "exhausted": exhausted, "total": active + exhausted},
            "masters": {"active": _count(QRCodeMaster, QRCodeMaster.status == MASTER_STATUS_ACTIVE)},
            "medicines": {"active": _count(Medicine, Medicine.is_active.is_(True))},
        }
