from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Master status
MASTER_STATUS_ACTIVE = "ACTIVE"
MASTER_STATUS_INACTIVE = "INACTIVE"
MASTER_STATUSES = (MASTER_STATUS_ACTIVE, MASTER_STATUS_INACTIVE)

# Sequence status
SEQUENCE_STATUS_ACTIVE = "ACTIVE"
SEQUENCE_STATUS_EXHAUSTED = "EXHAUSTED"
SEQUENCE_STATUS_INACTIVE = "INACTIVE"
SEQUENCE_STATUSES = (SEQUENCE_STATUS_ACTIVE, SEQUENCE_STATUS_EXHAUSTED, SEQUENCE_STATUS_INACTIVE)

# Generated code status
CODE_STATUS_GENERATED = "GENERATED"
CODE_STATUS_PRINTED = "PRINTED"
CODE_STATUS_DISTRIBUTED = "DISTRIBUTED"
CODE_STATUS_SCANNED = "SCANNED"
CODE_STATUS_USED = "USED"
CODE_STATUS_EXPIRED = "EXPIRED"
CODE_STATUS_INVALID = "INVALID"
CODE_STATUSES = (
    CODE_STATUS_GENERATED,
    CODE_STATUS_PRINTED,
    CODE_STATUS_DISTRIBUTED,
    CODE_STATUS_SCANNED,
    CODE_STATUS_USED,
    CODE_STATUS_EXPIRED,
    CODE_STATUS_INVALID,
)

# Scan purpose
SCAN_PURPOSES = ("VERIFICATION", "DISTRIBUTION", "INVENTORY_CHECK", "TRANSACTION", "AUDIT")

# Scan result
SCAN_RESULT_SUCCESS = "SUCCESS"
SCAN_RESULT_INVALID_FORMAT = "INVALID_FORMAT"
SCAN_RESULT_NOT_FOUND = "NOT_FOUND"
SCAN_RESULT_EXPIRED = "EXPIRED"
SCAN_RESULT_ALREADY_USED = "ALREADY_USED"
SCAN_RESULT_ERROR = "ERROR"
SCAN_RESULTS = (
    SCAN_RESULT_SUCCESS,
    SCAN_RESULT_INVALID_FORMAT,
    SCAN_RESULT_NOT_FOUND,
    SCAN_RESULT_EXPIRED,
    SCAN_RESULT_ALREADY_USED,
    SCAN_RESULT_ERROR,
)


class QRCodeMaster(db.Model):
    """
    Registered code identity: funding source + medicine type + active
    ingredient + producer (+ package type for bulk packages).

    package_type_code is "" (not NULL) for unit-only masters so the unique
    constraint also covers them.
    """
    __tablename__ = "qr_code_masters"
    __table_args__ = (
        db.UniqueConstraint(
            "funding_source_code",
            "medicine_type_code",
            "active_ingredient_code",
            "producer_code",
            "package_type_code",
            name="uq_qr_code_masters_identity",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    funding_source_code = db.Column(db.String(1), nullable=False, index=True)
    funding_source_name = db.Column(db.String(100), nullable=False)
    medicine_type_code = db.Column(db.String(1), nullable=False, index=True)
    medicine_type_name = db.Column(db.String(100), nullable=False)
    active_ingredient_code = db.Column(db.String(3), nullable=False, index=True)
    active_ingredient_name = db.Column(db.String(200), nullable=False)
    producer_code = db.Column(db.String(1), nullable=False, index=True)
    producer_name = db.Column(db.String(100), nullable=False)
    package_type_code = db.Column(db.String(1), nullable=False, default="", server_default="")
    package_type_name = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=MASTER_STATUS_ACTIVE, index=True)

    created_by = db.Column(db.String(64), nullable=False)
    updated_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<QRCodeMaster id={self.id} {self.funding_source_code}{self.medicine_type_code}"
            f"{self.active_ingredient_code}{self.producer_code} package={self.package_type_code!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "funding_source_code": self.funding_source_code,
            "funding_source_name": self.funding_source_name,
            "medicine_type_code": self.medicine_type_code,
            "medicine_type_name": self.medicine_type_name,
            "active_ingredient_code": self.active_ingredient_code,
            "active_ingredient_name": self.active_ingredient_name,
            "producer_code": self.producer_code,
            "producer_name": self.producer_name,
            "package_type_code": self.package_type_code or None,
            "package_type_name": self.package_type_name,
            "status": self.status,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class QRCodeSequence(db.Model):
    """
    Per-scope counter for the trailing sequence field of a code.

    One row per (year, month, funding source, medicine type, active
    ingredient, producer, package type). A new month always opens a new row.

    current_sequence starts at the sentinel "0000" (nothing issued) and only
    moves forward. regime records which numbering scheme current_sequence
    belongs to; it is stored rather than re-derived from the value's shape
    because the alpha-infix entry value "001A" has alpha-suffix shape.

    package_type_code is "" for unit-code scopes (see QRCodeMaster).
    """
    __tablename__ = "qr_code_sequences"
    __table_args__ = (
        db.UniqueConstraint(
            "year",
            "month",
            "funding_source_code",
            "medicine_type_code",
            "active_ingredient_code",
            "producer_code",
            "package_type_code",
            name="uq_qr_code_sequences_scope",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    year = db.Column(db.String(2), nullable=False)
    month = db.Column(db.String(2), nullable=False)
    funding_source_code = db.Column(db.String(1), nullable=False)
    medicine_type_code = db.Column(db.String(1), nullable=False)
    active_ingredient_code = db.Column(db.String(3), nullable=False)
    producer_code = db.Column(db.String(1), nullable=False)
    package_type_code = db.Column(db.String(1), nullable=False, default="", server_default="")

    current_sequence = db.Column(db.String(4), nullable=False, default="0000")
    regime = db.Column(db.String(16), nullable=False, default="numeric")
    total_generated = db.Column(db.Integer, nullable=False, default=0)
    last_generated = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=SEQUENCE_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<QRCodeSequence id={self.id} {self.year}{self.month}{self.funding_source_code}"
            f"{self.medicine_type_code}{self.active_ingredient_code}{self.producer_code}"
            f" package={self.package_type_code!r} current={self.current_sequence!r}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "year": self.year,
            "month": self.month,
            "funding_source_code": self.funding_source_code,
            "medicine_type_code": self.medicine_type_code,
            "active_ingredient_code": self.active_ingredient_code,
            "producer_code": self.producer_code,
            "package_type_code": self.package_type_code or None,
            "current_sequence": self.current_sequence,
            "regime": self.regime,
            "total_generated": self.total_generated,
            "last_generated": to_utc_z(self.last_generated),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class QRCodeData(db.Model):
    """
    A generated QR code.

    Written once by generation; afterwards only status, print and scan
    fields change.
    """
    __tablename__ = "qr_code_data"
    __table_args__ = (
        db.Index("ix_qr_code_data_stock_status", "medicine_stock_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    qr_code_string = db.Column(db.String(32), nullable=False, unique=True, index=True)
    qr_code_image = db.Column(db.Text, nullable=True)  # PNG data URL

    medicine_stock_id = db.Column(db.Integer, db.ForeignKey("medicine_stocks.id"), nullable=True, index=True)
    is_bulk_package = db.Column(db.Boolean, nullable=False, default=False)

    components = db.Column(db.JSON, nullable=False)
    batch_info = db.Column(db.JSON, nullable=True)

    generated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    generated_by = db.Column(db.String(64), nullable=False, index=True)

    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by = db.Column(db.String(64), nullable=True)

    scanned_count = db.Column(db.Integer, nullable=False, default=0)
    last_scanned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_scanned_by = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=CODE_STATUS_GENERATED, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    medicine_stock = db.relationship("MedicineStock", backref=db.backref("qr_codes", lazy=True))

    def __repr__(self) -> str:
        return f"<QRCodeData id={self.id} code={self.qr_code_string!r} status={self.status}>"

    def to_dict(self, include_image: bool = False) -> dict:
        data = {
            "id": self.id,
            "qr_code_string": self.qr_code_string,
            "medicine_stock_id": self.medicine_stock_id,
            "is_bulk_package": self.is_bulk_package,
            "components": self.components,
            "batch_info": self.batch_info,
            "generated_at": to_utc_z(self.generated_at),
            "generated_by": self.generated_by,
            "printed_at": to_utc_z(self.printed_at),
            "printed_by": self.printed_by,
            "scanned_count": self.scanned_count,
            "last_scanned_at": to_utc_z(self.last_scanned_at),
            "last_scanned_by": self.last_scanned_by,
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_image:
            data["qr_code_image"] = self.qr_code_image
        return data


class QRCodeScanLog(db.Model):
    """
    Scan attempt audit log.

    IMMUTABLE: Never update or delete. Every scan attempt writes one row,
    including attempts whose string never resolved to a code (qr_code_id is
    NULL then, qr_code_string is always kept).
    """
    __tablename__ = "qr_code_scan_logs"
    __table_args__ = (
        db.Index("ix_qr_code_scan_logs_code_scanned", "qr_code_id", "scanned_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    qr_code_id = db.Column(db.Integer, db.ForeignKey("qr_code_data.id"), nullable=True, index=True)
    qr_code_string = db.Column(db.Text, nullable=False, index=True)

    scanned_by = db.Column(db.String(64), nullable=False, index=True)
    scanned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    purpose = db.Column(db.String(32), nullable=False, index=True)
    result = db.Column(db.String(32), nullable=False, index=True)

    location = db.Column(db.String(255), nullable=True)
    device_info = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    qr_code = db.relationship("QRCodeData", backref=db.backref("scan_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_code_id": self.qr_code_id,
            "qr_code_string": self.qr_code_string,
            "scanned_by": self.scanned_by,
            "scanned_at": to_utc_z(self.scanned_at),
            "purpose": self.purpose,
            "result": self.result,
            "location": self.location,
            "device_info": self.device_info,
            "notes": self.notes,
        }
