from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Medicine(db.Model):
    """
    Pesticide master data.

    CODE IDENTITY:
    The four identity codes are what every QR code issued for this medicine
    carries in positions 5-10 (funding source, medicine type, active
    ingredient, producer). They must match a registered QRCodeMaster before
    any code is generated.
    """
    __tablename__ = "medicines"
    __table_args__ = (
        db.Index(
            "ix_medicines_code_identity",
            "funding_source_code",
            "medicine_type_code",
            "active_ingredient_code",
            "producer_code",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)  # e.g. "Fungisida", "Insektisida"
    unit = db.Column(db.String(32), nullable=False, default="liter")
    active_ingredient = db.Column(db.Text, nullable=True)
    producer = db.Column(db.String(255), nullable=True)

    funding_source_code = db.Column(db.String(1), nullable=False)
    medicine_type_code = db.Column(db.String(1), nullable=False)  # F, I, H, B
    active_ingredient_code = db.Column(db.String(3), nullable=False)
    producer_code = db.Column(db.String(1), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Medicine id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "active_ingredient": self.active_ingredient,
            "producer": self.producer,
            "funding_source_code": self.funding_source_code,
            "medicine_type_code": self.medicine_type_code,
            "active_ingredient_code": self.active_ingredient_code,
            "producer_code": self.producer_code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MedicineStock(db.Model):
    """
    A received batch of a medicine. QR codes are generated against a stock row.

    package_type_code is the one-letter package code (B, K, S, ...) that bulk
    package codes carry after the '-' separator. Stocks without it can only
    receive unit codes.
    """
    __tablename__ = "medicine_stocks"
    __table_args__ = (
        db.Index("ix_medicine_stocks_medicine_expiry", "medicine_id", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    medicine_id = db.Column(db.Integer, db.ForeignKey("medicines.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=True)
    package_type_code = db.Column(db.String(1), nullable=True)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    entry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    medicine = db.relationship("Medicine", backref=db.backref("stocks", lazy=True))

    def __repr__(self) -> str:
        return f"<MedicineStock id={self.id} medicine_id={self.medicine_id} batch={self.batch_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "medicine_id": self.medicine_id,
            "batch_number": self.batch_number,
            "package_type_code": self.package_type_code,
            "current_stock": self.current_stock,
            "entry_date": to_utc_z(self.entry_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
