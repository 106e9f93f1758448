# Overview: Registry of code masters (the identities codes may be issued for).

"""
Master Service

A master registers one code identity: funding source, medicine type,
active ingredient, producer and optionally a package type. Generation only
issues codes for medicines that have an ACTIVE master.

IDENTITY IS FIXED: the five codes cannot be edited after creation because
issued codes embed them. Names and status can change.

DELETE GUARD: a master whose identity appears in any generated code cannot
be deleted (deactivate it instead).
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..models import QRCodeMaster
from ..models.qrcode import MASTER_STATUSES
from ..validation import (
    ValidationError,
    ConflictError,
    CodeInUseError,
    NotFoundError,
    MASTER_CREATE_POLICY,
    MASTER_UPDATE_POLICY,
    validate_payload,
    enforce_rules_master,
)
from .code_format import CodeIdentity


def _identity_from_fields(fields: dict) -> CodeIdentity:
    return CodeIdentity(
        funding_source_code=fields["funding_source_code"],
        medicine_type_code=fields["medicine_type_code"],
        active_ingredient_code=fields["active_ingredient_code"],
        producer_code=fields["producer_code"],
        package_type_code=fields.get("package_type_code") or None,
    )


class MasterService:
    def __init__(self, repository):
        self.repository = repository

    def create(self, payload: dict, actor: str) -> QRCodeMaster:
        """
        Register a new master.

        Raises:
            ValidationError: bad or missing fields
            ConflictError: a master with the same five codes exists
        """
        patch = validate_payload(
            model=QRCodeMaster, payload=payload, policy=MASTER_CREATE_POLICY, partial=False
        )
        for key in ("medicine_type_code", "producer_code", "package_type_code"):
            if patch.get(key):
                patch[key] = patch[key].upper()
        enforce_rules_master(patch)

        identity = _identity_from_fields(patch)
        if self.repository.find_master(identity) is not None:
            raise ConflictError("QR code master with these codes already exists")

        try:
            master = self.repository.create_master(patch, actor)
            self.repository.commit()
        except IntegrityError:
            self.repository.rollback()
            raise ConflictError("QR code master with these codes already exists")

        current_app.logger.info(
            "QR code master %s registered for %s%s by %s",
            master.id, identity.prefix, f"-{identity.package_type_code}" if identity.package_type_code else "",
            actor,
        )
        return master

    def get(self, master_id: int) -> QRCodeMaster:
        master = self.repository.find_master_by_id(master_id)
        if master is None:
            raise NotFoundError("QR code master not found")
        return master

    def update(self, master_id: int, payload: dict, actor: str) -> QRCodeMaster:
        master = self.get(master_id)

        patch = validate_payload(
            model=QRCodeMaster, payload=payload, policy=MASTER_UPDATE_POLICY, partial=True
        )
        if "status" in patch and patch["status"] not in MASTER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(MASTER_STATUSES)}")
        if "package_type_name" in patch and not master.package_type_code:
            raise ValidationError("Unit-only master has no package type to name")

        master = self.repository.update_master(master, patch, actor)
        self.repository.commit()
        return master

    def list(self, **filters) -> dict:
        result = self.repository.list_masters(**filters)
        result["items"] = [m.to_dict() for m in result["items"]]
        return result

    def delete(self, master_id: int) -> None:
        """
        Raises:
            NotFoundError: no such master
            CodeInUseError: codes have been generated for this identity
        """
        master = self.get(master_id)

        if self.repository.has_codes_for_master(master):
            raise CodeInUseError(
                "Cannot delete QR code master that has generated QR codes"
            )

        self.repository.delete_master(master)
        self.repository.commit()
        current_app.logger.info("QR code master %s deleted", master_id)
