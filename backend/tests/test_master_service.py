# Overview: Pytest coverage for the code master registry and its delete guard.

import pytest

from pestcode.models import QRCodeMaster
from pestcode.models.qrcode import MASTER_STATUS_INACTIVE
from pestcode.services.generation_service import GenerateRequest
from pestcode.validation import ValidationError, ConflictError, CodeInUseError, NotFoundError


def _payload(**overrides):
    payload = {
        "funding_source_code": "2",
        "funding_source_name": "APBD",
        "medicine_type_code": "i",
        "medicine_type_name": "Insektisida",
        "active_ingredient_code": "205",
        "active_ingredient_name": "Abamektin",
        "producer_code": "z",
        "producer_name": "PT Kimia Tani",
    }
    payload.update(overrides)
    return payload


class TestCreateMaster:
    def test_create_unit_only_master(self, master_service, db_session):
        master = master_service.create(_payload(), "admin")

        assert master.medicine_type_code == "I"
        assert master.producer_code == "Z"
        assert master.package_type_code == ""
        assert master.to_dict()["package_type_code"] is None
        assert master.created_by == "admin"

    def test_create_with_package_type(self, master_service, db_session):
        master = master_service.create(
            _payload(package_type_code="s", package_type_name="Sachet"), "admin"
        )
        assert master.package_type_code == "S"

    def test_duplicate_is_conflict(self, master_service, db_session):
        master_service.create(_payload(), "admin")
        with pytest.raises(ConflictError):
            master_service.create(_payload(), "admin")
        assert db_session.query(QRCodeMaster).count() == 1

    def test_same_codes_different_package_type_is_allowed(self, master_service, db_session):
        master_service.create(_payload(), "admin")
        master_service.create(_payload(package_type_code="K", package_type_name="Kardus"), "admin")
        assert db_session.query(QRCodeMaster).count() == 2

    @pytest.mark.parametrize("overrides", [
        {"medicine_type_code": "X"},
        {"active_ingredient_code": "12"},
        {"producer_code": "1"},
        {"funding_source_code": "A"},
        {"package_type_code": "K"},                      # code without name
        {"package_type_name": "Kardus"},                 # name without code
        {"producer_name": None},
    ])
    def test_invalid_payload(self, master_service, db_session, overrides):
        with pytest.raises(ValidationError):
            master_service.create(_payload(**overrides), "admin")

    def test_unknown_field_rejected(self, master_service, db_session):
        with pytest.raises(ValidationError):
            master_service.create(_payload(status="ACTIVE"), "admin")


class TestUpdateMaster:
    def test_update_names_and_status(self, master_service, master):
        updated = master_service.update(
            master.id, {"producer_name": "PT Agro Baru", "status": MASTER_STATUS_INACTIVE}, "manager"
        )
        assert updated.producer_name == "PT Agro Baru"
        assert updated.status == MASTER_STATUS_INACTIVE
        assert updated.updated_by == "manager"

    def test_codes_are_immutable(self, master_service, master):
        with pytest.raises(ValidationError):
            master_service.update(master.id, {"producer_code": "C"}, "manager")

    def test_bad_status(self, master_service, master):
        with pytest.raises(ValidationError):
            master_service.update(master.id, {"status": "DELETED"}, "manager")

    def test_missing(self, master_service, db_session):
        with pytest.raises(NotFoundError):
            master_service.update(404, {"producer_name": "x"}, "manager")


class TestListMasters:
    def test_filter_and_search(self, master_service, master):
        master_service.create(_payload(), "admin")

        assert master_service.list()["count"] == 2
        assert [m["medicine_type_code"] for m in master_service.list(medicine_type_code="I")["items"]] == ["I"]
        assert master_service.list(search="difeno")["items"][0]["id"] == master.id


class TestDeleteMaster:
    def test_delete_unused_master(self, master_service, master, db_session):
        master_service.delete(master.id)
        assert db_session.query(QRCodeMaster).count() == 0

    def test_delete_refused_while_codes_exist(self, master_service, generator, stock, master, db_session):
        generator.generate(
            GenerateRequest(medicine_stock_id=stock.id, quantity=1, is_bulk_package=True), "admin"
        )

        with pytest.raises(CodeInUseError):
            master_service.delete(master.id)
        assert db_session.get(QRCodeMaster, master.id) is not None

    def test_bulk_master_ignores_unit_codes(self, master_service, generator, stock, master, db_session):
        """Only '-K' codes belong to the 1F111B-K master."""
        generator.generate(GenerateRequest(medicine_stock_id=stock.id, quantity=1), "admin")

        master_service.delete(master.id)
        assert db_session.query(QRCodeMaster).count() == 0

    def test_unit_master_is_refused_for_any_code_of_its_identity(self, master_service, generator, stock, master, db_session):
        unit_master = master_service.create(
            _payload(funding_source_code="1", medicine_type_code="F", active_ingredient_code="111", producer_code="B"),
            "admin",
        )
        generator.generate(GenerateRequest(medicine_stock_id=stock.id, quantity=1), "admin")

        with pytest.raises(CodeInUseError):
            master_service.delete(unit_master.id)

    def test_delete_missing(self, master_service, db_session):
        with pytest.raises(NotFoundError):
            master_service.delete(12345)
