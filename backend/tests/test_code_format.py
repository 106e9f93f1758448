# Overview: Pytest coverage for code string formatting and parsing.

from types import SimpleNamespace

import pytest

from pestcode.services.code_format import (
    CodeComponents,
    CodeIdentity,
    format_code,
    format_components,
    parse_code,
)


def _scope(package_type_code=None):
    return SimpleNamespace(
        year="25",
        month="07",
        funding_source_code="1",
        medicine_type_code="F",
        active_ingredient_code="111",
        producer_code="B",
        package_type_code=package_type_code,
    )


class TestFormatCode:
    def test_unit_layout(self):
        assert format_code(_scope(), "0001") == "25071F111B0001"

    def test_bulk_layout(self):
        assert format_code(_scope("K"), "0001", is_bulk=True) == "25071F111B-K0001"

    def test_bulk_flag_without_package_type_falls_back_to_unit(self):
        assert format_code(_scope(None), "0001", is_bulk=True) == "25071F111B0001"

    def test_unit_request_ignores_package_type(self):
        assert format_code(_scope("K"), "000A") == "25071F111B000A"


class TestParseCode:
    def test_unit_code(self):
        c = parse_code("25071F111B0001")
        assert c == CodeComponents(
            year="25", month="07", funding_source="1", medicine_type="F",
            active_ingredient="111", producer="B", sequence="0001",
        )
        assert not c.is_bulk

    def test_bulk_code(self):
        c = parse_code("25071F111B-K00A1")
        assert c.package_type == "K"
        assert c.sequence == "00A1"
        assert c.is_bulk

    @pytest.mark.parametrize("code", [
        "25071F111B",          # prefix only, no sequence
        "2507",                # too short
        "25071F111B-",         # empty bulk segment
        "25071F111B-K",        # package type but no sequence
        "2507-1F111B0001",     # separator inside prefix
        "25071F111B-K-0001",   # two separators
        "",
    ])
    def test_shape_failures_return_none(self, code):
        assert parse_code(code) is None

    def test_non_string_returns_none(self):
        assert parse_code(12345678901234) is None
        assert parse_code(None) is None

    def test_does_not_judge_field_values(self):
        """Slicing only: an impossible month still parses."""
        c = parse_code("25991X111b0001")
        assert c.month == "99"
        assert c.medicine_type == "X"


class TestRoundTrip:
    @pytest.mark.parametrize("code", ["25071F111B0001", "25121I205Z999Z", "25071F111B-K001A"])
    def test_format_of_parse_is_identity(self, code):
        assert format_components(parse_code(code)) == code

    @pytest.mark.parametrize("package_type, sequence", [("S", "02B7"), (None, "0042")])
    def test_parse_of_format(self, package_type, sequence):
        c = CodeComponents(
            year="26", month="01", funding_source="2", medicine_type="H",
            active_ingredient="042", producer="C", sequence=sequence, package_type=package_type,
        )
        assert parse_code(format_components(c)) == c


class TestCodeIdentity:
    def test_from_stock(self, stock):
        identity = CodeIdentity.from_stock(stock)
        assert identity.prefix == "1F111B"
        assert identity.package_type_code == "K"

    def test_from_stock_without_package_type(self, unit_stock):
        assert CodeIdentity.from_stock(unit_stock).package_type_code is None
