# Overview: Pure conversion between QR code components and the fixed-width code string.

"""
QR code layout

    Unit:  YY MM S T III P SSSS          e.g. 25071F111B0001
    Bulk:  YY MM S T III P - K SSSS      e.g. 25071F111B-K0001

    YY   two-digit year        T    medicine type (F, I, H, B)
    MM   two-digit month       III  active ingredient code
    S    funding source        P    producer code
    K    package type (bulk only, after the '-' separator)
    SSSS sequence; whatever follows the fixed prefix

No separators inside the prefix. A '-' is the only thing that marks a bulk
package code. Nothing in this module raises on bad input: parse_code()
returns None for anything it cannot slice.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Optional


PREFIX_LENGTH = 10
BULK_SEPARATOR = "-"


@dataclass(frozen=True)
class CodeComponents:
    year: str
    month: str
    funding_source: str
    medicine_type: str
    active_ingredient: str
    producer: str
    sequence: str
    package_type: Optional[str] = None

    @property
    def is_bulk(self) -> bool:
        return self.package_type is not None

    @property
    def prefix(self) -> str:
        return (
            self.year
            + self.month
            + self.funding_source
            + self.medicine_type
            + self.active_ingredient
            + self.producer
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CodeIdentity:
    """The medicine-level part of a code scope (no period, no sequence)."""
    funding_source_code: str
    medicine_type_code: str
    active_ingredient_code: str
    producer_code: str
    package_type_code: Optional[str] = None

    @property
    def prefix(self) -> str:
        return (
            self.funding_source_code
            + self.medicine_type_code
            + self.active_ingredient_code
            + self.producer_code
        )

    @classmethod
    def from_stock(cls, stock) -> "CodeIdentity":
        medicine = stock.medicine
        return cls(
            funding_source_code=medicine.funding_source_code,
            medicine_type_code=medicine.medicine_type_code,
            active_ingredient_code=medicine.active_ingredient_code,
            producer_code=medicine.producer_code,
            package_type_code=stock.package_type_code or None,
        )


def format_code(scope, next_sequence: str, is_bulk: bool = False) -> str:
    """
    Build the code string for a sequence scope and a freshly allocated value.

    scope is anything carrying year, month and the *_code attributes of a
    QRCodeSequence row. A bulk request against a scope without a package
    type produces the unit layout.
    """
    code = (
        scope.year
        + scope.month
        + scope.funding_source_code
        + scope.medicine_type_code
        + scope.active_ingredient_code
        + scope.producer_code
    )

    if is_bulk and scope.package_type_code:
        code += BULK_SEPARATOR + scope.package_type_code

    return code + next_sequence


def format_components(components: CodeComponents) -> str:
    code = components.prefix
    if components.package_type is not None:
        code += BULK_SEPARATOR + components.package_type
    return code + components.sequence


def parse_code(code: str) -> Optional[CodeComponents]:
    """
    Split a code string into its components, or None if it has the wrong shape.

    Only slicing is checked here (field widths, a single separator, a
    non-empty sequence). Whether the fields hold legal values is the
    validator's job.
    """
    if not isinstance(code, str):
        return None

    if BULK_SEPARATOR in code:
        parts = code.split(BULK_SEPARATOR)
        if len(parts) != 2:
            return None
        main, bulk = parts
        if len(main) != PREFIX_LENGTH or len(bulk) < 2:
            return None
        package_type = bulk[0]
        sequence = bulk[1:]
    else:
        if len(code) <= PREFIX_LENGTH:
            return None
        main = code[:PREFIX_LENGTH]
        package_type = None
        sequence = code[PREFIX_LENGTH:]

    return CodeComponents(
        year=main[0:2],
        month=main[2:4],
        funding_source=main[4:5],
        medicine_type=main[5:6],
        active_ingredient=main[6:9],
        producer=main[9:10],
        sequence=sequence,
        package_type=package_type,
    )
