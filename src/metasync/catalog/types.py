"""
Closed enumerations shared by the catalog and the sync engine.
"""

from enum import Enum
from typing import Any, Mapping, Optional


class UIType(str, Enum):
    """UI data type of a catalog column."""

    ID = "ID"
    FOREIGN_KEY = "ForeignKey"
    SINGLE_LINE_TEXT = "SingleLineText"
    LONG_TEXT = "LongText"
    NUMBER = "Number"
    DECIMAL = "Decimal"
    CURRENCY = "Currency"
    PERCENT = "Percent"
    DURATION = "Duration"
    RATING = "Rating"
    CHECKBOX = "Checkbox"
    DATE = "Date"
    DATE_TIME = "DateTime"
    TIME = "Time"
    YEAR = "Year"
    JSON = "JSON"
    EMAIL = "Email"
    URL = "URL"
    PHONE_NUMBER = "PhoneNumber"
    SINGLE_SELECT = "SingleSelect"
    MULTI_SELECT = "MultiSelect"
    ATTACHMENT = "Attachment"
    GEOMETRY = "Geometry"
    SPECIFIC_DB_TYPE = "SpecificDBType"

    # virtual kinds
    LINK_TO_ANOTHER_RECORD = "LinkToAnotherRecord"
    LINKS = "Links"
    LOOKUP = "Lookup"
    ROLLUP = "Rollup"
    FORMULA = "Formula"
    BUTTON = "Button"
    QR_CODE = "QrCode"
    BARCODE = "Barcode"


class RelationType(str, Enum):
    """Kind of relation carried by a relation column."""

    BELONGS_TO = "bt"
    HAS_MANY = "hm"
    ONE_TO_ONE = "oo"
    MANY_TO_MANY = "mm"


class ModelType(str, Enum):
    """Physical object a catalog table mirrors."""

    TABLE = "table"
    VIEW = "view"


class ViewType(str, Enum):
    """Presentation kind of a catalog view."""

    GRID = "grid"
    FORM = "form"
    GALLERY = "gallery"
    KANBAN = "kanban"
    CALENDAR = "calendar"


VIRTUAL_UI_TYPES = frozenset(
    t.value
    for t in (
        UIType.LINK_TO_ANOTHER_RECORD,
        UIType.LINKS,
        UIType.LOOKUP,
        UIType.ROLLUP,
        UIType.FORMULA,
        UIType.BUTTON,
        UIType.QR_CODE,
        UIType.BARCODE,
    )
)

LINK_UI_TYPES = frozenset(t.value for t in (UIType.LINK_TO_ANOTHER_RECORD, UIType.LINKS))


def _uidt(column: Any) -> Optional[str]:
    value = column.get("uidt") if isinstance(column, Mapping) else getattr(column, "uidt", None)
    return value.value if isinstance(value, Enum) else value


def _meta(column: Any) -> Mapping:
    meta = column.get("meta") if isinstance(column, Mapping) else getattr(column, "meta", None)
    return meta or {}


def is_links_or_ltar(column: Any) -> bool:
    """Column is a relation column (LinkToAnotherRecord or Links)."""
    return _uidt(column) in LINK_UI_TYPES


def is_ai_prompt_column(column: Any) -> bool:
    """Long text column whose value is generated from an AI prompt."""
    return _uidt(column) == UIType.LONG_TEXT.value and bool(_meta(column).get("ai"))


def is_virtual_column(column: Any) -> bool:
    """Column has no physical shadow in the source database."""
    return _uidt(column) in VIRTUAL_UI_TYPES or is_ai_prompt_column(column)
