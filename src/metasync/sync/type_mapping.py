"""
Physical column type to UI type inference, per database client family.
"""

from typing import Dict

from ..catalog.types import UIType
from ..database.introspection import ColumnInfo


_PG_TYPES: Dict[str, UIType] = {
    "smallint": UIType.NUMBER,
    "integer": UIType.NUMBER,
    "bigint": UIType.NUMBER,
    "int2": UIType.NUMBER,
    "int4": UIType.NUMBER,
    "int8": UIType.NUMBER,
    "serial": UIType.NUMBER,
    "bigserial": UIType.NUMBER,
    "numeric": UIType.DECIMAL,
    "decimal": UIType.DECIMAL,
    "real": UIType.DECIMAL,
    "double precision": UIType.DECIMAL,
    "money": UIType.CURRENCY,
    "boolean": UIType.CHECKBOX,
    "character varying": UIType.SINGLE_LINE_TEXT,
    "varchar": UIType.SINGLE_LINE_TEXT,
    "character": UIType.SINGLE_LINE_TEXT,
    "char": UIType.SINGLE_LINE_TEXT,
    "uuid": UIType.SINGLE_LINE_TEXT,
    "text": UIType.LONG_TEXT,
    "date": UIType.DATE,
    "timestamp without time zone": UIType.DATE_TIME,
    "timestamp with time zone": UIType.DATE_TIME,
    "timestamp": UIType.DATE_TIME,
    "timestamptz": UIType.DATE_TIME,
    "time without time zone": UIType.TIME,
    "time with time zone": UIType.TIME,
    "interval": UIType.DURATION,
    "json": UIType.JSON,
    "jsonb": UIType.JSON,
    "point": UIType.GEOMETRY,
    "line": UIType.GEOMETRY,
    "polygon": UIType.GEOMETRY,
    "geometry": UIType.GEOMETRY,
}

_MYSQL_TYPES: Dict[str, UIType] = {
    "int": UIType.NUMBER,
    "integer": UIType.NUMBER,
    "smallint": UIType.NUMBER,
    "mediumint": UIType.NUMBER,
    "bigint": UIType.NUMBER,
    "tinyint": UIType.NUMBER,
    "bit": UIType.NUMBER,
    "float": UIType.DECIMAL,
    "double": UIType.DECIMAL,
    "decimal": UIType.DECIMAL,
    "boolean": UIType.CHECKBOX,
    "bool": UIType.CHECKBOX,
    "varchar": UIType.SINGLE_LINE_TEXT,
    "char": UIType.SINGLE_LINE_TEXT,
    "text": UIType.LONG_TEXT,
    "tinytext": UIType.LONG_TEXT,
    "mediumtext": UIType.LONG_TEXT,
    "longtext": UIType.LONG_TEXT,
    "date": UIType.DATE,
    "datetime": UIType.DATE_TIME,
    "timestamp": UIType.DATE_TIME,
    "time": UIType.TIME,
    "year": UIType.YEAR,
    "json": UIType.JSON,
    "enum": UIType.SINGLE_SELECT,
    "set": UIType.MULTI_SELECT,
    "geometry": UIType.GEOMETRY,
    "point": UIType.GEOMETRY,
    "polygon": UIType.GEOMETRY,
}

_SQLITE_TYPES: Dict[str, UIType] = {
    "integer": UIType.NUMBER,
    "int": UIType.NUMBER,
    "bigint": UIType.NUMBER,
    "real": UIType.DECIMAL,
    "numeric": UIType.DECIMAL,
    "decimal": UIType.DECIMAL,
    "float": UIType.DECIMAL,
    "double": UIType.DECIMAL,
    "boolean": UIType.CHECKBOX,
    "varchar": UIType.SINGLE_LINE_TEXT,
    "character": UIType.SINGLE_LINE_TEXT,
    "text": UIType.LONG_TEXT,
    "date": UIType.DATE,
    "datetime": UIType.DATE_TIME,
    "timestamp": UIType.DATE_TIME,
    "time": UIType.TIME,
    "json": UIType.JSON,
}

_MSSQL_TYPES: Dict[str, UIType] = {
    "int": UIType.NUMBER,
    "bigint": UIType.NUMBER,
    "smallint": UIType.NUMBER,
    "tinyint": UIType.NUMBER,
    "decimal": UIType.DECIMAL,
    "numeric": UIType.DECIMAL,
    "float": UIType.DECIMAL,
    "real": UIType.DECIMAL,
    "money": UIType.CURRENCY,
    "smallmoney": UIType.CURRENCY,
    "bit": UIType.CHECKBOX,
    "varchar": UIType.SINGLE_LINE_TEXT,
    "nvarchar": UIType.SINGLE_LINE_TEXT,
    "char": UIType.SINGLE_LINE_TEXT,
    "nchar": UIType.SINGLE_LINE_TEXT,
    "uniqueidentifier": UIType.SINGLE_LINE_TEXT,
    "text": UIType.LONG_TEXT,
    "ntext": UIType.LONG_TEXT,
    "date": UIType.DATE,
    "datetime": UIType.DATE_TIME,
    "datetime2": UIType.DATE_TIME,
    "datetimeoffset": UIType.DATE_TIME,
    "smalldatetime": UIType.DATE_TIME,
    "time": UIType.TIME,
    "geometry": UIType.GEOMETRY,
    "geography": UIType.GEOMETRY,
}

CLIENT_TYPE_MAPS: Dict[str, Dict[str, UIType]] = {
    "pg": _PG_TYPES,
    "mysql": _MYSQL_TYPES,
    "mysql2": _MYSQL_TYPES,
    "sqlite3": _SQLITE_TYPES,
    "mssql": _MSSQL_TYPES,
}

MYSQL_CLIENTS = ("mysql", "mysql2")


def is_mysql_family(client: str) -> bool:
    return client in MYSQL_CLIENTS


def get_column_ui_type(client: str, column: ColumnInfo) -> str:
    """UI type inferred for a physical column."""
    if column.is_primary_key and column.is_auto_increment:
        return UIType.ID.value

    data_type = (column.data_type or "").lower()

    if client == "pg" and data_type == "user-defined":
        # enum types carry their labels in type_params
        return (UIType.SINGLE_SELECT if column.type_params else UIType.SPECIFIC_DB_TYPE).value
    if client == "pg" and data_type == "array":
        return UIType.SPECIFIC_DB_TYPE.value
    if is_mysql_family(client) and data_type == "tinyint" and column.type_params == "1":
        return UIType.CHECKBOX.value

    mapping = CLIENT_TYPE_MAPS.get(client, _PG_TYPES)
    ui_type = mapping.get(data_type)
    if ui_type is None and column.udt_name:
        ui_type = mapping.get(column.udt_name.lower())
    return (ui_type or UIType.SPECIFIC_DB_TYPE).value
