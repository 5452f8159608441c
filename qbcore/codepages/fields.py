"""
Codepage table layouts

Field ids of the codepage and codepage-version tables, plus dataclasses
built from raw QuickBase records ({"6": {"value": ...}}).
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

# Codepage table
RECORD_ID = 3
NAME = 6
CODE = 7
DESCRIPTION = 8
VERSION = 9
TAGS = 10
DEPENDENCIES = 11
TARGET_TABLE = 12
ACTIVE = 13

CODEPAGE_FIELDS = [RECORD_ID, NAME, CODE, DESCRIPTION, VERSION, TAGS, DEPENDENCIES, TARGET_TABLE, ACTIVE]
# Everything a clone copies
COPYABLE_FIELDS = [NAME, CODE, DESCRIPTION, VERSION, TAGS, DEPENDENCIES, TARGET_TABLE, ACTIVE]

# Version table
VERSION_DATE_CREATED = 1
VERSION_CODEPAGE = 6
VERSION_NUMBER = 7
VERSION_CODE = 8
VERSION_CHANGE_LOG = 9

VERSION_FIELDS = [RECORD_ID, VERSION_DATE_CREATED, VERSION_CODEPAGE, VERSION_NUMBER, VERSION_CODE, VERSION_CHANGE_LOG]


def field_value(record: Dict[str, Any], field_id: int, default: Any = None) -> Any:
    cell = record.get(str(field_id))
    if isinstance(cell, dict):
        value = cell.get("value", default)
        return default if value is None else value
    return default


def split_list(value: Optional[str]) -> List[str]:
    """'a, b,c' -> ['a', 'b', 'c']"""
    if not value:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def join_list(values: Optional[List[str]]) -> str:
    return ", ".join(values or [])


@dataclass
class Codepage:
    record_id: int
    name: str
    code: str = ""
    description: str = ""
    version: str = ""
    tags: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    target_table_id: Optional[str] = None
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Codepage":
        return cls(
            record_id=int(field_value(record, RECORD_ID, 0)),
            name=field_value(record, NAME, ""),
            code=field_value(record, CODE, ""),
            description=field_value(record, DESCRIPTION, ""),
            version=field_value(record, VERSION, ""),
            tags=split_list(field_value(record, TAGS)),
            dependencies=split_list(field_value(record, DEPENDENCIES)),
            target_table_id=field_value(record, TARGET_TABLE) or None,
            active=bool(field_value(record, ACTIVE, True)),
        )


@dataclass
class CodepageVersion:
    record_id: int
    codepage_record_id: int
    version: str = ""
    code: str = ""
    change_log: str = ""
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CodepageVersion":
        return cls(
            record_id=int(field_value(record, RECORD_ID, 0)),
            codepage_record_id=int(field_value(record, VERSION_CODEPAGE, 0)),
            version=field_value(record, VERSION_NUMBER, ""),
            code=field_value(record, VERSION_CODE, ""),
            change_log=field_value(record, VERSION_CHANGE_LOG, ""),
            created_at=field_value(record, VERSION_DATE_CREATED),
        )
