"""
QuickBase request models

Pydantic models for the payloads the client builds: field definitions,
query options and lookup references.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class FieldType(str, Enum):
    TEXT = "text"
    TEXT_CHOICE = "text_choice"
    TEXT_MULTILINE = "text_multiline"
    RICHTEXT = "richtext"
    NUMERIC = "numeric"
    CURRENCY = "currency"
    PERCENT = "percent"
    RATING = "rating"
    DATE = "date"
    DATETIME = "datetime"
    TIMEOFDAY = "timeofday"
    DURATION = "duration"
    CHECKBOX = "checkbox"
    USER = "user"
    MULTISELECT = "multiselect"
    EMAIL = "email"
    PHONE = "phone"
    URL = "url"
    ADDRESS = "address"
    FILE = "file"
    LOOKUP = "lookup"
    SUMMARY = "summary"
    FORMULA = "formula"
    RECORDID = "recordid"
    REFERENCE = "reference"
    AUTONUMBER = "autonumber"


# Friendly names -> QuickBase REST API field types
API_FIELD_TYPES = {
    FieldType.TEXT_CHOICE: "text-multiple-choice",
    FieldType.TEXT_MULTILINE: "text-multi-line",
    FieldType.RICHTEXT: "rich-text",
    FieldType.MULTISELECT: "multitext",
    FieldType.REFERENCE: "numeric",
    FieldType.AUTONUMBER: "recordid",
}

CHOICE_TYPES = {FieldType.TEXT_CHOICE, FieldType.MULTISELECT}


def api_field_type(field_type: FieldType) -> str:
    return API_FIELD_TYPES.get(field_type, field_type.value)


class LookupReference(BaseModel):
    table_id: str
    field_id: int


class FieldDefinition(BaseModel):
    """Field to create in a table."""
    label: str = Field(..., min_length=1)
    field_type: FieldType
    required: bool = False
    unique: bool = False
    choices: Optional[List[str]] = None
    formula: Optional[str] = None
    lookup_reference: Optional[LookupReference] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "label": self.label,
            "fieldType": api_field_type(self.field_type),
            "required": self.required,
            "unique": self.unique,
        }
        properties = dict(self.properties)
        if self.choices and self.field_type in CHOICE_TYPES:
            properties["choices"] = self.choices
        if self.formula and self.field_type == FieldType.FORMULA:
            properties["formula"] = self.formula
        if self.lookup_reference and self.field_type == FieldType.LOOKUP:
            properties["lookupReference"] = {
                "tableId": self.lookup_reference.table_id,
                "fieldId": self.lookup_reference.field_id,
            }
        if properties:
            payload["properties"] = properties
        return payload


class SortSpec(BaseModel):
    field_id: int
    order: str = "ASC"

    @field_validator("order")
    @classmethod
    def normalize_order(cls, v: str) -> str:
        return "DESC" if str(v).upper() == "DESC" else "ASC"


class QueryOptions(BaseModel):
    """Options for POST /records/query"""
    select: Optional[List[int]] = None
    where: Optional[str] = None
    sort_by: Optional[List[SortSpec]] = None
    group_by: Optional[List[int]] = None
    top: Optional[int] = Field(None, ge=1)
    skip: Optional[int] = Field(None, ge=0)

    def to_payload(self, table_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"from": table_id}
        if self.select:
            payload["select"] = self.select
        if self.where:
            payload["where"] = self.where
        if self.sort_by:
            payload["sortBy"] = [{"fieldId": s.field_id, "order": s.order} for s in self.sort_by]
        if self.group_by:
            payload["groupBy"] = [{"fieldId": fid, "grouping": "equal-values"} for fid in self.group_by]
        options: Dict[str, int] = {}
        if self.top:
            options["top"] = self.top
        if self.skip:
            options["skip"] = self.skip
        if options:
            payload["options"] = options
        return payload


def wrap_field_values(fields: Dict[Any, Any]) -> Dict[str, Dict[str, Any]]:
    """{6: "x"} -> {"6": {"value": "x"}}; values already wrapped pass through."""
    wrapped = {}
    for key, value in fields.items():
        if isinstance(value, dict) and "value" in value:
            wrapped[str(key)] = value
        else:
            wrapped[str(key)] = {"value": value}
    return wrapped
