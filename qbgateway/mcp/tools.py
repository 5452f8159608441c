"""
MCP tool catalogue

One JSON-schema tool per QuickBase client / codepage manager operation.
"""
from typing import Any, Dict, List, Optional

from qbcore.quickbase.models import FieldType

FIELD_TYPES = [t.value for t in FieldType]


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


def _tool(name: str, description: str, properties: Dict[str, Any] = None, required: List[str] = None) -> Dict[str, Any]:
    return {"name": name, "description": description, "inputSchema": _schema(properties or {}, required)}


TABLE_ID = {"type": "string", "description": "QuickBase table ID (e.g. \"bu65pc8px\")"}
RECORD_ID = {"type": "number", "description": "Record ID"}
FIELD_IDS = {"type": "array", "items": {"type": "number"}, "description": "Field IDs"}
FIELD_VALUES = {
    "type": "object",
    "description": "Field values as fieldId: value (or fieldId: {value: v}) pairs",
    "additionalProperties": True,
}
CODEPAGE_TABLE_ID = {"type": "string", "description": "Codepage table ID (defaults to CODEPAGE_TABLE_ID)"}
VERSION_TABLE_ID = {
    "type": "string",
    "description": "Codepage version table ID (defaults to CODEPAGE_VERSION_TABLE_ID)",
}
STRING_LIST = {"type": "array", "items": {"type": "string"}}


# ─────────────────────────────────────────────────────────────
# APPLICATION / TABLES / FIELDS
# ─────────────────────────────────────────────────────────────

APP_TOOLS = [
    _tool("quickbase_get_app_info", "Get information about the configured QuickBase application"),
    _tool("quickbase_get_tables", "List all tables in the application"),
    _tool("quickbase_test_connection", "Check that the realm, token and app ID work"),
]

TABLE_TOOLS = [
    _tool(
        "quickbase_create_table",
        "Create a new table in the application",
        {"name": {"type": "string", "description": "Table name"},
         "description": {"type": "string", "description": "Table description"}},
        ["name"],
    ),
    _tool("quickbase_get_table_info", "Get table properties", {"tableId": TABLE_ID}, ["tableId"]),
    _tool(
        "quickbase_update_table",
        "Update table name or description",
        {"tableId": TABLE_ID,
         "name": {"type": "string"},
         "description": {"type": "string"}},
        ["tableId"],
    ),
    _tool("quickbase_delete_table", "Delete a table (irreversible)", {"tableId": TABLE_ID}, ["tableId"]),
]

FIELD_TOOLS = [
    _tool("quickbase_get_table_fields", "List fields of a table", {"tableId": TABLE_ID}, ["tableId"]),
    _tool(
        "quickbase_create_field",
        "Create a new field in a table",
        {
            "tableId": TABLE_ID,
            "label": {"type": "string", "description": "Field label"},
            "fieldType": {"type": "string", "enum": FIELD_TYPES, "description": "Type of field"},
            "required": {"type": "boolean", "default": False},
            "unique": {"type": "boolean", "default": False},
            "choices": {**STRING_LIST, "description": "Choices for choice fields"},
            "formula": {"type": "string", "description": "Formula for formula fields"},
            "lookupTableId": {"type": "string", "description": "Table ID for lookup fields"},
            "lookupFieldId": {"type": "number", "description": "Field ID for lookup fields"},
        },
        ["tableId", "label", "fieldType"],
    ),
    _tool(
        "quickbase_update_field",
        "Update an existing field",
        {
            "tableId": TABLE_ID,
            "fieldId": {"type": "number"},
            "label": {"type": "string"},
            "required": {"type": "boolean"},
            "choices": {**STRING_LIST, "description": "New choices for choice fields"},
        },
        ["tableId", "fieldId"],
    ),
    _tool(
        "quickbase_delete_field",
        "Delete a field from a table",
        {"tableId": TABLE_ID, "fieldId": {"type": "number"}},
        ["tableId", "fieldId"],
    ),
]


# ─────────────────────────────────────────────────────────────
# RECORDS
# ─────────────────────────────────────────────────────────────

RECORD_TOOLS = [
    _tool(
        "quickbase_query_records",
        "Query records with optional filter, sorting and paging",
        {
            "tableId": TABLE_ID,
            "select": FIELD_IDS,
            "where": {"type": "string", "description": "QuickBase query filter, e.g. {6.EX.'John'}"},
            "sortBy": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"fieldId": {"type": "number"}, "order": {"type": "string", "enum": ["ASC", "DESC"]}},
                },
            },
            "groupBy": FIELD_IDS,
            "top": {"type": "number", "description": "Max number of records"},
            "skip": {"type": "number", "description": "Number of records to skip"},
        },
        ["tableId"],
    ),
    _tool(
        "quickbase_get_record",
        "Get a single record by ID",
        {"tableId": TABLE_ID, "recordId": RECORD_ID, "fieldIds": FIELD_IDS},
        ["tableId", "recordId"],
    ),
    _tool(
        "quickbase_create_record",
        "Create a record",
        {"tableId": TABLE_ID, "fields": FIELD_VALUES},
        ["tableId", "fields"],
    ),
    _tool(
        "quickbase_update_record",
        "Update a record",
        {"tableId": TABLE_ID, "recordId": RECORD_ID, "fields": FIELD_VALUES},
        ["tableId", "recordId", "fields"],
    ),
    _tool(
        "quickbase_delete_record",
        "Delete a record",
        {"tableId": TABLE_ID, "recordId": RECORD_ID},
        ["tableId", "recordId"],
    ),
    _tool(
        "quickbase_bulk_create_records",
        "Create multiple records at once",
        {
            "tableId": TABLE_ID,
            "records": {"type": "array", "items": {"type": "object", "properties": {"fields": FIELD_VALUES}}},
        },
        ["tableId", "records"],
    ),
    _tool(
        "quickbase_search_records",
        "Search records containing text (defaults to fields 6 and 7)",
        {"tableId": TABLE_ID, "searchTerm": {"type": "string"}, "fieldIds": FIELD_IDS},
        ["tableId", "searchTerm"],
    ),
    _tool(
        "quickbase_bulk_update_records",
        "Update multiple records",
        {
            "tableId": TABLE_ID,
            "records": {
                "type": "array",
                "items": {"type": "object", "properties": {"recordId": RECORD_ID, "fields": FIELD_VALUES}},
            },
        },
        ["tableId", "records"],
    ),
    _tool(
        "quickbase_bulk_delete_records",
        "Delete multiple records by ID",
        {"tableId": TABLE_ID, "recordIds": {"type": "array", "items": {"type": "number"}}},
        ["tableId", "recordIds"],
    ),
    _tool(
        "quickbase_upsert_records",
        "Insert or update records, merging on a key field",
        {
            "tableId": TABLE_ID,
            "records": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "keyField": {"type": "number"},
                        "keyValue": {},
                        "data": FIELD_VALUES,
                    },
                },
            },
        },
        ["tableId", "records"],
    ),
]


# ─────────────────────────────────────────────────────────────
# RELATIONSHIPS / REPORTS
# ─────────────────────────────────────────────────────────────

RELATIONSHIP_TOOLS = [
    _tool(
        "quickbase_create_relationship",
        "Create a parent-child relationship on an existing foreign key field",
        {"parentTableId": TABLE_ID, "childTableId": TABLE_ID, "foreignKeyFieldId": {"type": "number"}},
        ["parentTableId", "childTableId", "foreignKeyFieldId"],
    ),
    _tool("quickbase_get_relationships", "List relationships of a table", {"tableId": TABLE_ID}, ["tableId"]),
    _tool(
        "quickbase_create_advanced_relationship",
        "Create a relationship with a new reference field and optional lookup fields",
        {
            "parentTableId": TABLE_ID,
            "childTableId": TABLE_ID,
            "referenceFieldLabel": {"type": "string"},
            "lookupFields": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"parentFieldId": {"type": "number"}, "childFieldLabel": {"type": "string"}},
                },
            },
            "relationshipType": {"type": "string", "enum": ["one-to-many", "many-to-many"], "default": "one-to-many"},
        },
        ["parentTableId", "childTableId", "referenceFieldLabel"],
    ),
    _tool(
        "quickbase_create_lookup_field",
        "Add a lookup field to an existing relationship",
        {
            "childTableId": TABLE_ID,
            "parentTableId": TABLE_ID,
            "referenceFieldId": {"type": "number"},
            "parentFieldId": {"type": "number"},
            "lookupFieldLabel": {"type": "string"},
        },
        ["childTableId", "parentTableId", "referenceFieldId", "parentFieldId", "lookupFieldLabel"],
    ),
    _tool(
        "quickbase_validate_relationship",
        "Check that two tables can be linked on a foreign key field",
        {"parentTableId": TABLE_ID, "childTableId": TABLE_ID, "foreignKeyFieldId": {"type": "number"}},
        ["parentTableId", "childTableId", "foreignKeyFieldId"],
    ),
    _tool(
        "quickbase_get_relationship_details",
        "Relationships of a table with full field details",
        {"tableId": TABLE_ID, "includeFields": {"type": "boolean", "default": True}},
        ["tableId"],
    ),
    _tool(
        "quickbase_create_junction_table",
        "Create a junction table for a many-to-many relationship",
        {
            "junctionTableName": {"type": "string"},
            "table1Id": TABLE_ID,
            "table2Id": TABLE_ID,
            "table1FieldLabel": {"type": "string"},
            "table2FieldLabel": {"type": "string"},
            "additionalFields": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"label": {"type": "string"}, "fieldType": {"type": "string", "enum": FIELD_TYPES}},
                },
            },
        },
        ["junctionTableName", "table1Id", "table2Id", "table1FieldLabel", "table2FieldLabel"],
    ),
]

REPORT_TOOLS = [
    _tool("quickbase_get_reports", "List reports of a table", {"tableId": TABLE_ID}, ["tableId"]),
    _tool(
        "quickbase_run_report",
        "Run a report and return its data",
        {"reportId": {"type": "string"}, "tableId": TABLE_ID},
        ["reportId", "tableId"],
    ),
]


# ─────────────────────────────────────────────────────────────
# CODEPAGES
# ─────────────────────────────────────────────────────────────

CODEPAGE_TOOLS = [
    _tool(
        "quickbase_save_codepage",
        "Save a codepage record",
        {"tableId": CODEPAGE_TABLE_ID, "name": {"type": "string"}, "code": {"type": "string"},
         "description": {"type": "string"}},
        ["name", "code"],
    ),
    _tool(
        "quickbase_get_codepage",
        "Get a codepage by record ID",
        {"tableId": CODEPAGE_TABLE_ID, "recordId": RECORD_ID},
        ["recordId"],
    ),
    _tool(
        "quickbase_list_codepages",
        "List codepages, newest first",
        {"tableId": CODEPAGE_TABLE_ID, "limit": {"type": "number"}},
    ),
    _tool(
        "quickbase_execute_codepage",
        "Prepare a call to a function defined in a codepage (the code runs in the QuickBase page, not here)",
        {"tableId": CODEPAGE_TABLE_ID, "recordId": RECORD_ID, "functionName": {"type": "string"},
         "parameters": {"type": "object", "additionalProperties": True}},
        ["recordId", "functionName"],
    ),
    _tool(
        "quickbase_deploy_codepage",
        "Validate and deploy a codepage with version, tags and dependencies",
        {
            "tableId": CODEPAGE_TABLE_ID,
            "name": {"type": "string"},
            "code": {"type": "string"},
            "description": {"type": "string"},
            "version": {"type": "string", "description": "e.g. 1.0.0"},
            "tags": STRING_LIST,
            "dependencies": STRING_LIST,
            "targetTableId": {"type": "string"},
            "validate": {"type": "boolean", "default": True},
        },
        ["name", "code"],
    ),
    _tool(
        "quickbase_update_codepage",
        "Update code, description, version or active flag of a codepage",
        {
            "tableId": CODEPAGE_TABLE_ID,
            "recordId": RECORD_ID,
            "code": {"type": "string"},
            "description": {"type": "string"},
            "version": {"type": "string"},
            "active": {"type": "boolean"},
        },
        ["recordId"],
    ),
    _tool(
        "quickbase_search_codepages",
        "Search codepages by text, tags, target table and active flag",
        {
            "tableId": CODEPAGE_TABLE_ID,
            "searchTerm": {"type": "string"},
            "tags": STRING_LIST,
            "targetTableId": {"type": "string"},
            "activeOnly": {"type": "boolean", "default": True},
        },
    ),
    _tool(
        "quickbase_clone_codepage",
        "Copy a codepage under a new name",
        {
            "tableId": CODEPAGE_TABLE_ID,
            "sourceRecordId": RECORD_ID,
            "newName": {"type": "string"},
            "modifications": {"type": "object", "description": "fieldId: value overrides", "additionalProperties": True},
        },
        ["sourceRecordId", "newName"],
    ),
    _tool(
        "quickbase_validate_codepage",
        "Check codepage syntax, API usage and security patterns",
        {
            "code": {"type": "string"},
            "checkSyntax": {"type": "boolean", "default": True},
            "checkAPIs": {"type": "boolean", "default": True},
            "checkSecurity": {"type": "boolean", "default": True},
        },
        ["code"],
    ),
    _tool(
        "quickbase_export_codepage",
        "Export a codepage as html, json or markdown",
        {"tableId": CODEPAGE_TABLE_ID, "recordId": RECORD_ID,
         "format": {"type": "string", "enum": ["html", "json", "markdown"], "default": "html"}},
        ["recordId"],
    ),
    _tool(
        "quickbase_import_codepage",
        "Import a codepage from html or json",
        {
            "tableId": CODEPAGE_TABLE_ID,
            "source": {"type": "string"},
            "format": {"type": "string", "enum": ["auto", "html", "json"], "default": "auto"},
            "overwrite": {"type": "boolean", "default": False},
        },
        ["source"],
    ),
    _tool(
        "quickbase_save_codepage_version",
        "Save a version snapshot of a codepage",
        {
            "tableId": VERSION_TABLE_ID,
            "codepageRecordId": RECORD_ID,
            "version": {"type": "string"},
            "code": {"type": "string"},
            "changeLog": {"type": "string"},
        },
        ["codepageRecordId", "version", "code"],
    ),
    _tool(
        "quickbase_get_codepage_versions",
        "Version history of a codepage, newest first",
        {"tableId": VERSION_TABLE_ID, "codepageRecordId": RECORD_ID, "limit": {"type": "number"}},
        ["codepageRecordId"],
    ),
    _tool(
        "quickbase_rollback_codepage",
        "Restore a codepage to a saved version",
        {
            "tableId": VERSION_TABLE_ID,
            "codepageTableId": CODEPAGE_TABLE_ID,
            "codepageRecordId": RECORD_ID,
            "versionRecordId": RECORD_ID,
        },
        ["codepageRecordId", "versionRecordId"],
    ),
    _tool(
        "quickbase_compare_codepage_versions",
        "Line diff between two saved versions",
        {"tableId": VERSION_TABLE_ID, "fromVersionId": RECORD_ID, "toVersionId": RECORD_ID},
        ["fromVersionId", "toVersionId"],
    ),
]


# ─────────────────────────────────────────────────────────────
# OAUTH
# ─────────────────────────────────────────────────────────────

OAUTH_TOOLS = [
    _tool(
        "quickbase_initiate_oauth",
        "Build a QuickBase OAuth authorize URL (PKCE)",
        {"clientId": {"type": "string"}, "redirectUri": {"type": "string"}, "scopes": STRING_LIST},
        ["clientId", "redirectUri"],
    ),
    _tool(
        "quickbase_exchange_oauth_code",
        "Exchange an authorization code for tokens",
        {
            "clientId": {"type": "string"},
            "redirectUri": {"type": "string"},
            "code": {"type": "string"},
            "codeVerifier": {"type": "string"},
            "state": {"type": "string"},
            "expectedState": {"type": "string"},
        },
        ["clientId", "redirectUri", "code", "codeVerifier"],
    ),
]


TOOLS: List[Dict[str, Any]] = (
    APP_TOOLS + TABLE_TOOLS + FIELD_TOOLS + RECORD_TOOLS + RELATIONSHIP_TOOLS
    + REPORT_TOOLS + CODEPAGE_TOOLS + OAUTH_TOOLS
)
