"""
MCP Server for QuickBase

Features:
- Application, table and field management
- Record CRUD, search, bulk and upsert operations
- Relationships, lookups and junction tables
- Reports
- Codepage deploy / search / clone / export / import / versions / rollback
- OAuth (PKCE) helpers
"""
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from qbcore.codepages.manager import CodepageManager
from qbcore.codepages.validator import validate_codepage
from qbcore.config import QuickBaseConfig
from qbcore.quickbase.client import QuickBaseClient
from qbcore.quickbase.models import FieldDefinition, LookupReference, QueryOptions, SortSpec
from qbcore.quickbase.oauth import exchange_code, generate_oauth_url
from qbgateway.mcp.protocol import INTERNAL_ERROR, PARSE_ERROR, dispatch, error_response
from qbgateway.mcp.tools import FIELD_TYPES, TOOLS

logger = logging.getLogger(__name__)


# =============================================================================
# ARGUMENT COERCION
# =============================================================================

def _require(args: dict, key: str) -> Any:
    if args.get(key) is None:
        raise ValueError(f"Missing required argument: {key}")
    return args[key]


def _str(args: dict, key: str) -> str:
    value = _require(args, key)
    if not isinstance(value, (str, int)) or isinstance(value, bool) or str(value).strip() == "":
        raise ValueError(f"Invalid value for {key}")
    return str(value)


def _opt_str(args: dict, key: str) -> Optional[str]:
    return None if args.get(key) is None else _str(args, key)


def _to_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid value for {key}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {key}")
    if not number.is_integer():
        raise ValueError(f"Invalid value for {key}")
    return int(number)


def _int(args: dict, key: str) -> int:
    return _to_int(_require(args, key), key)


def _opt_int(args: dict, key: str) -> Optional[int]:
    return None if args.get(key) is None else _int(args, key)


def _int_list(args: dict, key: str) -> Optional[List[int]]:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"Invalid value for {key}")
    return [_to_int(v, f"{key}[{i}]") for i, v in enumerate(value)]


def _str_list(args: dict, key: str) -> Optional[List[str]]:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"Invalid value for {key}")
    return [str(v) for v in value]


def _bool(args: dict, key: str, default: bool) -> bool:
    value = args.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"Invalid value for {key}")


def _object(args: dict, key: str, required: bool = True) -> Optional[Dict[str, Any]]:
    value = args.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"Invalid value for {key}")
    return value


def _objects(args: dict, key: str) -> List[Dict[str, Any]]:
    value = _require(args, key)
    if not isinstance(value, list) or not value:
        raise ValueError(f"Invalid value for {key}")
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValueError(f"Invalid value for {key}[{i}]")
    return value


class QuickBaseMCPServer:
    """MCP Server exposing QuickBase tools"""

    def __init__(
        self,
        config: Optional[QuickBaseConfig] = None,
        client: Optional[QuickBaseClient] = None,
    ):
        self._config = config or (client.config if client else None)
        self._client = client
        self._manager: Optional[CodepageManager] = None

    @property
    def config(self) -> QuickBaseConfig:
        if self._config is None:
            self._config = QuickBaseConfig.from_env()
        return self._config

    @property
    def client(self) -> QuickBaseClient:
        if self._client is None:
            self._client = QuickBaseClient(self.config)
        return self._client

    @property
    def manager(self) -> CodepageManager:
        if self._manager is None:
            self._manager = CodepageManager(self.client)
        return self._manager

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    def get_tools(self) -> List[Dict[str, Any]]:
        """Tools available via MCP"""
        return TOOLS

    async def handle_tool(self, name: str, args: Dict[str, Any]) -> Any:
        """Handle tool calls"""
        if not isinstance(args, dict):
            raise ValueError(f"Arguments for {name} must be an object")
        logger.info(f"Executing tool: {name} (args: {sorted(args)})")

        # Application
        if name == "quickbase_get_app_info":
            return await self.client.get_app_info()
        elif name == "quickbase_get_tables":
            tables = await self.client.get_app_tables()
            return {"count": len(tables), "tables": tables}
        elif name == "quickbase_test_connection":
            ok = await self.client.test_connection()
            return {"connected": ok, "realm": self.config.realm, "appId": self.config.app_id}

        # Tables
        elif name == "quickbase_create_table":
            table_id = await self.client.create_table(_str(args, "name"), args.get("description") or "")
            return {"tableId": table_id, "name": args["name"]}
        elif name == "quickbase_get_table_info":
            return await self.client.get_table_info(_str(args, "tableId"))
        elif name == "quickbase_update_table":
            return await self._update_table(args)
        elif name == "quickbase_delete_table":
            return await self.client.delete_table(_str(args, "tableId"))

        # Fields
        elif name == "quickbase_get_table_fields":
            fields = await self.client.get_table_fields(_str(args, "tableId"))
            return {"count": len(fields), "fields": fields}
        elif name == "quickbase_create_field":
            return await self._create_field(args)
        elif name == "quickbase_update_field":
            return await self._update_field(args)
        elif name == "quickbase_delete_field":
            return await self.client.delete_field(_str(args, "tableId"), _int(args, "fieldId"))

        # Records
        elif name == "quickbase_query_records":
            return await self._query_records(args)
        elif name == "quickbase_get_record":
            record = await self.client.get_record(
                _str(args, "tableId"), _int(args, "recordId"), _int_list(args, "fieldIds")
            )
            return record if record is not None else {"error": f"Record {args['recordId']} not found"}
        elif name == "quickbase_create_record":
            record_id = await self.client.create_record(_str(args, "tableId"), _object(args, "fields"))
            return {"recordId": record_id}
        elif name == "quickbase_update_record":
            await self.client.update_record(_str(args, "tableId"), _int(args, "recordId"), _object(args, "fields"))
            return {"updated": True, "recordId": args["recordId"]}
        elif name == "quickbase_delete_record":
            deleted = await self.client.delete_record(_str(args, "tableId"), _int(args, "recordId"))
            return {"deleted": deleted}
        elif name == "quickbase_bulk_create_records":
            return await self._bulk_create(args)
        elif name == "quickbase_search_records":
            records = await self.client.search_records(
                _str(args, "tableId"), _str(args, "searchTerm"), _int_list(args, "fieldIds")
            )
            return {"count": len(records), "records": records}
        elif name == "quickbase_bulk_update_records":
            return await self._bulk_update(args)
        elif name == "quickbase_bulk_delete_records":
            record_ids = _int_list(args, "recordIds")
            if not record_ids:
                raise ValueError("No record IDs supplied for bulk delete")
            deleted = await self.client.delete_records(_str(args, "tableId"), record_ids)
            return {"deleted": deleted}
        elif name == "quickbase_upsert_records":
            return await self._upsert(args)

        # Relationships
        elif name == "quickbase_create_relationship":
            return await self.client.create_relationship(
                _str(args, "parentTableId"), _str(args, "childTableId"), _int(args, "foreignKeyFieldId")
            )
        elif name == "quickbase_get_relationships":
            relationships = await self.client.get_relationships(_str(args, "tableId"))
            return {"count": len(relationships), "relationships": relationships}
        elif name == "quickbase_create_advanced_relationship":
            return await self._create_advanced_relationship(args)
        elif name == "quickbase_create_lookup_field":
            field_id = await self.client.create_lookup_field(
                _str(args, "childTableId"),
                _str(args, "parentTableId"),
                _int(args, "referenceFieldId"),
                _int(args, "parentFieldId"),
                _str(args, "lookupFieldLabel"),
            )
            return {"fieldId": field_id}
        elif name == "quickbase_validate_relationship":
            return await self.client.validate_relationship(
                _str(args, "parentTableId"), _str(args, "childTableId"), _int(args, "foreignKeyFieldId")
            )
        elif name == "quickbase_get_relationship_details":
            return await self.client.get_relationship_details(
                _str(args, "tableId"), _bool(args, "includeFields", True)
            )
        elif name == "quickbase_create_junction_table":
            return await self._create_junction_table(args)

        # Reports
        elif name == "quickbase_get_reports":
            reports = await self.client.get_reports(_str(args, "tableId"))
            return {"count": len(reports), "reports": reports}
        elif name == "quickbase_run_report":
            return await self.client.run_report(_str(args, "reportId"), _str(args, "tableId"))

        # Codepages
        elif name.startswith("quickbase_") and "codepage" in name:
            return await self._handle_codepage_tool(name, args)

        # OAuth
        elif name == "quickbase_initiate_oauth":
            request = generate_oauth_url(
                self.config.realm, _str(args, "clientId"), _str(args, "redirectUri"), _str_list(args, "scopes")
            )
            return request.to_dict()
        elif name == "quickbase_exchange_oauth_code":
            return await exchange_code(
                code=_str(args, "code"),
                code_verifier=_str(args, "codeVerifier"),
                client_id=_str(args, "clientId"),
                redirect_uri=_str(args, "redirectUri"),
                state=_opt_str(args, "state"),
                expected_state=_opt_str(args, "expectedState"),
            )

        return {"error": f"Unknown tool: {name}"}

    # =========================================================================
    # TABLE / FIELD TOOLS
    # =========================================================================

    async def _update_table(self, args: dict) -> dict:
        updates = {k: args[k] for k in ("name", "description") if args.get(k) is not None}
        if not updates:
            raise ValueError("No updates supplied")
        return await self.client.update_table(_str(args, "tableId"), updates)

    async def _create_field(self, args: dict) -> dict:
        if _str(args, "fieldType") not in FIELD_TYPES:
            raise ValueError("Invalid value for fieldType")
        lookup = None
        if args.get("lookupTableId") is not None and args.get("lookupFieldId") is not None:
            lookup = LookupReference(table_id=_str(args, "lookupTableId"), field_id=_int(args, "lookupFieldId"))
        field = FieldDefinition(
            label=_str(args, "label"),
            field_type=args["fieldType"],
            required=_bool(args, "required", False),
            unique=_bool(args, "unique", False),
            choices=_str_list(args, "choices"),
            formula=_opt_str(args, "formula"),
            lookup_reference=lookup,
        )
        field_id = await self.client.create_field(_str(args, "tableId"), field)
        return {"fieldId": field_id, "label": field.label}

    async def _update_field(self, args: dict) -> dict:
        updates: Dict[str, Any] = {}
        if args.get("label") is not None:
            updates["label"] = _str(args, "label")
        if args.get("required") is not None:
            updates["required"] = _bool(args, "required", False)
        if args.get("choices") is not None:
            updates["properties"] = {"choices": _str_list(args, "choices")}
        if not updates:
            raise ValueError("No updates supplied")
        return await self.client.update_field(_str(args, "tableId"), _int(args, "fieldId"), updates)

    # =========================================================================
    # RECORD TOOLS
    # =========================================================================

    async def _query_records(self, args: dict) -> dict:
        sort_by = None
        if args.get("sortBy") is not None:
            sort_by = [
                SortSpec(field_id=_int(s, "fieldId"), order=s.get("order", "ASC"))
                for s in _objects(args, "sortBy")
            ]
        options = QueryOptions(
            select=_int_list(args, "select"),
            where=_opt_str(args, "where"),
            sort_by=sort_by,
            group_by=_int_list(args, "groupBy"),
            top=_opt_int(args, "top"),
            skip=_opt_int(args, "skip"),
        )
        records = await self.client.get_records(_str(args, "tableId"), options)
        return {"count": len(records), "records": records}

    async def _bulk_create(self, args: dict) -> dict:
        records = []
        for record in _objects(args, "records"):
            records.append(_object(record, "fields") if "fields" in record else record)
        record_ids = await self.client.create_records(_str(args, "tableId"), records)
        return {"created": len(record_ids), "recordIds": record_ids}

    async def _bulk_update(self, args: dict) -> dict:
        updates = []
        for i, record in enumerate(_objects(args, "records")):
            try:
                updates.append({"record_id": _int(record, "recordId"), "fields": _object(record, "fields")})
            except ValueError:
                raise ValueError(f"Invalid record at index {i}") from None
        result = await self.client.update_records(_str(args, "tableId"), updates)
        return {"updated": len(updates), "metadata": result.get("metadata", {})}

    async def _upsert(self, args: dict) -> dict:
        records = []
        for i, record in enumerate(_objects(args, "records")):
            try:
                records.append({
                    "key_field": _int(record, "keyField"),
                    "key_value": record.get("keyValue"),
                    "data": _object(record, "data"),
                })
            except ValueError:
                raise ValueError(f"Invalid record at index {i}") from None
        return await self.client.upsert_records(_str(args, "tableId"), records)

    # =========================================================================
    # RELATIONSHIP TOOLS
    # =========================================================================

    async def _create_advanced_relationship(self, args: dict) -> dict:
        lookup_fields = None
        if args.get("lookupFields") is not None:
            lookup_fields = [
                {"parent_field_id": _int(f, "parentFieldId"), "child_field_label": _str(f, "childFieldLabel")}
                for f in _objects(args, "lookupFields")
            ]
        relationship_type = args.get("relationshipType") or "one-to-many"
        if relationship_type not in ("one-to-many", "many-to-many"):
            raise ValueError("Invalid value for relationshipType")
        return await self.client.create_advanced_relationship(
            _str(args, "parentTableId"),
            _str(args, "childTableId"),
            _str(args, "referenceFieldLabel"),
            lookup_fields,
            relationship_type,
        )

    async def _create_junction_table(self, args: dict) -> dict:
        extra = None
        if args.get("additionalFields") is not None:
            extra = [
                {"label": _str(f, "label"), "field_type": f.get("fieldType") or "text"}
                for f in _objects(args, "additionalFields")
            ]
        return await self.client.create_junction_table(
            _str(args, "junctionTableName"),
            _str(args, "table1Id"),
            _str(args, "table2Id"),
            _str(args, "table1FieldLabel"),
            _str(args, "table2FieldLabel"),
            extra,
        )

    # =========================================================================
    # CODEPAGE TOOLS
    # =========================================================================

    async def _handle_codepage_tool(self, name: str, args: dict) -> Any:
        table_id = _opt_str(args, "tableId")

        if name == "quickbase_validate_codepage":
            result = validate_codepage(
                _str(args, "code"),
                check_syntax=_bool(args, "checkSyntax", True),
                check_apis=_bool(args, "checkAPIs", True),
                check_security=_bool(args, "checkSecurity", True),
            )
            return result.to_dict()

        m = self.manager
        if name == "quickbase_save_codepage":
            record_id = await m.save_codepage(
                _str(args, "name"), _str(args, "code"), args.get("description") or "", table_id=table_id
            )
            return {"recordId": record_id}
        elif name == "quickbase_get_codepage":
            codepage = await m.get_codepage(_int(args, "recordId"), table_id=table_id)
            return codepage.to_dict() if codepage else {"error": f"Codepage {args['recordId']} not found"}
        elif name == "quickbase_list_codepages":
            codepages = await m.list_codepages(_opt_int(args, "limit"), table_id=table_id)
            return {"count": len(codepages), "codepages": [c.to_dict() for c in codepages]}
        elif name == "quickbase_execute_codepage":
            return await m.prepare_execution(
                _int(args, "recordId"),
                _str(args, "functionName"),
                _object(args, "parameters", required=False),
                table_id=table_id,
            )
        elif name == "quickbase_deploy_codepage":
            record_id = await m.deploy_codepage(
                name=_str(args, "name"),
                code=_str(args, "code"),
                description=args.get("description") or "",
                version=_opt_str(args, "version"),
                tags=_str_list(args, "tags"),
                dependencies=_str_list(args, "dependencies"),
                target_table_id=_opt_str(args, "targetTableId"),
                validate=_bool(args, "validate", True),
                table_id=table_id,
            )
            return {"recordId": record_id, "name": args["name"], "version": args.get("version") or "N/A"}
        elif name == "quickbase_update_codepage":
            active = None if args.get("active") is None else _bool(args, "active", True)
            await m.update_codepage(
                _int(args, "recordId"),
                code=_opt_str(args, "code"),
                description=args.get("description"),
                version=_opt_str(args, "version"),
                active=active,
                table_id=table_id,
            )
            return {"updated": True, "recordId": args["recordId"]}
        elif name == "quickbase_search_codepages":
            codepages = await m.search_codepages(
                search_term=_opt_str(args, "searchTerm"),
                tags=_str_list(args, "tags"),
                target_table_id=_opt_str(args, "targetTableId"),
                active_only=_bool(args, "activeOnly", True),
                table_id=table_id,
            )
            return {"count": len(codepages), "codepages": [c.to_dict() for c in codepages]}
        elif name == "quickbase_clone_codepage":
            record_id = await m.clone_codepage(
                _int(args, "sourceRecordId"),
                _str(args, "newName"),
                _object(args, "modifications", required=False),
                table_id=table_id,
            )
            return {"recordId": record_id, "sourceRecordId": args["sourceRecordId"]}
        elif name == "quickbase_export_codepage":
            content = await m.export_codepage(
                _int(args, "recordId"), args.get("format") or "html", table_id=table_id
            )
            return {"format": args.get("format") or "html", "content": content}
        elif name == "quickbase_import_codepage":
            record_id = await m.import_codepage(
                _str(args, "source"),
                format=args.get("format") or "auto",
                overwrite=_bool(args, "overwrite", False),
                table_id=table_id,
            )
            return {"recordId": record_id}
        elif name == "quickbase_save_codepage_version":
            version_id = await m.save_codepage_version(
                _int(args, "codepageRecordId"),
                _str(args, "version"),
                _str(args, "code"),
                args.get("changeLog") or "",
                version_table_id=table_id,
            )
            return {"versionRecordId": version_id, "version": args["version"]}
        elif name == "quickbase_get_codepage_versions":
            versions = await m.get_codepage_versions(
                _int(args, "codepageRecordId"), _opt_int(args, "limit"), version_table_id=table_id
            )
            return {"count": len(versions), "versions": [v.to_dict() for v in versions]}
        elif name == "quickbase_rollback_codepage":
            version = await m.rollback_codepage(
                _int(args, "codepageRecordId"),
                _int(args, "versionRecordId"),
                table_id=_opt_str(args, "codepageTableId"),
                version_table_id=table_id,
            )
            return {"rolledBack": True, "codepageRecordId": args["codepageRecordId"], "version": version.version}
        elif name == "quickbase_compare_codepage_versions":
            return await m.compare_codepage_versions(
                _int(args, "fromVersionId"), _int(args, "toVersionId"), version_table_id=table_id
            )

        return {"error": f"Unknown tool: {name}"}


# ═══════════════════════════════════════════════════════════════════════════
# MCP PROTOCOL (stdio)
# ═══════════════════════════════════════════════════════════════════════════

async def serve_stdio(server: QuickBaseMCPServer, reader=None, writer=None) -> None:
    """Read newline-delimited JSON-RPC from stdin, answer on stdout."""
    reader = reader or sys.stdin
    writer = writer or sys.stdout
    loop = asyncio.get_event_loop()

    while True:
        line = await loop.run_in_executor(None, reader.readline)
        if not line:
            break
        if not line.strip():
            continue

        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            response = error_response(None, PARSE_ERROR, "Parse error")
        else:
            try:
                response = await dispatch(server, request)
            except Exception as e:
                logger.error(f"MCP request failed: {e}")
                msg_id = request.get("id") if isinstance(request, dict) else None
                response = error_response(msg_id, INTERNAL_ERROR, f"Internal error: {e}")

        if response is not None:
            writer.write(json.dumps(response) + "\n")
            writer.flush()


async def main():
    """Run MCP server (stdio)"""
    server = QuickBaseMCPServer()
    try:
        await serve_stdio(server)
    finally:
        await server.close()


def run():
    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        stream=sys.stderr,
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
