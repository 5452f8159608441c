"""
Codepage lifecycle on top of QuickBase records

Provides:
- Save / get / list / deploy / update / search / clone
- Export (html, json, markdown) and import (html, json)
- Version snapshots, history, rollback and line diffs
- Invocation snippets for functions defined in a stored codepage

Each operation is a short sequence of record API calls; nothing here is
transactional across calls.
"""
import difflib
import html
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from qbcore.codepages import fields as F
from qbcore.codepages.fields import Codepage, CodepageVersion, join_list
from qbcore.codepages.validator import ValidationResult, extract_script, is_html_document, validate_codepage
from qbcore.quickbase.client import QuickBaseClient
from qbcore.quickbase.errors import QuickBaseError
from qbcore.quickbase.models import QueryOptions, SortSpec
from qbcore.quickbase.query import CT, EX, all_of, any_of, condition

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("html", "json", "markdown")
IMPORT_FORMATS = ("auto", "html", "json")

TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)
META_DESCRIPTION_RE = re.compile(
    r"<meta\s+name=[\"']description[\"']\s+content=[\"']([^\"']*)[\"']", re.IGNORECASE
)
META_VERSION_RE = re.compile(
    r"<meta\s+name=[\"']version[\"']\s+content=[\"']([^\"']*)[\"']", re.IGNORECASE
)
# Body written by _to_html around plain JavaScript
EXPORTED_SCRIPT_RE = re.compile(r"<body>\n<script>\n([\s\S]*)\n</script>\n</body>\n</html>\s*$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")


# =============================================================================
# ERRORS
# =============================================================================

class CodepageError(QuickBaseError):
    """Base class for codepage lifecycle errors"""


class CodepageNotFoundError(CodepageError):
    """Codepage or version record does not exist"""


class CodepageExistsError(CodepageError):
    """Import target name already exists and overwrite was not requested"""


class CodepageValidationError(CodepageError):
    """Code failed validation"""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("Codepage validation failed: " + "; ".join(result.errors))


# =============================================================================
# MANAGER
# =============================================================================

class CodepageManager:
    """Codepage and version-table operations for one QuickBase app."""

    def __init__(
        self,
        client: QuickBaseClient,
        table_id: Optional[str] = None,
        version_table_id: Optional[str] = None,
    ):
        self.client = client
        self.table_id = table_id or client.config.codepage_table_id
        self.version_table_id = version_table_id or client.config.codepage_version_table_id

    def _table(self, table_id: Optional[str]) -> str:
        resolved = table_id or self.table_id
        if not resolved:
            raise ValueError("Missing codepage table ID")
        return resolved

    def _version_table(self, table_id: Optional[str]) -> str:
        resolved = table_id or self.version_table_id
        if not resolved:
            raise ValueError("Missing codepage version table ID")
        return resolved

    async def _require(self, record_id: int, table_id: Optional[str]) -> Codepage:
        codepage = await self.get_codepage(record_id, table_id)
        if codepage is None:
            raise CodepageNotFoundError(f"Codepage {record_id} not found")
        return codepage

    # =========================================================================
    # BASIC STORAGE
    # =========================================================================

    async def save_codepage(
        self, name: str, code: str, description: str = "", table_id: Optional[str] = None
    ) -> int:
        record_id = await self.client.create_record(
            self._table(table_id), {F.NAME: name, F.CODE: code, F.DESCRIPTION: description or ""}
        )
        logger.info(f"Saved codepage '{name}' as record {record_id}")
        return record_id

    async def get_codepage(self, record_id: int, table_id: Optional[str] = None) -> Optional[Codepage]:
        record = await self.client.get_record(self._table(table_id), record_id, F.CODEPAGE_FIELDS)
        return Codepage.from_record(record) if record else None

    async def list_codepages(self, limit: Optional[int] = None, table_id: Optional[str] = None) -> List[Codepage]:
        """Newest first."""
        options = QueryOptions(
            select=F.CODEPAGE_FIELDS,
            sort_by=[SortSpec(field_id=F.RECORD_ID, order="DESC")],
            top=limit,
        )
        records = await self.client.get_records(self._table(table_id), options)
        return [Codepage.from_record(r) for r in records]

    # =========================================================================
    # DEPLOYMENT
    # =========================================================================

    async def deploy_codepage(
        self,
        name: str,
        code: str,
        description: str = "",
        version: Optional[str] = None,
        tags: Optional[List[str]] = None,
        dependencies: Optional[List[str]] = None,
        target_table_id: Optional[str] = None,
        validate: bool = True,
        table_id: Optional[str] = None,
    ) -> int:
        """Validate (unless disabled) and store an active codepage; returns the record id."""
        table = self._table(table_id)
        if validate:
            result = validate_codepage(code)
            if not result.is_valid:
                raise CodepageValidationError(result)
            for warning in result.warnings:
                logger.warning(f"Codepage '{name}': {warning}")

        record: Dict[int, Any] = {
            F.NAME: name,
            F.CODE: code,
            F.DESCRIPTION: description or "",
            F.ACTIVE: True,
        }
        if version:
            record[F.VERSION] = version
        if tags:
            record[F.TAGS] = join_list(tags)
        if dependencies:
            record[F.DEPENDENCIES] = join_list(dependencies)
        if target_table_id:
            record[F.TARGET_TABLE] = target_table_id

        record_id = await self.client.create_record(table, record)
        logger.info(f"Deployed codepage '{name}' version {version or 'N/A'} as record {record_id}")
        return record_id

    async def update_codepage(
        self,
        record_id: int,
        code: Optional[str] = None,
        description: Optional[str] = None,
        version: Optional[str] = None,
        active: Optional[bool] = None,
        validate: bool = True,
        table_id: Optional[str] = None,
    ) -> None:
        updates: Dict[int, Any] = {}
        if code is not None:
            if validate:
                result = validate_codepage(code)
                if not result.is_valid:
                    raise CodepageValidationError(result)
            updates[F.CODE] = code
        if description is not None:
            updates[F.DESCRIPTION] = description
        if version is not None:
            updates[F.VERSION] = version
        if active is not None:
            updates[F.ACTIVE] = bool(active)
        if not updates:
            raise ValueError("No updates supplied")

        await self.client.update_record(self._table(table_id), record_id, updates)
        logger.info(f"Updated codepage {record_id}: fields {sorted(updates)}")

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    async def search_codepages(
        self,
        search_term: Optional[str] = None,
        tags: Optional[List[str]] = None,
        target_table_id: Optional[str] = None,
        active_only: bool = True,
        limit: Optional[int] = None,
        table_id: Optional[str] = None,
    ) -> List[Codepage]:
        clauses = []
        if search_term:
            clauses.append(any_of([condition(F.NAME, CT, search_term), condition(F.DESCRIPTION, CT, search_term)]))
        if tags:
            clauses.append(any_of(condition(F.TAGS, CT, tag) for tag in tags))
        if target_table_id:
            clauses.append(condition(F.TARGET_TABLE, EX, target_table_id))
        if active_only:
            clauses.append(condition(F.ACTIVE, EX, True))

        options = QueryOptions(
            select=F.CODEPAGE_FIELDS,
            where=all_of(clauses) or None,
            sort_by=[SortSpec(field_id=F.RECORD_ID, order="DESC")],
            top=limit,
        )
        records = await self.client.get_records(self._table(table_id), options)
        return [Codepage.from_record(r) for r in records]

    async def clone_codepage(
        self,
        source_record_id: int,
        new_name: str,
        modifications: Optional[Dict[Any, Any]] = None,
        table_id: Optional[str] = None,
    ) -> int:
        """Copy a codepage under a new name; modifications are {field_id: value}."""
        table = self._table(table_id)
        record = await self.client.get_record(table, source_record_id, F.CODEPAGE_FIELDS)
        if not record:
            raise CodepageNotFoundError(f"Source codepage {source_record_id} not found")

        copy: Dict[int, Any] = {}
        for field_id in F.COPYABLE_FIELDS:
            value = F.field_value(record, field_id)
            if value is not None:
                copy[field_id] = value
        copy[F.NAME] = new_name
        for field_id, value in (modifications or {}).items():
            copy[int(field_id)] = value

        record_id = await self.client.create_record(table, copy)
        logger.info(f"Cloned codepage {source_record_id} to '{new_name}' (record {record_id})")
        return record_id

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    async def export_codepage(self, record_id: int, format: str = "html", table_id: Optional[str] = None) -> str:
        if format not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {format}")
        codepage = await self._require(record_id, table_id)

        if format == "json":
            data = codepage.to_dict()
            data["exportedAt"] = datetime.now(timezone.utc).isoformat()
            return json.dumps(data, indent=2)
        if format == "markdown":
            return _to_markdown(codepage)
        return _to_html(codepage)

    async def import_codepage(
        self,
        source: str,
        format: str = "auto",
        overwrite: bool = False,
        table_id: Optional[str] = None,
    ) -> int:
        """Create (or with overwrite, update) a codepage from exported content."""
        if format not in IMPORT_FORMATS:
            raise ValueError(f"Unsupported import format: {format}")
        if not source or not source.strip():
            raise ValueError("Import source is empty")
        if format == "auto":
            format = "json" if source.lstrip().startswith("{") else "html"

        table = self._table(table_id)
        fields = _parse_import(source, format)
        name = fields[F.NAME]

        existing = await self.client.get_records(
            table, QueryOptions(select=[F.RECORD_ID], where=condition(F.NAME, EX, name), top=1)
        )
        if existing:
            existing_id = int(F.field_value(existing[0], F.RECORD_ID))
            if not overwrite:
                raise CodepageExistsError(f"Codepage '{name}' already exists (record {existing_id})")
            await self.client.update_record(table, existing_id, fields)
            logger.info(f"Imported codepage '{name}' over record {existing_id}")
            return existing_id

        record_id = await self.client.create_record(table, fields)
        logger.info(f"Imported codepage '{name}' as record {record_id}")
        return record_id

    # =========================================================================
    # VERSIONS
    # =========================================================================

    async def save_codepage_version(
        self,
        codepage_record_id: int,
        version: str,
        code: str,
        change_log: str = "",
        version_table_id: Optional[str] = None,
    ) -> int:
        record_id = await self.client.create_record(
            self._version_table(version_table_id),
            {
                F.VERSION_CODEPAGE: int(codepage_record_id),
                F.VERSION_NUMBER: version,
                F.VERSION_CODE: code,
                F.VERSION_CHANGE_LOG: change_log or "",
            },
        )
        logger.info(f"Saved version {version} of codepage {codepage_record_id} as record {record_id}")
        return record_id

    async def get_codepage_versions(
        self,
        codepage_record_id: int,
        limit: Optional[int] = None,
        version_table_id: Optional[str] = None,
    ) -> List[CodepageVersion]:
        """Newest first."""
        options = QueryOptions(
            select=F.VERSION_FIELDS,
            where=condition(F.VERSION_CODEPAGE, EX, int(codepage_record_id)),
            sort_by=[
                SortSpec(field_id=F.VERSION_DATE_CREATED, order="DESC"),
                SortSpec(field_id=F.RECORD_ID, order="DESC"),
            ],
            top=limit,
        )
        records = await self.client.get_records(self._version_table(version_table_id), options)
        return [CodepageVersion.from_record(r) for r in records]

    async def _get_version(self, version_record_id: int, version_table_id: Optional[str]) -> CodepageVersion:
        record = await self.client.get_record(
            self._version_table(version_table_id), version_record_id, F.VERSION_FIELDS
        )
        if not record:
            raise CodepageNotFoundError(f"Version {version_record_id} not found")
        return CodepageVersion.from_record(record)

    async def rollback_codepage(
        self,
        codepage_record_id: int,
        version_record_id: int,
        table_id: Optional[str] = None,
        version_table_id: Optional[str] = None,
    ) -> CodepageVersion:
        """Restore a codepage's code and version string from a saved version."""
        version = await self._get_version(version_record_id, version_table_id)
        if version.codepage_record_id != int(codepage_record_id):
            raise ValueError(f"Version {version_record_id} does not belong to codepage {codepage_record_id}")

        await self.client.update_record(
            self._table(table_id), codepage_record_id, {F.CODE: version.code, F.VERSION: version.version}
        )
        logger.info(f"Rolled back codepage {codepage_record_id} to version {version.version}")
        return version

    async def compare_codepage_versions(
        self, from_version_id: int, to_version_id: int, version_table_id: Optional[str] = None
    ) -> Dict[str, Any]:
        old = await self._get_version(from_version_id, version_table_id)
        new = await self._get_version(to_version_id, version_table_id)
        differences = diff_lines(old.code, new.code)
        return {
            "fromVersion": old.to_dict(),
            "toVersion": new.to_dict(),
            "differences": differences,
            "summary": summarize_diff(differences),
        }

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def prepare_execution(
        self,
        record_id: int,
        function_name: str,
        parameters: Optional[Dict[str, Any]] = None,
        table_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build the call for a function defined in a stored codepage.

        Code is never run here; the snippet is meant for the browser page
        that renders the codepage.
        """
        if not IDENTIFIER_RE.match(function_name or ""):
            raise ValueError(f"Invalid function name: {function_name}")
        codepage = await self._require(record_id, table_id)

        script = extract_script(codepage.code)
        if not _defines_function(script, function_name):
            raise ValueError(f"Function '{function_name}' is not defined in codepage {record_id}")

        args = json.dumps(parameters) if parameters else ""
        return {
            "recordId": codepage.record_id,
            "name": codepage.name,
            "functionName": function_name,
            "parameters": parameters or {},
            "invocation": f"{function_name}({args});",
            "executed": False,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _defines_function(script: str, name: str) -> bool:
    escaped = re.escape(name)
    patterns = [
        rf"\bfunction\s+{escaped}\s*\(",
        rf"\b(?:const|let|var)\s+{escaped}\s*=",
        rf"(?:^|[\s,{{]){escaped}\s*:\s*(?:async\s+)?(?:function\b|\()",
        rf"\bwindow\.{escaped}\s*=",
    ]
    return any(re.search(p, script, re.MULTILINE) for p in patterns)


def diff_lines(old_code: str, new_code: str) -> List[Dict[str, Any]]:
    """Line diff; replaced lines pair up as modifications, the rest are additions/deletions."""
    old_lines = old_code.splitlines()
    new_lines = new_code.splitlines()
    differences: List[Dict[str, Any]] = []

    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        paired = min(i2 - i1, j2 - j1) if tag == "replace" else 0
        for k in range(paired):
            differences.append({
                "type": "modification",
                "oldLineNumber": i1 + k + 1,
                "newLineNumber": j1 + k + 1,
                "oldContent": old_lines[i1 + k],
                "content": new_lines[j1 + k],
            })
        for i in range(i1 + paired, i2):
            differences.append({"type": "deletion", "oldLineNumber": i + 1, "content": old_lines[i]})
        for j in range(j1 + paired, j2):
            differences.append({"type": "addition", "newLineNumber": j + 1, "content": new_lines[j]})
    return differences


def summarize_diff(differences: List[Dict[str, Any]]) -> Dict[str, int]:
    summary = {"linesAdded": 0, "linesRemoved": 0, "linesModified": 0}
    keys = {"addition": "linesAdded", "deletion": "linesRemoved", "modification": "linesModified"}
    for d in differences:
        summary[keys[d["type"]]] += 1
    summary["totalChanges"] = sum(summary.values())
    return summary


def _to_html(codepage: Codepage) -> str:
    code = codepage.code
    if re.search(r"<html[\s>]", code, re.IGNORECASE):
        return code
    body = code if is_html_document(code) else f"<script>\n{code}\n</script>"
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '  <meta charset="utf-8">\n'
        f"  <title>{html.escape(codepage.name)}</title>\n"
        f'  <meta name="description" content="{html.escape(codepage.description)}">\n'
        f'  <meta name="version" content="{html.escape(codepage.version)}">\n'
        "</head>\n"
        "<body>\n"
        f"{body}\n"
        "</body>\n"
        "</html>\n"
    )


def _to_markdown(codepage: Codepage) -> str:
    language = "html" if is_html_document(codepage.code) else "javascript"
    lines = [f"# {codepage.name}", ""]
    if codepage.description:
        lines += [codepage.description, ""]
    lines += [
        f"- **Record ID:** {codepage.record_id}",
        f"- **Version:** {codepage.version or 'N/A'}",
        f"- **Tags:** {join_list(codepage.tags) or 'none'}",
        f"- **Dependencies:** {join_list(codepage.dependencies) or 'none'}",
        f"- **Active:** {'yes' if codepage.active else 'no'}",
    ]
    if codepage.target_table_id:
        lines.append(f"- **Target table:** {codepage.target_table_id}")
    lines += ["", f"```{language}", codepage.code, "```", ""]
    return "\n".join(lines)


def _parse_import(source: str, format: str) -> Dict[int, Any]:
    if format == "json":
        try:
            data = json.loads(source)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON import: {e}") from e
        if not isinstance(data, dict) or not data.get("name") or not data.get("code"):
            raise ValueError("JSON import requires 'name' and 'code'")
        fields: Dict[int, Any] = {
            F.NAME: data["name"],
            F.CODE: data["code"],
            F.DESCRIPTION: data.get("description") or "",
        }
        if data.get("version"):
            fields[F.VERSION] = data["version"]
        if data.get("tags"):
            fields[F.TAGS] = join_list(F.split_list(data["tags"]))
        if data.get("dependencies"):
            fields[F.DEPENDENCIES] = join_list(F.split_list(data["dependencies"]))
        if data.get("target_table_id"):
            fields[F.TARGET_TABLE] = data["target_table_id"]
        if "active" in data:
            fields[F.ACTIVE] = bool(data["active"])
        return fields

    title = TITLE_RE.search(source)
    description = META_DESCRIPTION_RE.search(source)
    version = META_VERSION_RE.search(source)

    code = source
    exported = EXPORTED_SCRIPT_RE.search(source)
    if version and exported and "<script" not in exported.group(1).lower():
        code = exported.group(1)

    fields = {
        F.NAME: html.unescape(title.group(1).strip()) if title and title.group(1).strip() else "Imported Codepage",
        F.CODE: code,
        F.DESCRIPTION: html.unescape(description.group(1)) if description else "",
    }
    if version and version.group(1):
        fields[F.VERSION] = html.unescape(version.group(1))
    return fields
