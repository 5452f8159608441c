"""
QuickBase REST API client

Provides:
- Async QuickBaseClient over httpx (apps, tables, fields, records,
  relationships, reports)
- Retry with exponential backoff on 429 / 5xx
- Error mapping to the QuickBaseError hierarchy
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from qbcore.config import QuickBaseConfig
from qbcore.quickbase.errors import (
    QuickBaseAPIError,
    QuickBaseAuthError,
    QuickBaseError,
    QuickBaseNotFoundError,
)
from qbcore.quickbase.models import (
    FieldDefinition,
    FieldType,
    QueryOptions,
    api_field_type,
    wrap_field_values,
)
from qbcore.quickbase.query import CT, RECORD_ID_FIELD, any_of, condition, record_id_clause

logger = logging.getLogger(__name__)

RETRY_STATUS = {429, 500, 502, 503, 504}
# Transport failures raised before the request reaches QuickBase
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
IDEMPOTENT_METHODS = {"GET"}
DEFAULT_SEARCH_FIELDS = [6, 7]


class QuickBaseClient:
    """Async wrapper around the QuickBase JSON API (v1)."""

    def __init__(
        self,
        config: QuickBaseConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_backoff: float = 0.5,
    ):
        self.config = config
        self.retry_backoff = retry_backoff
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "QB-Realm-Hostname": config.realm,
                "Authorization": f"QB-USER-TOKEN {config.user_token}",
                "User-Agent": config.user_agent,
                "Content-Type": "application/json",
            },
            timeout=config.timeout,
            transport=transport,
            event_hooks={"request": [self._log_request], "response": [self._log_response]},
        )

    async def __aenter__(self) -> "QuickBaseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def app_id(self) -> str:
        return self.config.app_id

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    @staticmethod
    async def _log_request(request: httpx.Request) -> None:
        logger.debug(f"QuickBase request: {request.method} {request.url}")

    @staticmethod
    async def _log_response(response: httpx.Response) -> None:
        request = response.request
        logger.debug(f"QuickBase response: {response.status_code} {request.method} {request.url}")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Send a request, retrying throttled/server errors, and return the decoded body."""
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.HTTPError as e:
                retryable = isinstance(e, UNSENT_ERRORS) or method in IDEMPOTENT_METHODS
                if retryable and attempt < self.config.max_retries:
                    await self._backoff(attempt, f"{method} {path} failed: {e}")
                    attempt += 1
                    continue
                raise QuickBaseAPIError(f"Request failed: {e}") from e

            if response.status_code in RETRY_STATUS and attempt < self.config.max_retries:
                await self._backoff(attempt, f"{method} {path} returned {response.status_code}")
                attempt += 1
                continue

            if response.is_success:
                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise QuickBaseAPIError(
                        f"Invalid JSON in response to {method} {path}",
                        status_code=response.status_code,
                        description=response.text[:200],
                    ) from e

            raise self._to_error(response)

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.retry_backoff * (2 ** attempt)
        logger.warning(f"{reason}; retrying in {delay:.2f}s (attempt {attempt + 1}/{self.config.max_retries})")
        await asyncio.sleep(delay)

    @staticmethod
    def _to_error(response: httpx.Response) -> QuickBaseAPIError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or response.reason_phrase or "Request failed"
        description = body.get("description")
        status = response.status_code

        if status == 404:
            cls = QuickBaseNotFoundError
        elif status in (401, 403):
            cls = QuickBaseAuthError
        else:
            cls = QuickBaseAPIError
        logger.error(f"QuickBase API error {status}: {message}")
        return cls(message, status_code=status, description=description, payload=body)

    # =========================================================================
    # APPLICATION
    # =========================================================================

    async def get_app_info(self) -> Dict[str, Any]:
        return await self._request("GET", f"/apps/{self.app_id}")

    async def get_app_tables(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/tables", params={"appId": self.app_id})

    async def test_connection(self) -> bool:
        """True when the configured app can be read with the current token."""
        try:
            await self.get_app_info()
            return True
        except QuickBaseError as e:
            logger.warning(f"Connection test failed: {e}")
            return False

    # =========================================================================
    # TABLES
    # =========================================================================

    async def create_table(self, name: str, description: str = "") -> str:
        """Create a table in the app and return its id."""
        body = {
            "name": name,
            "description": description or "",
            "singleRecordName": name[:-1] if name.endswith("s") and len(name) > 1 else name,
            "pluralRecordName": name,
        }
        result = await self._request("POST", "/tables", params={"appId": self.app_id}, json=body)
        logger.info(f"Created table {name}: {result.get('id')}")
        return result["id"]

    async def get_table_info(self, table_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/tables/{table_id}", params={"appId": self.app_id})

    async def update_table(self, table_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", f"/tables/{table_id}", params={"appId": self.app_id}, json=updates)

    async def delete_table(self, table_id: str) -> Dict[str, Any]:
        logger.info(f"Deleting table {table_id}")
        return await self._request("DELETE", f"/tables/{table_id}", params={"appId": self.app_id})

    # =========================================================================
    # FIELDS
    # =========================================================================

    async def get_table_fields(self, table_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", "/fields", params={"tableId": table_id})

    async def get_field(self, table_id: str, field_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/fields/{field_id}", params={"tableId": table_id})

    async def create_field(self, table_id: str, field: FieldDefinition) -> int:
        """Create a field and return its id."""
        result = await self._request("POST", "/fields", params={"tableId": table_id}, json=field.to_payload())
        logger.info(f"Created field {field.label} in {table_id}: {result.get('id')}")
        return int(result["id"])

    async def update_field(self, table_id: str, field_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(updates)
        if body.get("fieldType") in FieldType._value2member_map_:
            body["fieldType"] = api_field_type(FieldType(body["fieldType"]))
        return await self._request("POST", f"/fields/{field_id}", params={"tableId": table_id}, json=body)

    async def delete_field(self, table_id: str, field_id: int) -> Dict[str, Any]:
        return await self._request(
            "DELETE", "/fields", params={"tableId": table_id}, json={"fieldIds": [int(field_id)]}
        )

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def get_records(self, table_id: str, options: Optional[QueryOptions] = None) -> List[Dict[str, Any]]:
        options = options or QueryOptions()
        result = await self._request("POST", "/records/query", json=options.to_payload(table_id))
        return result.get("data", [])

    async def get_record(
        self, table_id: str, record_id: int, field_ids: Optional[List[int]] = None
    ) -> Optional[Dict[str, Any]]:
        """Single record by id, or None when it does not exist."""
        options = QueryOptions(where=condition(RECORD_ID_FIELD, "EX", int(record_id)), select=field_ids)
        records = await self.get_records(table_id, options)
        return records[0] if records else None

    async def create_record(self, table_id: str, fields: Dict[Any, Any]) -> int:
        """Insert one record and return its record id."""
        result = await self._request(
            "POST", "/records", json={"to": table_id, "data": [wrap_field_values(fields)], "fieldsToReturn": [RECORD_ID_FIELD]}
        )
        created = result.get("metadata", {}).get("createdRecordIds") or []
        if created:
            return int(created[0])
        data = result.get("data") or []
        if data and str(RECORD_ID_FIELD) in data[0]:
            return int(data[0][str(RECORD_ID_FIELD)]["value"])
        raise QuickBaseAPIError("QuickBase did not return a record id", payload=result)

    async def create_records(self, table_id: str, records: List[Dict[Any, Any]]) -> List[int]:
        if not records:
            raise ValueError("No records supplied")
        result = await self._request(
            "POST",
            "/records",
            json={"to": table_id, "data": [wrap_field_values(r) for r in records], "fieldsToReturn": [RECORD_ID_FIELD]},
        )
        created = result.get("metadata", {}).get("createdRecordIds")
        if created is not None:
            return [int(rid) for rid in created]
        return [int(row[str(RECORD_ID_FIELD)]["value"]) for row in result.get("data", [])]

    async def update_record(self, table_id: str, record_id: int, fields: Dict[Any, Any]) -> Dict[str, Any]:
        row = wrap_field_values(fields)
        row[str(RECORD_ID_FIELD)] = {"value": int(record_id)}
        return await self._request("POST", "/records", json={"to": table_id, "data": [row]})

    async def update_records(self, table_id: str, updates: List[Dict[str, Any]]) -> Dict[str, Any]:
        """updates: [{"record_id": 5, "fields": {...}}, ...]"""
        if not updates:
            raise ValueError("No records supplied")
        rows = []
        for update in updates:
            row = wrap_field_values(update["fields"])
            row[str(RECORD_ID_FIELD)] = {"value": int(update["record_id"])}
            rows.append(row)
        return await self._request("POST", "/records", json={"to": table_id, "data": rows})

    async def delete_record(self, table_id: str, record_id: int) -> int:
        return await self.delete_records(table_id, [record_id])

    async def delete_records(self, table_id: str, record_ids: List[int]) -> int:
        """Delete by record id; returns the number QuickBase reports deleted."""
        if not record_ids:
            raise ValueError("No record IDs supplied")
        result = await self._request("DELETE", "/records", json={"from": table_id, "where": record_id_clause(record_ids)})
        return int(result.get("numberDeleted", 0))

    async def search_records(
        self, table_id: str, search_term: str, field_ids: Optional[List[int]] = None
    ) -> List[Dict[str, Any]]:
        fields = field_ids or DEFAULT_SEARCH_FIELDS
        where = any_of(condition(fid, CT, search_term) for fid in fields)
        return await self.get_records(table_id, QueryOptions(where=where))

    async def upsert_records(self, table_id: str, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        """records: [{"key_field": 6, "key_value": "x", "data": {...}}]; merges on the first key field."""
        if not records:
            raise ValueError("No records supplied for upsert")
        rows = []
        for record in records:
            row = wrap_field_values(record.get("data", {}))
            row[str(int(record["key_field"]))] = {"value": record["key_value"]}
            rows.append(row)
        body = {"to": table_id, "data": rows, "mergeFieldId": int(records[0]["key_field"])}
        return await self._request("POST", "/records", json=body)

    # =========================================================================
    # RELATIONSHIPS
    # =========================================================================

    async def create_relationship(
        self, parent_table_id: str, child_table_id: str, foreign_key_field_id: int
    ) -> Dict[str, Any]:
        body = {"parentTableId": parent_table_id, "foreignKeyField": {"id": int(foreign_key_field_id)}}
        result = await self._request("POST", f"/tables/{child_table_id}/relationship", json=body)
        logger.info(f"Created relationship {parent_table_id} -> {child_table_id}")
        return result

    async def get_relationships(self, table_id: str) -> List[Dict[str, Any]]:
        result = await self._request("GET", f"/tables/{table_id}/relationships")
        return result.get("relationships", [])

    async def create_advanced_relationship(
        self,
        parent_table_id: str,
        child_table_id: str,
        reference_field_label: str,
        lookup_fields: Optional[List[Dict[str, Any]]] = None,
        relationship_type: str = "one-to-many",
    ) -> Dict[str, Any]:
        """
        Create a one-to-many relationship with a new reference field and
        optional lookup fields.

        lookup_fields: [{"parent_field_id": 6, "child_field_label": "Customer Name"}]
        """
        if relationship_type == "many-to-many":
            raise ValueError("Many-to-many relationships need a junction table; use create_junction_table")
        lookup_fields = lookup_fields or []

        body: Dict[str, Any] = {
            "parentTableId": parent_table_id,
            "foreignKeyField": {"label": reference_field_label},
        }
        if lookup_fields:
            body["lookupFieldIds"] = [int(f["parent_field_id"]) for f in lookup_fields]
        result = await self._request("POST", f"/tables/{child_table_id}/relationship", json=body)

        created_lookups = result.get("lookupFields", [])
        for wanted, created in zip(lookup_fields, created_lookups):
            label = wanted.get("child_field_label")
            if label and created.get("label") != label:
                await self.update_field(child_table_id, created["id"], {"label": label})
                created["label"] = label

        return {
            "relationshipId": result.get("id"),
            "parentTableId": parent_table_id,
            "childTableId": child_table_id,
            "relationshipType": relationship_type,
            "referenceFieldId": result.get("foreignKeyField", {}).get("id"),
            "lookupFields": created_lookups,
        }

    async def create_lookup_field(
        self,
        child_table_id: str,
        parent_table_id: str,
        reference_field_id: int,
        parent_field_id: int,
        lookup_field_label: str,
    ) -> int:
        """Add a lookup to an existing relationship and return the new field id."""
        relationships = await self.get_relationships(child_table_id)
        relationship = next(
            (
                r for r in relationships
                if r.get("parentTableId") == parent_table_id
                and r.get("foreignKeyField", {}).get("id") == int(reference_field_id)
            ),
            None,
        )
        if relationship is None:
            raise ValueError(
                f"No relationship from {parent_table_id} to {child_table_id} on field {reference_field_id}"
            )

        existing = {f["id"] for f in relationship.get("lookupFields", [])}
        result = await self._request(
            "POST",
            f"/tables/{child_table_id}/relationship/{relationship['id']}",
            json={"lookupFieldIds": [int(parent_field_id)]},
        )
        new_fields = [f for f in result.get("lookupFields", []) if f["id"] not in existing]
        if not new_fields:
            raise QuickBaseAPIError("QuickBase did not create a lookup field", payload=result)
        field_id = int(new_fields[-1]["id"])
        await self.update_field(child_table_id, field_id, {"label": lookup_field_label})
        return field_id

    async def validate_relationship(
        self, parent_table_id: str, child_table_id: str, foreign_key_field_id: int
    ) -> Dict[str, Any]:
        """Check that both tables and the foreign key field exist and can link."""
        issues: List[str] = []
        warnings: List[str] = []

        for label, table_id in (("Parent", parent_table_id), ("Child", child_table_id)):
            try:
                await self.get_table_info(table_id)
            except QuickBaseNotFoundError:
                issues.append(f"{label} table {table_id} not found")

        field: Optional[Dict[str, Any]] = None
        if not issues:
            try:
                field = await self.get_field(child_table_id, foreign_key_field_id)
            except QuickBaseNotFoundError:
                issues.append(f"Field {foreign_key_field_id} not found in child table")

        if field is not None:
            if field.get("fieldType") not in ("numeric", "recordid"):
                issues.append(f"Field {foreign_key_field_id} is {field.get('fieldType')}, expected numeric")
            relationships = await self.get_relationships(child_table_id)
            for rel in relationships:
                if rel.get("foreignKeyField", {}).get("id") == int(foreign_key_field_id):
                    if rel.get("parentTableId") == parent_table_id:
                        warnings.append("Relationship already exists on this field")
                    else:
                        issues.append(f"Field is already used by a relationship to {rel.get('parentTableId')}")

        return {
            "isValid": not issues,
            "parentTableId": parent_table_id,
            "childTableId": child_table_id,
            "foreignKeyFieldId": int(foreign_key_field_id),
            "issues": issues,
            "warnings": warnings,
        }

    async def get_relationship_details(self, table_id: str, include_fields: bool = True) -> Dict[str, Any]:
        relationships = await self.get_relationships(table_id)
        if include_fields and relationships:
            fields = {f["id"]: f for f in await self.get_table_fields(table_id)}
            for rel in relationships:
                fk_id = rel.get("foreignKeyField", {}).get("id")
                if fk_id in fields:
                    rel["foreignKeyField"] = fields[fk_id]
                rel["lookupFields"] = [fields.get(f["id"], f) for f in rel.get("lookupFields", [])]
                rel["summaryFields"] = [fields.get(f["id"], f) for f in rel.get("summaryFields", [])]
        return {"tableId": table_id, "count": len(relationships), "relationships": relationships}

    async def create_junction_table(
        self,
        junction_table_name: str,
        table1_id: str,
        table2_id: str,
        table1_field_label: str,
        table2_field_label: str,
        additional_fields: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Many-to-many link: a new table with a relationship to each side."""
        junction_id = await self.create_table(
            junction_table_name, f"Junction table linking {table1_id} and {table2_id}"
        )
        rel1 = await self.create_advanced_relationship(table1_id, junction_id, table1_field_label)
        rel2 = await self.create_advanced_relationship(table2_id, junction_id, table2_field_label)

        extra_ids = []
        for extra in additional_fields or []:
            field = FieldDefinition(label=extra["label"], field_type=extra.get("field_type", "text"))
            extra_ids.append(await self.create_field(junction_id, field))

        return {
            "junctionTableId": junction_id,
            "relationships": [rel1, rel2],
            "additionalFieldIds": extra_ids,
        }

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def get_reports(self, table_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", "/reports", params={"tableId": table_id})

    async def run_report(self, report_id: str, table_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/reports/{report_id}/run", params={"tableId": table_id})
