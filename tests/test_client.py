"""
Tests for the QuickBase REST client.

Tests verify:
- Request shape (headers, payloads, filters)
- Error mapping and retries
- Relationship helpers built from several calls
"""
import httpx
import pytest

from qbcore.quickbase.client import QuickBaseClient
from qbcore.quickbase.errors import QuickBaseAPIError, QuickBaseAuthError, QuickBaseNotFoundError
from qbcore.quickbase.models import FieldDefinition, QueryOptions, SortSpec

from conftest import qb_record


class TestTransport:
    """Headers, errors and retry policy."""

    async def test_auth_headers(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"id": "bapp123", "name": "Dealer"})
        info = await client.get_app_info()

        assert info["name"] == "Dealer"
        request = fake_qb.requests[0]
        assert request.headers["QB-Realm-Hostname"] == "acme.quickbase.com"
        assert request.headers["Authorization"] == "QB-USER-TOKEN test-token"

    async def test_not_found_maps_to_error(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bmissing", {"message": "Not found", "description": "No table"}, status=404)
        with pytest.raises(QuickBaseNotFoundError) as exc:
            await client.get_table_info("bmissing")
        assert exc.value.status_code == 404
        assert exc.value.description == "No table"

    async def test_unauthorized_maps_to_auth_error(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"message": "Invalid token"}, status=401)
        with pytest.raises(QuickBaseAuthError):
            await client.get_app_info()

    async def test_throttled_request_is_retried(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"message": "Too many requests"}, status=429)
        fake_qb.add("GET", "/apps/bapp123", {"id": "bapp123"})

        info = await client.get_app_info()

        assert info["id"] == "bapp123"
        assert len(fake_qb.requests) == 2

    async def test_retries_exhausted(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"message": "Unavailable"}, status=503)
        with pytest.raises(QuickBaseAPIError) as exc:
            await client.get_app_info()
        assert exc.value.status_code == 503
        # first attempt + max_retries (2)
        assert len(fake_qb.requests) == 3

    async def test_client_errors_not_retried(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records", {"message": "Bad Request"}, status=400)
        with pytest.raises(QuickBaseAPIError):
            await client.update_record("btbl", 1, {6: "x"})
        assert len(fake_qb.requests) == 1

    async def test_transport_error_wrapped(self, config) -> None:
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        qb = QuickBaseClient(config.model_copy(update={"max_retries": 0}), transport=httpx.MockTransport(boom))
        try:
            with pytest.raises(QuickBaseAPIError):
                await qb.get_app_info()
        finally:
            await qb.close()

    async def test_unsent_post_is_retried(self, config) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"metadata": {"createdRecordIds": [9]}})

        qb = QuickBaseClient(config, transport=httpx.MockTransport(handler), retry_backoff=0)
        try:
            assert await qb.create_record("btbl", {6: "x"}) == 9
        finally:
            await qb.close()
        assert len(calls) == 2

    async def test_timed_out_post_is_sent_once(self, config) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        qb = QuickBaseClient(config, transport=httpx.MockTransport(handler), retry_backoff=0)
        try:
            with pytest.raises(QuickBaseAPIError, match="Request failed"):
                await qb.create_record("btbl", {6: "x"})
        finally:
            await qb.close()
        assert len(calls) == 1

    async def test_timed_out_get_is_retried(self, config) -> None:
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"id": "bapp123"})

        qb = QuickBaseClient(config, transport=httpx.MockTransport(handler), retry_backoff=0)
        try:
            assert (await qb.get_app_info())["id"] == "bapp123"
        finally:
            await qb.close()
        assert len(calls) == 3

    async def test_non_json_success_body(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(QuickBaseAPIError) as exc:
            await client.get_app_info()
        assert exc.value.status_code == 200
        assert "maintenance" in exc.value.description
        assert await client.test_connection() is False

    async def test_connection_check(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"message": "Forbidden"}, status=403)
        assert await client.test_connection() is False


class TestTablesAndFields:
    """Table and field endpoints."""

    async def test_create_table_derives_singular_name(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/tables", {"id": "bnew"})
        table_id = await client.create_table("Customers", "People who buy cars")

        assert table_id == "bnew"
        body = fake_qb.bodies("POST", "/tables")[0]
        assert body["singleRecordName"] == "Customer"
        assert body["pluralRecordName"] == "Customers"
        assert fake_qb.requests[0].url.params["appId"] == "bapp123"

    async def test_create_field_maps_type_alias(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/fields", {"id": 12})
        field = FieldDefinition(label="Status", field_type="text_choice", choices=["New", "Sold"])

        field_id = await client.create_field("btbl", field)

        assert field_id == 12
        body = fake_qb.bodies("POST", "/fields")[0]
        assert body["fieldType"] == "text-multiple-choice"
        assert body["properties"]["choices"] == ["New", "Sold"]

    def test_formula_goes_under_properties(self) -> None:
        payload = FieldDefinition(label="Total", field_type="formula", formula="[Qty]*[Price]").to_payload()
        assert payload["properties"] == {"formula": "[Qty]*[Price]"}
        assert payload["fieldType"] == "formula"

    async def test_delete_field_sends_ids(self, client, fake_qb) -> None:
        fake_qb.add("DELETE", "/fields", {"deletedFieldIds": [9]})
        await client.delete_field("btbl", 9)
        assert fake_qb.bodies("DELETE", "/fields")[0] == {"fieldIds": [9]}


class TestRecords:
    """Record CRUD and search."""

    async def test_query_payload(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records/query", {"data": [qb_record({3: 1})]})
        options = QueryOptions(
            select=[3, 6], where="{6.EX.'x'}", sort_by=[SortSpec(field_id=3, order="desc")], top=10, skip=5
        )

        records = await client.get_records("btbl", options)

        assert records == [qb_record({3: 1})]
        body = fake_qb.bodies("POST", "/records/query")[0]
        assert body == {
            "from": "btbl",
            "select": [3, 6],
            "where": "{6.EX.'x'}",
            "sortBy": [{"fieldId": 3, "order": "DESC"}],
            "options": {"top": 10, "skip": 5},
        }

    async def test_get_record_absent(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records/query", {"data": []})
        assert await client.get_record("btbl", 99) is None
        assert fake_qb.bodies("POST", "/records/query")[0]["where"] == "{3.EX.99}"

    async def test_create_record_wraps_values(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records", {"data": [], "metadata": {"createdRecordIds": [17]}})

        record_id = await client.create_record("btbl", {6: "Name", 7: {"value": "kept"}})

        assert record_id == 17
        body = fake_qb.bodies("POST", "/records")[0]
        assert body["to"] == "btbl"
        assert body["data"] == [{"6": {"value": "Name"}, "7": {"value": "kept"}}]

    async def test_create_record_falls_back_to_field_3(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records", {"data": [qb_record({3: 21})], "metadata": {}})
        assert await client.create_record("btbl", {6: "x"}) == 21

    async def test_update_record_sets_key(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records", {"metadata": {"updatedRecordIds": [5]}})
        await client.update_record("btbl", 5, {"8": "desc"})
        row = fake_qb.bodies("POST", "/records")[0]["data"][0]
        assert row == {"8": {"value": "desc"}, "3": {"value": 5}}

    async def test_delete_records_builds_or_clause(self, client, fake_qb) -> None:
        fake_qb.add("DELETE", "/records", {"numberDeleted": 2})
        deleted = await client.delete_records("btbl", [4, 5])
        assert deleted == 2
        assert fake_qb.bodies("DELETE", "/records")[0] == {"from": "btbl", "where": "{3.EX.4}OR{3.EX.5}"}

    async def test_delete_records_requires_ids(self, client) -> None:
        with pytest.raises(ValueError):
            await client.delete_records("btbl", [])

    async def test_search_defaults_to_fields_6_and_7(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records/query", {"data": []})
        await client.search_records("btbl", "civic")
        assert fake_qb.bodies("POST", "/records/query")[0]["where"] == "{6.CT.'civic'}OR{7.CT.'civic'}"

    async def test_upsert_merges_on_first_key(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/records", {"metadata": {"createdRecordIds": [], "updatedRecordIds": [3]}})
        await client.upsert_records("btbl", [
            {"key_field": 6, "key_value": "VIN1", "data": {"7": 100}},
            {"key_field": 6, "key_value": "VIN2", "data": {"7": 200}},
        ])
        body = fake_qb.bodies("POST", "/records")[0]
        assert body["mergeFieldId"] == 6
        assert body["data"][1] == {"7": {"value": 200}, "6": {"value": "VIN2"}}


class TestRelationships:
    """Relationship helpers."""

    async def test_many_to_many_rejected(self, client) -> None:
        with pytest.raises(ValueError, match="junction"):
            await client.create_advanced_relationship("bparent", "bchild", "Parent", relationship_type="many-to-many")

    async def test_advanced_relationship_renames_lookups(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/tables/bchild/relationship", {
            "id": 30,
            "foreignKeyField": {"id": 15, "label": "Customer"},
            "lookupFields": [{"id": 16, "label": "Customer - Name"}],
        })
        fake_qb.add("POST", "/fields/16", {"id": 16, "label": "Customer Name"})

        result = await client.create_advanced_relationship(
            "bparent", "bchild", "Customer", [{"parent_field_id": 6, "child_field_label": "Customer Name"}]
        )

        assert result["relationshipId"] == 30
        assert result["referenceFieldId"] == 15
        assert result["lookupFields"][0]["label"] == "Customer Name"
        body = fake_qb.bodies("POST", "/tables/bchild/relationship")[0]
        assert body == {"parentTableId": "bparent", "foreignKeyField": {"label": "Customer"}, "lookupFieldIds": [6]}
        assert fake_qb.bodies("POST", "/fields/16")[0] == {"label": "Customer Name"}

    async def test_lookup_field_added_to_existing_relationship(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bchild/relationships", {"relationships": [
            {"id": 30, "parentTableId": "bparent", "foreignKeyField": {"id": 15}, "lookupFields": [{"id": 16}]},
        ]})
        fake_qb.add("POST", "/tables/bchild/relationship/30", {"id": 30, "lookupFields": [{"id": 16}, {"id": 22}]})
        fake_qb.add("POST", "/fields/22", {"id": 22})

        field_id = await client.create_lookup_field("bchild", "bparent", 15, 8, "Customer Phone")

        assert field_id == 22
        assert fake_qb.bodies("POST", "/tables/bchild/relationship/30")[0] == {"lookupFieldIds": [8]}

    async def test_lookup_field_without_relationship(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bchild/relationships", {"relationships": []})
        with pytest.raises(ValueError):
            await client.create_lookup_field("bchild", "bparent", 15, 8, "X")

    async def test_validate_relationship_reports_missing_table(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bparent", {"id": "bparent"})
        result = await client.validate_relationship("bparent", "bgone", 15)
        assert result["isValid"] is False
        assert "Child table bgone not found" in result["issues"]

    async def test_validate_relationship_checks_field_type(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bparent", {"id": "bparent"})
        fake_qb.add("GET", "/tables/bchild", {"id": "bchild"})
        fake_qb.add("GET", "/fields/15", {"id": 15, "fieldType": "text"})
        fake_qb.add("GET", "/tables/bchild/relationships", {"relationships": []})

        result = await client.validate_relationship("bparent", "bchild", 15)

        assert result["isValid"] is False
        assert any("expected numeric" in issue for issue in result["issues"])

    async def test_relationship_details_include_fields(self, client, fake_qb) -> None:
        fake_qb.add("GET", "/tables/bchild/relationships", {"relationships": [
            {"id": 30, "parentTableId": "bparent", "foreignKeyField": {"id": 15}, "lookupFields": [{"id": 16}]},
        ]})
        fake_qb.add("GET", "/fields", [
            {"id": 15, "label": "Related Customer", "fieldType": "numeric"},
            {"id": 16, "label": "Customer Name", "fieldType": "text"},
        ])

        details = await client.get_relationship_details("bchild")

        assert details["count"] == 1
        rel = details["relationships"][0]
        assert rel["foreignKeyField"]["label"] == "Related Customer"
        assert rel["lookupFields"][0]["label"] == "Customer Name"

    async def test_junction_table(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/tables", {"id": "bjunc"})
        fake_qb.add("POST", "/tables/bjunc/relationship", {"id": 1, "foreignKeyField": {"id": 6}})
        fake_qb.add("POST", "/tables/bjunc/relationship", {"id": 2, "foreignKeyField": {"id": 7}})
        fake_qb.add("POST", "/fields", {"id": 8})

        result = await client.create_junction_table(
            "Vehicle Options", "bveh", "bopt", "Vehicle", "Option", [{"label": "Price", "field_type": "currency"}]
        )

        assert result["junctionTableId"] == "bjunc"
        assert [r["referenceFieldId"] for r in result["relationships"]] == [6, 7]
        assert result["additionalFieldIds"] == [8]
        parents = [b["parentTableId"] for b in fake_qb.bodies("POST", "/tables/bjunc/relationship")]
        assert parents == ["bveh", "bopt"]


class TestReports:
    """Report endpoints."""

    async def test_run_report(self, client, fake_qb) -> None:
        fake_qb.add("POST", "/reports/7/run", {"data": [], "fields": []})
        result = await client.run_report("7", "btbl")
        assert result == {"data": [], "fields": []}
        assert fake_qb.requests[0].url.params["tableId"] == "btbl"
