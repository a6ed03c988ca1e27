"""Tests for idempotent batch and single-record pushes to Fortnox."""

import json
import logging
from datetime import date

import httpx
import pytest
import respx

from payroll_export.fortnox_mcp.batch_sync import BatchSyncEngine, clamp_limit, parse_bool
from payroll_export.shared.config import PayrollExportConfig
from payroll_export.shared.errors import (
    ConfigurationMissing,
    RecordNotFound,
    RecordStoreError,
    ValidationFailed,
)

FORTNOX_API = "https://api.fortnox.se/3"
COMPENSATIONS = "test_frening_compensations"
PERSONNEL = "test_frening_personnel"


async def _token() -> str:
    return "access-token"


async def _no_token():
    return None


def _engine(store, settings, token_provider=_token) -> BatchSyncEngine:
    return BatchSyncEngine(store, token_provider, settings, today=date(2026, 10, 1))


def test_clamp_limit():
    assert clamp_limit(None) == 100
    assert clamp_limit("abc") == 100
    assert clamp_limit(0) == 100
    assert clamp_limit(-5) == 100
    assert clamp_limit("25") == 25
    assert clamp_limit(5000) == 1000


def test_parse_bool():
    assert parse_bool(True) is True
    assert parse_bool("TRUE") is True
    assert parse_bool("yes") is False
    assert parse_bool(None) is False


class TestCompensationBatch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_dry_run_maps_without_submitting(self, store, settings, compensation_row):
        route = respx.post(f"{FORTNOX_API}/salarytransactions")
        store.tables[COMPENSATIONS] = [compensation_row(1), compensation_row(2, employee_id="E2")]

        result = await _engine(store, settings).push_compensation_batch(limit=10, dry_run=True)

        assert route.call_count == 0
        assert (result.processed, result.successes, result.failures) == (2, 2, 0)
        assert result.dry_run is True
        assert [item.payload["EmployeeId"] for item in result.items] == ["E1", "E2"]
        assert store.updates == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_failures_are_isolated_per_item(self, store, settings, compensation_row):
        def respond(request):
            body = json.loads(request.content)
            if body["SalaryTransaction"]["EmployeeId"] == "E3":
                return httpx.Response(400, json={"ErrorInformation": {"message": "Unknown employee"}})
            return httpx.Response(201, json={"SalaryTransaction": {"SalaryRow": 1}})

        route = respx.post(f"{FORTNOX_API}/salarytransactions").mock(side_effect=respond)
        store.tables[COMPENSATIONS] = [
            compensation_row(3, employee_id="E3"),
            compensation_row(1),
            compensation_row(2, Aktivitetstyp=""),
        ]

        result = await _engine(store, settings).push_compensation_batch()

        assert (result.processed, result.successes, result.failures) == (3, 1, 2)
        assert [item.id for item in result.items] == [1, 2, 3]

        ok, invalid, rejected = result.items
        assert ok.flag_updated is True
        assert ok.created == {"SalaryTransaction": {"SalaryRow": 1}}
        assert invalid.error == "Missing required fields: SalaryCode (Aktivitetstyp)"
        assert invalid.missing_fields == ["SalaryCode"]
        assert rejected.status == 400
        assert rejected.details == {"ErrorInformation": {"message": "Unknown employee"}}
        assert "Unknown employee" in rejected.error

        assert route.call_count == 2
        headers = route.calls[0].request.headers
        assert headers["Authorization"] == "Bearer access-token"
        assert headers["Client-Secret"] == "client-secret-value"
        assert store.row(COMPENSATIONS, 1)["added_to_fortnox"] is True
        assert store.row(COMPENSATIONS, 3)["added_to_fortnox"] is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_rerun_never_resubmits(self, store, settings, compensation_row):
        route = respx.post(f"{FORTNOX_API}/salarytransactions").mock(
            return_value=httpx.Response(201, json={})
        )
        store.tables[COMPENSATIONS] = [compensation_row(1), compensation_row(2)]
        engine = _engine(store, settings)

        first = await engine.push_compensation_batch()
        second = await engine.push_compensation_batch()

        assert first.successes == 2
        assert second.processed == 0
        assert second.items == []
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_limit_and_primary_key_order(self, store, settings, compensation_row):
        route = respx.post(f"{FORTNOX_API}/salarytransactions").mock(
            return_value=httpx.Response(201, json={})
        )
        store.tables[COMPENSATIONS] = [compensation_row(i) for i in (5, 2, 9, 1)]

        result = await _engine(store, settings).push_compensation_batch(limit=2)

        assert [item.id for item in result.items] == [1, 2]
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_row_flagged_by_concurrent_run_is_skipped(self, store, settings, compensation_row):
        route = respx.post(f"{FORTNOX_API}/salarytransactions")
        store.tables[COMPENSATIONS] = [compensation_row(1)]

        def flag_everything(table, unflagged):
            if unflagged:
                for row in store.tables[table]:
                    row["added_to_fortnox"] = True

        store.after_select = flag_everything

        result = await _engine(store, settings).push_compensation_batch()

        assert route.call_count == 0
        assert result.items[0].skipped is True
        assert result.items[0].reason == "already added"
        assert (result.successes, result.failures) == (0, 0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_flag_failure_is_a_success_with_drift_warning(
        self, store, settings, compensation_row, caplog
    ):
        respx.post(f"{FORTNOX_API}/salarytransactions").mock(return_value=httpx.Response(201, json={}))
        store.tables[COMPENSATIONS] = [compensation_row(1)]
        store.update_errors.append(RecordStoreError("connection reset"))

        with caplog.at_level(logging.WARNING):
            result = await _engine(store, settings).push_compensation_batch()

        item = result.items[0]
        assert result.successes == 1
        assert result.failures == 0
        assert item.flag_updated is False
        assert item.flag_error == "connection reset"
        assert "DRIFT" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_token_fails_items(self, store, settings, compensation_row):
        store.tables[COMPENSATIONS] = [compensation_row(1)]

        result = await _engine(store, settings, _no_token).push_compensation_batch()

        assert result.failures == 1
        assert result.items[0].error_code == "not_authorized"

    @pytest.mark.asyncio
    async def test_missing_client_secret_blocks_the_batch(self, store, compensation_row):
        settings = PayrollExportConfig(_env_file=None)
        store.tables[COMPENSATIONS] = [compensation_row(1)]

        with pytest.raises(ConfigurationMissing):
            await _engine(store, settings).push_compensation_batch()

        dry = await _engine(store, settings).push_compensation_batch(dry_run=True)
        assert dry.successes == 1

    def test_response_shape(self):
        from payroll_export.shared.models import BatchItem, BatchResult

        result = BatchResult(
            processed=1,
            successes=1,
            dry_run=True,
            items=[BatchItem(id=4, dry_run=True, payload={"EmployeeId": "E1"})],
        )
        assert result.to_response() == {
            "processed": 1,
            "successes": 1,
            "failures": 0,
            "dryRun": True,
            "items": [{"id": 4, "dryRun": True, "payload": {"EmployeeId": "E1"}}],
        }


class TestSinglePush:
    @pytest.mark.asyncio
    @respx.mock
    async def test_second_push_reports_already_added(self, store, settings, compensation_row):
        route = respx.post(f"{FORTNOX_API}/salarytransactions").mock(
            return_value=httpx.Response(201, json={"SalaryTransaction": {}})
        )
        store.tables[COMPENSATIONS] = [compensation_row(1)]
        engine = _engine(store, settings)

        first = await engine.push_compensation(1)
        second = await engine.push_compensation("1")

        assert first.created == {"SalaryTransaction": {}}
        assert first.mapped["SalaryCode"] == "1100"
        assert second.skipped is True
        assert second.reason == "already added"
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_record(self, store, settings):
        store.tables[COMPENSATIONS] = []
        with pytest.raises(RecordNotFound):
            await _engine(store, settings).push_compensation(99)

    @pytest.mark.asyncio
    @respx.mock
    async def test_flag_failure_adds_warning(self, store, settings, compensation_row):
        respx.post(f"{FORTNOX_API}/salarytransactions").mock(return_value=httpx.Response(201, json={}))
        store.tables[COMPENSATIONS] = [compensation_row(1)]
        store.update_errors.append(RecordStoreError("timeout"))

        result = await _engine(store, settings).push_compensation(1)

        assert result.warning == "Fortnox created but flag update failed"
        assert result.to_response()["flagError"] == "timeout"


class TestPersonnelPush:
    @pytest.mark.asyncio
    @respx.mock
    async def test_external_id_is_persisted(self, store, settings, personnel_row):
        route = respx.post(f"{FORTNOX_API}/employees").mock(
            return_value=httpx.Response(201, json={"Employee": {"EmployeeId": "17"}})
        )
        store.tables[PERSONNEL] = [personnel_row(1)]

        result = await _engine(store, settings).push_personnel_batch()

        assert result.successes == 1
        assert result.items[0].external_id == "17"
        row = store.row(PERSONNEL, 1)
        assert row["added_to_fortnox"] is True
        assert row["fortnox_employee_id"] == "17"
        assert row["fortnox_id"] == "17"
        sent = json.loads(route.calls.last.request.content)
        assert sent["Employee"]["Email"] == "erik@example.com"

    @pytest.mark.asyncio
    @respx.mock
    async def test_flag_update_retries_without_missing_column(self, store, settings, personnel_row):
        respx.post(f"{FORTNOX_API}/employees").mock(
            return_value=httpx.Response(201, json={"Employee": {"EmployeeId": "17"}})
        )
        store.tables[PERSONNEL] = [personnel_row(1)]
        store.update_errors.append(
            RecordStoreError("Could not find the 'fortnox_id' column of 'test_frening_personnel'")
        )

        result = await _engine(store, settings).push_personnel_batch()

        assert result.items[0].flag_updated is True
        assert [u[2] for u in store.updates] == [
            {"added_to_fortnox": True, "fortnox_employee_id": "17", "fortnox_id": "17"},
            {"added_to_fortnox": True, "fortnox_employee_id": "17"},
        ]

    @pytest.mark.asyncio
    async def test_missing_names_fail_validation(self, store, settings, personnel_row):
        store.tables[PERSONNEL] = [personnel_row(1, **{"Förnamn": ""})]

        result = await _engine(store, settings).push_personnel_batch()

        assert result.failures == 1
        assert result.items[0].missing_fields == ["FirstName"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreadable_row_fails_alone(self, store, settings, personnel_row):
        route = respx.post(f"{FORTNOX_API}/employees").mock(
            return_value=httpx.Response(201, json={"Employee": {"EmployeeId": "17"}})
        )
        store.tables[PERSONNEL] = [
            personnel_row(1),
            personnel_row(2, Skattesats="30%"),
            personnel_row(3, Aktiv="kanske"),
        ]

        result = await _engine(store, settings).push_personnel_batch()

        assert result.processed == 3
        assert result.successes == 2
        assert result.failures == 1
        bad = result.items[2]
        assert bad.id == 3
        assert bad.error_code == "validation_failed"
        assert "Aktiv" in bad.error
        assert route.call_count == 2
        assert store.row(PERSONNEL, 3)["added_to_fortnox"] is False

    def test_preview_rejects_unreadable_row(self, store, settings, personnel_row):
        with pytest.raises(ValidationFailed):
            _engine(store, settings).preview_personnel(personnel_row(1, Aktiv="kanske"))

    def test_preview(self, store, settings, personnel_row):
        payload = _engine(store, settings).preview_personnel(personnel_row(1))
        assert payload["FirstName"] == "Erik"
