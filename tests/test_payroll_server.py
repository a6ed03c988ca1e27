"""Tests for the payroll MCP tools."""

import json

import pytest

from payroll_export.payroll_mcp import server

COMPENSATIONS = "test_frening_compensations"


def _call(tool):
    return getattr(tool, "fn", tool)


@pytest.fixture(autouse=True)
def wired(monkeypatch, settings, store):
    monkeypatch.setattr(server, "config", settings)
    monkeypatch.setattr(server, "get_record_store", lambda: store)


class TestPayrollTools:
    @pytest.mark.asyncio
    async def test_compute_unpaid_salaries(self, store, compensation_row):
        store.tables[COMPENSATIONS] = [compensation_row(1)]

        response = json.loads(await _call(server.compute_unpaid_salaries)())

        assert response["success"] is True
        assert response["details"]["count"] == 1
        salary = response["details"]["salaries"][0]
        assert salary["employee_id"] == "E1"
        assert salary["employer_total_cost"] == "1120.00"

    @pytest.mark.asyncio
    async def test_create_salary_bank_file(self, store, compensation_row):
        store.tables[COMPENSATIONS] = [compensation_row(1)]

        response = json.loads(
            await _call(server.create_salary_bank_file)(
                organization_name="Test Förening",
                organization_iban="SE3550000000054910000003",
            )
        )

        assert response["success"] is True
        assert response["details"]["transaction_count"] == 1
        assert response["details"]["total_amount"] == "1120.00"
        assert response["details"]["filename"].startswith("handelsbanken_salary_payment_")

    @pytest.mark.asyncio
    async def test_bank_file_without_salaries_is_an_error_response(self, store):
        response = json.loads(
            await _call(server.create_salary_bank_file)(
                organization_name="Club", organization_iban="SE3550000000054910000003"
            )
        )

        assert response["success"] is False
        assert response["details"] == {"error": "No salaries to process", "context": "validation_failed"}

    @pytest.mark.asyncio
    async def test_provision_organization_tables(self, store):
        response = json.loads(await _call(server.provision_organization_tables)("club_b"))

        assert response["success"] is True
        name, params = store.rpc_calls[0]
        assert name == "create_org_tables"
        assert params["org_name"] == "club_b"

    @pytest.mark.asyncio
    async def test_provision_requires_organization(self, store):
        response = json.loads(await _call(server.provision_organization_tables)("  "))

        assert response["success"] is False
        assert store.rpc_calls == []
