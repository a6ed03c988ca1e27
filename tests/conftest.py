"""Shared fixtures: settings, an in-memory record store and row factories."""

import copy
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from payroll_export.shared.config import PayrollExportConfig
from payroll_export.shared.errors import RecordStoreError
from payroll_export.shared.schemas import PUSHED_COLUMN



class InMemoryRecordStore:
    """RecordStore fake with the same filter semantics as the PostgREST store."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = tables or {}
        self.updates: List[tuple] = []
        self.rpc_calls: List[tuple] = []
        self.update_errors: List[RecordStoreError] = []
        self.after_select = None

    async def select(
        self,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        in_: Optional[Mapping[str, Sequence[Any]]] = None,
        unflagged: Optional[str] = None,
        order_by: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        rows = list(self.tables.get(table, []))
        for column, value in (eq or {}).items():
            rows = [r for r in rows if str(r.get(column)) == str(value)]
        for column, values in (in_ or {}).items():
            wanted = {str(v) for v in values}
            rows = [r for r in rows if str(r.get(column)) in wanted]
        if unflagged:
            rows = [r for r in rows if r.get(unflagged) in (False, None)]
        if order_by:
            rows.sort(key=lambda r: tuple(
                (r.get(c) is None, r.get(c) if r.get(c) is not None else 0) for c in order_by
            ))
        if limit is not None:
            rows = rows[:limit]
        result = copy.deepcopy(rows)
        if self.after_select is not None:
            self.after_select(table, unflagged)
        return result

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        stored = [dict(r) for r in rows]
        self.tables.setdefault(table, []).extend(stored)
        return copy.deepcopy(stored)

    async def update(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None:
        self.updates.append((table, record_id, dict(values)))
        if self.update_errors:
            raise self.update_errors.pop(0)
        for row in self.tables.get(table, []):
            if str(row.get("id")) == str(record_id):
                row.update(values)

    async def rpc(self, name: str, params: Mapping[str, Any]) -> Any:
        self.rpc_calls.append((name, dict(params)))
        return {"ok": True}

    def row(self, table: str, record_id: Any) -> Dict[str, Any]:
        return next(r for r in self.tables[table] if r.get("id") == record_id)


@pytest.fixture
def settings() -> PayrollExportConfig:
    return PayrollExportConfig(
        _env_file=None,
        fortnox_client_id="client-id",
        fortnox_client_secret="client-secret-value",
        fortnox_redirect_uri="http://localhost:3000/fortnox/auth/callback",
        frontend_url="http://localhost:5173",
        supabase_url="https://db.example.com",
        supabase_service_role_key="service-key",
        default_employment_form="TV",
        default_schedule_id="HEL",
        default_tax_column=33,
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def compensation_row():
    def make(record_id: int, **overrides: Any) -> Dict[str, Any]:
        row = {
            "id": record_id,
            "Upplagd av": "lead@example.com",
            "Avser Mån/år": "2026-09",
            "Ledare": "Anna Berg",
            "employee_id": "E1",
            "Kostnadsställe": "KS1",
            "Aktivitetstyp": "1100",
            "Antal": "2",
            "Ersättning": "500",
            "Eventuell kommentar": "Match coaching",
            "Datum utbet": "2026-10-25",
            PUSHED_COLUMN: False,
        }
        row.update(overrides)
        return row

    return make


@pytest.fixture
def personnel_row():
    def make(record_id: int, **overrides: Any) -> Dict[str, Any]:
        row = {
            "id": record_id,
            "Personnummer": "19900101-1234",
            "Förnamn": "Erik",
            "Efternamn": "Lund",
            "Clearingnr": "8327-9",
            "Bankkonto": "123 456 789",
            "Adress": "Storgatan 1",
            "Postnr": "111 22",
            "Postort": "Stockholm",
            "E-post": "erik@example.com",
            "Ändringsdag": "2026-01-01",
            PUSHED_COLUMN: False,
            "fortnox_employee_id": None,
            "Aktiv": True,
            "Skattesats": "30",
            "Sociala Avgifter": True,
        }
        row.update(overrides)
        return row

    return make
