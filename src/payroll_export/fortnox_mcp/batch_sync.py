"""Idempotent push of personnel and compensation records to Fortnox.

Rows are read unflagged, in primary-key order, and pushed one at a time.
A row is flagged ``added_to_fortnox`` once Fortnox accepted it, so a batch
can be re-run after partial failure without re-submitting anything.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import ValidationError

from ..shared.config import PayrollExportConfig
from ..shared.errors import (
    ConfigurationMissing,
    FlagPersistenceFailed,
    NotAuthorized,
    RecordNotFound,
    RecordStoreError,
    UpstreamPushFailed,
    ValidationFailed,
)
from ..shared.models import (
    BatchItem,
    BatchResult,
    CompensationRecord,
    PersonnelRecord,
    RecordKind,
    SingleResult,
)
from ..shared.record_store import RecordStore
from ..shared.schemas import COMPENSATIONS, PERSONNEL, PRIMARY_KEY, PUSHED_COLUMN, RecordSchema
from .activities import fortnox_api
from .mapping import FortnoxPayload, map_compensation, map_personnel

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[Optional[str]]]
Record = Union[PersonnelRecord, CompensationRecord]

DEFAULT_BATCH_LIMIT = 100
MAX_BATCH_LIMIT = 1000
ALREADY_ADDED = "already added"


def clamp_limit(raw: Any) -> int:
    """Positive limits are capped at 1000; anything else falls back to 100."""
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_BATCH_LIMIT
    if limit <= 0:
        return DEFAULT_BATCH_LIMIT
    return min(limit, MAX_BATCH_LIMIT)


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() == "true"


@dataclass(frozen=True)
class SyncTarget:
    kind: RecordKind
    schema: RecordSchema
    table: str
    load: Callable[[Dict[str, Any]], Record]
    map: Callable[[Record], FortnoxPayload]
    submit: Callable[[Dict[str, Any], str], Awaitable[Dict[str, Any]]]


def _load(target: SyncTarget, row: Dict[str, Any]) -> Record:
    try:
        return target.load(row)
    except ValidationError as exc:
        columns = []
        for error in exc.errors():
            attribute = str(error["loc"][0]) if error.get("loc") else ""
            try:
                column = target.schema.column_for(attribute)
            except KeyError:
                column = attribute
            if column not in columns:
                columns.append(column)
        raise ValidationFailed(
            f"Unreadable value in column(s): {', '.join(columns)}", details=columns
        ) from exc


def _employee_id_from(created: Any) -> Optional[str]:
    if not isinstance(created, dict):
        return None
    employee = created.get("Employee") or {}
    value = employee.get("EmployeeId") if isinstance(employee, dict) else None
    if value is None or str(value) == "":
        return None
    return str(value)


class BatchSyncEngine:
    """Maps stored rows to Fortnox payloads and tracks their push status."""

    def __init__(
        self,
        store: RecordStore,
        token_provider: TokenProvider,
        settings: PayrollExportConfig,
        organization: Optional[str] = None,
        today: Optional[date] = None,
        debug: bool = False,
    ):
        self.store = store
        self.token_provider = token_provider
        self.settings = settings
        self.organization = organization or settings.default_organization
        self.today = today
        self.debug = debug

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    @property
    def personnel(self) -> SyncTarget:
        return SyncTarget(
            kind=RecordKind.PERSONNEL,
            schema=PERSONNEL,
            table=self.settings.table_name("personnel", self.organization),
            load=PersonnelRecord.from_row,
            map=lambda record: map_personnel(record, self.settings),
            submit=lambda payload, token: fortnox_api.create_employee(
                payload, token, self.settings, self.debug
            ),
        )

    @property
    def compensations(self) -> SyncTarget:
        return SyncTarget(
            kind=RecordKind.COMPENSATIONS,
            schema=COMPENSATIONS,
            table=self.settings.table_name("compensations", self.organization),
            load=CompensationRecord.from_row,
            map=lambda record: map_compensation(record, self.settings, self.today),
            submit=lambda payload, token: fortnox_api.create_salary_transaction(
                payload, token, self.settings, self.debug
            ),
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def push_personnel_batch(self, limit: Any = DEFAULT_BATCH_LIMIT, dry_run: bool = False) -> BatchResult:
        return await self._push_batch(self.personnel, limit, dry_run)

    async def push_compensation_batch(self, limit: Any = DEFAULT_BATCH_LIMIT, dry_run: bool = False) -> BatchResult:
        return await self._push_batch(self.compensations, limit, dry_run)

    async def push_personnel(self, record_id: Any) -> SingleResult:
        return await self._push_one(self.personnel, record_id)

    async def push_compensation(self, record_id: Any) -> SingleResult:
        return await self._push_one(self.compensations, record_id)

    def preview_personnel(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.personnel.map(_load(self.personnel, row)).to_payload()

    def preview_compensation(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.compensations.map(_load(self.compensations, row)).to_payload()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_push_config(self) -> None:
        if not self.settings.fortnox_client_secret:
            raise ConfigurationMissing(["FORTNOX_CLIENT_SECRET"])

    async def _push_batch(self, target: SyncTarget, limit: Any, dry_run: bool) -> BatchResult:
        if not dry_run:
            self._require_push_config()
        rows = await self.store.select(
            target.table,
            unflagged=PUSHED_COLUMN,
            order_by=(PRIMARY_KEY,),
            limit=clamp_limit(limit),
        )
        result = BatchResult(processed=len(rows), dry_run=dry_run)
        for row in rows:
            item = await self._push_row(target, row, dry_run, recheck=True)
            result.items.append(item)
            if item.skipped:
                continue
            if item.failed:
                result.failures += 1
            else:
                result.successes += 1

        logger.info(
            "Fortnox %s batch: processed=%d successes=%d failures=%d dry_run=%s",
            target.kind.value, result.processed, result.successes, result.failures, dry_run,
        )
        return result

    async def _push_one(self, target: SyncTarget, record_id: Any) -> SingleResult:
        self._require_push_config()
        rows = await self.store.select(target.table, eq={PRIMARY_KEY: record_id}, limit=1)
        if not rows:
            raise RecordNotFound(f"No {target.kind.value} row with id {record_id}")
        item = await self._push_row(target, rows[0], dry_run=False, recheck=False)
        data = item.model_dump(exclude={"payload", "dry_run"})
        result = SingleResult(mapped=item.payload, **data)
        if item.flag_error:
            result.warning = "Fortnox created but flag update failed"
        return result

    async def _push_row(
        self,
        target: SyncTarget,
        row: Dict[str, Any],
        dry_run: bool,
        recheck: bool,
    ) -> BatchItem:
        try:
            record = _load(target, row)
        except ValidationFailed as exc:
            logger.warning(
                "Unreadable %s row %s: %s", target.kind.value, row.get(PRIMARY_KEY), exc.message
            )
            return BatchItem(id=row.get(PRIMARY_KEY), error=exc.message, error_code=exc.code)

        if record.pushed is True:
            return BatchItem(id=record.id, skipped=True, reason=ALREADY_ADDED)

        mapped = target.map(record)
        payload = mapped.to_payload()
        try:
            self._validate(mapped)
            if dry_run:
                return BatchItem(id=record.id, dry_run=True, payload=payload)
            if recheck and await self._flagged_since_read(target, record.id):
                return BatchItem(id=record.id, skipped=True, reason=ALREADY_ADDED)
            token = await self.token_provider()
            if not token:
                raise NotAuthorized(
                    "Fortnox credentials missing: authorize OAuth before pushing"
                )
            created = await target.submit(payload, token)
        except ValidationFailed as exc:
            return BatchItem(
                id=record.id,
                error=exc.message,
                error_code=exc.code,
                missing_fields=exc.missing_fields,
                payload=payload,
            )
        except UpstreamPushFailed as exc:
            logger.warning(
                "Fortnox rejected %s row %s: HTTP %s", target.kind.value, record.id, exc.status
            )
            return BatchItem(
                id=record.id,
                error=exc.message,
                error_code=exc.code,
                status=exc.status,
                details=exc.body,
                payload=payload,
            )
        except (NotAuthorized, RecordStoreError) as exc:
            return BatchItem(id=record.id, error=exc.message, error_code=exc.code, payload=payload)

        external_id = _employee_id_from(created) if target.kind is RecordKind.PERSONNEL else None
        item = BatchItem(
            id=record.id,
            created=created,
            payload=payload,
            external_id=external_id,
            flag_updated=True,
        )
        try:
            await self._mark_pushed(target, record.id, external_id)
        except FlagPersistenceFailed as exc:
            logger.warning(
                "DRIFT: %s row %s exists in Fortnox but is not flagged locally: %s",
                target.kind.value, record.id, exc.message,
            )
            item.flag_updated = False
            item.flag_error = exc.message
        return item

    @staticmethod
    def _validate(mapped: FortnoxPayload) -> None:
        message = mapped.missing_message()
        if message:
            raise ValidationFailed(message, missing_fields=mapped.missing_required())

    async def _flagged_since_read(self, target: SyncTarget, record_id: Any) -> bool:
        """Re-read the flag right before submitting to catch a concurrent run."""
        rows = await self.store.select(target.table, eq={PRIMARY_KEY: record_id}, limit=1)
        return bool(rows) and rows[0].get(PUSHED_COLUMN) is True

    async def _mark_pushed(self, target: SyncTarget, record_id: Any, external_id: Optional[str]) -> None:
        values: Dict[str, Any] = {PUSHED_COLUMN: True}
        if external_id:
            values["fortnox_employee_id"] = external_id
            values["fortnox_id"] = external_id
        try:
            await self.store.update(target.table, record_id, target.schema.writable(values))
            return
        except RecordStoreError as exc:
            if "fortnox_id" not in values or "fortnox_id" not in exc.message.lower():
                raise FlagPersistenceFailed(exc.message) from exc
            logger.info("Table %s lacks fortnox_id; retrying flag update without it", target.table)

        values.pop("fortnox_id")
        try:
            await self.store.update(target.table, record_id, target.schema.writable(values))
        except RecordStoreError as exc:
            raise FlagPersistenceFailed(exc.message) from exc
