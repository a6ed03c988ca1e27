"""Shared data models for the payroll export services."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .schemas import COMPENSATIONS, PERSONNEL


def current_time_ms() -> int:
    return int(time.time() * 1000)


def parse_decimal(raw: Any, fallback: Decimal) -> Decimal:
    """Parse a stored text number, accepting a decimal comma and a trailing %."""
    if raw is None:
        return fallback
    text = str(raw).strip().replace(" ", "").replace(",", ".").rstrip("%")
    if not text:
        return fallback
    try:
        value = Decimal(text)
    except InvalidOperation:
        return fallback
    return value if value.is_finite() else fallback


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RecordKind(str, Enum):
    """Record kinds pushed to Fortnox."""

    PERSONNEL = "personnel"
    COMPENSATIONS = "compensations"


class AccountScheme(str, Enum):
    """How a creditor account is identified in the bank file."""

    IBAN = "IBAN"
    BBAN = "BBAN"


class AuthResult(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


# ---------------------------------------------------------------------------
# OAuth models
# ---------------------------------------------------------------------------

class OAuthCredential(BaseModel):
    """Fortnox token pair owned by exactly one session."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: int  # epoch milliseconds

    def is_valid(self, now_ms: Optional[int] = None) -> bool:
        now_ms = current_time_ms() if now_ms is None else now_ms
        return bool(self.access_token) and self.expires_at > now_ms


class AuthStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    authorized: bool
    expires_at: Optional[int] = None
    expires_in_ms: Optional[int] = None


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class CompensationRecord(BaseModel):
    """One unit of pay for one employee in one period."""

    id: Any = None
    created_by: Optional[str] = None
    period: Optional[str] = None
    leader_name: Optional[str] = None
    employee_id: Optional[str] = None
    cost_center: Optional[str] = None
    activity_code: Optional[str] = None
    quantity: Optional[str] = None
    amount: Optional[str] = None
    comment: Optional[str] = None
    payout_date: Optional[str] = None
    pushed: Optional[bool] = None

    @classmethod
    def from_row(cls, row: dict) -> "CompensationRecord":
        values = COMPENSATIONS.to_attributes(row)
        if COMPENSATIONS.column_for("pushed") not in row:
            values["pushed"] = None
        return cls(**_stringify_text(values, exclude=("id", "pushed")))


class PersonnelRecord(BaseModel):
    """Employee master data."""

    id: Any = None
    created_by: Optional[str] = None
    tax_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    clearing_code: Optional[str] = None
    bank_account: Optional[str] = None
    address: Optional[str] = None
    post_code: Optional[str] = None
    city: Optional[str] = None
    email: Optional[str] = None
    cost_center: Optional[str] = None
    position: Optional[str] = None
    employment_date: Optional[str] = None
    monthly_rate: Optional[str] = None
    hourly_rate: Optional[str] = None
    daily_rate: Optional[str] = None
    other_rate: Optional[str] = None
    comment: Optional[str] = None
    pushed: Optional[bool] = None
    fortnox_id: Optional[str] = None
    external_employee_id: Optional[str] = None
    active: Optional[bool] = True
    tax_rate: Decimal = Decimal("0")
    social_fee_eligible: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "PersonnelRecord":
        values = PERSONNEL.to_attributes(row)
        if PERSONNEL.column_for("pushed") not in row:
            values["pushed"] = None
        values["tax_rate"] = parse_decimal(values.get("tax_rate"), Decimal("0"))
        values["social_fee_eligible"] = values.get("social_fee_eligible") is True
        return cls(
            **_stringify_text(
                values,
                exclude=("id", "pushed", "active", "tax_rate", "social_fee_eligible"),
            )
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


def _stringify_text(values: dict, exclude: tuple) -> dict:
    return {
        k: (str(v) if v is not None and k not in exclude else v)
        for k, v in values.items()
    }


# ---------------------------------------------------------------------------
# Salary models
# ---------------------------------------------------------------------------

class SalaryBreakdownItem(BaseModel):
    """One contributing compensation record, with the parsed values used."""

    record_id: Any = None
    description: str
    activity_code: str = ""
    amount: Decimal
    quantity: Decimal
    line_total: Decimal
    cost_center: str = ""
    comment: str = ""
    period: str = ""


class SalaryPerson(BaseModel):
    """Computed salary for one employee. Never persisted."""

    organization_id: str
    employee_id: str
    employee_name: str
    employee_email: str = ""
    tax_id: str = ""
    gross_base: Decimal
    holiday_pay: Decimal
    employer_social_fee: Decimal
    income_tax: Decimal
    net_pay: Decimal
    social_fee_eligible: bool = False
    tax_rate: Decimal = Decimal("0")
    bank_name: str = ""
    clearing_number: str = ""
    account_number: str = ""
    breakdown: List[SalaryBreakdownItem] = Field(default_factory=list)

    @property
    def employer_total_cost(self) -> Decimal:
        return self.gross_base + self.holiday_pay + self.employer_social_fee


# ---------------------------------------------------------------------------
# Batch sync results
# ---------------------------------------------------------------------------

class BatchItem(BaseModel):
    """Outcome for one input record, reported in input order."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Any = None
    skipped: Optional[bool] = None
    reason: Optional[str] = None
    dry_run: Optional[bool] = None
    payload: Optional[dict] = None
    created: Optional[Any] = None
    flag_updated: Optional[bool] = None
    flag_error: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    missing_fields: Optional[List[str]] = None
    status: Optional[int] = None
    details: Optional[Any] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class BatchResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    processed: int = 0
    successes: int = 0
    failures: int = 0
    dry_run: bool = False
    items: List[BatchItem] = Field(default_factory=list)

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SingleResult(BaseModel):
    """Outcome of pushing a single record by id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Any = None
    mapped: Optional[dict] = None
    created: Optional[Any] = None
    skipped: Optional[bool] = None
    reason: Optional[str] = None
    flag_updated: Optional[bool] = None
    flag_error: Optional[str] = None
    warning: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    missing_fields: Optional[List[str]] = None
    status: Optional[int] = None
    details: Optional[Any] = None

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Tool response helpers
# ---------------------------------------------------------------------------

class ToolResponse(BaseModel):
    """Standardised tool response envelope."""

    success: bool
    action: str
    details: dict = Field(default_factory=dict)
    summary: str = ""
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_success_str(self) -> str:
        """Serialise as a string for MCP tool return."""
        return self.model_dump_json(indent=2)


def success_response(action: str, details: dict, summary: str) -> str:
    """Build a success response string."""
    return ToolResponse(
        success=True, action=action, details=details, summary=summary
    ).to_success_str()


def error_response(action: str, error_message: str, context: str = "") -> str:
    """Build an error response string."""
    return ToolResponse(
        success=False,
        action=action,
        details={"error": error_message, "context": context},
        summary=f"Error during {action}: {error_message}",
    ).to_success_str()
