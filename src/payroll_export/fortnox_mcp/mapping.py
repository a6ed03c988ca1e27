"""Pure mapping from stored records to Fortnox payloads.

Payload fields are optional: ``None`` means absent and is dropped on
serialization, so blank source values are never sent as empty strings.
Precedence is source row, then configured default, then static fallback.
"""

from datetime import date
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..shared.config import PayrollExportConfig
from ..shared.models import CompensationRecord, PersonnelRecord
from ..shared.pay_calendar import next_pay_date

TEXT_ROW_MAX_LENGTH = 40


def clean(value: Any) -> Optional[str]:
    """Trimmed text, or None when absent or blank."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def first_present(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


class FortnoxPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    REQUIRED: ClassVar[tuple] = ()
    SOURCES: ClassVar[Dict[str, str]] = {}

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def missing_required(self) -> List[str]:
        payload = self.to_payload()
        return [name for name in self.REQUIRED if name not in payload]

    def missing_message(self) -> Optional[str]:
        missing = self.missing_required()
        if not missing:
            return None
        labelled = [
            f"{name} ({self.SOURCES[name]})" if name in self.SOURCES else name
            for name in missing
        ]
        return f"Missing required fields: {', '.join(labelled)}"


class EmployeePayload(FortnoxPayload):
    REQUIRED = ("Email", "FirstName", "LastName")
    SOURCES = {"Email": "E-post", "FirstName": "Förnamn", "LastName": "Efternamn"}

    employee_id: Optional[str] = Field(default=None, alias="EmployeeId")
    email: Optional[str] = Field(default=None, alias="Email")
    first_name: Optional[str] = Field(default=None, alias="FirstName")
    last_name: Optional[str] = Field(default=None, alias="LastName")
    personal_identity_number: Optional[str] = Field(default=None, alias="PersonalIdentityNumber")
    clearing_no: Optional[str] = Field(default=None, alias="ClearingNo")
    bank_account_no: Optional[str] = Field(default=None, alias="BankAccountNo")
    address1: Optional[str] = Field(default=None, alias="Address1")
    post_code: Optional[str] = Field(default=None, alias="PostCode")
    city: Optional[str] = Field(default=None, alias="City")
    employment_date: Optional[str] = Field(default=None, alias="EmploymentDate")
    employment_form: Optional[str] = Field(default=None, alias="EmploymentForm")
    salary_form: Optional[str] = Field(default=None, alias="SalaryForm")
    personel_type: Optional[str] = Field(default=None, alias="PersonelType")
    schedule_id: Optional[str] = Field(default=None, alias="ScheduleId")
    fora_type: Optional[str] = Field(default=None, alias="ForaType")
    tax_allowance: Optional[str] = Field(default=None, alias="TaxAllowance")
    tax_column: Optional[int] = Field(default=None, alias="TaxColumn")
    project: Optional[str] = Field(default=None, alias="Project")
    country: Optional[str] = Field(default=None, alias="Country")


class SalaryTransactionPayload(FortnoxPayload):
    REQUIRED = ("EmployeeId", "Date", "SalaryCode")
    SOURCES = {
        "EmployeeId": "employee_id",
        "Date": "Datum utbet",
        "SalaryCode": "Aktivitetstyp",
    }

    employee_id: Optional[str] = Field(default=None, alias="EmployeeId")
    date: Optional[str] = Field(default=None, alias="Date")
    salary_code: Optional[str] = Field(default=None, alias="SalaryCode")
    amount: Optional[str] = Field(default=None, alias="Amount")
    cost_center: Optional[str] = Field(default=None, alias="CostCenter")
    number: Optional[str] = Field(default=None, alias="Number")
    text_row: Optional[str] = Field(default=None, alias="TextRow")


def map_personnel(record: PersonnelRecord, settings: PayrollExportConfig) -> EmployeePayload:
    # Employee cost center is not part of the Fortnox employee payload.
    return EmployeePayload(
        employee_id=clean(record.external_employee_id),
        email=clean(record.email),
        first_name=clean(record.first_name),
        last_name=clean(record.last_name),
        personal_identity_number=clean(record.tax_id),
        clearing_no=clean(record.clearing_code),
        bank_account_no=clean(record.bank_account),
        address1=clean(record.address),
        post_code=clean(record.post_code),
        city=clean(record.city),
        employment_date=clean(record.employment_date),
        employment_form=clean(settings.default_employment_form),
        salary_form=clean(settings.default_salary_form),
        personel_type=clean(settings.default_personel_type),
        schedule_id=clean(settings.default_schedule_id),
        fora_type=clean(settings.default_fora_type),
        tax_allowance=clean(settings.default_tax_allowance),
        tax_column=settings.default_tax_column,
        project=clean(settings.default_project),
        country=clean(settings.default_country),
    )


def map_compensation(
    record: CompensationRecord,
    settings: PayrollExportConfig,
    today: Optional[date] = None,
) -> SalaryTransactionPayload:
    default_date = next_pay_date(today, settings.pay_day_of_month).isoformat()
    text_row = clean(record.comment)
    return SalaryTransactionPayload(
        employee_id=clean(record.employee_id),
        date=first_present(clean(record.payout_date), default_date),
        salary_code=clean(record.activity_code),
        amount=clean(record.amount),
        cost_center=clean(record.cost_center),
        number=clean(record.quantity),
        text_row=text_row[:TEXT_ROW_MAX_LENGTH] if text_row else None,
    )
