"""Salary computation over unpushed compensation rows.

Rates are fixed constants in this version; they are not read from the
organization's settings.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..shared.config import PayrollExportConfig
from ..shared.models import (
    CompensationRecord,
    PersonnelRecord,
    SalaryBreakdownItem,
    SalaryPerson,
    parse_decimal,
)
from ..shared.record_store import RecordStore
from ..shared.schemas import PRIMARY_KEY, PUSHED_COLUMN

logger = logging.getLogger(__name__)

HOLIDAY_PAY_RATE = Decimal("0.12")
EMPLOYER_SOCIAL_FEE_RATE = Decimal("0.3142")
UNKNOWN_EMPLOYEE = "Unknown"


def _breakdown_item(record: CompensationRecord) -> SalaryBreakdownItem:
    amount = parse_decimal(record.amount, Decimal("0"))
    quantity = parse_decimal(record.quantity, Decimal("1"))
    return SalaryBreakdownItem(
        record_id=record.id,
        description=record.activity_code or UNKNOWN_EMPLOYEE,
        activity_code=record.activity_code or "",
        amount=amount,
        quantity=quantity,
        line_total=amount * quantity,
        cost_center=record.cost_center or "",
        comment=record.comment or "",
        period=record.period or "",
    )


def compute_salary(
    organization_id: str,
    employee_id: str,
    records: Sequence[CompensationRecord],
    person: Optional[PersonnelRecord],
) -> SalaryPerson:
    """Aggregate one employee's compensation rows into a salary."""
    breakdown = [_breakdown_item(r) for r in records]
    gross_base = sum((item.line_total for item in breakdown), Decimal("0"))
    holiday_pay = gross_base * HOLIDAY_PAY_RATE
    taxable = gross_base + holiday_pay

    eligible = bool(person and person.social_fee_eligible)
    tax_rate = person.tax_rate if person else Decimal("0")
    employer_social_fee = taxable * EMPLOYER_SOCIAL_FEE_RATE if eligible else Decimal("0")
    income_tax = tax_rate / Decimal("100") * taxable

    if person is not None:
        name = person.full_name
    else:
        name = (records[0].leader_name or "").strip() if records else ""

    return SalaryPerson(
        organization_id=organization_id,
        employee_id=employee_id,
        employee_name=name or UNKNOWN_EMPLOYEE,
        employee_email=(person.email or "") if person else "",
        tax_id=(person.tax_id or "") if person else "",
        gross_base=gross_base,
        holiday_pay=holiday_pay,
        employer_social_fee=employer_social_fee,
        income_tax=income_tax,
        net_pay=taxable - income_tax,
        social_fee_eligible=eligible,
        tax_rate=tax_rate,
        clearing_number=(person.clearing_code or "") if person else "",
        account_number=(person.bank_account or "") if person else "",
        breakdown=breakdown,
    )


def compute_salaries(
    organization_id: str,
    compensations: Sequence[CompensationRecord],
    personnel: Sequence[PersonnelRecord],
) -> List[SalaryPerson]:
    """Group compensation rows by employee and compute each salary.

    Groups keep first-seen order and rows keep input order, so identical
    input always yields identical output.
    """
    by_employee: Dict[str, List[CompensationRecord]] = {}
    for record in compensations:
        employee_id = (record.employee_id or "").strip()
        if not employee_id:
            logger.warning("Compensation row %s has no employee id; skipped", record.id)
            continue
        by_employee.setdefault(employee_id, []).append(record)

    people = {
        p.external_employee_id.strip(): p
        for p in personnel
        if p.external_employee_id and p.external_employee_id.strip()
    }
    return [
        compute_salary(organization_id, employee_id, records, people.get(employee_id))
        for employee_id, records in by_employee.items()
    ]


class SalaryComputationEngine:
    """Reads unpushed compensation and personnel rows and computes salaries."""

    def __init__(self, store: RecordStore, settings: PayrollExportConfig):
        self.store = store
        self.settings = settings

    async def compute_unpaid_salaries(self, organization_id: Optional[str] = None) -> List[SalaryPerson]:
        organization_id = organization_id or self.settings.default_organization
        rows = await self.store.select(
            self.settings.table_name("compensations", organization_id),
            unflagged=PUSHED_COLUMN,
            order_by=("employee_id", PRIMARY_KEY),
        )
        compensations = [CompensationRecord.from_row(r) for r in rows]
        if not compensations:
            return []

        employee_ids = sorted({
            c.employee_id.strip() for c in compensations if c.employee_id and c.employee_id.strip()
        })
        personnel_rows = []
        if employee_ids:
            personnel_rows = await self.store.select(
                self.settings.table_name("personnel", organization_id),
                in_={"fortnox_employee_id": employee_ids},
            )
        personnel = []
        for row in personnel_rows:
            try:
                personnel.append(PersonnelRecord.from_row(row))
            except ValidationError as exc:
                # the group falls back to the leader name and zero tax
                logger.warning(
                    "Unreadable personnel row %s for %s: %s",
                    row.get(PRIMARY_KEY), row.get("fortnox_employee_id"), exc,
                )

        salaries = compute_salaries(organization_id, compensations, personnel)
        logger.info(
            "Computed %d salaries from %d compensation rows for %s",
            len(salaries), len(compensations), organization_id,
        )
        return salaries
