"""Tests for row-to-payload mapping, record schemas and the pay-day rule."""

from datetime import date

import pytest

from payroll_export.fortnox_mcp.mapping import map_compensation, map_personnel
from payroll_export.shared.models import CompensationRecord, PersonnelRecord
from payroll_export.shared.pay_calendar import next_pay_date
from payroll_export.shared.schemas import COMPENSATIONS, PERSONNEL, provisioning_params


class TestNextPayDate:
    @pytest.mark.parametrize(
        "today, expected",
        [
            (date(2026, 3, 24), date(2026, 3, 25)),
            (date(2026, 3, 25), date(2026, 4, 25)),
            (date(2026, 3, 26), date(2026, 4, 25)),
            (date(2026, 12, 31), date(2027, 1, 25)),
            (date(2026, 1, 1), date(2026, 1, 25)),
        ],
    )
    def test_rule(self, today, expected):
        assert next_pay_date(today) == expected


class TestMapPersonnel:
    def test_maps_row_and_configured_defaults(self, settings, personnel_row):
        record = PersonnelRecord.from_row(personnel_row(1, fortnox_employee_id="42"))

        payload = map_personnel(record, settings).to_payload()

        assert payload == {
            "EmployeeId": "42",
            "Email": "erik@example.com",
            "FirstName": "Erik",
            "LastName": "Lund",
            "PersonalIdentityNumber": "19900101-1234",
            "ClearingNo": "8327-9",
            "BankAccountNo": "123 456 789",
            "Address1": "Storgatan 1",
            "PostCode": "111 22",
            "City": "Stockholm",
            "EmploymentDate": "2026-01-01",
            "EmploymentForm": "TV",
            "SalaryForm": "TIM",
            "PersonelType": "ARB",
            "ScheduleId": "HEL",
            "TaxColumn": 33,
        }

    def test_blank_values_are_omitted(self, settings, personnel_row):
        record = PersonnelRecord.from_row(personnel_row(1, Adress="   ", Postort=""))
        payload = map_personnel(record, settings).to_payload()

        assert "Address1" not in payload
        assert "City" not in payload

    def test_missing_required_fields_are_named(self, settings, personnel_row):
        record = PersonnelRecord.from_row(personnel_row(1, **{"E-post": "", "Efternamn": None}))
        mapped = map_personnel(record, settings)

        assert mapped.missing_required() == ["Email", "LastName"]
        assert mapped.missing_message() == "Missing required fields: Email (E-post), LastName (Efternamn)"


class TestMapCompensation:
    def test_maps_row(self, settings, compensation_row):
        record = CompensationRecord.from_row(compensation_row(7))

        payload = map_compensation(record, settings, today=date(2026, 10, 1)).to_payload()

        assert payload == {
            "EmployeeId": "E1",
            "Date": "2026-10-25",
            "SalaryCode": "1100",
            "Amount": "500",
            "CostCenter": "KS1",
            "Number": "2",
            "TextRow": "Match coaching",
        }

    def test_date_defaults_to_next_pay_day(self, settings, compensation_row):
        record = CompensationRecord.from_row(compensation_row(7, **{"Datum utbet": None}))
        payload = map_compensation(record, settings, today=date(2026, 10, 26)).to_payload()
        assert payload["Date"] == "2026-11-25"

    def test_text_row_is_truncated(self, settings, compensation_row):
        record = CompensationRecord.from_row(
            compensation_row(7, **{"Eventuell kommentar": "x" * 55})
        )
        payload = map_compensation(record, settings).to_payload()
        assert payload["TextRow"] == "x" * 40

    def test_missing_activity_code(self, settings, compensation_row):
        record = CompensationRecord.from_row(compensation_row(7, Aktivitetstyp=" "))
        mapped = map_compensation(record, settings)

        assert mapped.missing_required() == ["SalaryCode"]
        assert mapped.missing_message() == "Missing required fields: SalaryCode (Aktivitetstyp)"


class TestRecordSchemas:
    def test_unknown_columns_are_dropped_on_read(self, compensation_row):
        row = compensation_row(3, injected="drop me")
        assert "injected" not in COMPENSATIONS.normalize(row)

    def test_absent_pushed_column_reads_as_unset(self, compensation_row):
        row = compensation_row(3)
        del row["added_to_fortnox"]
        assert CompensationRecord.from_row(row).pushed is None

    def test_writes_are_allow_listed(self):
        assert PERSONNEL.writable({"added_to_fortnox": True}) == {"added_to_fortnox": True}
        with pytest.raises(KeyError):
            PERSONNEL.writable({"is_admin": True})

    def test_field_metadata(self):
        assert [f.column for f in PERSONNEL.fields if f.unique] == ["E-post"]
        assert [f.attribute for f in COMPENSATIONS.fields if f.required] == ["employee_id", "activity_code"]

    def test_personnel_defaults(self):
        record = PersonnelRecord.from_row({"id": 1, "Förnamn": "Ada"})
        assert record.active is True
        assert record.social_fee_eligible is False
        assert record.tax_rate == 0

    def test_provisioning_params(self):
        params = provisioning_params("club_a")

        assert params["org_name"] == "club_a"
        assert params["compensations_cols"][3] == "employee_id"
        assert len(params["personnel_cols"]) == len(params["personnel_types"])
        assert params["personnel_defaults"][params["personnel_cols"].index("Aktiv")] == "true"
        assert "monthly_retainer_cols" in params
