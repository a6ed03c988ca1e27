"""ISO 20022 pain.001.001.03 credit-transfer files for salary payments."""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape, quoteattr

from ..shared.config import PayrollExportConfig
from ..shared.errors import ValidationFailed
from ..shared.models import AccountScheme, SalaryPerson
from ..shared.pay_calendar import next_pay_date

logger = logging.getLogger(__name__)

PAIN_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.001.001.03"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
REMITTANCE_MAX_LENGTH = 140
CENT = Decimal("0.01")

_IBAN_RE = re.compile(r"^[A-Z]{2}[0-9A-Z]{22}$")
_SEPARATORS_RE = re.compile(r"[\s-]")
_TEXT_ENTITIES = {'"': "&quot;", "'": "&apos;"}


@dataclass
class DebtorInfo:
    """The paying organization."""

    name: str
    iban: str
    bic: Optional[str] = None


@dataclass
class CreditorAccount:
    account_id: str
    scheme: AccountScheme
    clearing_code: Optional[str] = None


@dataclass
class BankFile:
    xml: str
    filename: str
    total_amount: Decimal
    transaction_count: int
    execution_date: str


def round_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_account(clearing_number: Optional[str], account_number: Optional[str]) -> CreditorAccount:
    """Classify a payee account as IBAN or domestic clearing + account."""
    clearing = _SEPARATORS_RE.sub("", clearing_number or "")
    account = _SEPARATORS_RE.sub("", account_number or "")

    if _IBAN_RE.match(account.upper()):
        return CreditorAccount(account.upper(), AccountScheme.IBAN)
    if clearing and account:
        return CreditorAccount(clearing + account, AccountScheme.BBAN, clearing)
    # 11+ digits usually already carry the clearing number up front
    if len(account) >= 11:
        return CreditorAccount(account, AccountScheme.BBAN, account[:4])
    return CreditorAccount(account, AccountScheme.BBAN, clearing or None)


def _text(parent: ET.Element, tag: str, value, **attrib) -> ET.Element:
    child = ET.SubElement(parent, tag, attrib)
    child.text = str(value)
    return child


# ET.tostring leaves " and ' unescaped in text nodes
def _serialize(elem: ET.Element, level: int = 0) -> List[str]:
    pad = "  " * level
    attrs = "".join(f" {k}={quoteattr(v)}" for k, v in elem.attrib.items())
    if len(elem) == 0:
        text = escape(elem.text or "", _TEXT_ENTITIES)
        return [f"{pad}<{elem.tag}{attrs}>{text}</{elem.tag}>"]
    lines = [f"{pad}<{elem.tag}{attrs}>"]
    for child in elem:
        lines.extend(_serialize(child, level + 1))
    lines.append(f"{pad}</{elem.tag}>")
    return lines


class BankFileCodec:
    """Serializes computed salaries into a single-batch payment message."""

    def __init__(
        self,
        bank_name: str = "handelsbanken",
        currency: str = "SEK",
        clearing_system: str = "SESBA",
        pay_day: int = 25,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.bank_name = bank_name
        self.currency = currency
        self.clearing_system = clearing_system
        self.pay_day = pay_day
        self._now = now

    @classmethod
    def from_settings(cls, settings: PayrollExportConfig, **kwargs) -> "BankFileCodec":
        return cls(
            bank_name=settings.bank_name,
            currency=settings.settlement_currency,
            clearing_system=settings.clearing_system_code,
            pay_day=settings.pay_day_of_month,
            **kwargs,
        )

    def included(self, salaries: Sequence[SalaryPerson]) -> List[Tuple[SalaryPerson, Decimal]]:
        """Payees with something to pay, paired with their rounded amount."""
        entries = []
        for salary in salaries:
            amount = round_amount(salary.net_pay)
            if amount > 0:
                entries.append((salary, amount))
            else:
                logger.debug("Excluding %s from bank file: net pay %s", salary.employee_id, amount)
        return entries

    def encode(
        self,
        salaries: Sequence[SalaryPerson],
        debtor: DebtorInfo,
        execution_date: Optional[str] = None,
        created: Optional[datetime] = None,
    ) -> str:
        created = created or self._now()
        execution_date = execution_date or self.default_execution_date(created.date())
        message_id = f"SALA-{int(created.timestamp() * 1000)}"

        entries = self.included(salaries)
        count = str(len(entries))
        control_sum = str(sum((amount for _, amount in entries), Decimal("0.00")))
        debtor_iban = _SEPARATORS_RE.sub("", debtor.iban).upper()

        root = ET.Element("Document", {"xmlns": PAIN_NAMESPACE, "xmlns:xsi": XSI_NAMESPACE})
        initiation = ET.SubElement(root, "CstmrCdtTrfInitn")

        header = ET.SubElement(initiation, "GrpHdr")
        _text(header, "MsgId", message_id)
        _text(header, "CreDtTm", created.strftime("%Y-%m-%dT%H:%M:%S"))
        _text(header, "NbOfTxs", count)
        _text(header, "CtrlSum", control_sum)
        _text(ET.SubElement(header, "InitgPty"), "Nm", debtor.name)

        payment = ET.SubElement(initiation, "PmtInf")
        _text(payment, "PmtInfId", f"{message_id}-1")
        _text(payment, "PmtMtd", "TRF")
        _text(payment, "BtchBookg", "true")
        _text(payment, "NbOfTxs", count)
        _text(payment, "CtrlSum", control_sum)
        payment_type = ET.SubElement(payment, "PmtTpInf")
        _text(ET.SubElement(payment_type, "SvcLvl"), "Cd", "NURG")
        _text(ET.SubElement(payment_type, "CtgyPurp"), "Cd", "SALA")
        _text(payment, "ReqdExctnDt", execution_date)
        _text(ET.SubElement(payment, "Dbtr"), "Nm", debtor.name)
        _text(ET.SubElement(ET.SubElement(payment, "DbtrAcct"), "Id"), "IBAN", debtor_iban)
        if debtor.bic:
            agent = ET.SubElement(ET.SubElement(payment, "DbtrAgt"), "FinInstnId")
            _text(agent, "BIC", debtor.bic.strip())

        for index, (salary, amount) in enumerate(entries, start=1):
            self._credit_transfer(payment, f"{message_id}-{index}", salary, amount)

        lines = ['<?xml version="1.0" encoding="UTF-8"?>']
        lines.extend(_serialize(root))
        return "\n".join(lines) + "\n"

    def _credit_transfer(self, payment: ET.Element, end_to_end_id: str, salary: SalaryPerson, amount: Decimal) -> None:
        account = format_account(salary.clearing_number, salary.account_number)
        entry = ET.SubElement(payment, "CdtTrfTxInf")
        _text(ET.SubElement(entry, "PmtId"), "EndToEndId", end_to_end_id)
        _text(ET.SubElement(entry, "Amt"), "InstdAmt", amount, Ccy=self.currency)

        if account.scheme is AccountScheme.BBAN and account.clearing_code:
            member = ET.SubElement(
                ET.SubElement(ET.SubElement(entry, "CdtrAgt"), "FinInstnId"), "ClrSysMmbId"
            )
            _text(ET.SubElement(member, "ClrSysId"), "Cd", self.clearing_system)
            _text(member, "MmbId", account.clearing_code)

        _text(ET.SubElement(entry, "Cdtr"), "Nm", salary.employee_name)

        account_id = ET.SubElement(ET.SubElement(entry, "CdtrAcct"), "Id")
        if account.scheme is AccountScheme.IBAN:
            _text(account_id, "IBAN", account.account_id)
        else:
            other = ET.SubElement(account_id, "Othr")
            _text(other, "Id", account.account_id)
            _text(ET.SubElement(other, "SchmeNm"), "Cd", AccountScheme.BBAN.value)

        remittance = f"Lön {salary.employee_name}"[:REMITTANCE_MAX_LENGTH]
        _text(ET.SubElement(entry, "RmtInf"), "Ustrd", remittance)

    def default_execution_date(self, today: Optional[date] = None) -> str:
        return next_pay_date(today, self.pay_day).isoformat()

    def filename(self, on: Optional[date] = None) -> str:
        on = on or self._now().date()
        return f"{self.bank_name}_salary_payment_{on.strftime('%Y%m%d')}.xml"

    def create_bank_file(
        self,
        salaries: Sequence[SalaryPerson],
        debtor: DebtorInfo,
        execution_date: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> BankFile:
        """Validate inputs, encode the document and optionally write it to disk."""
        if not salaries:
            raise ValidationFailed("No salaries to process")
        missing = [
            field
            for field, value in (("organizationName", debtor.name), ("organizationIBAN", debtor.iban))
            if not (value or "").strip()
        ]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", missing_fields=missing)

        created = self._now()
        execution_date = execution_date or self.default_execution_date(created.date())
        xml = self.encode(salaries, debtor, execution_date, created=created)
        entries = self.included(salaries)
        bank_file = BankFile(
            xml=xml,
            filename=self.filename(created.date()),
            total_amount=sum((amount for _, amount in entries), Decimal("0.00")),
            transaction_count=len(entries),
            execution_date=execution_date,
        )

        if output_path:
            target = Path(output_path) / bank_file.filename
            target.write_text(xml, encoding="utf-8")
            logger.info("Wrote bank file %s", target)

        logger.info(
            "Created bank file %s with %d payments totalling %s %s",
            bank_file.filename, bank_file.transaction_count, bank_file.total_amount, self.currency,
        )
        return bank_file
