"""Payroll MCP Server.

Exposes salary computation, bank file generation and organization table
provisioning as FastMCP tools served over streamable-http.
"""

import logging
from typing import List

from fastmcp import FastMCP

from ..shared.config import config
from ..shared.errors import PayrollExportError, ValidationFailed
from ..shared.models import SalaryPerson, error_response, success_response
from ..shared.record_store import get_record_store
from ..shared.schemas import PROVISIONING_ORDER, provisioning_params
from .bank_file import BankFileCodec, DebtorInfo
from .salary_engine import SalaryComputationEngine

logger = logging.getLogger(__name__)

mcp = FastMCP("Payroll MCP Server")

PROVISION_RPC = "create_org_tables"


def salary_details(salary: SalaryPerson) -> dict:
    details = salary.model_dump(mode="json")
    details["employer_total_cost"] = str(salary.employer_total_cost)
    return details


async def _unpaid_salaries(organization: str) -> List[SalaryPerson]:
    engine = SalaryComputationEngine(get_record_store(), config)
    return await engine.compute_unpaid_salaries(organization or None)


@mcp.tool()
async def compute_unpaid_salaries(organization: str = "") -> str:
    """Compute salaries from compensation rows not yet pushed to Fortnox."""
    try:
        salaries = await _unpaid_salaries(organization)
        org = organization or config.default_organization
        return success_response(
            action="Unpaid Salaries Computed",
            details={
                "organization": org,
                "count": len(salaries),
                "salaries": [salary_details(s) for s in salaries],
            },
            summary=f"Computed {len(salaries)} unpaid salaries for {org}.",
        )
    except PayrollExportError as exc:
        return error_response("Compute Unpaid Salaries", exc.message, exc.code)
    except Exception as exc:
        logger.exception("Salary computation failed")
        return error_response("Compute Unpaid Salaries", str(exc), "Salary Engine")


@mcp.tool()
async def create_salary_bank_file(
    organization_name: str,
    organization_iban: str,
    organization_bic: str = "",
    organization: str = "",
    execution_date: str = "",
    output_path: str = "",
) -> str:
    """Create a pain.001 salary payment file for all unpaid salaries."""
    try:
        salaries = await _unpaid_salaries(organization)
        codec = BankFileCodec.from_settings(config)
        bank_file = codec.create_bank_file(
            salaries,
            DebtorInfo(organization_name, organization_iban, organization_bic or None),
            execution_date=execution_date or None,
            output_path=output_path or None,
        )
        return success_response(
            action="Bank File Created",
            details={
                "filename": bank_file.filename,
                "execution_date": bank_file.execution_date,
                "transaction_count": bank_file.transaction_count,
                "total_amount": str(bank_file.total_amount),
                "currency": codec.currency,
                "xml": bank_file.xml,
            },
            summary=(
                f"Bank file {bank_file.filename} created with {bank_file.transaction_count} "
                f"payments totalling {bank_file.total_amount} {codec.currency}."
            ),
        )
    except PayrollExportError as exc:
        return error_response("Create Salary Bank File", exc.message, exc.code)
    except Exception as exc:
        logger.exception("Bank file creation failed")
        return error_response("Create Salary Bank File", str(exc), "Bank File Codec")


@mcp.tool()
async def provision_organization_tables(organization: str) -> str:
    """Create the personnel, compensation and retainer tables for an organization."""
    try:
        if not organization.strip():
            raise ValidationFailed("Organization name is required", missing_fields=["organization"])
        params = provisioning_params(organization.strip())
        result = await get_record_store().rpc(PROVISION_RPC, params)
        logger.info("Provisioned tables for organization %s", organization)
        return success_response(
            action="Organization Tables Provisioned",
            details={"organization": organization, "kinds": list(PROVISIONING_ORDER), "result": result},
            summary=f"Tables for {organization} provisioned: {', '.join(PROVISIONING_ORDER)}.",
        )
    except PayrollExportError as exc:
        return error_response("Provision Organization Tables", exc.message, exc.code)
    except Exception as exc:
        logger.exception("Table provisioning failed")
        return error_response("Provision Organization Tables", str(exc), "Record Store")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="streamable-http", host="0.0.0.0", port=8080)
