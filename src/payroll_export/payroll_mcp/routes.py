"""HTTP routes for salary computation and bank file download."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..dependencies import get_settings, get_store, read_body
from ..shared.config import PayrollExportConfig
from ..shared.record_store import RecordStore
from .bank_file import BankFileCodec, DebtorInfo
from .salary_engine import SalaryComputationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payroll", tags=["payroll"])


@router.get("/salaries")
async def list_salaries(
    organization: Optional[str] = None,
    store: RecordStore = Depends(get_store),
    settings: PayrollExportConfig = Depends(get_settings),
):
    engine = SalaryComputationEngine(store, settings)
    salaries = await engine.compute_unpaid_salaries(organization)
    return {
        "organization": organization or settings.default_organization,
        "salaries": [s.model_dump(mode="json") for s in salaries],
    }


@router.post("/bank-file")
async def download_bank_file(
    request: Request,
    store: RecordStore = Depends(get_store),
    settings: PayrollExportConfig = Depends(get_settings),
):
    """Compute unpaid salaries and return them as a pain.001 XML attachment."""
    body = await read_body(request)
    engine = SalaryComputationEngine(store, settings)
    salaries = await engine.compute_unpaid_salaries(body.get("organization"))

    codec = BankFileCodec.from_settings(settings)
    bank_file = codec.create_bank_file(
        salaries,
        DebtorInfo(
            name=body.get("organizationName") or "",
            iban=body.get("organizationIBAN") or "",
            bic=body.get("organizationBIC") or None,
        ),
        execution_date=body.get("executionDate") or None,
    )
    return Response(
        content=bank_file.xml,
        media_type="application/xml",
        headers={
            "Content-Disposition": f'attachment; filename="{bank_file.filename}"',
            "X-Transaction-Count": str(bank_file.transaction_count),
            "X-Total-Amount": str(bank_file.total_amount),
        },
    )
