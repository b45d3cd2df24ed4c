from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from gradebook.database import get_db
from gradebook.auth.dependencies import is_admin
from gradebook.errors import GradebookError
from gradebook.helpers.http_errors import to_http_exception
from gradebook.models import User
from gradebook.schemas.diagnostics import DiagnosisReport, RepairReport
from gradebook.services.status_diagnostics import (
    diagnose_submission_status,
    fix_submission_status,
)

router = APIRouter(
    prefix="/admin/submission-status",
    tags=["Admin Submission Status Endpoints"]
)


@router.get("/diagnose", response_model=DiagnosisReport)
async def diagnose(
    submission_id: Optional[UUID] = Query(None),
    current_user: User = Depends(is_admin),
    db: AsyncSession = Depends(get_db),
):
    return await diagnose_submission_status(db, submission_id=submission_id)


@router.post("/repair", response_model=RepairReport)
async def repair(
    current_user: User = Depends(is_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await fix_submission_status(db)
    except GradebookError as e:
        raise to_http_exception(e) from e
