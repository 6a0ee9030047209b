# src/em_admin/api/router.py
"""Admin REST API: dispute adjudication and manual job runs."""
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.em_common.database import get_db_session
from src.em_common.response import ApiResponse, success_response
from src.em_dispute.api.router import get_dispute_service
from src.em_dispute.application.schemas import DisputeResponse, ResolveDisputeRequest
from src.em_dispute.application.service import DisputeService
from src.em_gateway.auth.dependencies import CurrentUser, require_admin
from src.em_scheduler.service import EscrowScheduler

router = APIRouter(prefix="/admin", tags=["admin"])


def get_scheduler(request: Request) -> EscrowScheduler:
    """The lifespan-owned scheduler instance (attached to app.state)."""
    return request.app.state.scheduler


@router.post("/disputes/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: str,
    body: ResolveDisputeRequest,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
) -> ApiResponse:
    dispute = await service.resolve(
        db, dispute_id, admin.id, body.resolution, body.refund_percentage, body.notes
    )
    return success_response(
        DisputeResponse.from_domain(dispute).model_dump(mode="json"),
        message="Dispute resolved",
    )


@router.get("/jobs")
async def list_jobs(
    admin: Annotated[CurrentUser, Depends(require_admin)],
    scheduler: Annotated[EscrowScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    return success_response({"jobs": scheduler.job_names, "running": scheduler.running})


@router.post("/jobs/{name}/run")
async def run_job(
    name: str,
    admin: Annotated[CurrentUser, Depends(require_admin)],
    scheduler: Annotated[EscrowScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    result = await scheduler.run_job(name)
    return success_response(
        {
            "name": result.name,
            "affected": result.affected,
            "started_at": result.started_at.isoformat(),
            "duration_ms": round(result.duration_ms, 1),
        }
    )
