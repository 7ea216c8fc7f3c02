"""Case creation (background), lookup, listing, completion and deletion."""

from fastapi import APIRouter, HTTPException, Request

from obscura.models import CaseStatus

from .models import CreateCaseBody

router = APIRouter()


@router.post("/cases", status_code=202)
async def create_case(request: Request, body: CreateCaseBody):
    """Start generating a case. Poll /operation-status/{operation_id} for the result."""
    op_id = request.app.state.orchestrator.create_case(
        body.owner_id, body.difficulty, body.detective_name
    )
    return {"operation_id": op_id}


@router.get("/cases/{case_id}")
async def get_case(request: Request, case_id: str):
    """Get a stored case with its full bundle."""
    record = request.app.state.storage.get_case(case_id)
    if record is None:
        raise HTTPException(404, "Case not found")
    return record


@router.get("/users/{owner_id}/cases")
async def list_cases(request: Request, owner_id: str, status: CaseStatus | None = None):
    """List an owner's cases, newest first."""
    return request.app.state.storage.list_by_owner(owner_id, status)


@router.post("/cases/{case_id}/complete")
async def complete_case(request: Request, case_id: str):
    """Mark a case as solved."""
    record = request.app.state.storage.complete_case(case_id)
    if record is None:
        raise HTTPException(404, "Case not found")
    return record


@router.delete("/cases/{case_id}")
async def delete_case(request: Request, case_id: str):
    """Delete a case, its investigation files and its images."""
    await request.app.state.orchestrator.delete_case(case_id)
    return {"ok": True}
