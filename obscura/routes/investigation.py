"""Gated actions (visit, interrogate), location search, the final verdict,
plus clues, findings, notes and progress."""

from fastapi import APIRouter, Request

from .models import (
    AddFindingBody,
    CreateNote,
    InterrogateBody,
    SearchLocationBody,
    UpdateNote,
    VerdictBody,
    VisitLocationBody,
)

router = APIRouter()


@router.post("/visit-location")
async def visit_location(request: Request, body: VisitLocationBody):
    """Visit a location. 429 if it was already visited today (IST)."""
    progress = await request.app.state.investigation.visit_location(body.case_id, body.location_id)
    return {"progress": progress}


@router.post("/interrogate")
async def interrogate(request: Request, body: InterrogateBody):
    """Interrogate a suspect. 429 if they were already interrogated today (IST)."""
    return await request.app.state.investigation.interrogate(
        body.case_id, body.suspect_id, body.questions, body.detective_name
    )


@router.post("/investigate-location", status_code=202)
async def investigate_location(request: Request, body: SearchLocationBody):
    """Search a visited location. Poll /api/operation-status/{operation_id} for the result."""
    op_id = request.app.state.investigation.start_location_search(
        body.case_id, body.location_id, body.observation
    )
    return {"operation_id": op_id}


@router.post("/final-verdict")
async def final_verdict(request: Request, body: VerdictBody):
    """Accuse a suspect. 400 if a verdict was already submitted for the case."""
    return request.app.state.investigation.submit_verdict(
        body.case_id, body.suspect_name, body.reasoning
    )


@router.get("/cases/{case_id}/progress")
async def get_progress(request: Request, case_id: str):
    return request.app.state.investigation.get_progress(case_id)


@router.post("/cases/{case_id}/clues/{clue_id}/discover")
async def discover_clue(request: Request, case_id: str, clue_id: str):
    progress = await request.app.state.investigation.discover_clue(case_id, clue_id)
    return {"progress": progress}


@router.get("/cases/{case_id}/findings")
async def list_findings(request: Request, case_id: str, mark_read: bool = False):
    """Findings in order; pass mark_read=true to clear their "new" flag."""
    return request.app.state.investigation.list_findings(case_id, mark_read)


@router.post("/cases/{case_id}/findings", status_code=201)
async def add_finding(request: Request, case_id: str, body: AddFindingBody):
    finding_id = request.app.state.investigation.add_finding(
        case_id, body.source, body.source_details, body.text, body.importance
    )
    return {"id": finding_id}


@router.get("/cases/{case_id}/notes")
async def list_notes(request: Request, case_id: str):
    return request.app.state.investigation.list_notes(case_id)


@router.post("/cases/{case_id}/notes", status_code=201)
async def add_note(request: Request, case_id: str, body: CreateNote):
    return request.app.state.investigation.add_note(case_id, body.content, body.page)


@router.patch("/cases/{case_id}/notes/{note_id}")
async def update_note(request: Request, case_id: str, note_id: str, body: UpdateNote):
    return request.app.state.investigation.update_note(case_id, note_id, body.content)


@router.delete("/cases/{case_id}/notes/{note_id}")
async def delete_note(request: Request, case_id: str, note_id: str):
    request.app.state.investigation.delete_note(case_id, note_id)
    return {"ok": True}
