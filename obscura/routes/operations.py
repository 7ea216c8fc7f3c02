"""Operation status polling."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/operation-status/{operation_id}")
async def operation_status(request: Request, operation_id: str):
    """Current state of a background operation. Unknown or evicted ids are 404."""
    op = request.app.state.runner.poll(operation_id)
    return {
        "status": op.status,
        "progress_percent": op.progress_percent,
        "message": op.status_message,
        "result": op.result,
        "error": op.error,
        "is_complete": op.is_terminal,
    }


@router.get("/operations")
async def list_operations(request: Request):
    """Known operation ids (diagnostics)."""
    return request.app.state.runner.registry.list_ids()
