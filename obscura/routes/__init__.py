"""FastAPI endpoints under /api.

Endpoint groups: cases (create in the background, get, list per owner,
complete, delete), operation-status polling, and investigation (visit,
interrogate, clue discovery, findings, notes, progress).
"""

from fastapi import APIRouter

from .cases import router as cases_router
from .investigation import router as investigation_router
from .operations import router as operations_router

router = APIRouter()
router.include_router(cases_router)
router.include_router(operations_router)
router.include_router(investigation_router)
