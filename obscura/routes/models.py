"""Pydantic request bodies for API endpoints."""

from pydantic import BaseModel

from obscura.models import FindingSource, Importance


class CreateCaseBody(BaseModel):
    owner_id: str
    difficulty: str | None = None  # unknown values fall back to "medium"
    detective_name: str | None = None


class VisitLocationBody(BaseModel):
    case_id: str
    location_id: str


class InterrogateBody(BaseModel):
    case_id: str
    suspect_id: str
    questions: list[str]
    detective_name: str | None = None


class AddFindingBody(BaseModel):
    source: FindingSource
    source_details: str = ""
    text: str
    importance: Importance = "minor"


class CreateNote(BaseModel):
    content: str
    page: int = 1


class UpdateNote(BaseModel):
    content: str


class SearchLocationBody(BaseModel):
    case_id: str
    location_id: str
    observation: str


class VerdictBody(BaseModel):
    case_id: str
    suspect_name: str
    reasoning: str
