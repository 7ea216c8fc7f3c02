"""Error taxonomy shared by the pipeline, registry, storage and routes.

Every error carries the HTTP status the route layer answers with, so
handlers never need to inspect the exception type:

  ValidationError          400  missing or malformed required field
  VerdictAlreadySubmitted  400  a case accepts one accusation only
  NotFoundError            404  case, location, suspect or clue missing
  UnknownOperationError    404  operation id never issued or evicted
  CooldownActiveError      429  gated action already taken today
  UpstreamGenerationError  502  generator or upload call failed
  PersistenceError         500  durable write failed
"""

from __future__ import annotations


class ObscuraError(Exception):
    """Base class; `status_code` is the response classification."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ObscuraError):
    status_code = 400


class VerdictAlreadySubmittedError(ValidationError):
    def __init__(self, case_id: str) -> None:
        super().__init__(f"Verdict already submitted for case {case_id}")
        self.case_id = case_id


class NotFoundError(ObscuraError):
    status_code = 404


class UnknownOperationError(NotFoundError):
    def __init__(self, operation_id: str) -> None:
        super().__init__(f"Operation not found: {operation_id}")
        self.operation_id = operation_id


class CooldownActiveError(ObscuraError):
    """A visit or interrogation was already recorded for this local date."""

    status_code = 429

    def __init__(self, kind: str, subject_id: str, today: str) -> None:
        super().__init__(
            f"Already {kind} {subject_id!r} today ({today}). "
            "Try again after midnight IST."
        )
        self.kind = kind
        self.subject_id = subject_id
        self.today = today


class UpstreamGenerationError(ObscuraError):
    """Raised when a generator or upload backend fails or times out."""

    status_code = 502


class PersistenceError(ObscuraError):
    status_code = 500
