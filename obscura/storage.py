"""JSON file storage.

All durable state lives in JSON files under a configurable base directory.
There is no database: reads and writes go through plain helper methods
that validate with pydantic and dump JSON. Every write goes to a temporary
file first and is moved into place with os.replace, so a reader sees
either the old document or the new one, never half of either.

Directory layout:

    {base}/
      cases/
        {case_id}.json          ← CaseRecord (metadata + immutable bundle)
        {case_id}/
          progress.json         ← InvestigationProgress (versioned)
          findings.json         ← append-only Finding list
          findings-read.json    ← {"seen": N} read watermark
          notes.json            ← notepad entries
      media/                    ← LocalUploader images

Case ids are assigned here, at put time. A case directory only appears
once its record has been written.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from obscura.errors import PersistenceError, VerdictAlreadySubmittedError
from obscura.models import (
    CaseBundle,
    CaseMetadata,
    CaseRecord,
    CaseStatus,
    Finding,
    FindingSource,
    Importance,
    InvestigationProgress,
    Note,
    Verdict,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Storage:
    def __init__(self, base_path: Path, clock: Callable[[], datetime] = _utcnow) -> None:
        self._base = base_path
        self._case_root = base_path / "cases"
        self._case_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._clock = clock

    @property
    def media_dir(self) -> Path:
        return self._base / "media"

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _case_file(self, case_id: str) -> Path:
        return self._case_root / f"{case_id}.json"

    def _case_dir(self, case_id: str) -> Path:
        return self._case_root / case_id

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2, default=str))
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write {path.name}: {e}") from e

    def _require_case(self, case_id: str) -> None:
        if not self._case_file(case_id).is_file():
            raise PersistenceError(f"Case {case_id} does not exist")

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def put_case(self, bundle: CaseBundle, metadata: CaseMetadata) -> str:
        """Store a finished bundle as a new active case. Returns the case id."""
        case_id = uuid.uuid4().hex
        record = CaseRecord(
            id=case_id,
            owner_id=metadata.owner_id,
            title=metadata.title,
            difficulty=metadata.difficulty,
            estimated_duration=metadata.estimated_duration,
            tags=metadata.tags,
            warnings=metadata.warnings,
            created_at=self._clock(),
            bundle=bundle,
        )
        self._write_json(self._case_file(case_id), record.model_dump(mode="json"))
        logger.info("Stored case %s for owner %s", case_id, metadata.owner_id)
        return case_id

    def get_case(self, case_id: str) -> CaseRecord | None:
        path = self._case_file(case_id)
        if not path.is_file():
            return None
        return CaseRecord.model_validate_json(path.read_text())

    def list_by_owner(
        self, owner_id: str, status: CaseStatus | None = None
    ) -> list[CaseRecord]:
        """Cases owned by `owner_id`, newest first, optionally filtered by status."""
        results = []
        for path in self._case_root.glob("*.json"):
            try:
                record = CaseRecord.model_validate_json(path.read_text())
            except FileNotFoundError:
                # deleted between the directory scan and the read
                continue
            if record.owner_id != owner_id:
                continue
            if status is not None and record.status != status:
                continue
            results.append(record)
        results.sort(key=lambda r: r.created_at, reverse=True)
        return results

    def complete_case(self, case_id: str) -> CaseRecord | None:
        with self._lock:
            record = self.get_case(case_id)
            if record is None:
                return None
            record.status = "completed"
            record.completed_at = self._clock()
            self._write_json(self._case_file(case_id), record.model_dump(mode="json"))
            return record

    def record_verdict(self, case_id: str, verdict: Verdict) -> CaseRecord | None:
        """Attach the verdict and complete the case. A second verdict is refused."""
        with self._lock:
            record = self.get_case(case_id)
            if record is None:
                return None
            if record.verdict is not None:
                raise VerdictAlreadySubmittedError(case_id)
            record.verdict = verdict
            record.status = "completed"
            record.completed_at = verdict.submitted_at
            self._write_json(self._case_file(case_id), record.model_dump(mode="json"))
            logger.info(
                "Case %s closed, accused %s (score %d)", case_id, verdict.accused, verdict.score
            )
            return record

    def delete_case(self, case_id: str) -> CaseRecord | None:
        """Remove a case and its child files. Returns the removed record."""
        with self._lock:
            record = self.get_case(case_id)
            if record is None:
                return None
            self._case_file(case_id).unlink()
            child_dir = self._case_dir(case_id)
            if child_dir.is_dir():
                for child in child_dir.iterdir():
                    child.unlink()
                child_dir.rmdir()
            return record

    # ------------------------------------------------------------------
    # Investigation progress (optimistic concurrency)
    # ------------------------------------------------------------------

    def get_progress(self, case_id: str) -> InvestigationProgress:
        path = self._case_dir(case_id) / "progress.json"
        if not path.is_file():
            return InvestigationProgress()
        return InvestigationProgress.model_validate(self._read_json(path))

    def update_progress(
        self, case_id: str, progress: InvestigationProgress, expected_version: int
    ) -> bool:
        """Write `progress` only if the stored version is still `expected_version`.

        Returns False on a version conflict; nothing is written in that case.
        The stored version becomes expected_version + 1.
        """
        with self._lock:
            self._require_case(case_id)
            current = self.get_progress(case_id)
            if current.version != expected_version:
                logger.warning(
                    "Progress conflict for case %s: expected v%d, found v%d",
                    case_id, expected_version, current.version,
                )
                return False
            stored = progress.model_copy(update={"version": expected_version + 1})
            self._write_json(
                self._case_dir(case_id) / "progress.json", stored.model_dump(mode="json")
            )
            return True

    # ------------------------------------------------------------------
    # Findings (append-only)
    # ------------------------------------------------------------------

    def list_findings(self, case_id: str) -> list[Finding]:
        path = self._case_dir(case_id) / "findings.json"
        if not path.is_file():
            return []
        return [Finding.model_validate(f) for f in self._read_json(path)]

    def append_finding(
        self,
        case_id: str,
        source: FindingSource,
        source_details: str,
        text: str,
        importance: Importance = "minor",
        is_new: bool = True,
    ) -> str:
        """Append one finding. Returns the new finding id."""
        with self._lock:
            self._require_case(case_id)
            finding = Finding(
                id=uuid.uuid4().hex,
                case_id=case_id,
                source=source,
                source_details=source_details,
                text=text,
                importance=importance,
                is_new=is_new,
                created_at=self._clock(),
            )
            existing = self.list_findings(case_id)
            existing.append(finding)
            self._write_json(
                self._case_dir(case_id) / "findings.json",
                [f.model_dump(mode="json") for f in existing],
            )
            return finding.id

    def get_findings_seen(self, case_id: str) -> int:
        path = self._case_dir(case_id) / "findings-read.json"
        if not path.is_file():
            return 0
        return int(self._read_json(path).get("seen", 0))

    def set_findings_seen(self, case_id: str, seen: int) -> None:
        with self._lock:
            self._require_case(case_id)
            self._write_json(self._case_dir(case_id) / "findings-read.json", {"seen": seen})

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_notes(self, case_id: str) -> list[Note]:
        path = self._case_dir(case_id) / "notes.json"
        if not path.is_file():
            return []
        return [Note.model_validate(n) for n in self._read_json(path)]

    def _save_notes(self, case_id: str, notes: list[Note]) -> None:
        self._write_json(
            self._case_dir(case_id) / "notes.json",
            [n.model_dump(mode="json") for n in notes],
        )

    def add_note(self, case_id: str, content: str, page: int = 1) -> Note:
        with self._lock:
            self._require_case(case_id)
            now = self._clock()
            note = Note(
                id=uuid.uuid4().hex, case_id=case_id, page=page,
                content=content, created_at=now, updated_at=now,
            )
            notes = self.get_notes(case_id)
            notes.append(note)
            self._save_notes(case_id, notes)
            return note

    def update_note(self, case_id: str, note_id: str, content: str) -> Note | None:
        with self._lock:
            notes = self.get_notes(case_id)
            for note in notes:
                if note.id == note_id:
                    note.content = content
                    note.updated_at = self._clock()
                    self._save_notes(case_id, notes)
                    return note
            return None

    def delete_note(self, case_id: str, note_id: str) -> bool:
        with self._lock:
            notes = self.get_notes(case_id)
            remaining = [n for n in notes if n.id != note_id]
            if len(remaining) == len(notes):
                return False
            self._save_notes(case_id, remaining)
            return True
