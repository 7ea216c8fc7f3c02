"""Case-creation pipeline.

One call to `create_case` registers an operation and schedules `run` in the
background. The run executes, in order:

  1. generate_story                      fatal
  2. enhance_story (clue triggers)       fatal
  3. compose_intro | generate_map        fatal, concurrent
     build_clue_set                      deterministic, reads the triggers
  4. one image per location              non-fatal, isolated per location
  5. map image                           non-fatal
  6. duration + tags
  7. storage.put_case                    fatal; uploads of this run are
                                         deleted again on failure

Degraded steps add a line to the case's `warnings` instead of raising.
The operation result is {"case_id", "title", "warnings"}.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable
from typing import Any

from obscura.errors import NotFoundError, ValidationError
from obscura.llm import Generator
from obscura.models import (
    CaseBundle,
    CaseMap,
    CaseMetadata,
    CaseRecord,
    ImageRef,
    Location,
    Story,
)
from obscura.operations import JobRunner, ProgressReporter
from obscura.storage import Storage
from obscura.uploads import Uploader

from . import steps
from .metadata import estimate_duration, generate_tags

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")


async def _gather_or_cancel(*aws: Awaitable) -> list[Any]:
    """Like asyncio.gather, but the first failure cancels the siblings."""
    tasks = [asyncio.ensure_future(a) for a in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class CaseOrchestrator:
    def __init__(
        self,
        generator: Generator,
        uploader: Uploader,
        storage: Storage,
        runner: JobRunner,
        rng: random.Random | None = None,
    ) -> None:
        self.generator = generator
        self.uploader = uploader
        self.storage = storage
        self.runner = runner
        self._rng = rng or random.Random()

    def create_case(
        self, owner_id: str, difficulty: str | None = None, detective_name: str | None = None
    ) -> str:
        """Start a case-creation job and return its operation id immediately."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        if difficulty not in DIFFICULTIES:
            difficulty = "medium"

        async def job(report: ProgressReporter) -> dict[str, Any]:
            return await self.run(report, owner_id, difficulty, detective_name)

        return self.runner.submit("case", job)

    async def delete_case(self, case_id: str) -> CaseRecord:
        """Remove a stored case, then its uploaded images (best effort)."""
        record = self.storage.delete_case(case_id)
        if record is None:
            raise NotFoundError(f"Case not found: {case_id}")
        await self._discard_uploads(record.bundle.asset_ids())
        logger.info("Deleted case %s", case_id)
        return record

    # ------------------------------------------------------------------

    async def _location_image(
        self, story: Story, location: Location, name: str, warnings: list[str]
    ) -> Location:
        try:
            ref = await steps.render_location_image(
                self.generator, self.uploader, story, location, name
            )
        except Exception as e:
            logger.warning("Image for location %s failed: %s", location.id, e)
            warnings.append(f"No image for location {location.id} ({location.display_name}): {e}")
            return location.model_copy(update={"image_ref": None})
        return location.model_copy(update={"image_ref": ref})

    async def _map_image(
        self, story: Story, case_map: CaseMap, name: str, warnings: list[str]
    ) -> ImageRef | None:
        try:
            return await steps.render_map_image(
                self.generator, self.uploader, story, case_map, name
            )
        except Exception as e:
            logger.warning("Map image failed: %s", e)
            warnings.append(f"No map image: {e}")
            return None

    async def _discard_uploads(self, asset_ids: list[str]) -> None:
        for asset_id in asset_ids:
            try:
                await self.uploader.delete(asset_id)
            except Exception as e:
                logger.warning("Could not delete orphaned image %s: %s", asset_id, e)

    async def run(
        self,
        report: ProgressReporter,
        owner_id: str,
        difficulty: str,
        detective_name: str | None = None,
    ) -> dict[str, Any]:
        run_tag = report.operation_id
        warnings: list[str] = []

        report(5, "Generating story")
        story = await steps.generate_story(self.generator, self._rng)
        logger.info("[%s] Story generated: %s", run_tag, story.title)

        report(20, "Adding clue triggers")
        enhanced = await steps.enhance_story(self.generator, story)

        report(35, "Writing introduction, clues and map")
        intro, case_map = await _gather_or_cancel(
            steps.compose_intro(self.generator, enhanced, difficulty, detective_name),
            steps.generate_map(self.generator, enhanced),
        )
        clue_set = steps.build_clue_set(enhanced)

        report(55, "Rendering location images")
        locations = await asyncio.gather(*(
            self._location_image(enhanced, loc, f"location_{run_tag}_{loc.id}", warnings)
            for loc in case_map.locations
        ))
        case_map = case_map.model_copy(update={"locations": list(locations)})

        report(80, "Rendering map")
        map_ref = await self._map_image(enhanced, case_map, f"map_{run_tag}", warnings)

        report(90, "Saving case")
        bundle = CaseBundle(
            story=story,
            enhanced_story=enhanced,
            intro=intro,
            clue_set=clue_set,
            map=case_map,
            map_image_ref=map_ref,
            location_image_refs=[loc.image_ref for loc in locations if loc.image_ref is not None],
        )
        metadata = CaseMetadata(
            owner_id=owner_id,
            title=story.title,
            difficulty=difficulty,
            estimated_duration=estimate_duration(difficulty, clue_set, len(story.suspects)),
            tags=generate_tags(story),
            warnings=warnings,
        )
        try:
            case_id = self.storage.put_case(bundle, metadata)
        except Exception:
            await self._discard_uploads(bundle.asset_ids())
            raise

        logger.info("[%s] Case %s created with %d warnings", run_tag, case_id, len(warnings))
        return {"case_id": case_id, "title": story.title, "warnings": warnings}
