"""Domain model behaviour that other modules rely on."""

import pytest
from pydantic import ValidationError

from obscura.models import Discovery, ImageRef, Operation

from tests.helpers import ist, make_bundle


def test_bundle_is_frozen():
    bundle = make_bundle()
    with pytest.raises(ValidationError):
        bundle.map_image_ref = ImageRef(url="u", asset_id="a")


def test_find_clue():
    bundle = make_bundle()
    location, clue = bundle.find_clue("clue-4")
    assert location == "Infirmary"
    assert clue.content.startswith("A missing toxin ampoule")
    assert bundle.find_clue("clue-99") is None


def test_asset_ids():
    bundle = make_bundle().model_copy(update={
        "location_image_refs": [ImageRef(url="u1", asset_id="obscura/locations/a")],
        "map_image_ref": ImageRef(url="u2", asset_id="obscura/maps/m"),
    })
    assert bundle.asset_ids() == ["obscura/locations/a", "obscura/maps/m"]


def test_discovery_difficulty_bounds():
    with pytest.raises(ValidationError):
        Discovery(requires="observation", difficulty=6)


def test_operation_terminal_flag():
    op = Operation(id="case_1", kind="case", started_at=ist(2024, 3, 1))
    assert op.is_terminal is False
    assert op.model_copy(update={"status": "failed"}).is_terminal is True
