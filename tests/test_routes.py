"""HTTP surface: case creation + polling, gated actions, error mapping."""

import httpx
import pytest

from obscura.app import create_app
from obscura.config import Settings

from tests.helpers import FixedClock, StubGenerator, StubUploader, ist, store_case


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(ist(2024, 3, 1, 10, 0))


@pytest.fixture
def app(data_dir, clock):
    return create_app(
        Settings(data_dir=data_dir),
        generator=StubGenerator(),
        uploader=StubUploader(),
        clock=clock,
    )


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def case_id(app) -> str:
    return store_case(app.state.storage)


# ── Cases + operations ───────────────────────────────────────


async def test_create_case_and_poll(app, client):
    resp = await client.post("/api/cases", json={"owner_id": "user-1", "difficulty": "easy"})
    assert resp.status_code == 202
    op_id = resp.json()["operation_id"]

    await app.state.runner.wait(op_id)
    status = (await client.get(f"/api/operation-status/{op_id}")).json()
    assert status["status"] == "completed"
    assert status["is_complete"] is True
    assert status["progress_percent"] == 100
    assert status["error"] is None

    case_id = status["result"]["case_id"]
    case = (await client.get(f"/api/cases/{case_id}")).json()
    assert case["difficulty"] == "easy"
    assert case["bundle"]["map"]["locations"][0]["image_ref"]["url"].startswith("https://img.test/")

    listing = (await client.get("/api/users/user-1/cases")).json()
    assert [c["id"] for c in listing] == [case_id]
    assert op_id in (await client.get("/api/operations")).json()


async def test_create_case_requires_owner(client):
    resp = await client.post("/api/cases", json={"difficulty": "easy"})
    assert resp.status_code == 400
    resp = await client.post("/api/cases", json={"owner_id": ""})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "owner_id is required"


async def test_unknown_operation_is_404(client):
    resp = await client.get("/api/operation-status/case_does_not_exist")
    assert resp.status_code == 404
    assert "case_does_not_exist" in resp.json()["detail"]


async def test_missing_case_is_404(client):
    assert (await client.get("/api/cases/nope")).status_code == 404
    assert (await client.delete("/api/cases/nope")).status_code == 404


async def test_complete_and_filter(client, case_id):
    resp = await client.post(f"/api/cases/{case_id}/complete")
    assert resp.json()["status"] == "completed"
    assert (await client.get("/api/users/user-1/cases?status=active")).json() == []


async def test_delete_case(client, case_id):
    assert (await client.delete(f"/api/cases/{case_id}")).json() == {"ok": True}
    assert (await client.get(f"/api/cases/{case_id}")).status_code == 404


# ── Gated actions ────────────────────────────────────────────


async def test_visit_location_cooldown(client, clock, case_id):
    body = {"case_id": case_id, "location_id": "L1"}
    resp = await client.post("/api/visit-location", json=body)
    assert resp.status_code == 200
    visit = resp.json()["progress"]["visited_locations"]["L1"]
    assert visit["last_visit_date_local"] == "2024-03-01"

    resp = await client.post("/api/visit-location", json=body)
    assert resp.status_code == 429
    assert "Try again after midnight IST" in resp.json()["detail"]

    clock.advance(days=1)
    assert (await client.post("/api/visit-location", json=body)).status_code == 200


async def test_visit_unknown_location(client, case_id):
    resp = await client.post("/api/visit-location", json={"case_id": case_id, "location_id": "L9"})
    assert resp.status_code == 404


async def test_interrogate(client, case_id):
    body = {"case_id": case_id, "suspect_id": "Priya Nair", "questions": ["Where were you?"]}
    resp = await client.post("/api/interrogate", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["progress"]["interrogated_suspects"]["Priya Nair"]["questions_asked"] == ["Where were you?"]
    assert len(data["finding_ids"]) == 1

    assert (await client.post("/api/interrogate", json=body)).status_code == 429


async def test_interrogate_missing_questions(client, case_id):
    resp = await client.post("/api/interrogate", json={"case_id": case_id, "suspect_id": "Priya Nair"})
    assert resp.status_code == 400


async def test_investigate_location(app, client, case_id):
    body = {"case_id": case_id, "location_id": "L1", "observation": "a shattered vial"}
    resp = await client.post("/api/investigate-location", json=body)
    assert resp.status_code == 400
    assert "Visit Hydroponics Bay" in resp.json()["detail"]

    await client.post("/api/visit-location", json={"case_id": case_id, "location_id": "L1"})
    resp = await client.post("/api/investigate-location", json=body)
    assert resp.status_code == 202
    op_id = resp.json()["operation_id"]

    await app.state.runner.wait(op_id)
    status = (await client.get(f"/api/operation-status/{op_id}")).json()
    assert status["status"] == "completed"
    assert status["result"]["new_clue_ids"] == ["clue-1"]

    findings = (await client.get(f"/api/cases/{case_id}/findings")).json()
    assert [f["source"] for f in findings] == ["location_visit"]


async def test_final_verdict(client, case_id):
    body = {"case_id": case_id, "suspect_name": "Marcus Chen", "reasoning": "Access log at 22:30."}
    resp = await client.post("/api/final-verdict", json=body)
    assert resp.status_code == 200
    verdict = resp.json()
    assert verdict["correct"] is True
    assert verdict["score"] == 150

    case = (await client.get(f"/api/cases/{case_id}")).json()
    assert case["status"] == "completed"
    assert case["verdict"]["accused"] == "Marcus Chen"

    resp = await client.post("/api/final-verdict", json=body)
    assert resp.status_code == 400
    assert "already submitted" in resp.json()["detail"]


# ── Ungated ──────────────────────────────────────────────────


async def test_discover_clue_and_findings(client, case_id):
    resp = await client.post(f"/api/cases/{case_id}/clues/clue-1/discover")
    assert resp.json()["progress"]["discovered_clues"] == ["clue-1"]

    findings = (await client.get(f"/api/cases/{case_id}/findings?mark_read=true")).json()
    assert [f["is_new"] for f in findings] == [True]
    findings = (await client.get(f"/api/cases/{case_id}/findings")).json()
    assert [f["is_new"] for f in findings] == [False]


async def test_add_finding(client, case_id):
    resp = await client.post(
        f"/api/cases/{case_id}/findings",
        json={"source": "location_visit", "source_details": "L1", "text": "Muddy boots"},
    )
    assert resp.status_code == 201
    resp = await client.post(
        f"/api/cases/{case_id}/findings", json={"source": "rumour", "text": "x"},
    )
    assert resp.status_code == 400


async def test_notes(client, case_id):
    note = (await client.post(f"/api/cases/{case_id}/notes", json={"content": "Check L2"})).json()
    resp = await client.patch(
        f"/api/cases/{case_id}/notes/{note['id']}", json={"content": "Checked L2"}
    )
    assert resp.json()["content"] == "Checked L2"
    assert (await client.delete(f"/api/cases/{case_id}/notes/{note['id']}")).json() == {"ok": True}
    assert (await client.delete(f"/api/cases/{case_id}/notes/{note['id']}")).status_code == 404


async def test_progress(client, clock, case_id):
    clock.advance(days=2)
    progress = (await client.get(f"/api/cases/{case_id}/progress")).json()
    assert progress["current_day"] == 3
    assert progress["visited_locations"] == {}
