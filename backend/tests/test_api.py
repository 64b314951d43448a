import asyncio
import logging
from logging.handlers import RotatingFileHandler

import pytest
from fastapi.testclient import TestClient

import backend
from backend import SSEManager, create_app
from conftest import SequenceRandom
from directory import SubmitterDirectory
from job_store import JobChange
from queue_engine import generate_code
from test_documents import blank_pdf


@pytest.fixture
def client():
    app = create_app(database_url="sqlite://")
    with TestClient(app) as test_client:
        yield test_client


def submit(client, **overrides):
    payload = {
        "submitter_id": "student-1",
        "document_name": "notes.pdf",
        "page_count": 3,
        "pickup_slot": "1",
    }
    payload.update(overrides)
    response = client.post("/jobs", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["job"]


def advance(client, job_id, target):
    return client.post(f"/operator/jobs/{job_id}/advance", json={"target_status": target})


class TestSubmitterEndpoints:

    def test_submit_returns_assignment(self, client):
        response = client.post("/jobs", json={
            "submitter_id": "student-1",
            "document_name": "notes.pdf",
            "page_count": 2,
            "urgency": "urgent",
            "pickup_slot": "2",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["job"]["assigned_resource"] == "resourceA"
        assert body["job"]["priority_tier"] == "Medium"
        assert body["job"]["status"] == "waiting"
        assert body["job"]["queue_position"] == 1
        assert body["job"]["is_paid"] is False
        assert body["job"]["payment"] is None
        assert body["degraded_code"] is False
        assert "Medium priority" in body["reasoning"]

    def test_unknown_slot_is_rejected(self, client):
        response = client.post("/jobs", json={
            "submitter_id": "student-1",
            "document_name": "notes.pdf",
            "page_count": 2,
            "pickup_slot": "3",
        })
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "InvalidInput"
        assert response.json()["detail"]["field"] == "pickup_slot"

    def test_schema_errors_are_rejected(self, client):
        response = client.post("/jobs", json={
            "submitter_id": "student-1",
            "document_name": "notes.pdf",
            "page_count": 0,
            "pickup_slot": "1",
        })
        assert response.status_code == 422

    def test_get_missing_job(self, client):
        response = client.get("/jobs/JOB-NOPE")
        assert response.status_code == 404
        assert response.json()["detail"] == {
            "error": "JobNotFound",
            "message": "Job JOB-NOPE not found",
            "job_id": "JOB-NOPE",
        }

    def test_quote_and_payment(self, client):
        job = submit(client, page_count=4, color_mode="color")

        quote = client.get(f"/jobs/{job['id']}/quote").json()
        assert quote["total_amount"] == 20.0

        paid = client.post(f"/jobs/{job['id']}/payment", json={}).json()
        assert paid["is_paid"] is True
        assert paid["payment"]["amount"] == 20.0
        assert paid["payment"]["reference"].startswith("DEMO_")

        again = client.post(f"/jobs/{job['id']}/payment", json={"reference": "X-1"})
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "AlreadyPaid"

    def test_comment_then_acknowledge(self, client):
        job = submit(client)

        flagged = client.post(
            f"/operator/jobs/{job['id']}/comments",
            json={"message": "Please re-upload page 2", "requires_action": True},
        ).json()
        assert flagged["needs_submitter_attention"] is True
        assert flagged["operator_comments"][0]["message"] == "Please re-upload page 2"

        acked = client.post(f"/jobs/{job['id']}/acknowledge").json()
        assert acked["needs_submitter_attention"] is False
        assert len(acked["operator_comments"]) == 1

    def test_submitter_history(self, client):
        first = submit(client, submitter_id="asha")
        submit(client, submitter_id="ravi")
        second = submit(client, submitter_id="asha")

        body = client.get("/submitters/asha/jobs").json()

        assert body["count"] == 2
        assert [job["id"] for job in body["jobs"]] == [second["id"], first["id"]]

    def test_page_count_upload(self, client):
        response = client.post(
            "/documents/page-count",
            files={"file": ("three.pdf", blank_pdf(3), "application/pdf")},
        )
        assert response.status_code == 200
        assert response.json()["page_count"] == 3
        assert response.json()["authoritative"] is True


class TestOperatorEndpoints:

    def test_pickup_flow(self, client):
        job = submit(client)

        not_ready = client.post("/operator/pickup/verify", json={"code": job["code"]})
        assert not_ready.status_code == 409
        assert not_ready.json()["detail"]["error"] == "NotReady"
        assert not_ready.json()["detail"]["status"] == "waiting"

        assert advance(client, job["id"], "printing").json()["status"] == "printing"
        assert advance(client, job["id"], "printed").json()["status"] == "printed"

        verified = client.post("/operator/pickup/verify", json={"code": job["code"], "source": "scan"})
        assert verified.status_code == 200
        assert verified.json()["job"]["id"] == job["id"]
        assert verified.json()["job"]["status"] == "printed"

        confirmed = client.post(f"/operator/pickup/{job['id']}/confirm", json={"code": job["code"]})
        assert confirmed.json()["status"] == "collected"

        again = client.post("/operator/pickup/verify", json={"code": job["code"]})
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "AlreadyCollected"

    def test_verify_bad_codes(self, client):
        job = submit(client)
        missing = "0000" if job["code"] != "0000" else "0001"

        assert client.post("/operator/pickup/verify", json={"code": "12"}).status_code == 400
        assert client.post("/operator/pickup/verify", json={"code": missing}).status_code == 404
        assert client.post("/operator/pickup/verify", json={"code": "1234", "source": "fax"}).status_code == 422

    def test_skipping_a_step_conflicts(self, client):
        job = submit(client)

        response = advance(client, job["id"], "printed")

        assert response.status_code == 409
        assert response.json()["detail"]["current"] == "waiting"
        assert client.get(f"/jobs/{job['id']}").json()["status"] == "waiting"

    def test_confirm_requires_printed(self, client):
        job = submit(client)
        response = client.post(f"/operator/pickup/{job['id']}/confirm", json={"code": job["code"]})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "NotReady"

    def test_confirm_with_another_jobs_code(self, client):
        mine = submit(client)
        other = submit(client)
        for job in (mine, other):
            advance(client, job["id"], "printing")
            advance(client, job["id"], "printed")

        response = client.post(f"/operator/pickup/{mine['id']}/confirm", json={"code": other["code"]})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "CodeMismatch"
        assert client.get(f"/jobs/{mine['id']}").json()["status"] == "printed"
        assert client.get(f"/jobs/{other['id']}").json()["status"] == "printed"
        assert client.post(f"/operator/pickup/{mine['id']}/confirm").status_code == 422

    def test_queue_by_slot(self, client):
        submit(client, pickup_slot="4")
        submit(client, pickup_slot="1")
        ready = submit(client, pickup_slot="4")
        advance(client, ready["id"], "printing")
        advance(client, ready["id"], "printed")

        active = client.get("/operator/queue/by-slot").json()
        assert [(slot["slot_id"], slot["count"]) for slot in active["slots"]] == [("1", 1), ("4", 1)]

        ready_view = client.get("/operator/queue/by-slot", params={"view": "ready"}).json()
        assert [slot["slot_id"] for slot in ready_view["slots"]] == ["4"]
        assert ready_view["slots"][0]["jobs"][0]["id"] == ready["id"]

        assert client.get("/operator/queue/by-slot", params={"view": "all"}).status_code == 422


class TestQueueViews:

    def test_active_and_ready(self, client):
        first = submit(client)
        second = submit(client)
        advance(client, first["id"], "printing")
        advance(client, first["id"], "printed")

        active = client.get("/queue/active").json()
        assert active["count"] == 1
        assert active["jobs"][0]["id"] == second["id"]
        assert active["jobs"][0]["queue_position"] == 1
        assert active["jobs"][0]["current_wait_minutes"] >= 1

        ready = client.get("/queue/ready").json()
        assert [job["id"] for job in ready["jobs"]] == [first["id"]]
        assert ready["jobs"][0]["queue_position"] is None

    def test_stats_and_health(self, client):
        submit(client, page_count=7)

        stats = client.get("/stats").json()
        assert stats["status_counts"]["waiting"] == 1
        assert stats["degraded_code_generations"] == 0
        assert {r["resource_id"] for r in stats["resources"]} == {"resourceA", "resourceB"}

        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["components"]["database"] == "healthy"

    def test_root_lists_slots(self, client):
        body = client.get("/").json()
        assert body["resources"] == ["resourceA", "resourceB"]
        assert [slot["id"] for slot in body["pickup_slots"]] == ["1", "2", "4"]


def test_display_name_comes_from_directory():
    directory = SubmitterDirectory(lookup=lambda sid: "Asha Kumar" if sid == "asha" else None)
    app = create_app(database_url="sqlite://", directory=directory)

    with TestClient(app) as client:
        named = submit(client, submitter_id="asha")
        unnamed = submit(client, submitter_id="ravi")
        labelled = submit(client, submitter_id="meera", submitter_label="Meera S")

    assert named["display_name"] == "Asha Kumar"
    assert unnamed["display_name"] == "ravi"
    assert labelled["display_name"] == "Meera S"


def test_store_changes_reach_stream_viewers():
    async def scenario():
        manager = SSEManager()
        manager.loop = asyncio.get_running_loop()
        queue = await manager.connect()

        manager.on_store_change(JobChange("created", "JOB-1"))
        message = await asyncio.wait_for(queue.get(), timeout=1)

        await manager.disconnect(queue)
        return message, len(manager.connections)

    message, remaining = asyncio.run(scenario())

    assert message["event"] == "queue_changed"
    assert message["data"] == {"kind": "created", "job_id": "JOB-1"}
    assert remaining == 0


def test_module_loggers_write_to_the_log_file():
    for name in backend.LOGGER_NAMES:
        assert any(isinstance(h, RotatingFileHandler) for h in logging.getLogger(name).handlers), name

    result = generate_code({"0000"}, rng=SequenceRandom([0]), clock=lambda: 12.5)
    assert result.degraded

    file_handler = next(
        h for h in logging.getLogger("print_queue").handlers if isinstance(h, RotatingFileHandler)
    )
    file_handler.flush()
    with open(file_handler.baseFilename) as log_file:
        assert "code_generation_exhausted" in log_file.read()
