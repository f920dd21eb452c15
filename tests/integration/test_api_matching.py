import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from matchpro.api.app import create_app
from matchpro.api.deps import get_scoring_client
from matchpro.errors import EMPTY_RESULT_HINT

RESUME = "Senior Python engineer. FastAPI, PostgreSQL, AWS."


def _client(fake_client) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_scoring_client] = lambda: fake_client
    return TestClient(app)


def _upload(client: TestClient) -> str:
    resp = client.post("/api/resume", json={"resume_text": RESUME})
    assert resp.status_code == 200
    return resp.json()["resumeId"]


def test_health(fake_client) -> None:
    assert _client(fake_client).get("/health").json() == {"status": "ok"}


def test_resume_upload_is_idempotent_and_readable(fake_client) -> None:
    client = _client(fake_client)
    first = client.post("/api/resume", json={"resume_text": RESUME}).json()
    second = client.post("/api/resume", json={"resume_text": RESUME}).json()
    assert first == second

    text_resp = client.get("/api/resume-text", params={"resumeId": first["resumeId"]})
    assert text_resp.status_code == 200
    assert text_resp.json() == {
        "resumeId": first["resumeId"],
        "resumeKey": f"resume/{first['resumeId']}.txt",
        "resumeText": RESUME,
    }


def test_resume_errors(fake_client) -> None:
    client = _client(fake_client)
    assert client.post("/api/resume", json={"resume_text": " "}).status_code == 400
    assert client.get("/api/resume-text").status_code == 400
    assert client.get("/api/resume-text", params={"resumeId": "unknown"}).status_code == 404


def test_batch_match_persists_results_for_known_resume(fake_client) -> None:
    client = _client(fake_client)
    resume_id = _upload(client)

    resp = client.post(
        "/api/match/batch",
        json={
            "resume_text": RESUME,
            "resume_id": resume_id,
            "jobs": [{"id": 1, "job_description": "Python"}, {"id": "2", "job_description": "Go"}],
        },
    )
    assert resp.status_code == 200
    assert [item["job_id"] for item in resp.json()["match_results"]] == ["1", "2"]

    cache = client.get("/api/match/batch-cache", params={"resumeId": resume_id}).json()
    assert [item["job_id"] for item in cache["results"]] == ["1", "2"]


def test_batch_match_error_statuses(fake_client) -> None:
    client = _client(fake_client)
    assert client.post("/api/match/batch", json={"resume_text": RESUME, "jobs": []}).status_code == 400

    fake_client.failing_job_ids = {"1"}
    resp = client.post(
        "/api/match/batch",
        json={"resume_text": RESUME, "jobs": [{"id": "1", "job_description": "Python"}]},
    )
    assert resp.status_code == 502
    assert len(fake_client.batch_calls) == 2


def test_single_match_scoring_then_cache(fake_client) -> None:
    client = _client(fake_client)
    resume_id = _upload(client)
    body = {"jobId": "job-9", "resumeId": resume_id, "inputs": {"job_description": "Python role"}}

    first = client.post("/api/match", params={"type": "scoring"}, json=body)
    assert first.status_code == 200
    assert first.json()["meta"]["source"] == "dify"
    assert first.json()["meta"]["version"] == "v2"
    assert first.json()["data"]["overall"] == 82

    second = client.post("/api/match", params={"type": "scoring"}, json=body)
    assert second.json()["meta"]["source"] == "cache"
    assert len(fake_client.score_calls) == 1


def test_single_match_validation_and_empty_results(fake_client) -> None:
    client = _client(fake_client)
    resume_id = _upload(client)
    body = {"jobId": "job-9", "resumeId": resume_id, "inputs": {"job_description": "Python role"}}

    assert client.post("/api/match", params={"type": "bogus"}, json=body).status_code == 400
    assert client.post("/api/match", params={"type": "details"}, json=body).status_code == 400
    missing = {"jobId": "job-9", "resumeId": "unknown", "inputs": {"job_description": "x"}}
    assert client.post("/api/match", params={"type": "scoring"}, json=missing).status_code == 404

    fake_client.scoring_outputs = {"overall": 0, "scores": {}}
    resp = client.post("/api/match", params={"type": "scoring"}, json=body)
    assert resp.status_code == 500
    assert resp.json()["detail"]["hint"] == EMPTY_RESULT_HINT


def test_detail_view_resolves_both_phases(fake_client) -> None:
    client = _client(fake_client)
    resume_id = _upload(client)

    resp = client.post(
        "/api/match/view",
        json={"resume_id": resume_id, "job_id": "job-3", "job_description": "Python role"},
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["scoring"]["status"] == "done"
    assert payload["details"]["status"] == "done"
    assert payload["details"]["envelope"]["data"]["overview"] == "Good fit overall."
    assert fake_client.details_calls == [("Python role", 82)]


def test_match_session_runs_in_background(fake_client) -> None:
    app = create_app()
    app.dependency_overrides[get_scoring_client] = lambda: fake_client

    with TestClient(app) as client:
        resume_id = _upload(client)
        jobs = [{"id": str(i), "title": f"Job {i}"} for i in range(4)]
        resp = client.post("/api/match/sessions", json={"resume_id": resume_id, "jobs": jobs})
        assert resp.status_code == 200
        session_id = resp.json()["session_id"]

        state = None
        for _ in range(200):
            state = client.get(f"/api/match/sessions/{session_id}").json()["state"]
            if state["status"] != "running":
                break
            time.sleep(0.01)

        assert state["status"] == "completed"
        assert state["processed_count"] == 4
        assert state["total_count"] == 4
        assert len(fake_client.batch_calls) == 2

        cache = client.get("/api/match/batch-cache", params={"resumeId": resume_id}).json()
        assert len(cache["results"]) == 4

        latest = client.get("/api/match/sessions", params={"resumeId": resume_id})
        assert latest.json()["session_id"] == session_id

        assert client.get("/api/match/sessions", params={"resumeId": "other"}).status_code == 404
        assert client.get("/api/match/sessions/unknown").status_code == 404
        assert client.delete("/api/match/sessions/unknown").status_code == 404


def test_session_stream_ends_after_cancel(fake_client) -> None:
    fake_client.delay_sec = 5
    app = create_app()
    app.dependency_overrides[get_scoring_client] = lambda: fake_client

    with TestClient(app) as client:
        resume_id = _upload(client)
        resp = client.post("/api/match/sessions", json={"resume_id": resume_id, "jobs": [{"id": "1"}]})
        session_id = resp.json()["session_id"]

        with client.websocket_connect(f"/api/match/sessions/{session_id}/stream") as ws:
            assert ws.receive_json()["status"] == "running"
            assert client.delete(f"/api/match/sessions/{session_id}").status_code == 200

            statuses = []
            while not statuses or statuses[-1] == "running":
                statuses.append(ws.receive_json()["status"])
            assert statuses[-1] == "cancelled"

            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

        state = client.get(f"/api/match/sessions/{session_id}").json()["state"]
        assert state["status"] == "cancelled"


def test_session_stream_closes_immediately_when_finished(fake_client) -> None:
    app = create_app()
    app.dependency_overrides[get_scoring_client] = lambda: fake_client

    with TestClient(app) as client:
        resume_id = _upload(client)
        resp = client.post("/api/match/sessions", json={"resume_id": resume_id, "jobs": [{"id": "1"}]})
        session_id = resp.json()["session_id"]
        for _ in range(200):
            if client.get(f"/api/match/sessions/{session_id}").json()["state"]["status"] != "running":
                break
            time.sleep(0.01)

        with client.websocket_connect(f"/api/match/sessions/{session_id}/stream") as ws:
            assert ws.receive_json()["status"] == "completed"
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()


def test_match_session_requires_known_resume(fake_client) -> None:
    with TestClient(create_app()) as client:
        resp = client.post("/api/match/sessions", json={"resume_id": "unknown", "jobs": [{"id": "1"}]})
        assert resp.status_code == 404
