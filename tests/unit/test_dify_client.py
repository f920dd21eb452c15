import asyncio
import json

import httpx
import pytest

from matchpro.config import Settings
from matchpro.core.cancellation import CancellationToken
from matchpro.errors import (
    MatchCancelled,
    ScoringNotConfiguredError,
    UpstreamRejectionError,
    UpstreamTimeoutError,
)
from matchpro.scoring.client import DifyWorkflowClient
from matchpro.types import BatchJob


def _settings(**overrides) -> Settings:
    values = {
        "dify_workflow_url": "https://dify.test/v1/workflows/run",
        "dify_api_key": "match-key",
        "dify_api_key_for_batch_matching": "batch-key",
    }
    values.update(overrides)
    return Settings(**values)


def _succeeded(outputs: dict) -> httpx.Response:
    return httpx.Response(200, json={"data": {"status": "succeeded", "outputs": outputs, "elapsed_time": 1.2}})


def test_score_batch_posts_job_list_json_with_batch_key() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return _succeeded({"match_results": [{"job_id": "1", "overall": 77, "scores": {"skills": 80}}]})

    client = DifyWorkflowClient(_settings(), transport=httpx.MockTransport(handler))
    results = asyncio.run(client.score_batch("resume", [BatchJob(id="1", job_description="Python")]))

    assert results[0].job_id == "1"
    assert results[0].overall == 77
    assert captured["auth"] == "Bearer batch-key"
    assert captured["body"]["response_mode"] == "blocking"
    assert captured["body"]["user"] == "MatchPro User"
    jobs = json.loads(captured["body"]["inputs"]["job_list_json"])
    assert jobs == [{"id": "1", "job_description": "Python"}]


def test_batch_key_falls_back_to_match_key() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        return _succeeded({"match_results": []})

    client = DifyWorkflowClient(
        _settings(dify_api_key_for_batch_matching=""), transport=httpx.MockTransport(handler)
    )
    asyncio.run(client.score_batch("resume", []))
    assert captured["auth"] == "Bearer match-key"


def test_details_sends_overall_from_scoring() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["inputs"] = json.loads(request.content)["inputs"]
        return _succeeded({"overview": "ok"})

    client = DifyWorkflowClient(_settings(), transport=httpx.MockTransport(handler))
    outputs = asyncio.run(client.details("resume", "Python role", 81))

    assert outputs == {"overview": "ok"}
    assert captured["inputs"]["overall_from_scoring"] == 81
    assert captured["inputs"]["job_description"] == "Python role"


def test_non_2xx_maps_to_rejection_with_http_status() -> None:
    client = DifyWorkflowClient(
        _settings(), transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
    )
    with pytest.raises(UpstreamRejectionError) as excinfo:
        asyncio.run(client.score("resume", "job"))
    assert excinfo.value.status_code == 502
    assert "Dify HTTP 503" in str(excinfo.value)


def test_failed_workflow_maps_to_rejection_500() -> None:
    client = DifyWorkflowClient(
        _settings(),
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"data": {"status": "failed", "error": "node crashed"}})
        ),
    )
    with pytest.raises(UpstreamRejectionError, match="node crashed") as excinfo:
        asyncio.run(client.score("resume", "job"))
    assert excinfo.value.status_code == 500


def test_transport_timeout_maps_to_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = DifyWorkflowClient(_settings(), transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamTimeoutError) as excinfo:
        asyncio.run(client.score("resume", "job"))
    assert excinfo.value.status_code == 408


def test_missing_configuration_fails_before_any_request() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return _succeeded({})

    client = DifyWorkflowClient(_settings(dify_api_key=""), transport=httpx.MockTransport(handler))
    with pytest.raises(ScoringNotConfiguredError):
        asyncio.run(client.score("resume", "job"))
    assert calls == []


def test_cancellation_aborts_in_flight_request() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return _succeeded({"overall": 1})

    client = DifyWorkflowClient(_settings(), transport=httpx.MockTransport(handler))

    async def scenario() -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await client.score("resume", "job", cancel_token=token)

    with pytest.raises(MatchCancelled):
        asyncio.run(asyncio.wait_for(scenario(), timeout=2))
