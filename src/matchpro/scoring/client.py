from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from matchpro.config import Settings, get_settings
from matchpro.core.cancellation import CancellationToken
from matchpro.errors import ScoringNotConfiguredError, UpstreamRejectionError, UpstreamTimeoutError
from matchpro.scoring.parsing import parse_match_results
from matchpro.types import BatchJob, MatchSummary

logger = logging.getLogger(__name__)


class ScoringClient(Protocol):
    async def score_batch(
        self,
        resume_text: str,
        jobs: list[BatchJob],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[MatchSummary]: ...

    async def score(
        self,
        resume_text: str,
        job_description: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]: ...

    async def details(
        self,
        resume_text: str,
        job_description: str,
        overall_from_scoring: float,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]: ...


@dataclass(slots=True)
class WorkflowConfig:
    name: str
    url: str
    api_key: str
    user: str
    timeout_sec: float


class DifyWorkflowClient:
    def __init__(self, settings: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self.transport = transport
        self.batch_config = WorkflowConfig(
            name="batch",
            url=self.settings.dify_workflow_url,
            api_key=self.settings.batch_api_key,
            user=self.settings.dify_user,
            timeout_sec=self.settings.batch_timeout_sec,
        )
        self.match_config = WorkflowConfig(
            name="match",
            url=self.settings.dify_workflow_url,
            api_key=self.settings.dify_api_key,
            user=self.settings.dify_user,
            timeout_sec=self.settings.match_timeout_sec,
        )

    async def score_batch(
        self,
        resume_text: str,
        jobs: list[BatchJob],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[MatchSummary]:
        job_list_json = json.dumps([job.model_dump() for job in jobs], ensure_ascii=False)
        logger.info(
            "Calling workflow with %s jobs resume_chars=%s job_list_chars=%s",
            len(jobs),
            len(resume_text),
            len(job_list_json),
        )
        outputs = await self._run(
            self.batch_config,
            {"resume_text": resume_text, "job_list_json": job_list_json},
            cancel_token=cancel_token,
        )
        return parse_match_results(outputs)

    async def score(
        self,
        resume_text: str,
        job_description: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        return await self._run(
            self.match_config,
            {"resume_text": resume_text, "job_description": job_description},
            cancel_token=cancel_token,
        )

    async def details(
        self,
        resume_text: str,
        job_description: str,
        overall_from_scoring: float,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        return await self._run(
            self.match_config,
            {
                "resume_text": resume_text,
                "job_description": job_description,
                "overall_from_scoring": overall_from_scoring,
            },
            cancel_token=cancel_token,
        )

    async def _run(
        self,
        config: WorkflowConfig,
        inputs: dict[str, Any],
        *,
        cancel_token: CancellationToken | None,
    ) -> dict[str, Any]:
        if not config.url or not config.api_key:
            raise ScoringNotConfiguredError(f"Workflow URL or API key not configured for {config.name} calls")

        request = self._post(config, inputs)
        if cancel_token is None:
            return await request
        return await cancel_token.guard(request)

    async def _post(self, config: WorkflowConfig, inputs: dict[str, Any]) -> dict[str, Any]:
        body = {"inputs": inputs, "response_mode": "blocking", "user": config.user}
        headers = {"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=config.timeout_sec, transport=self.transport) as client:
                response = await client.post(config.url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(
                f"Request timeout - workflow took longer than {config.timeout_sec:g}s to respond"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamRejectionError(f"Workflow request failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamRejectionError(
                f"Dify HTTP {response.status_code}: {response.text}",
                http_status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamRejectionError("Malformed workflow response: body is not JSON") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise UpstreamRejectionError("Malformed workflow response: missing data")

        if data.get("status") != "succeeded":
            raise UpstreamRejectionError(f"Dify workflow failed: {data.get('error') or data.get('status')}")

        logger.info("Workflow %s completed elapsed=%ss", config.name, data.get("elapsed_time", "?"))
        outputs = data.get("outputs")
        return outputs if isinstance(outputs, dict) else {}
