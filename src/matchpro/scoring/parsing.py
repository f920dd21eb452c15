from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from matchpro.errors import EmptyResultError, UpstreamRejectionError
from matchpro.types import AdviceItem, DetailsData, MatchSummary, ScoringData

logger = logging.getLogger(__name__)


def _to_number(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number


def parse_scoring_data(outputs: dict[str, Any]) -> ScoringData:
    overall = _to_number(outputs.get("overall", 0)) or 0.0
    raw_scores = outputs.get("scores")
    scores: dict[str, float] = {}
    if isinstance(raw_scores, dict):
        for key, value in raw_scores.items():
            number = _to_number(value)
            if number is not None:
                scores[str(key)] = number
    return ScoringData(overall=overall, scores=scores)


def parse_details_data(outputs: dict[str, Any]) -> DetailsData:
    def _strings(value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if isinstance(item, str) and item.strip()]

    advice: list[AdviceItem] = []
    raw_advice = outputs.get("advice")
    if isinstance(raw_advice, list):
        for item in raw_advice:
            if not isinstance(item, dict):
                continue
            title = item.get("title") if isinstance(item.get("title"), str) else ""
            detail = item.get("detail") if isinstance(item.get("detail"), str) else ""
            if title or detail:
                advice.append(AdviceItem(title=title, detail=detail))

    overview = outputs.get("overview")
    return DetailsData(
        advantages=_strings(outputs.get("advantages")),
        disadvantages=_strings(outputs.get("disadvantages")),
        advice=advice,
        overview=overview if isinstance(overview, str) else "",
    )


def validate_scoring_data(data: ScoringData) -> ScoringData:
    # An empty score map or an overall of exactly zero means the model produced nothing usable.
    if not data.scores or data.overall == 0:
        raise EmptyResultError(
            "Invalid scoring data: LLM may have failed to generate scores. "
            "Please check the LLM provider balance or try again later."
        )
    return data


def validate_details_data(data: DetailsData) -> DetailsData:
    if not (data.advantages or data.disadvantages or data.advice or data.overview.strip()):
        raise EmptyResultError(
            "Invalid details data: LLM may have failed to generate analysis. "
            "Please check the LLM provider balance or try again later."
        )
    return data


def parse_match_results(outputs: dict[str, Any]) -> list[MatchSummary]:
    raw = outputs.get("match_results")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise UpstreamRejectionError("Malformed workflow output: match_results is not JSON") from exc

    if not isinstance(raw, list):
        raise UpstreamRejectionError("Malformed workflow output: match_results missing")

    try:
        return [MatchSummary.model_validate(item) for item in raw]
    except ValidationError as exc:
        logger.warning("Malformed match_results payload: %s", exc)
        raise UpstreamRejectionError("Malformed workflow output: invalid match_results item") from exc
