from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from aria.errors import EmptyResponse, ParseFailed
from aria.llm.plan_schema import Plan, parse_action
from aria.telemetry.logging import get_logger

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> str | None:
    """Pull the most likely JSON payload out of model output.

    Order: the whole text when it already starts like JSON, then the first
    fenced code block, then the span from the first ``{`` to the last ``}``.
    """
    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        return stripped
    fenced = _FENCE_RE.search(stripped)
    if fenced:
        return fenced.group(1).strip()
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start : end + 1]
    return None


class ResponseParser:
    """Turns raw model text into a Plan.

    Structured payloads are tried as a plan (``steps``) and then as a legacy
    single action (``action``). Payloads carrying one of those markers that
    fail validation raise ``ParseFailed``; everything else is prose and
    becomes a single talk step.
    """

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    def parse(self, text: str | None) -> Plan:
        trimmed = (text or "").strip()
        if not trimmed:
            raise EmptyResponse("model returned an empty response")

        payload = self._decode(trimmed)
        if isinstance(payload, dict) and "steps" in payload:
            try:
                plan = Plan.model_validate(payload)
            except ValidationError as exc:
                self._logger.warning("llm.parser.plan_invalid", errors=exc.error_count())
                raise ParseFailed(f"invalid plan payload: {exc.errors()[0]['msg']}", raw=trimmed) from exc
            self._logger.debug("llm.parser.plan", steps=len(plan.steps))
            return plan

        if isinstance(payload, dict) and "action" in payload:
            try:
                action = parse_action(payload)
            except (ValidationError, ValueError) as exc:
                self._logger.warning("llm.parser.action_invalid", action=payload.get("action"))
                raise ParseFailed(f"invalid action payload: {exc}", raw=trimmed) from exc
            self._logger.debug("llm.parser.action", action=action.action)
            return Plan.from_action(action)

        self._logger.debug("llm.parser.prose", chars=len(trimmed))
        return Plan.talk(trimmed)

    @staticmethod
    def _decode(text: str) -> Any:
        candidate = extract_json(text)
        if candidate is None:
            return None
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            return None


__all__ = ["ResponseParser", "extract_json"]
