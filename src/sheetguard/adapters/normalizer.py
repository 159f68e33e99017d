"""Fallback normalizer clients: a remote HTTP service or the in-process rules."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from sheetguard.config import Settings
from sheetguard.contracts.actions import (
    NormalizeContext,
    NormalizeFailure,
    NormalizeResult,
    NormalizeSuccess,
)
from sheetguard.contracts.common import NormalizerError
from sheetguard.engine.normalizer import RuleNormalizer, filter_fields

logger = logging.getLogger(__name__)


class Normalizer(Protocol):
    async def normalize(self, raw_text: str, context: NormalizeContext) -> NormalizeResult: ...


def _enforce_headers(result: NormalizeResult, context: NormalizeContext) -> NormalizeResult:
    """Strip fields outside ``context.headers`` from a successful result."""
    if not isinstance(result, NormalizeSuccess):
        return result
    intent = result.normalized
    data, dropped = filter_fields(intent.data, context.headers)
    if intent.kind.is_mutating and not data:
        return NormalizeFailure(error=f"no fields matching the tab headers for {intent.kind.value}")
    if not dropped:
        return result
    return NormalizeSuccess(
        normalized=intent.model_copy(update={"data": data}),
        warnings=[*result.warnings, *dropped],
    )


def parse_response(body: object) -> NormalizeResult:
    """Read a ``{success, normalized?, warnings?, error?}`` response body."""
    if not isinstance(body, dict) or "success" not in body:
        raise NormalizerError("normalizer response has no 'success' field")
    try:
        if body["success"]:
            return NormalizeSuccess(
                normalized=body.get("normalized") or {},
                warnings=body.get("warnings") or [],
            )
        return NormalizeFailure(error=str(body.get("error") or "normalization failed"))
    except ValidationError as e:
        raise NormalizerError(f"invalid normalizer response: {e.error_count()} errors") from e


class HttpNormalizer:
    """Posts ``{raw, context}`` to a normalization endpoint; never raises."""

    def __init__(self, url: str, *, api_key: str | None = None, timeout: float = 15.0,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpNormalizer":
        if not settings.normalizer_url:
            raise NormalizerError("normalizer_url is not configured")
        return cls(settings.normalizer_url, api_key=settings.normalizer_api_key,
                   timeout=settings.normalizer_timeout)

    async def normalize(self, raw_text: str, context: NormalizeContext) -> NormalizeResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"raw": raw_text, "context": context.model_dump(by_alias=True, exclude_none=True)}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
            result = parse_response(response.json())
        except httpx.HTTPStatusError as e:
            logger.warning("Normalizer returned HTTP %s", e.response.status_code)
            return NormalizeFailure(error=f"normalizer returned HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning("Normalizer request failed: %s", e)
            return NormalizeFailure(error=str(e) or type(e).__name__)
        except (ValueError, NormalizerError) as e:
            logger.warning("Normalizer response unreadable: %s", e)
            return NormalizeFailure(error=str(e))

        return _enforce_headers(result, context)


class LocalNormalizer:
    """Runs the rule engine in-process behind the async normalizer interface."""

    def __init__(self, rules: RuleNormalizer | None = None) -> None:
        self.rules = rules or RuleNormalizer()

    async def normalize(self, raw_text: str, context: NormalizeContext) -> NormalizeResult:
        return _enforce_headers(self.rules.normalize(raw_text, context), context)


def normalizer_from_settings(settings: Settings) -> Normalizer:
    if settings.normalizer_url:
        return HttpNormalizer.from_settings(settings)
    return LocalNormalizer()
