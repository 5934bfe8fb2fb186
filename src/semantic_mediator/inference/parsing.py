"""Defensive parsing of oracle text responses.

Resolution responses are parsed in two stages:

1. Structured decode: a fenced ```json block, any fenced block, or the
   outermost {...} span, validated against OracleResolution. A JSON object
   carrying neither ``resolvedData`` nor ``success`` is taken to be the
   resolved data itself.
2. Partial recovery: if stage 1 fails, the value following a
   ``"resolvedData"`` key is decoded on its own (confidence 0.5).

Anything else raises ResolutionParseError.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import ValidationError

from semantic_mediator.inference.schemas import OracleResolution

logger = logging.getLogger(__name__)

PARTIAL_RECOVERY_CONFIDENCE = 0.5
DIRECT_DATA_CONFIDENCE = 0.8

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_RESOLVED_DATA_KEY = re.compile(r'"resolvedData"\s*:\s*')
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_decoder = json.JSONDecoder()

ParseMode = Literal["structured", "direct", "partial"]


class ResolutionParseError(ValueError):
    """Raised when an oracle resolution response cannot be parsed at all."""


@dataclass(frozen=True)
class ParsedResolution:
    """A parsed oracle resolution and how it was obtained."""

    resolution: OracleResolution
    mode: ParseMode


def _candidate_json_texts(text: str) -> list[str]:
    candidates = [m.group(1).strip() for m in _FENCED_BLOCK.finditer(text)]
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    candidates.append(text.strip())
    return candidates


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object found in text, or None."""
    for candidate in _candidate_json_texts(text):
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return None


def parse_score(text: str) -> float | None:
    """Parse a bare numeric score such as ``0.82``. Returns None if there is none."""
    stripped = text.strip()
    try:
        value = float(stripped)
    except ValueError:
        pass
    else:
        return value if math.isfinite(value) else None
    match = _NUMBER.search(stripped)
    if match is None:
        return None
    return float(match.group(0))


def _recover_resolved_data(text: str) -> Any | None:
    match = _RESOLVED_DATA_KEY.search(text)
    if match is None:
        return None
    try:
        value, _ = _decoder.raw_decode(text, match.end())
    except ValueError:
        return None
    return value


def parse_oracle_resolution(text: str) -> ParsedResolution:
    """Parse an oracle resolution response.

    Raises:
        ResolutionParseError: If neither stage yields a result.
    """
    payload = parse_json_object(text)
    if payload is not None:
        if not payload.keys() & {"resolvedData", "resolved_data", "success"}:
            return ParsedResolution(
                resolution=OracleResolution(
                    resolved_data=payload,
                    confidence=DIRECT_DATA_CONFIDENCE,
                    summary="Direct data from oracle response",
                ),
                mode="direct",
            )
        try:
            return ParsedResolution(
                resolution=OracleResolution.model_validate(payload),
                mode="structured",
            )
        except ValidationError as e:
            logger.debug("Oracle resolution failed validation: %s", e)

    recovered = _recover_resolved_data(text)
    if recovered is not None:
        logger.debug("Recovered resolvedData from malformed oracle response")
        return ParsedResolution(
            resolution=OracleResolution(
                resolved_data=recovered,
                confidence=PARTIAL_RECOVERY_CONFIDENCE,
                summary="Partial parsing of oracle response",
            ),
            mode="partial",
        )

    raise ResolutionParseError("Oracle response contained no usable resolution")
