"""Prompt builders for every oracle call the mediator makes."""

from __future__ import annotations

import json
from typing import Any


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


DESCRIPTOR_SIMILARITY_PROMPT = """\
Compute the semantic similarity between the following two descriptors.

Descriptor A:
{descriptor_a}

Descriptor B:
{descriptor_b}

Return a single number between 0 and 1, where 0 means completely unrelated \
and 1 means a perfect match. Return only the number, with no other text.
"""

CONTEXT_SIMILARITY_PROMPT = """\
Compute how relevant a cached transformation is to the current context.

Current context:
{context}

Cached transformation (source and target descriptors):
{candidate}

Return a single number between 0 and 1, where 0 means irrelevant and 1 means \
the transformation is certainly needed. Return only the number, with no other text.
"""

USAGE_ANALYSIS_PROMPT = """\
Analyze the usage patterns of the following cached transformation paths:

{usage_data}

Provide:
1. The most frequently used transformation types (source type to target type)
2. How usage frequency changes over time
3. Possible optimization suggestions, including whether the predictive \
threshold should be raised or lowered
4. Any other valuable insights

Return JSON with a "patterns" array, an "insights" string and a \
"recommendations" array of strings.
"""

OPTIMIZATION_PROMPT = """\
Based on the following cache usage analysis, propose cache optimizations.

Usage analysis:
{analysis}

Current predictive threshold: {threshold}

Return JSON with these fields:
- "retainTypes": transformation types ("source->target") worth keeping
- "purgeTypes": transformation types that can be purged
- "thresholdAdjustments": object that may contain "predictiveThreshold" (0 to 1)
- "additionalSuggestions": array of strings
"""

RESOLUTION_PROMPT = """\
Resolve the semantic conflicts between the following two data representations.

Source descriptor:
{source_descriptor}

Source data:
{source_data}

Target descriptor:
{target_descriptor}

Target data:
{target_data}
{context_block}
Reconcile the two representations into a single result shaped like the target \
while preserving the meaning of both. Return a JSON object in a ```json code block:

{{
  "success": true,
  "resolvedData": <the reconciled data>,
  "confidence": <number between 0 and 1>,
  "resolvedConflicts": [{{"type": "...", "description": "...", "resolution": "..."}}],
  "unresolvedConflicts": [{{"type": "...", "description": "...", "reason": "..."}}],
  "summary": "<one sentence>"
}}
"""


def build_descriptor_similarity_prompt(
    descriptor_a: dict[str, Any], descriptor_b: dict[str, Any]
) -> str:
    return DESCRIPTOR_SIMILARITY_PROMPT.format(
        descriptor_a=_dump(descriptor_a),
        descriptor_b=_dump(descriptor_b),
    )


def build_context_similarity_prompt(context: dict[str, Any], candidate: dict[str, Any]) -> str:
    return CONTEXT_SIMILARITY_PROMPT.format(context=_dump(context), candidate=_dump(candidate))


def build_usage_analysis_prompt(usage_data: list[dict[str, Any]]) -> str:
    return USAGE_ANALYSIS_PROMPT.format(usage_data=_dump(usage_data))


def build_optimization_prompt(analysis: dict[str, Any], threshold: float) -> str:
    return OPTIMIZATION_PROMPT.format(analysis=_dump(analysis), threshold=f"{threshold:.2f}")


def build_resolution_prompt(
    source_data: Any,
    target_data: Any,
    source_descriptor: dict[str, Any],
    target_descriptor: dict[str, Any],
    context: dict[str, Any] | None = None,
) -> str:
    """Structured resolution prompt for the oracle fallback strategy."""
    context_block = f"\nAdditional context:\n{_dump(context)}\n" if context else ""
    return RESOLUTION_PROMPT.format(
        source_descriptor=_dump(source_descriptor),
        source_data=_dump(source_data),
        target_descriptor=_dump(target_descriptor),
        target_data=_dump(target_data),
        context_block=context_block,
    )
