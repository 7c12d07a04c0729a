"""
Insight and recommendation extraction from model responses.

Models are asked to end each answer with a fenced ```json block holding
``insights`` and ``recommendations``. A response that is itself a bare JSON
object is accepted too, and prose lines starting with ``Recommendation:`` are
collected as recommendations.
"""

import json
import logging
import re
from typing import Any, Iterable, Optional, Sequence

from jsonoracle.models.analysis import ConversationTurn, Impact, Insight, InsightKind

logger = logging.getLogger(__name__)

FENCED_BLOCK_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
RECOMMENDATION_LINE_RE = re.compile(
    r"^\s*(?:[-*•]\s*|\d+[.)]\s*)?\**recommendation\**\s*:\s*\**\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)

GENERIC_INSIGHT = Insight(
    kind=InsightKind.PATTERN,
    description=(
        "The models did not return structured findings; "
        "see the conversation transcript for their analysis."
    ),
    confidence=0.1,
    impact=Impact.LOW,
)

SUMMARY_MAX_CHARS = 2000
ARRAY_SAMPLE_SIZE = 3
OBJECT_SAMPLE_SIZE = 5


def extract_structured_block(text: str) -> Optional[dict[str, Any]]:
    """
    Find the structured output object in a response.

    The last fenced block that parses as a JSON object wins; otherwise the
    whole response is tried as bare JSON.

    Returns:
        The parsed object, or None when the response has no usable block
    """
    for candidate in reversed(FENCED_BLOCK_RE.findall(text)):
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed
    return _loads_object(text)


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(text.strip())
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _parse_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    confidence = float(value)
    # Percentages
    if 1.0 < confidence <= 100.0:
        confidence /= 100.0
    return min(max(confidence, 0.0), 1.0)


def parse_insights(block: dict[str, Any]) -> list[Insight]:
    """
    Convert the ``insights`` list of a structured block into Insight objects.

    Entries with an unknown kind, no description or no usable confidence are
    skipped. An unknown impact is read as medium.
    """
    raw_items = block.get("insights")
    if not isinstance(raw_items, list):
        return []

    insights = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        try:
            kind = InsightKind(str(item.get("kind", item.get("type", ""))).strip().lower())
        except ValueError:
            continue
        description = item.get("description")
        if not isinstance(description, str) or not description.strip():
            continue
        confidence = _parse_confidence(item.get("confidence"))
        if confidence is None:
            continue
        try:
            impact = Impact(str(item.get("impact", "")).strip().lower())
        except ValueError:
            impact = Impact.MEDIUM

        insights.append(
            Insight(
                kind=kind,
                description=description.strip(),
                confidence=confidence,
                impact=impact,
            )
        )
    return insights


def parse_recommendations(text: str, block: Optional[dict[str, Any]]) -> list[str]:
    """Recommendations from the structured block, then from prose lines."""
    found: list[str] = []
    if block is not None and isinstance(block.get("recommendations"), list):
        found.extend(r for r in block["recommendations"] if isinstance(r, str))
    found.extend(match.group(1) for match in RECOMMENDATION_LINE_RE.finditer(text))
    return [r.strip() for r in found if r.strip()]


def merge_recommendations(groups: Iterable[Iterable[str]]) -> list[str]:
    """
    Union of recommendation lists in first-seen order.

    Two recommendations are the same if they match ignoring case and
    surrounding/repeated whitespace.
    """
    seen: set[str] = set()
    merged = []
    for group in groups:
        for recommendation in group:
            key = " ".join(recommendation.split()).casefold()
            if key and key not in seen:
                seen.add(key)
                merged.append(recommendation.strip())
    return merged


def extract_findings(turns: Sequence[ConversationTurn]) -> tuple[list[Insight], list[str]]:
    """
    Collect insights and recommendations across successful turns.

    When no turn carries a structured insight, the result holds exactly one
    low-confidence generic insight instead of failing.

    Returns:
        Tuple of (insights, recommendations)
    """
    insights: list[Insight] = []
    recommendation_groups: list[list[str]] = []

    for turn in turns:
        if turn.failed:
            continue
        block = extract_structured_block(turn.response)
        if block is None:
            logger.debug(f"Turn {turn.index} ({turn.model}) has no structured block")
        else:
            insights.extend(parse_insights(block))
        recommendation_groups.append(parse_recommendations(turn.response, block))

    if not insights:
        insights = [GENERIC_INSIGHT]

    return insights, merge_recommendations(recommendation_groups)


def strip_structured_block(text: str) -> str:
    """Response prose without its fenced blocks."""
    return FENCED_BLOCK_RE.sub("", text).strip()


def summarize(turns: Sequence[ConversationTurn]) -> Optional[str]:
    """The prose of the last successful turn, clipped."""
    for turn in reversed(turns):
        if turn.failed:
            continue
        prose = strip_structured_block(turn.response)
        if _loads_object(prose) is not None:
            continue
        if prose:
            if len(prose) > SUMMARY_MAX_CHARS:
                prose = prose[:SUMMARY_MAX_CHARS].rstrip() + " [...]"
            return prose
    return None


def count_data_points(payload: Any) -> int:
    """Array length or object key count at depth 1; any scalar counts as one."""
    if isinstance(payload, (list, dict)):
        return len(payload)
    return 1


def sample_data(payload: Any) -> Any:
    """
    Small preview of a payload for display.

    Arrays longer than three items and objects with more than five keys are
    replaced by a description holding their size and the first items.
    """
    if isinstance(payload, list) and len(payload) > ARRAY_SAMPLE_SIZE:
        return {
            "type": "array",
            "length": len(payload),
            "sample": payload[:ARRAY_SAMPLE_SIZE],
        }
    if isinstance(payload, dict) and len(payload) > OBJECT_SAMPLE_SIZE:
        keys = sorted(payload)[:OBJECT_SAMPLE_SIZE]
        return {
            "type": "object",
            "total_keys": len(payload),
            "sample": {key: payload[key] for key in keys},
        }
    return payload
