"""Deterministic prompt builder for analysis conversations."""

import json
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from jsonoracle.models.analysis import ConversationTurn
from jsonoracle.prompts.domains import (
    ANALYSIS_TEMPLATES,
    DOMAIN_ANALYSIS_TEMPLATES,
    DOMAIN_TEMPLATES,
    OUTPUT_FORMAT_GUIDANCE,
    AnalysisType,
    Domain,
    OutputFormat,
)

# Most recent successful turns replayed to the next model
TRANSCRIPT_WINDOW = 4

# Each replayed response is clipped to this many characters
RESPONSE_CLIP_CHARS = 1200

OUTPUT_CONTRACT = """# Output format
Write your analysis in plain prose. End your answer with exactly one fenced
```json block in this shape:
```json
{
  "insights": [
    {"kind": "pattern|anomaly|trend|prediction", "description": "...", "confidence": 0.0, "impact": "low|medium|high"}
  ],
  "recommendations": ["..."]
}
```
confidence is a number between 0 and 1. Each recommendation is one short
actionable sentence."""

HEADER_TEMPLATE = """{role}

{task} Focus on:
{focus}"""

PROMPT_TEMPLATE = """{header}

DOMAIN: {domain}
ANALYSIS TYPE: {analysis_type}
{instructions}
{data_label}:
{payload}
"""

TRANSCRIPT_TEMPLATE = """
# Previous analysis
Other analysts have already looked at this data. Build on their findings,
correct them where the data disagrees, and add what they missed.

{transcript}
"""

DEFAULT_TASK = "Analyze the following data and report what matters."


@dataclass(frozen=True)
class PromptOptions:
    """
    Caller-supplied shaping of the prompt.

    ``custom_prompt`` replaces the role and focus header. ``output_format``
    is an OutputFormat value or free-form style guidance.
    """

    analysis_type: AnalysisType = AnalysisType.GENERAL
    custom_prompt: Optional[str] = None
    custom_instructions: Optional[str] = None
    output_format: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "PromptOptions":
        data = data or {}
        return cls(
            analysis_type=AnalysisType.parse(data.get("analysis_type")),
            custom_prompt=data.get("custom_prompt") or None,
            custom_instructions=data.get("custom_instructions") or None,
            output_format=data.get("output_format") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_type": self.analysis_type.value,
            "custom_prompt": self.custom_prompt,
            "custom_instructions": self.custom_instructions,
            "output_format": self.output_format,
        }


def _clip(text: str, limit: int = RESPONSE_CLIP_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + " [...]"


def _numbered(areas: Sequence[str]) -> str:
    return "\n".join(f"{i}. {area}" for i, area in enumerate(areas, 1))


def condense_transcript(prior_turns: Sequence[ConversationTurn]) -> list[ConversationTurn]:
    """Successful turns, oldest first, limited to the last TRANSCRIPT_WINDOW."""
    usable = [turn for turn in prior_turns if not turn.failed]
    return usable[-TRANSCRIPT_WINDOW:]


def prompt_header(domain: Domain, analysis_type: AnalysisType) -> str:
    """
    Role and focus areas for a domain and analysis type.

    Dedicated domain templates win; otherwise the domain's role is combined
    with the analysis type's focus areas, and GENERAL uses the domain's own.
    """
    role, _, domain_focus = DOMAIN_TEMPLATES[domain]
    if (domain, analysis_type) in DOMAIN_ANALYSIS_TEMPLATES:
        dedicated_role, focus = DOMAIN_ANALYSIS_TEMPLATES[(domain, analysis_type)]
        return HEADER_TEMPLATE.format(role=dedicated_role, task=DEFAULT_TASK, focus=_numbered(focus))
    if analysis_type in ANALYSIS_TEMPLATES:
        task, focus = ANALYSIS_TEMPLATES[analysis_type]
        return HEADER_TEMPLATE.format(role=role, task=task, focus=_numbered(focus))
    return HEADER_TEMPLATE.format(role=role, task=DEFAULT_TASK, focus=_numbered(domain_focus))


def output_style(output_format: Optional[str]) -> Optional[str]:
    if not output_format:
        return None
    try:
        return OUTPUT_FORMAT_GUIDANCE[OutputFormat(output_format.strip().lower())]
    except ValueError:
        return output_format.strip()


def build_prompt(
    domain: Domain | str,
    payload: Any,
    prior_turns: Sequence[ConversationTurn],
    model_id: str,
    options: Optional[PromptOptions] = None,
) -> str:
    """
    Build the prompt for the next turn of a conversation.

    The same inputs always produce the same string: the payload is serialised
    with sorted keys and nothing time- or environment-dependent is included.

    Args:
        domain: Domain enum or free-form tag (unknown tags use the generic template)
        payload: JSON payload under analysis
        prior_turns: Turns completed so far, in execution order
        model_id: Model that will receive the prompt
        options: Analysis type, custom prompt and instructions, output style

    Returns:
        Prompt text
    """
    if not isinstance(domain, Domain):
        domain = Domain.parse(domain)
    options = options or PromptOptions()
    data_label = DOMAIN_TEMPLATES[domain][1]

    if options.custom_prompt:
        header = options.custom_prompt.strip()
    else:
        header = prompt_header(domain, options.analysis_type)

    instructions = ""
    if options.custom_instructions:
        instructions = f"\nCUSTOM INSTRUCTIONS: {options.custom_instructions.strip()}\n"

    parts = [
        PROMPT_TEMPLATE.format(
            header=header,
            domain=domain.value.upper(),
            analysis_type=options.analysis_type.value.replace("_", " ").upper(),
            instructions=instructions,
            data_label=data_label,
            payload=json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False),
        )
    ]

    window = condense_transcript(prior_turns)
    if window:
        transcript = "\n\n".join(
            f"## Round {turn.round}, {turn.model}\n{_clip(turn.response)}"
            for turn in window
        )
        parts.append(TRANSCRIPT_TEMPLATE.format(transcript=transcript))

    parts.append(f"\nYou are responding as model {model_id}.\n")
    style = output_style(options.output_format)
    if style:
        parts.append(f"# Answer style\n{style}\n")
    parts.append(OUTPUT_CONTRACT)
    return "\n".join(parts)
