"""Prompt construction for analysis conversations."""

from jsonoracle.prompts.builder import (
    OUTPUT_CONTRACT,
    RESPONSE_CLIP_CHARS,
    TRANSCRIPT_WINDOW,
    PromptOptions,
    build_prompt,
)
from jsonoracle.prompts.domains import (
    AnalysisType,
    Domain,
    OutputFormat,
    supported_analysis_types,
    supported_domains,
)

__all__ = [
    "AnalysisType",
    "Domain",
    "OUTPUT_CONTRACT",
    "OutputFormat",
    "PromptOptions",
    "RESPONSE_CLIP_CHARS",
    "TRANSCRIPT_WINDOW",
    "build_prompt",
    "supported_analysis_types",
    "supported_domains",
]
