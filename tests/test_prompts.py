"""Tests for domains and the prompt builder."""

import pytest

from jsonoracle.models.analysis import ConversationTurn
from jsonoracle.prompts import (
    OUTPUT_CONTRACT,
    RESPONSE_CLIP_CHARS,
    TRANSCRIPT_WINDOW,
    AnalysisType,
    Domain,
    OutputFormat,
    PromptOptions,
    build_prompt,
    supported_analysis_types,
    supported_domains,
)
from jsonoracle.prompts.builder import condense_transcript


def make_turn(index: int, model: str = "llama2", response: str = "", error=None) -> ConversationTurn:
    return ConversationTurn(
        index=index,
        round=1,
        model=model,
        prompt="...",
        response=response or f"response {index}",
        error=error,
    )


class TestDomain:
    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("finance", Domain.FINANCE),
            ("Finance", Domain.FINANCE),
            (" healthcare ", Domain.HEALTHCARE),
            ("real_estate", Domain.REALESTATE),
            ("real-estate", Domain.REALESTATE),
            ("realestate", Domain.REALESTATE),
            ("astrology", Domain.GENERIC),
            ("", Domain.GENERIC),
            (None, Domain.GENERIC),
        ],
    )
    def test_parse(self, tag, expected):
        assert Domain.parse(tag) is expected


class TestAnalysisType:
    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("prediction", AnalysisType.PREDICTION),
            ("Risk Assessment", AnalysisType.RISK_ASSESSMENT),
            ("anomaly-detection", AnalysisType.ANOMALY_DETECTION),
            ("horoscope", AnalysisType.GENERAL),
            ("", AnalysisType.GENERAL),
            (None, AnalysisType.GENERAL),
        ],
    )
    def test_parse(self, tag, expected):
        assert AnalysisType.parse(tag) is expected

    def test_supported_listings(self):
        assert "finance" in supported_domains()
        assert "generic" in supported_domains()
        assert supported_analysis_types()[0] == "general"
        assert "risk_assessment" in supported_analysis_types()


class TestBuildPrompt:
    def test_deterministic(self):
        payload = {"b": 2, "a": [1, 2, 3]}
        turns = [make_turn(0)]

        first = build_prompt("finance", payload, turns, "llama2")
        second = build_prompt(Domain.FINANCE, {"a": [1, 2, 3], "b": 2}, turns, "llama2")

        assert first == second

    def test_contains_payload_domain_model_and_contract(self):
        prompt = build_prompt("logistics", {"shipments": 12}, [], "mistral")

        assert '"shipments": 12' in prompt
        assert "DOMAIN: LOGISTICS" in prompt
        assert "LOGISTICS DATA" in prompt
        assert "You are responding as model mistral." in prompt
        assert prompt.endswith(OUTPUT_CONTRACT)
        assert "Previous analysis" not in prompt

    def test_unknown_domain_uses_generic_template(self):
        prompt = build_prompt("astrology", [1, 2], [], "llama2")

        assert "DOMAIN: GENERIC" in prompt
        assert "You are an AI data analyst." in prompt

    def test_includes_prior_successful_turns(self):
        turns = [
            make_turn(0, model="llama2", response="Revenue is rising."),
            make_turn(1, model="mistral", error="timeout"),
        ]

        prompt = build_prompt("finance", {}, turns, "mistral")

        assert "Revenue is rising." in prompt
        assert "## Round 1, llama2" in prompt
        assert "## Round 1, mistral" not in prompt

    def test_long_responses_are_clipped(self):
        turns = [make_turn(0, response="x" * (RESPONSE_CLIP_CHARS + 500))]

        prompt = build_prompt("generic", {}, turns, "llama2")

        assert "x" * RESPONSE_CLIP_CHARS + " [...]" in prompt
        assert "x" * (RESPONSE_CLIP_CHARS + 1) not in prompt


class TestCondenseTranscript:
    def test_window_keeps_most_recent_successful_turns(self):
        turns = [make_turn(i) for i in range(TRANSCRIPT_WINDOW + 3)]
        turns.append(make_turn(99, error="unavailable"))

        window = condense_transcript(turns)

        assert len(window) == TRANSCRIPT_WINDOW
        assert [t.index for t in window] == [3, 4, 5, 6]

    def test_empty(self):
        assert condense_transcript([]) == []


class TestPromptOptions:
    def test_default_is_general_analysis(self):
        prompt = build_prompt("finance", {}, [], "llama2")

        assert "ANALYSIS TYPE: GENERAL" in prompt
        assert prompt == build_prompt("finance", {}, [], "llama2", PromptOptions())

    def test_dedicated_domain_template(self):
        options = PromptOptions(analysis_type=AnalysisType.RISK_ASSESSMENT)

        prompt = build_prompt("finance", {"positions": []}, [], "llama2", options)

        assert prompt.startswith("You are a financial risk analyst.")
        assert "Stress scenarios and worst cases" in prompt
        assert "ANALYSIS TYPE: RISK ASSESSMENT" in prompt

    def test_type_template_without_dedicated_domain_template(self):
        options = PromptOptions(analysis_type=AnalysisType.TREND_ANALYSIS)

        prompt = build_prompt("manufacturing", {}, [], "llama2", options)

        assert prompt.startswith("You are a manufacturing operations analyst.")
        assert "Analyze the following data for trends." in prompt
        assert "Seasonality or cycles" in prompt

    def test_custom_prompt_replaces_header(self):
        options = PromptOptions(custom_prompt="Look only at late shipments.")

        prompt = build_prompt("logistics", {"late": 3}, [], "llama2", options)

        assert prompt.startswith("Look only at late shipments.")
        assert "logistics analyst" not in prompt.split("DOMAIN:")[0]
        assert '"late": 3' in prompt
        assert prompt.endswith(OUTPUT_CONTRACT)

    def test_custom_instructions(self):
        options = PromptOptions(custom_instructions="  Ignore weekends. ")

        prompt = build_prompt("generic", {}, [], "llama2", options)

        assert "CUSTOM INSTRUCTIONS: Ignore weekends." in prompt

    def test_output_format_guidance(self):
        table = build_prompt(
            "generic", {}, [], "llama2", PromptOptions(output_format=OutputFormat.TABLE.value)
        )
        free_text = build_prompt(
            "generic", {}, [], "llama2", PromptOptions(output_format="Answer in haiku.")
        )

        assert "# Answer style\nPresent key findings in tables where appropriate." in table
        assert "# Answer style\nAnswer in haiku." in free_text
        assert "# Answer style" not in build_prompt("generic", {}, [], "llama2")

    def test_options_keep_prompt_deterministic(self):
        options = PromptOptions.from_dict(
            {
                "analysis_type": "prediction",
                "custom_instructions": "Weekly granularity.",
                "output_format": "bullet_points",
            }
        )

        first = build_prompt("ecommerce", {"b": 1, "a": 2}, [], "llama2", options)
        second = build_prompt("ecommerce", {"a": 2, "b": 1}, [], "llama2", options)

        assert first == second
        assert PromptOptions.from_dict(options.to_dict()) == options
