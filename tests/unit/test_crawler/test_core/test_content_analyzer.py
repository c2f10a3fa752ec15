"""
Unit tests for crawler.core.content_analyzer module.
"""
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from crawler.core.content_analyzer import (
    HeuristicAnalyzer,
    LLMContentAnalyzer,
    create_content_analyzer,
    detect_language,
    heuristic_category,
    heuristic_importance,
    heuristic_tags,
    parse_model_reply,
    sanitize_analysis,
)
from crawler.interfaces import AnalysisError
from crawler.models import AnalysisInput
from utils.config import PipelineSettings


def completion(content, total_tokens=120):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=100, completion_tokens=total_tokens - 100, total_tokens=total_tokens),
    )


@pytest.fixture
def analysis_input():
    return AnalysisInput(
        title="Anthropic launches Claude model update",
        content="The company released an update today. " * 20,
        source_name="Example News",
        source_category="ai_company",
    )


@pytest.fixture
def mock_llm_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


class TestHeuristics:

    @pytest.mark.unit
    @pytest.mark.parametrize("title, expected", [
        ("OpenAI announces new model", "release"),
        ("New benchmark dataset for agents", "research"),
        ("Critical CVE found in inference server", "security"),
        ("Startup raises funding at high valuation", "business"),
        ("EU regulation on AI copyright", "policy"),
        ("Weekly roundup", "news"),
    ])
    def test_heuristic_category(self, title, expected):
        assert heuristic_category(title) == expected

    @pytest.mark.unit
    def test_heuristic_tags_are_unique_lowercase_tokens(self):
        tags = heuristic_tags("GPT gpt Release: see https://example.com/x for the new GPT-5 a b")
        assert tags == ["gpt", "release", "see", "for", "the", "new", "gpt-5"]

    @pytest.mark.unit
    def test_heuristic_tags_capped_at_eight(self):
        title = " ".join(f"word{i}" for i in range(20))
        assert len(heuristic_tags(title)) == 8

    @pytest.mark.unit
    def test_heuristic_importance_bonuses(self):
        assert heuristic_importance("Weekly roundup") == 50
        # ai_company +10, company +10, model +8, launch +6
        assert heuristic_importance("OpenAI launches GPT-5", "ai_company") == 84
        assert heuristic_importance("Google Gemini vulnerability exploit") == 50 + 10 + 8 + 5

    @pytest.mark.unit
    def test_detect_language(self):
        assert detect_language("Plain English text") == "en"
        assert detect_language("人工智能模型发布了新的版本") == "zh"
        assert detect_language("") == "en"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heuristic_analyzer(self, analysis_input):
        result = await HeuristicAnalyzer().analyze(analysis_input)

        assert result.one_line == analysis_input.title
        assert result.summary == analysis_input.content.strip()[:600]
        assert result.category == "release"
        assert result.sentiment == "neutral"
        assert result.language == "en"
        assert result.importance == 50 + 10 + 10 + 8 + 6


class TestModelReplyHandling:

    @pytest.mark.unit
    def test_sanitize_clamps_and_truncates(self):
        result = sanitize_analysis({
            "summary": "s" * 900,
            "oneLine": "o" * 300,
            "category": "",
            "tags": ["  ai  ", "", 7, "x" * 80] + [f"t{i}" for i in range(20)],
            "importance": 250,
            "sentiment": "ecstatic",
            "language": "fr",
        })

        assert len(result.summary) == 500
        assert len(result.one_line) == 140
        assert result.category == "news"
        assert result.tags[0] == "ai"
        assert len(result.tags[1]) == 50
        assert len(result.tags) == 10
        assert result.importance == 100
        assert result.sentiment == "neutral"
        assert result.language == "en"

    @pytest.mark.unit
    @pytest.mark.parametrize("importance", ["high", None, True])
    def test_sanitize_non_numeric_importance_defaults(self, importance):
        assert sanitize_analysis({"importance": importance}).importance == 50

    @pytest.mark.unit
    def test_sanitize_rejects_non_object(self):
        with pytest.raises(AnalysisError):
            sanitize_analysis(["not", "an", "object"])

    @pytest.mark.unit
    @pytest.mark.parametrize("reply", [
        '{"summary": "ok"}',
        '```json\n{"summary": "ok"}\n```',
        'Here is the analysis: {"summary": "ok"} Thanks!',
    ])
    def test_parse_model_reply_variants(self, reply):
        assert parse_model_reply(reply) == {"summary": "ok"}

    @pytest.mark.unit
    def test_parse_model_reply_without_json(self):
        with pytest.raises(AnalysisError):
            parse_model_reply("I cannot help with that.")


class TestLLMContentAnalyzer:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_analyze_success(self, mock_llm_client, analysis_input, metrics):
        mock_llm_client.chat.completions.create.return_value = completion(json.dumps({
            "summary": "Anthropic shipped an update.",
            "oneLine": "Claude update ships",
            "category": "release",
            "tags": ["anthropic", "claude"],
            "importance": 77,
            "sentiment": "positive",
            "language": "en",
        }))
        analyzer = LLMContentAnalyzer(mock_llm_client, model="gpt-4o-mini", timeout_s=5, metrics=metrics)

        result = await analyzer.analyze(analysis_input)

        assert result.one_line == "Claude update ships"
        assert result.importance == 77
        kwargs = mock_llm_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert "Title: Anthropic launches Claude model update" in kwargs["messages"][1]["content"]
        assert metrics.get_counter("analyzer_success_total") == 1
        assert metrics.get_counter("analyzer_tokens_total") == 120

    @pytest.mark.unit
    def test_prompt_content_is_bounded(self, mock_llm_client):
        analyzer = LLMContentAnalyzer(mock_llm_client, model="m")
        prompt = analyzer.build_prompt(AnalysisInput(title="T", content="y" * 50_000))
        assert prompt.count("y") == 12_000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_raises_analysis_error(self, mock_llm_client, analysis_input, metrics):
        async def slow(**kwargs):
            await asyncio.sleep(5)
        mock_llm_client.chat.completions.create.side_effect = slow
        analyzer = LLMContentAnalyzer(mock_llm_client, model="m", timeout_s=0.05, metrics=metrics)

        with pytest.raises(AnalysisError, match="timed out"):
            await analyzer.analyze(analysis_input)
        assert metrics.get_counter("analyzer_failures_total", {"reason": "timeout"}) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_error_raises_without_fallback(self, mock_llm_client, analysis_input, metrics):
        mock_llm_client.chat.completions.create.side_effect = ConnectionError("rate limited")
        analyzer = LLMContentAnalyzer(mock_llm_client, model="m", metrics=metrics)

        with pytest.raises(AnalysisError) as exc_info:
            await analyzer.analyze(analysis_input)

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert metrics.get_counter("analyzer_failures_total", {"reason": "api_error"}) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [None, "", "no json here"])
    async def test_unusable_reply_raises(self, mock_llm_client, analysis_input, reply):
        mock_llm_client.chat.completions.create.return_value = completion(reply)
        analyzer = LLMContentAnalyzer(mock_llm_client, model="m")

        with pytest.raises(AnalysisError):
            await analyzer.analyze(analysis_input)


class TestCreateContentAnalyzer:

    @pytest.mark.unit
    def test_heuristic_without_api_key(self):
        analyzer = create_content_analyzer(PipelineSettings())
        assert isinstance(analyzer, HeuristicAnalyzer)

    @pytest.mark.unit
    def test_llm_with_api_key(self):
        settings = PipelineSettings(llm_api_key="sk-test", llm_model="gpt-4o-mini", analyze_timeout_s=12)
        analyzer = create_content_analyzer(settings)
        assert isinstance(analyzer, LLMContentAnalyzer)
        assert analyzer.timeout_s == 12
        assert analyzer.model == "gpt-4o-mini"
