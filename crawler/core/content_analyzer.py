"""
Article enrichment.

The LLM analyzer asks an OpenAI-compatible chat model (Azure OpenAI when an API
version is configured) for a JSON analysis and sanitizes the reply. The
heuristic analyzer is a deterministic keyword-based stand-in used when no LLM
is configured.
"""
import asyncio
import json
import re
from typing import Any, Dict, Optional

from loguru import logger
from openai import AsyncAzureOpenAI, AsyncOpenAI

from crawler.interfaces import AnalysisError, IContentAnalyzer
from crawler.models import AnalysisInput, AnalysisResult
from crawler.models.analysis_models import SENTIMENTS
from monitoring.metrics import PipelineMetrics

MAX_PROMPT_CONTENT = 12_000
LANGUAGE_SAMPLE_CHARS = 4000

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_URL_RE = re.compile(r"https?://\S+")
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

CATEGORY_PATTERNS = [
    ("release", re.compile(r"release|launch|announce|introduc|unveil|ship|drop")),
    ("research", re.compile(r"research|paper|benchmark|dataset|arxiv|study")),
    ("security", re.compile(r"security|vuln|cve|attack|prompt injection|exploit")),
    ("business", re.compile(r"funding|acquir|ipo|valuation|invest|fundraise")),
    ("policy", re.compile(r"policy|regulat|law|compliance|copyright|gdpr")),
]

_COMPANY_RE = re.compile(r"openai|anthropic|deepmind|google|meta|microsoft|amazon|nvidia|apple", re.I)
_MODEL_RE = re.compile(r"gpt|claude|gemini|llama|qwen|kimi|deepseek|mistral|flux", re.I)
_ACTION_RE = re.compile(r"release|launch|announce|unveil|introduc", re.I)
_VULN_RE = re.compile(r"vulnerability|breach|leak|exploit|vuln", re.I)

SYSTEM_PROMPT = """You are a news analyst for a technology news aggregation site.
Analyze the article and return ONLY valid JSON (no markdown, no backticks).

Response schema:
{
  "summary": string,      // 2-4 sentences summarizing the article
  "oneLine": string,      // single line, max 120 characters
  "category": string,     // one of: release, research, security, business, policy, news
  "tags": string[],       // 3-8 short, relevant tags
  "importance": number,   // 0-100, based on source credibility, novelty and industry impact
  "sentiment": "positive" | "neutral" | "negative",
  "language": "en" | "zh"
}"""


def detect_language(text: str) -> str:
    """``zh`` when CJK ideographs make up more than 10% of the text."""
    if not text:
        return "en"
    cjk = len(_CJK_RE.findall(text))
    return "zh" if cjk > len(text) * 0.1 else "en"


def heuristic_category(title: str) -> str:
    lowered = title.lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(lowered):
            return category
    return "news"


def heuristic_tags(title: str, limit: int = 8) -> list:
    """Unique lowercase title tokens of 3 to 24 characters."""
    cleaned = _URL_RE.sub("", title)
    # keep letters, digits, whitespace and hyphens
    cleaned = "".join(ch if ch.isalnum() or ch.isspace() or ch == "-" else " " for ch in cleaned)
    tokens = [t for t in cleaned.split() if 3 <= len(t) <= 24]
    unique = list(dict.fromkeys(t.lower() for t in tokens))
    return unique[:limit]


def heuristic_importance(title: str, source_category: str = "") -> int:
    score = 50
    if source_category == "ai_company":
        score += 10
    if _COMPANY_RE.search(title):
        score += 10
    if _MODEL_RE.search(title):
        score += 8
    if _ACTION_RE.search(title):
        score += 6
    if _VULN_RE.search(title):
        score += 5
    return max(0, min(100, score))


def sanitize_analysis(data: Any) -> AnalysisResult:
    """
    Clamp and truncate a raw model reply into an AnalysisResult.

    Raises:
        AnalysisError: When the reply is not a JSON object
    """
    if not isinstance(data, dict):
        raise AnalysisError("Invalid analysis result: not an object")

    def text(key: str, limit: int, default: str = "") -> str:
        value = data.get(key)
        return value[:limit] if isinstance(value, str) else default

    tags = data.get("tags")
    clean_tags = []
    if isinstance(tags, list):
        clean_tags = [t.strip()[:50] for t in tags if isinstance(t, str) and t.strip()][:10]

    importance = data.get("importance")
    if isinstance(importance, (int, float)) and not isinstance(importance, bool):
        importance = int(max(0, min(100, importance)))
    else:
        importance = 50

    sentiment = data.get("sentiment")
    if sentiment not in SENTIMENTS:
        sentiment = "neutral"

    return AnalysisResult(
        summary=text("summary", 500),
        one_line=text("oneLine", 140),
        category=text("category", 50, "news") or "news",
        tags=clean_tags,
        importance=importance,
        sentiment=sentiment,
        language="zh" if data.get("language") == "zh" else "en",
    )


def parse_model_reply(reply: str) -> Dict[str, Any]:
    """Extract the JSON object from a model reply (fenced or bare)."""
    fenced = _JSON_FENCE_RE.search(reply)
    candidate = fenced.group(1) if fenced else reply.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(candidate)
        if not match:
            raise AnalysisError("No JSON found in analysis response")
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Malformed JSON in analysis response: {e}", cause=e)


class HeuristicAnalyzer(IContentAnalyzer):
    """Keyword-based analysis, no external calls."""

    async def analyze(self, data: AnalysisInput) -> AnalysisResult:
        title = data.title.strip()
        language = detect_language(f"{title}\n{data.content}"[:LANGUAGE_SAMPLE_CHARS])
        return AnalysisResult(
            summary=data.content.strip()[:600],
            one_line=title[:140],
            category=heuristic_category(title),
            tags=heuristic_tags(title),
            importance=heuristic_importance(title, data.source_category),
            sentiment="neutral",
            language=language,
        )


class LLMContentAnalyzer(IContentAnalyzer):
    """Chat-completion analyzer with an explicit per-call timeout."""

    def __init__(self, client, model: str, timeout_s: float = 60,
                 metrics: Optional[PipelineMetrics] = None,
                 max_tokens: int = 700, temperature: float = 0.2):
        self.client = client
        self.model = model
        self.timeout_s = timeout_s
        self.metrics = metrics
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_prompt(self, data: AnalysisInput) -> str:
        language = detect_language(f"{data.title}\n{data.content}"[:LANGUAGE_SAMPLE_CHARS])
        return (
            f"Source: {data.source_name} ({data.source_category or 'unknown'})\n"
            f"Language: {'Chinese' if language == 'zh' else 'English'}\n\n"
            f"Title: {data.title}\n\n"
            f"Content:\n{data.content[:MAX_PROMPT_CONTENT]}"
        )

    async def analyze(self, data: AnalysisInput) -> AnalysisResult:
        """
        Analyze an article with the configured model.

        Raises:
            AnalysisError: On timeout, API error or an unusable reply
        """
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": self.build_prompt(data)},
                    ],
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            self._count("analyzer_failures_total", "timeout")
            raise AnalysisError(f"Analysis timed out after {self.timeout_s}s", cause=e)
        except Exception as e:
            self._count("analyzer_failures_total", "api_error")
            raise AnalysisError(f"Analysis request failed: {e}", cause=e)

        usage = getattr(response, "usage", None)
        if usage is not None and self.metrics is not None:
            self.metrics.increment("analyzer_tokens_total", usage.total_tokens or 0)
            logger.debug(
                f"LLM usage: {usage.prompt_tokens} prompt + {usage.completion_tokens} completion "
                f"= {usage.total_tokens} total tokens"
            )

        reply = response.choices[0].message.content if response.choices else None
        if not reply:
            self._count("analyzer_failures_total", "empty_reply")
            raise AnalysisError("Empty analysis response")

        result = sanitize_analysis(parse_model_reply(reply))
        self._count("analyzer_success_total")
        return result

    def _count(self, name: str, reason: Optional[str] = None):
        if self.metrics is None:
            return
        labels = {"reason": reason} if reason else None
        self.metrics.increment(name, 1, labels)


def create_content_analyzer(settings, metrics: Optional[PipelineMetrics] = None) -> IContentAnalyzer:
    """Build the analyzer for ``settings``: LLM when a key is set, else heuristics."""
    if not settings.llm_enabled:
        logger.warning("⚠️ No LLM configured, using heuristic analyzer")
        return HeuristicAnalyzer()

    if settings.llm_api_version:
        client = AsyncAzureOpenAI(
            api_version=settings.llm_api_version,
            azure_endpoint=settings.llm_base_url,
            api_key=settings.llm_api_key,
        )
        logger.info(f"Content analyzer using Azure OpenAI deployment: {settings.llm_model}")
    else:
        client = AsyncOpenAI(api_key=settings.llm_api_key, base_url=settings.llm_base_url)
        logger.info(f"Content analyzer using model: {settings.llm_model}")

    return LLMContentAnalyzer(
        client=client,
        model=settings.llm_model,
        timeout_s=settings.analyze_timeout_s,
        metrics=metrics,
    )
