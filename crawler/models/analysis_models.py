# crawler/models/analysis_models.py
"""
Enrichment and ingest models.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SENTIMENTS = ("positive", "neutral", "negative")
CONTENT_FORMATS = ("markdown", "html", "text")


@dataclass(frozen=True)
class AnalysisInput:
    title: str
    content: str
    source_name: str = ""
    source_category: str = ""


class AnalysisResult(BaseModel):
    """Structured enrichment for one article."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = ""
    one_line: str = Field(default="", alias="oneLine")
    category: str = "news"
    tags: List[str] = Field(default_factory=list)
    importance: int = Field(default=50, ge=0, le=100)
    sentiment: str = "neutral"
    language: str = "en"


class IngestPayload(BaseModel):
    """Body posted to the ingest gateway."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    title: str
    source_id: str = Field(alias="sourceId")
    source_name: str = Field(alias="sourceName")
    source_url: str = Field(alias="sourceUrl")
    source_type: str = Field(alias="sourceType")
    source_category: str = Field(alias="sourceCategory")
    source_language: str = Field(alias="sourceLanguage")
    published_at: int = Field(alias="publishedAt")
    crawled_at: int = Field(alias="crawledAt")
    summary: str
    one_line: str = Field(alias="oneLine")
    content: str
    content_format: str = Field(alias="contentFormat")
    category: str
    tags: List[str]
    importance: int
    sentiment: str
    language: str

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class IngestResult(BaseModel):
    """Gateway response."""
    ok: bool
    id: Optional[str] = None
    inserted: Optional[bool] = None
    error: Optional[str] = None
