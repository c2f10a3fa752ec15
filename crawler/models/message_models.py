# crawler/models/message_models.py
"""
Queue message and feed item models.

Wire payloads use camelCase field names; Python attributes are snake_case.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from utils.time_utils import now_ms


class CrawlMessage(BaseModel):
    """One unit of crawl work: a source snapshot plus a single feed item."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source_id: str = Field(default="", alias="sourceId")
    source_url: str = Field(default="", alias="sourceUrl")
    source_name: str = Field(default="", alias="sourceName")
    source_type: str = Field(default="article", alias="sourceType")
    source_category: str = Field(default="", alias="sourceCategory")
    source_language: str = Field(default="en", alias="sourceLanguage")
    item_url: str = Field(default="", alias="itemUrl")
    item_title: str = Field(default="", alias="itemTitle")
    item_pub_date: Optional[str] = Field(default=None, alias="itemPubDate")
    item_content: str = Field(default="", alias="itemContent")
    need_crawl: bool = Field(default=True, alias="needCrawl")
    timestamp: int = Field(default_factory=now_ms)

    @property
    def is_valid(self) -> bool:
        return bool(self.item_url.strip()) and bool(self.item_title.strip())

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON payload."""
        return self.model_dump(by_alias=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CrawlMessage":
        return cls.model_validate(payload)


class DeadLetterRecord(BaseModel):
    """Terminal failure record. Written once, never mutated."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    original_message: Dict[str, Any] = Field(alias="originalMessage")
    error: str
    retry_count: int = Field(alias="retryCount")
    first_attempt_at: int = Field(alias="firstAttemptAt")
    last_attempt_at: int = Field(alias="lastAttemptAt")
    # queue body that could not be decoded into ``original_message``
    raw_body: Optional[str] = Field(default=None, alias="rawBody")

    @classmethod
    def from_message(cls, message: CrawlMessage, error: str, retry_count: int,
                     raw_body: Optional[str] = None) -> "DeadLetterRecord":
        return cls(
            original_message=message.to_payload(),
            error=error,
            retry_count=retry_count,
            first_attempt_at=message.timestamp,
            last_attempt_at=now_ms(),
            raw_body=raw_body,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        if self.raw_body is None:
            del payload["rawBody"]
        return payload


@dataclass(frozen=True)
class FeedItem:
    """A normalized candidate item parsed from a feed."""
    title: str
    link: str
    published_at: int
    content: str = ""
    guid: Optional[str] = None
    author: Optional[str] = None


@dataclass
class ParsedFeed:
    """Feed-level metadata plus its items in document order."""
    url: str
    title: str = ""
    link: str = ""
    items: List[FeedItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
