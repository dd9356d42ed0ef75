from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Scope = Literal["all", "national", "international"]
SourceName = Literal["openalex", "semantic-scholar", "core-ac-uk"]

NO_ABSTRACT = "No abstract available"
MIN_ABSTRACT_CHARS = 50


def has_usable_abstract(abstract: Optional[str]) -> bool:
    """Placeholder and too-short abstracts count as missing."""
    if not abstract:
        return False
    text = abstract.strip()
    return text != NO_ABSTRACT and len(text) >= MIN_ABSTRACT_CHARS


class Journal(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = "Untitled"
    year: Optional[int] = None
    publisher: str = "Unknown"
    journal_link: str = ""
    abstract: Optional[str] = None
    doi: Optional[str] = None
    pdf_link: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    citation_count: int = Field(default=0, ge=0)
    source: SourceName
    relevance_score: Optional[float] = None  # set by the reranker only


@dataclass
class SearchResult:
    journals: list[Journal]
    stream: AsyncIterator[str]


class SourceCount(BaseModel):
    name: str
    count: int


class ExpansionEvent(BaseModel):
    type: Literal["expansion"] = "expansion"
    keywords: list[str]


class RetrievalEvent(BaseModel):
    type: Literal["retrieval"] = "retrieval"
    sources: list[SourceCount]


class RerankingEvent(BaseModel):
    type: Literal["reranking"] = "reranking"


class RerankedEvent(BaseModel):
    type: Literal["reranked"] = "reranked"
    count: int


class JournalsEvent(BaseModel):
    type: Literal["journals"] = "journals"
    journals: list[Journal]


@dataclass
class AnswerStartEvent:
    stream: AsyncIterator[str]
    type: str = "answer_start"


SearchStatus = (
    ExpansionEvent
    | RetrievalEvent
    | RerankingEvent
    | RerankedEvent
    | JournalsEvent
    | AnswerStartEvent
)


class SearchRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    min_year: str = "2020"
    max_year: str = "2025"
    scope: Scope = "all"
    is_premium: bool = False
