"""
Search pipeline: expansion -> parallel retrieval -> merge -> rerank -> answer.

The same final slice of documents is both returned to the caller and used as
the answer's citation context, so marker [n] always refers to journals[n-1].
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Optional

import httpx

from jurnalgpt.answer_generator import stream_answer
from jurnalgpt.llm import RotatingGroq
from jurnalgpt.merge_results import merge_and_deduplicate
from jurnalgpt.models import (
    AnswerStartEvent,
    ExpansionEvent,
    Journal,
    JournalsEvent,
    RerankedEvent,
    RerankingEvent,
    RetrievalEvent,
    Scope,
    SearchResult,
    SearchStatus,
    SourceCount,
)
from jurnalgpt.paper_search import Source
from jurnalgpt.query_expander import expand_query
from jurnalgpt.reranker import rerank_documents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierBudget:
    rerank_pool: int
    final_size: int


PREMIUM_BUDGET = TierBudget(rerank_pool=16, final_size=8)
FREE_BUDGET = TierBudget(rerank_pool=8, final_size=4)


def budget_for(is_premium: bool) -> TierBudget:
    return PREMIUM_BUDGET if is_premium else FREE_BUDGET


class SearchService:
    def __init__(
        self,
        llm: RotatingGroq,
        http_client: httpx.AsyncClient,
        sources: list[Source],
        rerank_api_keys: Optional[list[str]] = None,
    ):
        self.llm = llm
        self.http_client = http_client
        self.sources = sources
        self.rerank_api_keys = rerank_api_keys or []

    async def _retrieve(
        self,
        queries: list[str],
        min_year: str,
        max_year: str,
    ) -> list[tuple[Source, list[Journal]]]:
        results = await asyncio.gather(
            *[
                source.search(source.combine(queries), min_year, max_year, self.http_client)
                for source in self.sources
            ],
            return_exceptions=True,
        )

        settled = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.error("%s search raised: %s", source.label, result)
                result = []
            logger.info("%s: %d results", source.label, len(result))
            settled.append((source, result))
        return settled

    async def iter_search_events(
        self,
        query: str,
        min_year: str,
        max_year: str,
        scope: Scope = "all",
        is_premium: bool = False,
    ) -> AsyncIterator[SearchStatus]:
        budget = budget_for(is_premium)
        logger.info("Search %r [scope=%s, premium=%s, %s-%s]", query, scope, is_premium, min_year, max_year)

        queries = await expand_query(query, scope, self.llm)
        yield ExpansionEvent(keywords=queries)

        settled = await self._retrieve(queries, min_year, max_year)
        yield RetrievalEvent(sources=[
            SourceCount(name=source.label, count=len(found)) for source, found in settled
        ])

        merged = merge_and_deduplicate([j for _, found in settled for j in found])
        logger.info("Merged %d unique journals", len(merged))

        yield RerankingEvent()
        reranked = await rerank_documents(
            query,
            merged[:budget.rerank_pool],
            budget.final_size,
            self.http_client,
            self.rerank_api_keys,
        )
        final = reranked[:budget.final_size]
        yield RerankedEvent(count=len(final))

        yield JournalsEvent(journals=final)
        yield AnswerStartEvent(stream=stream_answer(query, final, self.llm))

    async def search_journals(
        self,
        query: str,
        min_year: str,
        max_year: str,
        scope: Scope = "all",
        is_premium: bool = False,
    ) -> SearchResult:
        journals: list[Journal] = []
        stream: Optional[AsyncIterator[str]] = None

        async for event in self.iter_search_events(query, min_year, max_year, scope, is_premium):
            if isinstance(event, JournalsEvent):
                journals = event.journals
            elif isinstance(event, AnswerStartEvent):
                stream = event.stream

        return SearchResult(journals=journals, stream=stream)
