"""
Semantic reranking through the LangSearch rerank API.

The endpoint receives the query plus one "Title/Abstract" text per document
and returns indices in relevance order. Reranking is best effort: with no
API key, or on any failure, the first top_n documents are returned in their
incoming (citation) order.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

import httpx

from jurnalgpt.models import Journal
from jurnalgpt.tracing import trace_payload

logger = logging.getLogger(__name__)

LANGSEARCH_RERANK_URL = "https://api.langsearch.com/v1/rerank"
RERANK_MODEL = "langsearch-reranker-v1"
RERANK_TIMEOUT = httpx.Timeout(5.0)
MAX_ABSTRACT_CHARS = 1000


class RerankError(RuntimeError):
    pass


def document_text(journal: Journal) -> str:
    abstract = (journal.abstract or "")[:MAX_ABSTRACT_CHARS]
    return f"Title: {journal.title}\nAbstract: {abstract}"


def _ordered_results(data: object, count: int) -> list[tuple[int, Optional[float]]]:
    if not isinstance(data, dict):
        raise RerankError("response is not a JSON object")
    if data.get("code") != 200:
        raise RerankError(f"rerank failed: {data.get('msg')}")

    results = data.get("results")
    if not isinstance(results, list):
        raise RerankError("response has no results list")

    ordered = []
    for item in results:
        index = item.get("index") if isinstance(item, dict) else None
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < count:
            raise RerankError(f"invalid result index: {index!r}")
        ordered.append((index, item.get("relevance_score")))
    return ordered


async def rerank_documents(
    query: str,
    documents: list[Journal],
    top_n: int,
    client: httpx.AsyncClient,
    api_keys: list[str],
    rng: Optional[random.Random] = None,
) -> list[Journal]:
    if not documents:
        return []

    fallback = documents[:top_n]
    if not api_keys:
        logger.warning("No LANGSEARCH_API_KEYS configured, skipping reranking")
        return fallback

    api_key = (rng or random).choice(api_keys)

    try:
        resp = await client.post(
            LANGSEARCH_RERANK_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "model": RERANK_MODEL,
                "query": query,
                "documents": [document_text(d) for d in documents],
                "top_n": top_n,
            },
            timeout=RERANK_TIMEOUT,
        )
        resp.raise_for_status()
        ordered = _ordered_results(resp.json(), len(documents))
    except Exception as exc:
        reason = "timed out" if isinstance(exc, httpx.TimeoutException) else "error"
        logger.warning("Semantic reranking failed (%s): %s", reason, exc)
        return fallback

    reranked: list[Journal] = []
    seen: set[int] = set()
    for index, score in ordered:
        if index in seen:
            continue
        seen.add(index)
        journal = documents[index]
        if isinstance(score, (int, float)):
            journal.relevance_score = float(score)
        reranked.append(journal)

    reranked = reranked[:top_n]
    logger.debug("Reranked documents (key %s...): %s", api_key[:4], trace_payload(reranked))
    return reranked
