"""
Paper discovery via OpenAlex, Semantic Scholar and CORE.

Each adapter takes one combined query plus a year range and returns Journal
records. Adapters never raise: timeouts and network errors get exactly one
retry, HTTP 429 means the source is temporarily unavailable, and any other
failure yields an empty list. Records without a usable abstract are dropped.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from jurnalgpt.config import Settings
from jurnalgpt.models import NO_ABSTRACT, Journal, SourceName, has_usable_abstract
from jurnalgpt.tracing import trace_documents

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OPENALEX_URL = "https://api.openalex.org/works"
OPENALEX_SELECT = ",".join([
    "id", "doi", "title", "publication_year", "primary_location",
    "abstract_inverted_index", "authorships", "relevance_score", "cited_by_count",
])
OPENALEX_LIMIT = 50
OPENALEX_TIMEOUT = httpx.Timeout(15.0)

SS_SEARCH_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
SS_FIELDS = ",".join([
    "paperId", "title", "year", "abstract", "url", "venue",
    "citationCount", "authors", "externalIds", "openAccessPdf",
])
SS_LIMIT = 10
SS_TIMEOUT = httpx.Timeout(10.0)

CORE_SEARCH_URL = "https://api.core.ac.uk/v3/search/works"
CORE_LIMIT = 50
CORE_TIMEOUT = httpx.Timeout(20.0)

USER_AGENT = "JurnalGPT/1.0 (mailto:public@jurnalgpt.com)"

SearchFn = Callable[[str, str, str, httpx.AsyncClient], Awaitable[list[Journal]]]


# ---------------------------------------------------------------------------
# Shared request handling
# ---------------------------------------------------------------------------

async def _send(
    client: httpx.AsyncClient,
    source: str,
    method: str,
    url: str,
    timeout: httpx.Timeout,
    **kwargs: Any,
) -> Optional[httpx.Response]:
    """Send with one retry on timeout / network error.

    Returns None when the source is rate limited or still unreachable after
    the retry; raises HTTPStatusError for any other non-2xx response.
    """
    for attempt in range(2):
        try:
            resp = await client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TransportError as exc:
            if attempt == 0:
                logger.warning("[%s] %s, retrying once", source, type(exc).__name__)
                continue
            logger.warning("[%s] unreachable after retry: %s", source, exc)
            return None

        if resp.status_code == 429:
            logger.warning("[%s] rate limit reached, returning no results for this source", source)
            return None
        resp.raise_for_status()
        return resp
    return None


def _usable(journals: list[Journal]) -> list[Journal]:
    return [j for j in journals if has_usable_abstract(j.abstract)]


def _parse_each(records: list, parse: Callable[[dict], Journal], source: str) -> list[Journal]:
    """Parse records one by one; a malformed record is logged and skipped."""
    journals = []
    for record in records:
        try:
            journals.append(parse(record))
        except Exception as exc:
            logger.warning("[%s] skipping malformed record: %s", source, exc)
    return journals


def _title(value: Any) -> str:
    return (value or "").strip() or "Untitled"


def _names(people: Optional[list], key: str = "name") -> list[str]:
    return [p[key] for p in people or [] if p and p.get(key)]


# ---------------------------------------------------------------------------
# OpenAlex
# ---------------------------------------------------------------------------

def reconstruct_abstract(inverted_index: Optional[dict[str, list[int]]]) -> str:
    """Rebuild abstract text from OpenAlex's word -> positions index."""
    if not inverted_index:
        return ""

    words = [
        (position, word)
        for word, positions in inverted_index.items()
        for position in positions
    ]
    words.sort(key=lambda pair: pair[0])
    return " ".join(word for _, word in words)


def _strip_doi(doi: Optional[str]) -> Optional[str]:
    if not doi:
        return None
    for prefix in ("https://doi.org/", "http://doi.org/", "doi:"):
        if doi.lower().startswith(prefix):
            return doi[len(prefix):]
    return doi


def _parse_openalex_work(work: dict) -> Journal:
    primary = work.get("primary_location") or {}
    venue = (primary.get("source") or {}).get("display_name")
    doi = _strip_doi(work.get("doi"))
    authors = [
        (a.get("author") or {}).get("display_name")
        for a in work.get("authorships") or []
    ]

    return Journal(
        title=_title(work.get("title")),
        year=work.get("publication_year"),
        publisher=venue or "Unknown",
        journal_link=f"https://doi.org/{doi}" if doi else work.get("id") or "",
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")) or NO_ABSTRACT,
        doi=doi,
        pdf_link=primary.get("pdf_url"),
        authors=[a for a in authors if a],
        citation_count=work.get("cited_by_count") or 0,
        source="openalex",
    )


async def search_openalex(
    query: str,
    min_year: str,
    max_year: str,
    client: httpx.AsyncClient,
    email: str = "user@example.com",
) -> list[Journal]:
    # Commas separate OpenAlex filters, so they cannot appear in the search term.
    term = query.replace(",", " ")
    params = {
        "filter": f"publication_year:{min_year}-{max_year},default.search:{term}",
        "select": OPENALEX_SELECT,
        "sort": "relevance_score:desc",
        "per_page": OPENALEX_LIMIT,
        "mailto": email,
    }
    try:
        resp = await _send(
            client, "openalex", "GET", OPENALEX_URL, OPENALEX_TIMEOUT,
            params=params, headers={"User-Agent": USER_AGENT},
        )
        if resp is None:
            return []
        works = resp.json().get("results") or []
        journals = _usable(_parse_each(works, _parse_openalex_work, "openalex"))
    except Exception as exc:
        logger.warning("[openalex] query=%r error: %s", query, exc)
        return []

    logger.debug("[openalex] documents: %s", trace_documents(journals))
    return journals


# ---------------------------------------------------------------------------
# Semantic Scholar
# ---------------------------------------------------------------------------

def _parse_ss_paper(data: dict) -> Journal:
    external_ids = data.get("externalIds") or {}
    open_access_pdf = data.get("openAccessPdf") or {}
    paper_id = data.get("paperId")

    return Journal(
        title=_title(data.get("title")),
        year=data.get("year"),
        publisher=data.get("venue") or "Unknown",
        journal_link=data.get("url") or (
            f"https://www.semanticscholar.org/paper/{paper_id}" if paper_id else ""
        ),
        abstract=data.get("abstract") or NO_ABSTRACT,
        doi=external_ids.get("DOI"),
        pdf_link=open_access_pdf.get("url") or None,
        authors=_names(data.get("authors")),
        citation_count=data.get("citationCount") or 0,
        source="semantic-scholar",
    )


def _ss_headers(api_key: Optional[str]) -> dict:
    headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
    if api_key:
        headers["x-api-key"] = api_key
    return headers


async def search_semantic_scholar(
    query: str,
    min_year: str,
    max_year: str,
    client: httpx.AsyncClient,
    api_key: Optional[str] = None,
) -> list[Journal]:
    params = {
        "query": query,
        "year": f"{min_year}-{max_year}",
        "fields": SS_FIELDS,
        "limit": SS_LIMIT,
    }
    try:
        resp = await _send(
            client, "semantic_scholar", "GET", SS_SEARCH_URL, SS_TIMEOUT,
            params=params, headers=_ss_headers(api_key),
        )
        if resp is None:
            return []
        papers = resp.json().get("data") or []
        journals = _usable(_parse_each(papers, _parse_ss_paper, "semantic_scholar"))
    except Exception as exc:
        logger.warning("[semantic_scholar] query=%r error: %s", query, exc)
        return []

    logger.debug("[semantic_scholar] documents: %s", trace_documents(journals))
    return journals


# ---------------------------------------------------------------------------
# CORE
# ---------------------------------------------------------------------------

def _parse_core_work(work: dict) -> Journal:
    work_id = work.get("id")
    download_url = work.get("downloadUrl") or None

    return Journal(
        title=_title(work.get("title")),
        year=work.get("yearPublished"),
        publisher=work.get("publisher") or "Unknown",
        journal_link=download_url or (f"https://core.ac.uk/works/{work_id}" if work_id else ""),
        abstract=work.get("abstract") or NO_ABSTRACT,
        doi=work.get("doi") or None,
        pdf_link=download_url,
        authors=_names(work.get("authors")),
        citation_count=work.get("citationCount") or 0,
        source="core-ac-uk",
    )


async def search_core(
    query: str,
    min_year: str,
    max_year: str,
    client: httpx.AsyncClient,
    api_key: Optional[str] = None,
) -> list[Journal]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    else:
        logger.warning("[core] no CORE_API_KEY set, requests may be rate limited")

    try:
        body = {
            "q": f"({query}) AND yearPublished>={int(min_year)} AND yearPublished<={int(max_year)}",
            "limit": CORE_LIMIT,
        }
        resp = await _send(
            client, "core", "POST", CORE_SEARCH_URL, CORE_TIMEOUT,
            json=body, headers=headers, follow_redirects=True,
        )
        if resp is None:
            return []
        works = resp.json().get("results") or []
        journals = _usable(_parse_each(works, _parse_core_work, "core"))
    except Exception as exc:
        logger.warning("[core] query=%r error: %s", query, exc)
        return []

    logger.debug("[core] documents: %s", trace_documents(journals))
    return journals


# ---------------------------------------------------------------------------
# Source registry
# ---------------------------------------------------------------------------

def _join_pipe(queries: list[str]) -> str:
    return "|".join(queries)


def _join_boolean_or(queries: list[str]) -> str:
    return " OR ".join('"{}"'.format(q.replace('"', "")) for q in queries)


@dataclass(frozen=True)
class Source:
    name: SourceName
    label: str
    search: SearchFn
    join: Callable[[list[str]], str]

    def combine(self, queries: list[str]) -> str:
        return self.join(queries)


def build_sources(settings: Settings) -> list[Source]:
    return [
        Source(
            name="openalex",
            label="OpenAlex",
            search=functools.partial(search_openalex, email=settings.openalex_email),
            join=_join_pipe,
        ),
        Source(
            name="semantic-scholar",
            label="Semantic Scholar",
            search=functools.partial(search_semantic_scholar, api_key=settings.semantic_scholar_api_key),
            join=_join_pipe,
        ),
        Source(
            name="core-ac-uk",
            label="Core.ac.uk",
            search=functools.partial(search_core, api_key=settings.core_api_key),
            join=_join_boolean_or,
        ),
    ]
