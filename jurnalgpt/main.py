"""
FastAPI application, the thin web boundary around the search pipeline.

Endpoints:
  POST /api/search        : J:{"journals": [...]}\\n line, then raw answer text
  POST /api/search/events : pipeline progress as SSE
  GET  /api/suggestions   : Google autocomplete proxy
  GET  /health            : liveness check

Authentication, quotas and history are handled outside this service; callers
pass the premium flag they resolved.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from jurnalgpt.config import Settings, load_settings
from jurnalgpt.key_manager import KeyManager
from jurnalgpt.llm import RotatingGroq
from jurnalgpt.models import AnswerStartEvent, SearchRequest
from jurnalgpt.paper_search import build_sources
from jurnalgpt.search_service import SearchService

logger = logging.getLogger(__name__)

SUGGESTIONS_URL = "https://suggestqueries.google.com/complete/search"
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
}


def build_search_service(settings: Settings, http_client: httpx.AsyncClient) -> SearchService:
    key_manager = KeyManager.from_settings(settings)
    llm = RotatingGroq(key_manager, model=settings.groq_model)
    return SearchService(
        llm=llm,
        http_client=http_client,
        sources=build_sources(settings),
        rerank_api_keys=settings.langsearch_api_keys,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.groq_api_keys:
        logger.warning("GROQ_API_KEYS is empty; expansion and answers will degrade")

    async with httpx.AsyncClient() as http_client:
        app.state.http_client = http_client
        app.state.search_service = build_search_service(settings, http_client)
        yield


app = FastAPI(title="JurnalGPT Search", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def _sse(event_type: str, data: dict) -> str:
    payload = json.dumps({"type": event_type, **data}, ensure_ascii=False)
    return f"data: {payload}\n\n"


def _validated(req: SearchRequest) -> SearchRequest:
    query = req.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required and must be a non-empty string")
    return req.model_copy(update={"query": query})


# ---------------------------------------------------------------------------
# API routes
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/search")
async def search(req: SearchRequest, service: SearchService = Depends(get_search_service)):
    req = _validated(req)
    result = await service.search_journals(
        req.query, req.min_year, req.max_year, req.scope, req.is_premium
    )

    async def body():
        journals = [j.model_dump(by_alias=True) for j in result.journals]
        yield "J:" + json.dumps({"journals": journals}, ensure_ascii=False) + "\n"
        async for chunk in result.stream:
            yield chunk

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8")


@app.post("/api/search/events")
async def search_events(req: SearchRequest, service: SearchService = Depends(get_search_service)):
    req = _validated(req)

    async def events():
        async for event in service.iter_search_events(
            req.query, req.min_year, req.max_year, req.scope, req.is_premium
        ):
            if isinstance(event, AnswerStartEvent):
                async for chunk in event.stream:
                    yield _sse("answer_chunk", {"content": chunk})
            else:
                yield _sse(event.type, event.model_dump(by_alias=True, exclude={"type"}))
        yield _sse("done", {})

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/api/suggestions")
async def suggestions(q: str = "", client: httpx.AsyncClient = Depends(get_http_client)):
    if not q.strip():
        return []

    try:
        resp = await client.get(
            SUGGESTIONS_URL,
            params={"client": "firefox", "q": q},
            headers=_BROWSER_HEADERS,
            timeout=httpx.Timeout(5.0),
        )
        resp.raise_for_status()
        data = resp.json()
    except Exception as exc:
        logger.warning("Suggestions proxy error: %s", exc)
        return []

    # firefox client format: [query, [suggestion, ...]]
    if isinstance(data, list) and len(data) > 1 and isinstance(data[1], list):
        return [s for s in data[1] if isinstance(s, str)]
    return []
