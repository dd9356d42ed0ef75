import json

import httpx
import pytest
from conftest import FakeLLM, make_journal
from fastapi.testclient import TestClient

from jurnalgpt.main import app, get_http_client, get_search_service
from jurnalgpt.paper_search import Source
from jurnalgpt.search_service import SearchService


def _service(journals, answer_chunks, seen=None):
    async def search(query, min_year, max_year, client):
        if seen is not None:
            seen.append((min_year, max_year))
        return journals

    return SearchService(
        llm=FakeLLM(completion_text='["q"]', stream_texts=answer_chunks),
        http_client=None,
        sources=[Source(name="openalex", label="OpenAlex", search=search, join="|".join)],
    )


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_search_streams_journals_line_then_answer(client):
    seen = []
    journals = [make_journal("Paper One", citation_count=3, doi="10.1/one")]
    app.dependency_overrides[get_search_service] = lambda: _service(journals, ("Jawaban ", "[1]."), seen)

    resp = client.post("/api/search", json={"query": "  ml diagnosis ", "isPremium": False})

    assert resp.status_code == 200
    first_line, answer = resp.text.split("\n", 1)
    assert first_line.startswith("J:")
    payload = json.loads(first_line[2:])
    assert payload["journals"][0]["title"] == "Paper One"
    assert payload["journals"][0]["citationCount"] == 3
    assert payload["journals"][0]["journalLink"] == ""
    assert answer == "Jawaban [1]."
    assert seen == [("2020", "2025")]


def test_search_rejects_blank_query(client):
    app.dependency_overrides[get_search_service] = lambda: _service([], ())

    resp = client.post("/api/search", json={"query": "   "})

    assert resp.status_code == 400


def test_search_events_as_sse(client):
    app.dependency_overrides[get_search_service] = lambda: _service([make_journal("P")], ("a", "b"))

    resp = client.post("/api/search/events", json={"query": "q", "minYear": "2018", "maxYear": "2024"})

    events = [json.loads(line[len("data: "):]) for line in resp.text.split("\n\n") if line]
    types = [e["type"] for e in events]
    assert types[:5] == ["expansion", "retrieval", "reranking", "reranked", "journals"]
    assert [e["content"] for e in events if e["type"] == "answer_chunk"] == ["a", "b"]
    assert types[-1] == "done"


def test_suggestions_proxy(client):
    def handler(request):
        assert request.url.params["client"] == "firefox"
        return httpx.Response(200, json=["jurnal", ["jurnal ilmiah", "jurnal sinta"]])

    app.dependency_overrides[get_http_client] = lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))

    assert client.get("/api/suggestions", params={"q": "jurnal"}).json() == ["jurnal ilmiah", "jurnal sinta"]


def test_suggestions_empty_query_and_failure(client):
    app.dependency_overrides[get_http_client] = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    assert client.get("/api/suggestions").json() == []
    assert client.get("/api/suggestions", params={"q": "x"}).json() == []
