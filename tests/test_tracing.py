import json

from conftest import make_journal

from jurnalgpt.tracing import trace_documents, trace_payload


def test_full_tracing_in_development(monkeypatch):
    monkeypatch.delenv("ENABLE_FULL_TRACING", raising=False)
    monkeypatch.setenv("APP_ENV", "development")

    text = "x" * 800
    assert trace_payload(text) == text


def test_production_truncates_long_strings(monkeypatch):
    monkeypatch.delenv("ENABLE_FULL_TRACING", raising=False)
    monkeypatch.setenv("APP_ENV", "production")

    traced = trace_payload("x" * 800)

    assert traced.endswith("... [TRUNCATED]")
    assert len(traced) == 500 + len("... [TRUNCATED]")


def test_production_summarizes_lists(monkeypatch):
    monkeypatch.delenv("ENABLE_FULL_TRACING", raising=False)
    monkeypatch.setenv("APP_ENV", "production")

    summary = json.loads(trace_payload([make_journal(f"T{i}") for i in range(5)]))

    assert summary["_summary"].startswith("[5 items]")
    assert [p["title"] for p in summary["preview"]] == ["T0", "T1", "T2"]


def test_explicit_flag_overrides_production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("ENABLE_FULL_TRACING", "true")

    docs = trace_documents([make_journal("Paper", doi="10.1/x")])

    assert json.loads(docs[0])["metadata"]["doi"] == "10.1/x"
