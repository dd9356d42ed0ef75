"""
Helpers that decide how much of a payload ends up in debug logs.

Full payloads are logged in development or when ENABLE_FULL_TRACING=true;
in production only summaries and truncated previews are written.
"""

from __future__ import annotations

import json
import os
from typing import Any

from pydantic import BaseModel

MAX_TRACE_CHARS = 500


def full_tracing_enabled() -> bool:
    if os.environ.get("ENABLE_FULL_TRACING", "").lower() == "true":
        return True
    return os.environ.get("APP_ENV", "development").lower() != "production"


def _jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    if isinstance(data, (list, tuple)):
        return [_jsonable(item) for item in data]
    return data


def trace_payload(data: Any) -> str:
    if full_tracing_enabled():
        if isinstance(data, str):
            return data
        return json.dumps(_jsonable(data), ensure_ascii=False, default=str)

    if isinstance(data, (list, tuple)):
        return json.dumps(
            {
                "_summary": f"[{len(data)} items] (Full payload hidden in production)",
                "preview": _jsonable(list(data[:3])),
            },
            ensure_ascii=False,
            default=str,
        )

    if isinstance(data, str):
        if len(data) > MAX_TRACE_CHARS:
            return data[:MAX_TRACE_CHARS] + "... [TRUNCATED]"
        return data

    return json.dumps({
        "_summary": "(Payload hidden in production)",
        "preview": "Set ENABLE_FULL_TRACING=true to see full data",
    })


def trace_documents(journals: list) -> list[str]:
    """One JSON string per document in a retriever-friendly shape."""
    if not journals:
        return []

    if not full_tracing_enabled():
        return [json.dumps({
            "_summary": f"[{len(journals)} items] (Full payload hidden in production)",
        })]

    return [
        json.dumps(
            {
                "id": f"doc_{idx}",
                "content": j.abstract or "",
                "metadata": {
                    "title": j.title,
                    "authors": j.authors,
                    "year": j.year or "",
                    "doi": j.doi or "",
                    "url": j.journal_link,
                },
            },
            ensure_ascii=False,
        )
        for idx, j in enumerate(journals)
    ]
