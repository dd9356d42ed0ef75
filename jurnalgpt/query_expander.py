"""
LLM-based query expansion.

Turns the user's question into up to five short academic search queries,
each covering a different angle (core topic, method, application domain).
The working language follows the search scope. Any failure, including
output that is not a non-empty JSON array of strings, falls back to the
original query.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

from jurnalgpt.llm import RotatingGroq
from jurnalgpt.models import Scope

logger = logging.getLogger(__name__)

MAX_QUERIES = 5

_LANGUAGES: dict[str, str] = {
    "national": "Bahasa Indonesia",
    "international": "English",
    "all": "English + Bahasa Indonesia",
}

_SYSTEM_PROMPT = """\
You are an expert research assistant.
Provide additional search keywords and phrases for each key aspect of the user's query, \
so that scientific documents supporting or rejecting the claim in the query are easy to find.
Your task is to generate 5 short and effective academic search queries based on the user input \
using language {language}.

STRICT RULES:
1. Queries MUST be short and concise (1-3 keywords each).
2. Avoid long phrases, sentences, or unnecessary descriptors.
3. If the user input is short or ambiguous, expand ONLY by adding essential keywords \
(topic, method, or domain) and keep it compact.
4. Each query should represent a different angle:
   - Core topic
   - Method / approach
   - Application / domain
5. DO NOT use full sentences.
6. DO NOT include explanations, numbering, or metadata.
7. Return ONLY a raw JSON array of strings.

OUTPUT FORMAT (STRICT):
["query1", "query2", "query3", "query4", "query5"]
"""


@dataclass
class ParsedQueries:
    queries: list[str]


@dataclass
class ParseError:
    reason: str


def language_for_scope(scope: Scope) -> str:
    return _LANGUAGES.get(scope, _LANGUAGES["all"])


def _strip_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_queries(text: Optional[str]) -> Union[ParsedQueries, ParseError]:
    if not text:
        return ParseError("empty response")

    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as exc:
        return ParseError(f"invalid JSON: {exc}")

    if not isinstance(data, list):
        return ParseError(f"expected a JSON array, got {type(data).__name__}")
    if not data:
        return ParseError("empty array")
    if not all(isinstance(q, str) for q in data):
        return ParseError("array contains non-string items")

    queries = [q.strip() for q in data if q.strip()]
    if not queries:
        return ParseError("array contains only blank strings")
    return ParsedQueries(queries[:MAX_QUERIES])


async def expand_query(query: str, scope: Scope, llm: RotatingGroq) -> list[str]:
    language = language_for_scope(scope)

    try:
        text = await llm.complete(
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT.format(language=language)},
                {"role": "user", "content": query},
            ],
        )
    except Exception as exc:
        logger.error("Query expansion failed: %s", exc)
        return [query]

    parsed = parse_queries(text)
    if isinstance(parsed, ParseError):
        logger.warning("Could not parse expanded queries (%s): %r", parsed.reason, text)
        return [query]

    logger.info("Expanded %r [%s] to %s", query, scope, parsed.queries)
    return parsed.queries
