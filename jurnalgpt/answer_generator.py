"""
Cited answer generation with streaming.

The model sees the final documents as a numbered context ([ID: n]) and must
write one dense academic paragraph in Indonesian, citing with [n] markers
that point back into that context. Chunks are yielded as they arrive; a
failure yields one apology line and ends the stream.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from jurnalgpt.llm import AllKeysRateLimitedError, RotatingGroq
from jurnalgpt.models import Journal
from jurnalgpt.tracing import trace_payload

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = "Maaf, terjadi kesalahan saat menghasilkan jawaban. Silakan coba lagi."


def build_context(journals: list[Journal]) -> str:
    sections = []
    for i, j in enumerate(journals, 1):
        authors = ", ".join(j.authors) if j.authors else "Unknown Author"
        year = j.year or "n.d."
        sections.append(
            f"[ID: {i}]\nTitle: {j.title}\nAuthor: {authors}\nYear: {year}\nText: {j.abstract or ''}"
        )
    return "\n<split>\n".join(sections)


_SYSTEM_PROMPT = """\
<goal>
You are JurnalGPT, a reliable and objective research assistant. Write a dense, \
well-structured scientific answer to the user's query based on the context below.
</goal>

CONTEXT:
{context}

<report_format>
Write exactly one continuous paragraph in the style of an academic report. \
Do not use bullet points, numbered lists, headings or sub-sections.
</report_format>

<citations>
Cite sources inline with numeric markers [n], where n is the [ID: n] of a context document. \
Each marker references exactly one document: write [1][2], never [1,2] or [1-2]. \
Never add a References section or bibliography at the end. \
Do not cite anything that is not in the context; if the context is empty or insufficient, \
answer as well as you can without citations and say that the context does not cover it.
</citations>

<style>
Use formal, objective academic language. Open with a topic sentence that does not cite a source. \
Use bold for key findings and italics for foreign terms.
</style>

<output>
Write the answer in Bahasa Indonesia.
</output>
"""


def build_system_prompt(journals: list[Journal]) -> str:
    return _SYSTEM_PROMPT.format(context=build_context(journals))


async def _close_stream(stream) -> None:
    # Releases the HTTP connection when the consumer stops early or the stream fails.
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception as exc:
        logger.warning("Closing answer stream failed: %s", exc)


async def stream_answer(
    query: str,
    journals: list[Journal],
    llm: RotatingGroq,
) -> AsyncIterator[str]:
    chunks: list[str] = []
    logger.info("Generating answer with %d context documents", len(journals))

    try:
        stream = await llm.stream(
            messages=[
                {"role": "system", "content": build_system_prompt(journals)},
                {"role": "user", "content": query},
            ],
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    chunks.append(text)
                    yield text
        finally:
            await _close_stream(stream)
    except AllKeysRateLimitedError as exc:
        logger.error("Answer generation gave up, every key is rate limited")
        yield str(exc)
        return
    except Exception:
        logger.exception("Answer generation failed")
        yield APOLOGY_MESSAGE
        return

    logger.debug("Answer: %s", trace_payload("".join(chunks)))
