from types import SimpleNamespace

import pytest

from jurnalgpt.models import Journal

LONG_ABSTRACT = (
    "This study evaluates machine learning models for clinical diagnosis "
    "across several hospital datasets and reports consistent gains."
)


def make_journal(title="A Study", citation_count=0, abstract=LONG_ABSTRACT, source="openalex", **kwargs):
    return Journal(
        title=title,
        citation_count=citation_count,
        abstract=abstract,
        source=source,
        **kwargs,
    )


class FakeRawResponse:
    """Stands in for an SDK ``with_raw_response`` result."""

    def __init__(self, parsed, headers=None):
        self._parsed = parsed
        self.headers = headers or {}

    async def parse(self):
        return self._parsed


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def stream_chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def chunk_stream(*texts, error=None):
    for text in texts:
        yield stream_chunk(text)
    if error is not None:
        raise error


class FakeLLM:
    """Duck-typed replacement for RotatingGroq."""

    def __init__(self, completion_text=None, stream_texts=(), complete_error=None, stream_error=None):
        self.completion_text = completion_text
        self.stream_texts = stream_texts
        self.complete_error = complete_error
        self.stream_error = stream_error
        self.messages = []

    async def complete(self, messages, **kwargs):
        self.messages.append(messages)
        if self.complete_error is not None:
            raise self.complete_error
        return self.completion_text

    async def stream(self, messages, **kwargs):
        self.messages.append(messages)
        if self.stream_error is not None:
            raise self.stream_error
        return chunk_stream(*self.stream_texts)


@pytest.fixture
def journal_factory():
    return make_journal
