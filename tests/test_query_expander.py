import pytest
from conftest import FakeLLM

from jurnalgpt.llm import AllKeysRateLimitedError
from jurnalgpt.query_expander import (
    ParsedQueries,
    ParseError,
    expand_query,
    language_for_scope,
    parse_queries,
)


def test_language_follows_scope():
    assert language_for_scope("national") == "Bahasa Indonesia"
    assert language_for_scope("international") == "English"
    assert language_for_scope("all") == "English + Bahasa Indonesia"


def test_parse_strips_code_fences():
    parsed = parse_queries('```json\n["ml diagnosis", "deep learning"]\n```')
    assert parsed == ParsedQueries(["ml diagnosis", "deep learning"])


def test_parse_caps_at_five():
    parsed = parse_queries('["a", "b", "c", "d", "e", "f", "g"]')
    assert parsed.queries == ["a", "b", "c", "d", "e"]


@pytest.mark.parametrize("text", [
    None,
    "",
    "not json",
    '{"queries": ["a"]}',
    "[]",
    '["a", 3]',
    '["  ", ""]',
])
def test_parse_rejects_bad_output(text):
    assert isinstance(parse_queries(text), ParseError)


@pytest.mark.asyncio
async def test_expand_query_uses_model_output():
    llm = FakeLLM(completion_text='["diagnosis ML", "CNN radiology", "klasifikasi penyakit"]')

    result = await expand_query("machine learning diagnosis", "all", llm)

    assert result == ["diagnosis ML", "CNN radiology", "klasifikasi penyakit"]
    system, user = llm.messages[0]
    assert "English + Bahasa Indonesia" in system["content"]
    assert user == {"role": "user", "content": "machine learning diagnosis"}


@pytest.mark.asyncio
async def test_expand_query_falls_back_on_invalid_json():
    llm = FakeLLM(completion_text="Here are some queries: ml, ai")

    assert await expand_query("machine learning", "national", llm) == ["machine learning"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [RuntimeError("boom"), AllKeysRateLimitedError()])
async def test_expand_query_falls_back_on_call_failure(error):
    llm = FakeLLM(complete_error=error)

    assert await expand_query("machine learning", "all", llm) == ["machine learning"]
