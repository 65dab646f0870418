import pytest

from llm_client import chat_completion


class FakeChoice:
    def __init__(self, content, finish_reason):
        class Msg:
            refusal = None
        Msg.content = content
        self.message = Msg()
        self.finish_reason = finish_reason


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeClient:
    def __init__(self, resp):
        resp_obj = resp

        class _Completions:
            async def create(self, **kwargs):
                return resp_obj

        class _Chat:
            completions = _Completions()

        self.chat = _Chat()


@pytest.mark.asyncio
async def test_truncated_empty_content_is_none():
    # list-of-parts with non-text types and empty text
    parts = [{"type": "reasoning", "text": ""}, {"type": "metadata", "text": ""}]
    result = await chat_completion(
        messages=[{"role": "user", "content": "Test truncated scenario"}],
        client=FakeClient(FakeResp([FakeChoice(parts, "length")])),
        retries=0,
    )
    assert result is None


@pytest.mark.asyncio
async def test_empty_content_without_truncation_is_none():
    result = await chat_completion(
        messages=[{"role": "user", "content": "x"}],
        client=FakeClient(FakeResp([FakeChoice("   ", "stop")])),
        retries=0,
    )
    assert result is None


@pytest.mark.asyncio
async def test_text_parts_are_joined_and_postprocessed():
    parts = [{"type": "text", "text": " 첫 줄 "}, {"type": "output_text", "text": "둘째 줄"}]
    result = await chat_completion(
        messages=[{"role": "user", "content": "x"}],
        client=FakeClient(FakeResp([FakeChoice(parts, "stop")])),
        retries=0,
        postprocess=str.upper,
    )
    assert result == "첫 줄\n둘째 줄".upper()
