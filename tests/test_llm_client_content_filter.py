import pytest

from errors import ContentFilterError
from llm_client import chat_completion


class DummyOpenAIError(Exception):
    def __init__(self):
        super().__init__("content filtered")
        self.body = {
            "error": {
                "code": "content_filter",
                "message": "Content filtered by Azure OpenAI",
                "innererror": {"code": "ResponsibleAIPolicyViolation"},
                "param": None,
            }
        }


class FakeClient:
    class chat:
        class completions:
            @staticmethod
            async def create(**kwargs):  # type: ignore
                raise DummyOpenAIError()


@pytest.mark.asyncio
async def test_llm_client_content_filter():
    with pytest.raises(ContentFilterError) as excinfo:
        await chat_completion(
            messages=[{"role": "user", "content": "test"}],
            client=FakeClient(),
            purpose="transcript summary",
            retries=0,
        )
    assert "Content filtered" in str(excinfo.value)
    assert excinfo.value.details["innererror"]["code"] == "ResponsibleAIPolicyViolation"


class FlakyClient:
    def __init__(self):
        self.calls = 0
        outer = self

        class _Completions:
            async def create(self, **kwargs):
                outer.calls += 1
                raise RuntimeError("connection reset")

        class _Chat:
            completions = _Completions()

        self.chat = _Chat()


@pytest.mark.asyncio
async def test_transient_errors_are_retried_then_give_up():
    client = FlakyClient()
    result = await chat_completion(
        messages=[{"role": "user", "content": "test"}],
        client=client,
        retries=2,
        retry_delay=0,
    )
    assert result is None
    assert client.calls == 3


@pytest.mark.asyncio
async def test_missing_client_returns_none():
    assert await chat_completion([{"role": "user", "content": "x"}], client=None) is None
