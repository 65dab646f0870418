import os

os.environ.setdefault("DISABLE_TELEMETRY", "true")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from config import Capabilities  # noqa: E402


class FakeMessage:
    def __init__(self, content):
        self.content = content
        self.refusal = None


class FakeChoice:
    def __init__(self, content, finish_reason="stop"):
        self.message = FakeMessage(content)
        self.finish_reason = finish_reason


class FakeResp:
    def __init__(self, choices):
        self.choices = choices


class FakeLLM:
    """Mimics client.chat.completions.create and records every prompt."""

    def __init__(self, reply="요약 결과", error=None, finish_reason="stop"):
        self.prompts = []
        self.reply = reply
        self.finish_reason = finish_reason
        self.error = error
        outer = self

        class _Completions:
            async def create(self, **kwargs):
                outer.prompts.append(kwargs["messages"][0]["content"])
                if outer.error is not None:
                    raise outer.error
                if outer.reply is None:
                    return FakeResp([])
                return FakeResp([FakeChoice(outer.reply, outer.finish_reason)])

        self.chat = SimpleNamespace(completions=_Completions())


PROMPTS = {
    'transcript': "자막 요약 {max_length} {title}\n{text}",
    'audio': "오디오 {title}",
    'video_info': "영상 {title} {channel} {duration}\n{description}",
    'news': "뉴스 {title} {source}\n{content}",
}


@pytest.fixture
def prompts():
    return dict(PROMPTS)


@pytest.fixture
def all_capabilities():
    return Capabilities(llm=True, audio=True, email=True, notion=True, youtube_api=True, news_api=True)


@pytest.fixture
def no_capabilities():
    return Capabilities()
