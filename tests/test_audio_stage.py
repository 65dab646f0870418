from types import SimpleNamespace

import pytest

import audio
from audio import AudioDownloader, AudioSummarizer


def _remote(state, name="files/abc"):
    return SimpleNamespace(name=name, state=SimpleNamespace(name=state))


class FakeModel:
    def __init__(self, client):
        self.client = client

    def generate_content(self, parts):
        self.client.generated.append(parts)
        if self.client.analysis_error is not None:
            raise self.client.analysis_error
        return SimpleNamespace(text=f"  {self.client.reply}  ")


class FakeGenAI:
    """Stands in for the google.generativeai module."""

    def __init__(self, states, reply="오디오 요약", analysis_error=None):
        self.states = list(states)
        self.reply = reply
        self.analysis_error = analysis_error
        self.uploads = []
        self.polls = []
        self.deleted = []
        self.generated = []
        self.models = []

    def _next_state(self):
        # the last state repeats for every later poll
        return self.states.pop(0) if len(self.states) > 1 else self.states[0]

    def upload_file(self, file_path, mime_type=None, display_name=None):
        self.uploads.append((file_path, mime_type, display_name))
        return _remote(self._next_state())

    def get_file(self, name):
        self.polls.append(name)
        return _remote(self._next_state(), name)

    def delete_file(self, name):
        self.deleted.append(name)

    def GenerativeModel(self, model_name):
        self.models.append(model_name)
        return FakeModel(self)


def _summarizer(tmp_path, client, max_polls=5):
    return AudioSummarizer("오디오 {title}", downloader=AudioDownloader(str(tmp_path)), client=client,
                           model_name="gemini-test", poll_interval=0, max_polls=max_polls)


def _cached_audio(tmp_path, video_id="VID", ext="m4a"):
    audio_file = tmp_path / f"{video_id}.{ext}"
    audio_file.write_bytes(b"audio")
    return audio_file


@pytest.mark.asyncio
async def test_processing_file_is_polled_until_active(tmp_path):
    audio_file = _cached_audio(tmp_path)
    client = FakeGenAI(["PROCESSING", "PROCESSING", "ACTIVE"])

    summary = await _summarizer(tmp_path, client).summarize_from_audio("VID", "에이전트")

    assert summary == "오디오 요약"
    assert client.uploads == [(str(audio_file), "audio/mp4", "VID.m4a")]
    assert client.polls == ["files/abc", "files/abc"]
    assert client.models == ["gemini-test"]
    assert client.generated[0][1] == "오디오 에이전트"
    assert client.deleted == ["files/abc"]
    assert not audio_file.exists()


@pytest.mark.asyncio
async def test_failed_remote_state_aborts_the_stage(tmp_path):
    audio_file = _cached_audio(tmp_path, ext="webm")
    client = FakeGenAI(["PROCESSING", "FAILED"])

    assert await _summarizer(tmp_path, client).summarize_from_audio("VID", "t") is None

    assert client.uploads[0][1] == "audio/webm"
    assert client.generated == []
    assert client.deleted == ["files/abc"]
    assert not audio_file.exists()


@pytest.mark.asyncio
async def test_poll_ceiling_gives_up(tmp_path):
    audio_file = _cached_audio(tmp_path)
    client = FakeGenAI(["PROCESSING"])

    assert await _summarizer(tmp_path, client, max_polls=3).summarize_from_audio("VID", "t") is None

    assert len(client.polls) == 3
    assert client.generated == []
    assert client.deleted == ["files/abc"]
    assert not audio_file.exists()


@pytest.mark.asyncio
async def test_analysis_error_still_removes_both_files(tmp_path):
    audio_file = _cached_audio(tmp_path)
    client = FakeGenAI(["ACTIVE"], analysis_error=RuntimeError("quota exceeded"))

    assert await _summarizer(tmp_path, client).summarize_from_audio("VID", "t") is None

    assert client.deleted == ["files/abc"]
    assert not audio_file.exists()


@pytest.mark.asyncio
async def test_empty_analysis_is_none(tmp_path):
    _cached_audio(tmp_path)
    client = FakeGenAI(["ACTIVE"], reply="")

    assert await _summarizer(tmp_path, client).summarize_from_audio("VID", "t") is None
    assert client.deleted == ["files/abc"]


class RecordingYoutubeDL:
    """Replaces yt_dlp.YoutubeDL; fails the first ``failures`` downloads."""

    instances = []
    failures = 0

    def __init__(self, opts):
        self.opts = opts
        RecordingYoutubeDL.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def download(self, urls):
        self.urls = urls
        if len(RecordingYoutubeDL.instances) <= RecordingYoutubeDL.failures:
            # leave a partial file behind, as an interrupted download does
            with open(self.opts['outtmpl'].replace("%(ext)s", "m4a.part"), "wb") as handle:
                handle.write(b"partial")
            raise RuntimeError("HTTP Error 403: Forbidden")
        with open(self.opts['outtmpl'].replace("%(ext)s", "m4a"), "wb") as handle:
            handle.write(b"audio")


@pytest.fixture
def fake_ytdl(monkeypatch):
    RecordingYoutubeDL.instances = []
    RecordingYoutubeDL.failures = 0
    monkeypatch.setattr(audio.yt_dlp, "YoutubeDL", RecordingYoutubeDL)
    return RecordingYoutubeDL


def test_existing_download_is_reused(tmp_path, fake_ytdl):
    audio_file = _cached_audio(tmp_path, ext="mp3")
    (tmp_path / "OTHER.m4a").write_bytes(b"x")

    assert AudioDownloader(str(tmp_path)).download("VID") == str(audio_file)
    assert fake_ytdl.instances == []


def test_partial_file_is_not_reused(tmp_path, fake_ytdl):
    (tmp_path / "VID.m4a.part").write_bytes(b"partial")

    downloaded = AudioDownloader(str(tmp_path)).download("VID")

    assert downloaded == str(tmp_path / "VID.m4a")
    assert len(fake_ytdl.instances) == 1


def test_alternate_method_runs_after_primary_failure(tmp_path, fake_ytdl):
    fake_ytdl.failures = 1

    downloaded = AudioDownloader(str(tmp_path)).download("VID")

    assert downloaded == str(tmp_path / "VID.m4a")
    primary, alternate = fake_ytdl.instances
    assert 'extractor_args' not in primary.opts
    assert alternate.opts['extractor_args'] == {'youtube': {'player_client': ['android']}}
    assert alternate.urls == ["https://www.youtube.com/watch?v=VID"]
    assert not (tmp_path / "VID.m4a.part").exists()


def test_both_methods_failing_returns_none(tmp_path, fake_ytdl):
    fake_ytdl.failures = 2

    assert AudioDownloader(str(tmp_path)).download("VID") is None
    assert len(fake_ytdl.instances) == 2
    assert list(tmp_path.iterdir()) == []
