from types import SimpleNamespace

import pytest

from transcript import TranscriptExtractor, choose_caption_track, parse_transcript_xml, parse_video_page


def test_transcript_xml_is_flattened_and_unescaped():
    xml = ('<?xml version="1.0"?><transcript>'
           '<text start="0" dur="1.5">안녕하세요 &amp; 반갑습니다</text>'
           '<text start="1.5" dur="1">  </text>'
           '<text start="2.5" dur="1">it&#39;s\nfine</text>'
           '</transcript>')
    assert parse_transcript_xml(xml) == "안녕하세요 & 반갑습니다 it's fine"


def test_transcript_xml_without_text_nodes():
    assert parse_transcript_xml("<transcript></transcript>") == ""
    assert parse_transcript_xml("") == ""


def test_caption_track_prefers_korean_then_english():
    tracks = [
        {'languageCode': "ja", 'baseUrl': "ja"},
        {'languageCode': "en-US", 'baseUrl': "en"},
        {'languageCode': "ko", 'baseUrl': "ko"},
    ]
    assert choose_caption_track(tracks)['baseUrl'] == "ko"
    assert choose_caption_track(tracks[:2])['baseUrl'] == "en"
    assert choose_caption_track(tracks[:1])['baseUrl'] == "ja"
    assert choose_caption_track([]) is None


def test_video_page_json_ld():
    page = """
    <html><head>
    <script type="application/ld+json">
    {"@type": "VideoObject", "name": "Agents 101", "description": "Build an agent",
     "author": {"name": "Fireship"}, "duration": "PT10M"}
    </script>
    </head></html>
    """
    assert parse_video_page(page) == {
        'title': "Agents 101",
        'description': "Build an agent",
        'channel_name': "Fireship",
        'duration': "PT10M",
    }


def test_video_page_meta_tags():
    page = ('<html><head><meta name="title" content="제목">'
            '<meta name="description" content="설명"></head></html>')
    info = parse_video_page(page)
    assert info['title'] == "제목"
    assert info['description'] == "설명"
    assert info['channel_name'] == ""


def test_video_page_without_metadata():
    assert parse_video_page("<html><body>nothing</body></html>") is None


class FakeTranscriptApi:
    def __init__(self, snippets=None, error=None):
        self.snippets = snippets or []
        self.error = error
        self.calls = []

    def fetch(self, video_id, languages=None):
        self.calls.append((video_id, languages))
        if self.error is not None:
            raise self.error
        return [SimpleNamespace(text=text) for text in self.snippets]


@pytest.mark.asyncio
async def test_client_transcript_joins_snippets():
    api = FakeTranscriptApi(["첫 문장", "", "둘째 문장"])
    extractor = TranscriptExtractor(session=None, transcript_api=api)
    assert await extractor.via_client("AAA") == "첫 문장 둘째 문장"
    assert api.calls == [("AAA", ["ko", "en"])]


@pytest.mark.asyncio
async def test_client_errors_mean_no_transcript():
    extractor = TranscriptExtractor(session=None, transcript_api=FakeTranscriptApi(error=RuntimeError("disabled")))
    assert await extractor.via_client("AAA") is None
