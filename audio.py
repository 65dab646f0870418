#!/usr/bin/env python3
"""
Audio-based summaries for videos without captions.

Downloads the audio track with yt-dlp (two client strategies), uploads it to
the Gemini file store, waits for the file to become ACTIVE and asks the
model for a Korean summary. The temporary audio file is deleted on every
exit path.
"""

from asyncio import get_running_loop, sleep
from glob import glob
from os import path, remove
from tempfile import gettempdir
from typing import Any, Callable, Dict, Optional

import google.generativeai as genai
import yt_dlp

from config import config, get_logger
from telemetry import trace_span
from youtube import WATCH_URL_TEMPLATE

logger = get_logger("audio")

AUDIO_MIME_TYPES = {
    '.m4a': 'audio/mp4',
    '.mp4': 'audio/mp4',
    '.webm': 'audio/webm',
    '.mp3': 'audio/mpeg',
    '.opus': 'audio/ogg',
    '.ogg': 'audio/ogg',
}

# Primary: best-efficiency m4a stream via the default web client.
# Alternate: smallest stream via the android client, which survives some web-client blocks.
DOWNLOAD_STRATEGIES = (
    ('primary', {'format': 'bestaudio[ext=m4a]/bestaudio'}),
    ('alternate', {
        'format': 'worstaudio/bestaudio',
        'extractor_args': {'youtube': {'player_client': ['android']}},
    }),
)


class AudioDownloader:
    """Blocking yt-dlp download of a video's audio into a temp directory."""

    def __init__(self, temp_dir: Optional[str] = None):
        self.temp_dir = temp_dir or config.AUDIO_TEMP_DIR or gettempdir()

    def existing_file(self, video_id: str) -> Optional[str]:
        matches = [p for p in glob(path.join(self.temp_dir, f"{video_id}.*")) if not p.endswith(".part")]
        return matches[0] if matches else None

    def download(self, video_id: str) -> Optional[str]:
        """Return the local audio path, reusing an earlier download for the same video."""
        cached = self.existing_file(video_id)
        if cached:
            logger.info(f"Using cached audio: {cached}")
            return cached

        url = WATCH_URL_TEMPLATE.format(video_id=video_id)
        for label, strategy in DOWNLOAD_STRATEGIES:
            opts: Dict[str, Any] = {
                'outtmpl': path.join(self.temp_dir, f"{video_id}.%(ext)s"),
                'quiet': True,
                'no_warnings': True,
                'noplaylist': True,
            }
            opts.update(strategy)
            try:
                logger.info(f"Downloading audio for {video_id} ({label})")
                with yt_dlp.YoutubeDL(opts) as ydl:
                    ydl.download([url])
            except Exception as e:
                logger.warning(f"Audio download ({label}) failed for {video_id}: {str(e)[:200]}")
                self.cleanup(video_id)
                continue
            downloaded = self.existing_file(video_id)
            if downloaded:
                size_mb = path.getsize(downloaded) / 1024 / 1024
                logger.info(f"Downloaded {size_mb:.2f} MB for {video_id}")
                return downloaded

        logger.error(f"Both download methods failed for {video_id}")
        return None

    def cleanup(self, video_id: str) -> None:
        for leftover in glob(path.join(self.temp_dir, f"{video_id}.*")):
            try:
                remove(leftover)
                logger.debug(f"Cleaned up: {leftover}")
            except OSError as e:
                logger.error(f"Cleanup failed for {leftover}: {e}")


class AudioSummarizer:
    """Summarize a video by letting Gemini listen to its audio."""

    def __init__(self, prompt_template: str, api_key: Optional[str] = None, model_name: Optional[str] = None,
                 downloader: Optional[AudioDownloader] = None, client: Any = None,
                 poll_interval: Optional[float] = None, max_polls: Optional[int] = None):
        self.prompt_template = prompt_template
        self.model_name = model_name or config.GEMINI_MODEL
        self.downloader = downloader or AudioDownloader()
        self.poll_interval = config.AUDIO_POLL_SECONDS if poll_interval is None else poll_interval
        self.max_polls = max_polls or config.AUDIO_POLL_MAX_ATTEMPTS
        if client is None:
            genai.configure(api_key=api_key or config.GEMINI_API_KEY)
            client = genai
        self.client = client

    async def _run(self, func: Callable, *args, **kwargs):
        loop = get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def upload_and_wait(self, audio_path: str):
        """Upload the file and poll until it leaves PROCESSING; returns None on FAILED or timeout."""
        mime_type = AUDIO_MIME_TYPES.get(path.splitext(audio_path)[1].lower(), 'audio/mpeg')
        logger.info(f"Uploading {path.basename(audio_path)} to Gemini")
        remote = await self._run(self.client.upload_file, audio_path,
                                 mime_type=mime_type, display_name=path.basename(audio_path))

        polls = 0
        while remote.state.name == "PROCESSING":
            if polls >= self.max_polls:
                logger.error(f"Remote file {remote.name} still processing after {polls} polls")
                await self._delete_remote(remote)
                return None
            polls += 1
            await sleep(self.poll_interval)
            remote = await self._run(self.client.get_file, remote.name)

        if remote.state.name == "FAILED":
            logger.error(f"Remote processing failed for {remote.name}")
            await self._delete_remote(remote)
            return None
        logger.info(f"Upload complete: {remote.name}")
        return remote

    async def _delete_remote(self, remote) -> None:
        try:
            await self._run(self.client.delete_file, remote.name)
        except Exception as e:
            logger.debug(f"Could not delete remote file {remote.name}: {e}")

    async def analyze(self, remote, title: str) -> Optional[str]:
        prompt = self.prompt_template.format(title=title)
        model = self.client.GenerativeModel(self.model_name)
        response = await self._run(model.generate_content, [remote, prompt])
        text = (getattr(response, 'text', '') or '').strip()
        logger.info(f"Audio analysis complete: {len(text)} chars")
        return text or None

    @trace_span("audio.summarize", tracer_name="audio",
                attr_from_args=lambda self, video_id, title: {"video.id": video_id})
    async def summarize_from_audio(self, video_id: str, title: str) -> Optional[str]:
        """Download, upload, analyze; returns None when any step yields nothing."""
        try:
            audio_path = await self._run(self.downloader.download, video_id)
            if not audio_path:
                return None
            remote = await self.upload_and_wait(audio_path)
            if remote is None:
                return None
            try:
                return await self.analyze(remote, title)
            finally:
                await self._delete_remote(remote)
        except Exception as e:
            logger.error(f"Audio summary failed for {video_id}: {e}")
            return None
        finally:
            await self._run(self.downloader.cleanup, video_id)
