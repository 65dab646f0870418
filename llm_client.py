#!/usr/bin/env python3
"""Async OpenAI / Azure OpenAI chat helper.

`create_client` builds the client once from configuration; `chat_completion`
runs one prompt with retry and backoff, content filter detection, normalized
content extraction and optional post-processing. Returns `None` on exhausted
retries or non-filter failures."""
from __future__ import annotations
from typing import List, Dict, Any, Optional, Callable
from asyncio import sleep

from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError

from config import Config, config, get_logger
from errors import ContentFilterError

logger = get_logger("llm_client")


def create_client(cfg: Config = config) -> Optional[Any]:
    """Build the text LLM client: Azure OpenAI when an endpoint is set, OpenAI otherwise."""
    if not cfg.has_text_llm():
        logger.debug("No text LLM configured; client will not initialize")
        return None
    if cfg.AZURE_ENDPOINT:
        endpoint = cfg.AZURE_ENDPOINT if str(cfg.AZURE_ENDPOINT).startswith("http") else f"https://{cfg.AZURE_ENDPOINT}"
        return AsyncAzureOpenAI(
            api_key=cfg.OPENAI_API_KEY,
            api_version=cfg.OPENAI_API_VERSION,
            azure_endpoint=endpoint,
        )
    return AsyncOpenAI(api_key=cfg.OPENAI_API_KEY)


def model_name_for(cfg: Config = config) -> str:
    return cfg.DEPLOYMENT_NAME if cfg.AZURE_ENDPOINT else cfg.OPENAI_MODEL


def _message_of(choice: Any) -> Any:
    return getattr(choice, "message", {}) or {}


def _extract_text(choice: Any) -> str:
    message = _message_of(choice)
    if isinstance(message, dict) and message.get("refusal"):
        return ""
    content = message.get("content") if isinstance(message, dict) else getattr(message, "content", None)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            txt = part.get("text")
            if isinstance(txt, str) and txt.strip():
                texts.append(txt.strip())
            elif part.get("type") not in ("text", "output_text", None):
                logger.debug("Ignoring non-text part type=%s", part.get("type"))
        return "\n".join(texts).strip()
    return ""


def _content_filter_error(exc: Exception) -> Optional[ContentFilterError]:
    """Map a provider error body flagged as a policy block to ContentFilterError."""
    body = getattr(exc, "body", {}) or {}
    error_obj = body.get("error") if isinstance(body, dict) and isinstance(body.get("error"), dict) else None
    if error_obj is None and isinstance(body, dict) and "code" in body:
        error_obj = body
    if not error_obj:
        return None
    inner = error_obj.get("innererror") if isinstance(error_obj.get("innererror"), dict) else {}
    if error_obj.get("code") == "content_filter" or inner.get("code") == "ResponsibleAIPolicyViolation":
        return ContentFilterError(message=error_obj.get("message", "Content filtered"), details=error_obj)
    return None


async def chat_completion(
    messages: List[Dict[str, str]],
    *,
    client: Any,
    model: Optional[str] = None,
    purpose: str = "generic",
    retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
    postprocess: Optional[Callable[[str], str]] = None,
) -> Optional[str]:
    """Run one chat completion. Raises `ContentFilterError` on policy violations."""
    if not messages:
        logger.error("chat_completion called without messages")
        return None
    if client is None:
        logger.warning("LLM client unavailable; skipping %s", purpose)
        return None

    max_retries = retries if retries is not None else config.SUMMARIZER_MAX_RETRIES
    base_delay = retry_delay if retry_delay is not None else config.SUMMARIZER_RETRY_DELAY_BASE
    model_name = model or model_name_for(config)
    attempt = 0

    while attempt <= max_retries:
        try:
            resp = await client.chat.completions.create(model=model_name, messages=messages)
        except Exception as e:
            filtered = _content_filter_error(e)
            if filtered is not None:
                raise filtered
            attempt += 1
            kind = "OpenAI" if isinstance(e, OpenAIError) else "unexpected"
            if attempt > max_retries:
                logger.error("%s %s failure after %d retries: %s", purpose, kind, max_retries, e)
                return None
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("%s transient %s error: %s. Backoff %ss (attempt %d/%d)",
                           purpose, kind, e, delay, attempt, max_retries)
            await sleep(delay)
            continue

        choices = getattr(resp, "choices", None) or []
        if not choices:
            logger.error("No choices in %s response", purpose)
            return None

        fragments: List[str] = []
        refused = False
        for choice in choices:
            message = _message_of(choice)
            refusal = message.get("refusal") if isinstance(message, dict) else getattr(message, "refusal", None)
            if refusal:
                refused = True
                logger.warning("Refusal detected in %s response: %s", purpose, refusal)
            text = _extract_text(choice)
            if text:
                fragments.append(text)
        if refused and not fragments:
            logger.warning("All choices refused for %s; returning None", purpose)
            return None

        raw = "\n".join(fragments).strip()
        if not raw:
            finish_reasons = {getattr(c, "finish_reason", None) for c in choices} - {None}
            if "length" in finish_reasons:
                logger.warning("Truncated output with empty content in %s response; leaving it pending", purpose)
            else:
                logger.error("Empty content in %s response (finish_reasons=%s)", purpose, finish_reasons)
            return None
        return postprocess(raw) if postprocess else raw

    return None


__all__ = ["create_client", "chat_completion", "model_name_for"]
