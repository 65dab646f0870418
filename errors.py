#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Dict, Any, Optional


class ContentFilterError(Exception):
    """Raised when the LLM provider's content policy blocks a response.

    Attributes:
        details: Optional provider-specific payload for diagnostics.
    """

    def __init__(self, message: str = "Content filtered by LLM provider", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ChannelValidationError(ValueError):
    """Raised when a channel registration is incomplete or malformed.

    Attributes:
        details: Offending fields, echoed back to HTTP callers.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class JobBusyError(RuntimeError):
    """Raised when a job is started while another run of it still holds its lock."""

    def __init__(self, job: str):
        super().__init__(f"{job} is already running")
        self.job = job


__all__ = ["ContentFilterError", "ChannelValidationError", "JobBusyError"]
