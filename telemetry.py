#!/usr/bin/env python3
"""
Telemetry setup using OpenTelemetry and Azure Application Insights.

Configures tracing for aiohttp client requests, sqlite3 and key pipeline spans,
exporting to Azure Monitor when an Application Insights connection string is
provided via environment variable.

Environment variables:
  - APPLICATIONINSIGHTS_CONNECTION_STRING or AZURE_MONITOR_CONNECTION_STRING
  - OTEL_SERVICE_NAME (default: ai-trends-pipeline)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - DISABLE_TELEMETRY=true to fully disable

Initialization is idempotent.
"""

from __future__ import annotations

import os
import atexit
import asyncio
import logging
import threading
from functools import wraps
from typing import Callable, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter

_init_lock = threading.Lock()
_initialized = False
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "ai-trends-pipeline"


def _connection_string() -> Optional[str]:
    conn = os.environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING") or os.environ.get(
        "AZURE_MONITOR_CONNECTION_STRING"
    )
    if conn:
        return conn
    ikey = os.environ.get("APPLICATIONINSIGHTS_INSTRUMENTATIONKEY") or os.environ.get(
        "APPINSIGHTS_INSTRUMENTATIONKEY"
    )
    return f"InstrumentationKey={ikey}" if ikey else None


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Initialize OpenTelemetry tracing and instrumentation.

    Safe to call multiple times. If DISABLE_TELEMETRY=true, it's a no-op.
    """
    global _initialized, _provider
    if os.environ.get("DISABLE_TELEMETRY", "false").lower() == "true":
        return
    if _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        svc = service_name or os.environ.get("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)
        env = os.environ.get("OTEL_ENVIRONMENT")
        attrs = {"service.name": svc}
        if env:
            attrs["deployment.environment"] = env

        existing = trace.get_tracer_provider()
        if isinstance(existing, TracerProvider):
            provider = existing
        else:
            provider = TracerProvider(resource=Resource.create(attrs))

        conn = _connection_string()
        if conn:
            try:
                exporter = AzureMonitorTraceExporter.from_connection_string(conn)
                provider.add_span_processor(BatchSpanProcessor(exporter))
                _logger.info("Telemetry initialized: Azure Monitor trace exporter enabled (service=%s)", svc)
            except Exception as e:
                _logger.warning("Telemetry init: failed to enable Azure exporter (%s); spans will not be exported", e)
        else:
            _logger.info("Telemetry initialized without exporter (service=%s); spans stay in-process", svc)

        if not isinstance(existing, TracerProvider):
            trace.set_tracer_provider(provider)
        _provider = provider

        for instrumentor in (AioHttpClientInstrumentor(), LoggingInstrumentor(), SQLite3Instrumentor()):
            try:
                instrumentor.instrument()
            except Exception as e:
                _logger.debug("Instrumentation %s skipped: %s", type(instrumentor).__name__, e)

        _initialized = True
        atexit.register(_shutdown)


def _shutdown() -> None:
    # TracerProvider.shutdown() flushes the batch processor for short-lived commands
    if _provider:
        try:
            _provider.shutdown()
        except Exception:
            pass


def get_tracer(name: str = DEFAULT_SERVICE_NAME):
    """Get the OpenTelemetry tracer for a named subsystem."""
    return trace.get_tracer(name)


def trace_span(
    span_name: str | None = None,
    *,
    tracer_name: str | None = None,
    static_attrs: dict | None = None,
    attr_from_args: Optional[Callable[..., dict]] = None,
):
    """Decorator to wrap a function call in an OpenTelemetry span.

    Args:
        span_name: Name of the span (defaults to module.funcname)
        tracer_name: Tracer name (defaults to the span name prefix)
        static_attrs: Attributes set on every span
        attr_from_args: Callable taking the wrapped call's (*args, **kwargs) and
                        returning extra attributes

    Works with sync and async functions.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer = get_tracer(tracer_name or name.split(".")[0] or DEFAULT_SERVICE_NAME)

        def _set_attrs(span, args, kwargs):
            try:
                for k, v in (static_attrs or {}).items():
                    span.set_attribute(k, v)
                if callable(attr_from_args):
                    for k, v in (attr_from_args(*args, **kwargs) or {}).items():
                        span.set_attribute(k, v)
            except Exception:
                # Attribute extraction must never break the wrapped call
                pass

        def _record(span, exc):
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))

        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def _aw(*args, **kwargs):
                with tracer.start_as_current_span(name) as span:
                    _set_attrs(span, args, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _record(span, e)
                        raise

            return _aw

        @wraps(func)
        def _w(*args, **kwargs):
            with tracer.start_as_current_span(name) as span:
                _set_attrs(span, args, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _record(span, e)
                    raise

        return _w

    return _decorator
