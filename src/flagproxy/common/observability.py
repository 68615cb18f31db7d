"""Logging and tracing setup for the flag proxy.

Logs are JSON lines emitted through the stdlib root logger. Spans are recorded
only when an OTLP endpoint is configured; without one the global no-op tracer
provider stays installed and spans opened by the fetcher cost nothing.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from structlog.contextvars import bind_contextvars

from .settings import FlagProxySettings

SERVICE_NAME = "flagproxy"
LOGGER = structlog.get_logger("flagproxy.observability")

_logging_ready = False
_tracing_ready = False


def _numeric_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(str(level or "INFO").strip().upper())
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(service_name: str = SERVICE_NAME, level: str | int | None = None) -> None:
    """Route structlog through stdlib logging as one JSON object per line."""

    global _logging_ready
    numeric_level = _numeric_level(level)
    if not _logging_ready:
        logging.basicConfig(level=numeric_level, format="%(message)s")
        _logging_ready = True
    logging.getLogger().setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    bind_contextvars(service=service_name)


def parse_otlp_headers(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``key=value,key=value`` as used by OTEL_EXPORTER_OTLP_HEADERS, skipping malformed items."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, _, value in pairs if key.strip() and value.strip()}


def build_tracer_provider(
    service_name: str,
    endpoint: Optional[str],
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> Optional[TracerProvider]:
    if not endpoint:
        return None
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=TraceIdRatioBased(max(0.0, min(1.0, sampler_ratio))),
    )
    exporter = OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(settings: FlagProxySettings, service_name: str = SERVICE_NAME) -> bool:
    """Install an OTLP-exporting tracer provider once per process. Returns whether spans are exported."""

    global _tracing_ready
    if _tracing_ready:
        return isinstance(trace.get_tracer_provider(), TracerProvider)
    _tracing_ready = True

    provider = build_tracer_provider(
        service_name,
        settings.otel_exporter_endpoint,
        settings.otel_exporter_headers,
        settings.otel_sampler_ratio,
    )
    if provider is None:
        LOGGER.info("tracing_disabled", reason="no otlp endpoint configured")
        return False

    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    LOGGER.info("tracing_enabled", endpoint=settings.otel_exporter_endpoint, sampler_ratio=settings.otel_sampler_ratio)
    return True


def instrument_fastapi_app(app) -> None:
    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())
