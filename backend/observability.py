# backend/observability.py
"""
OpenTelemetry tracing and metrics for the support chat.

Nothing is exported until setup_observability() runs; before that every
record_* helper and trace_operation() are no-ops, so the chat core calls
them unconditionally.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import Status, StatusCode

import config

SERVICE_VERSION = "1.0.0"
EXPORT_INTERVAL_MS = 10000

# name -> (kind, description, unit)
INSTRUMENTS = {
    "chat.messages.total": ("counter", "Messages persisted and broadcast, by sender role", "1"),
    "chat.automated_replies.total": ("counter", "Automated replies, by responder path", "1"),
    "chat.responder.fallbacks": ("counter", "Fallback notices sent instead of an automated reply", "1"),
    "chat.presence.transitions": ("counter", "Agent presence flips between online and offline", "1"),
    "chat.grounding.violations": ("counter", "Item references removed from generated replies", "1"),
    "llm.generation.duration": ("histogram", "Duration of reply generation calls", "ms"),
    "llm.tokens.used": ("counter", "LLM tokens consumed by reply generation", "tokens"),
}

_tracer_provider: Optional[TracerProvider] = None
_meter_provider: Optional[MeterProvider] = None
_tracer: Optional[trace.Tracer] = None
_instruments: Dict[str, Any] = {}


def setup_observability(
    service_name: str = config.SERVICE_NAME,
    otel_endpoint: str = config.OTEL_ENDPOINT,
    environment: str = config.ENVIRONMENT,
    meter_provider: Optional[MeterProvider] = None,
    span_exporter: Optional[SpanExporter] = None,
) -> trace.Tracer:
    """
    Configure OTLP/HTTP export of spans and metrics.

    Args:
        service_name: Reported as service.name
        otel_endpoint: Collector base URL, without /v1/traces or /v1/metrics
        environment: Reported as deployment.environment
        meter_provider: Use this provider instead of an OTLP-exporting one
        span_exporter: Export spans here instead of to the collector

    Returns:
        The tracer used by trace_operation()
    """
    global _tracer_provider, _meter_provider, _tracer

    if _tracer is not None:
        print("✅ OpenTelemetry already initialized")
        return _tracer

    print(f"🔧 Initializing OpenTelemetry for {service_name} ({environment})...")
    resource = Resource.create({
        "service.name": service_name,
        "service.version": SERVICE_VERSION,
        "deployment.environment": environment,
    })

    _tracer_provider = TracerProvider(resource=resource)
    _tracer_provider.add_span_processor(
        BatchSpanProcessor(span_exporter or OTLPSpanExporter(endpoint=f"{otel_endpoint}/v1/traces"))
    )
    trace.set_tracer_provider(_tracer_provider)
    _tracer = _tracer_provider.get_tracer(service_name, SERVICE_VERSION)

    if meter_provider is None:
        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=f"{otel_endpoint}/v1/metrics"),
            export_interval_millis=EXPORT_INTERVAL_MS,
        )
        meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(meter_provider)
    _meter_provider = meter_provider

    meter = _meter_provider.get_meter(service_name, SERVICE_VERSION)
    for name, (kind, description, unit) in INSTRUMENTS.items():
        create = meter.create_histogram if kind == "histogram" else meter.create_counter
        _instruments[name] = create(name=name, description=description, unit=unit)

    print(f"📊 Exporting traces and metrics to {otel_endpoint}")
    return _tracer


def _add(name: str, amount: float, attributes: Optional[Dict[str, Any]] = None):
    instrument = _instruments.get(name)
    if instrument is not None:
        instrument.add(amount, attributes or {})


@contextmanager
def trace_operation(operation_name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
    """
    Span around a block of chat work. Exceptions are recorded and re-raised.

    Usage:
        with trace_operation("session_router.post_message", {"chat.conversation_id": cid}):
            ...
    """
    if _tracer is None:
        yield None
        return

    with _tracer.start_as_current_span(operation_name, attributes=attributes or {}) as span:
        start_time = time.time()
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.set_attribute("error.type", type(e).__name__)
            raise
        else:
            span.set_status(Status(StatusCode.OK))
        finally:
            span.set_attribute("duration_ms", (time.time() - start_time) * 1000)


def record_message(sender_role: str):
    _add("chat.messages.total", 1, {"sender_role": sender_role})


def record_automated_reply(path: str):
    _add("chat.automated_replies.total", 1, {"path": path})


def record_responder_fallback(reason: str):
    _add("chat.responder.fallbacks", 1, {"reason": reason})


def record_presence_transition(online: bool):
    _add("chat.presence.transitions", 1, {"state": "online" if online else "offline"})


def record_grounding_violations(count: int):
    if count:
        _add("chat.grounding.violations", count)


def record_generation(duration_ms: float, model: str, status: str):
    histogram = _instruments.get("llm.generation.duration")
    if histogram is not None:
        histogram.record(duration_ms, {"model": model, "status": status})


def record_llm_tokens(prompt_tokens: int, completion_tokens: int, model: str):
    _add("llm.tokens.used", prompt_tokens, {"token_type": "prompt", "model": model})
    _add("llm.tokens.used", completion_tokens, {"token_type": "completion", "model": model})


def shutdown_observability():
    """Flush and stop the providers. Safe to call when nothing was set up."""
    global _tracer_provider, _meter_provider, _tracer

    if _tracer_provider is None and _meter_provider is None:
        return

    print("🛑 Shutting down OpenTelemetry...")
    for provider in (_tracer_provider, _meter_provider):
        if provider is not None:
            provider.force_flush(timeout_millis=5000)
            provider.shutdown()

    _tracer_provider = _meter_provider = _tracer = None
    _instruments.clear()
    print("✅ OpenTelemetry shutdown complete")
