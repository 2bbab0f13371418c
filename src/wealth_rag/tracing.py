"""OpenTelemetry tracing helpers for the retrieval engine.

Each retrieval call becomes one ``retrieval`` span with child spans for the
stages (``expand``, ``embed``, ``vector_search``, ``keyword_search``,
``fuse``, ``diversify``). Without :func:`configure_tracing` the global no-op
provider is used and spans cost nothing.

Usage::

    from wealth_rag.tracing import configure_tracing, get_tracer

    configure_tracing()   # ConsoleSpanExporter
    retriever = HybridRetriever(store, embedder, tracer=get_tracer("wealth-rag"))
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter

from .generation import TextGenerator

# ---------------------------------------------------------------------------
# OpenInference semantic-convention attribute names
# ---------------------------------------------------------------------------

ATTR_INPUT_VALUE = "input.value"
ATTR_OUTPUT_VALUE = "output.value"
ATTR_LLM_MODEL_NAME = "llm.model_name"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"

# ---------------------------------------------------------------------------
# Provider lifecycle helpers
# ---------------------------------------------------------------------------

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "wealth-rag",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint (e.g. ``http://localhost:6006/v1/traces``).
            Requires the ``otlp`` extra. Ignored when ``exporter`` is given.
        service_name: Service label shown by the tracing backend.
        exporter: Ready-made exporter, e.g. ``InMemorySpanExporter`` in tests.

    Returns:
        The provider, also installed as the global OTel provider.
    """
    global _provider

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint. Install it with:\n"
                "  pip install 'wealth-rag[otlp]'"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    # Synchronous export so tests can read spans without flushing.
    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the configured provider, or the global no-op one."""
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


# ---------------------------------------------------------------------------
# Span helpers
# ---------------------------------------------------------------------------


@contextmanager
def stage_span(tracer: trace.Tracer, name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Run a block inside a span, marking it OK or ERROR.

    ``None`` attribute values are skipped. Exceptions are recorded and re-raised.
    """
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(trace.StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise
        span.set_status(trace.StatusCode.OK)


class TracedTextGenerator:
    """Wraps a :class:`TextGenerator` so every completion is a ``generation`` span."""

    def __init__(self, generator: TextGenerator, tracer: trace.Tracer, model_name: str = ""):
        self._generator = generator
        self._tracer = tracer
        self.model_name = model_name

    def complete(self, prompt: str) -> str:
        with stage_span(self._tracer, "generation", **{ATTR_INPUT_VALUE: prompt[:500]}) as span:
            if self.model_name:
                span.set_attribute(ATTR_LLM_MODEL_NAME, self.model_name)
            text = self._generator.complete(prompt)
            span.set_attribute(ATTR_OUTPUT_VALUE, text[:500])
            return text


def traced_generator(generator: TextGenerator, tracer: trace.Tracer, model_name: str = "") -> TextGenerator:
    """Return ``generator`` wrapped with tracing."""
    return TracedTextGenerator(generator, tracer, model_name=model_name)
