"""OpenTelemetry instrumentation for database calls.

Tracing is optional and configuration-driven. When it is disabled, or the
OpenTelemetry packages are not installed, every helper here is a no-op and
the wrapped database calls behave exactly as they would untraced.

Usage:
    config = Config.from_env()
    configure_tracing(config.tracing)

    with traced_statement("sqlite.exec", sql, instance=str(path)):
        conn.execute(sql)
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generator

from loguru import logger

if TYPE_CHECKING:
    from opentelemetry.trace import Span, Tracer


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class TracingConfig:
    """OpenTelemetry tracing configuration.

    Attributes:
        enabled: Whether tracing is enabled (default: False).
        endpoint: OTLP HTTP endpoint receiving spans.
        service_name: Service name attached to database spans.
        batch_export: Use BatchSpanProcessor vs SimpleSpanProcessor.
    """

    enabled: bool = False
    endpoint: str = "http://localhost:4318/v1/traces"
    service_name: str = "sqlite-db"
    batch_export: bool = True


# =============================================================================
# Global State
# =============================================================================

_tracer: "Tracer | None" = None
_warning_logged: bool = False


def get_tracer() -> "Tracer | None":
    """Get the configured tracer, or None if tracing is disabled."""
    return _tracer


def configure_tracing(config: TracingConfig) -> "Tracer | None":
    """Configure OpenTelemetry tracing.

    Args:
        config: TracingConfig with endpoint and settings.

    Returns:
        Configured Tracer instance, or None if disabled/failed.
    """
    global _tracer, _warning_logged

    if not config.enabled:
        logger.debug("Database tracing is disabled")
        _tracer = None
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            SimpleSpanProcessor,
        )

        resource = Resource.create({"service.name": config.service_name})
        provider = TracerProvider(resource=resource)
        exporter = OTLPSpanExporter(endpoint=config.endpoint)
        if config.batch_export:
            processor = BatchSpanProcessor(exporter)
        else:
            processor = SimpleSpanProcessor(exporter)
        provider.add_span_processor(processor)
        trace.set_tracer_provider(provider)

        _tracer = trace.get_tracer(config.service_name)
        logger.info(f"Database tracing enabled: endpoint={config.endpoint}")
        _warning_logged = False
        return _tracer

    except ImportError as e:
        if not _warning_logged:
            logger.warning(
                f"OpenTelemetry packages not installed, tracing disabled: {e}. "
                "Install with: pip install 'sharedb[tracing]'"
            )
            _warning_logged = True
        _tracer = None
        return None

    except Exception as e:
        if not _warning_logged:
            logger.warning(f"Failed to configure tracing: {e}")
            _warning_logged = True
        _tracer = None
        return None


def shutdown_tracing() -> None:
    """Shutdown tracing and flush any pending spans."""
    global _tracer

    if _tracer is None:
        return

    try:
        from opentelemetry import trace

        provider = trace.get_tracer_provider()
        if hasattr(provider, "shutdown"):
            provider.shutdown()
        logger.debug("Database tracing shutdown complete")
    except Exception as e:
        logger.warning(f"Error shutting down tracing: {e}")

    _tracer = None


# =============================================================================
# Span helpers
# =============================================================================


@contextmanager
def traced_statement(
    kind: str,
    statement: str,
    *,
    instance: str | None = None,
    params: Any = None,
    tracer: "Tracer | None" = None,
) -> Generator["Span | None", None, None]:
    """Trace a single database call.

    Args:
        kind: Span name, e.g. "sqlite.exec", "sqlite.query", "sqlite.begin".
        statement: SQL text, used as the span resource.
        instance: Database file path.
        params: Statement parameters, recorded for debugging.
        tracer: Optional tracer (uses global if not provided).

    Yields:
        The span, or None when tracing is disabled.
    """
    active_tracer = tracer or _tracer

    if active_tracer is None:
        yield None
        return

    from opentelemetry.trace import Status, StatusCode

    with active_tracer.start_as_current_span(kind) as span:
        span.set_attribute("db.system", "sqlite")
        span.set_attribute("db.statement", statement)
        if instance:
            span.set_attribute("db.instance", instance)
        if params:
            span.set_attribute("db.statement.params", repr(params))

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


@contextmanager
def traced_request(
    operation: str,
    *,
    tracer: "Tracer | None" = None,
    attributes: dict[str, Any] | None = None,
) -> Generator["Span | None", None, None]:
    """Create a parent span for a high-level operation.

    Statement spans opened inside appear nested under it.

    Args:
        operation: Operation name (e.g., "apply_all", "rollback").
        tracer: Optional tracer.
        attributes: Additional span attributes.

    Yields:
        The span (or None if tracing disabled).
    """
    active_tracer = tracer or _tracer

    if active_tracer is None:
        yield None
        return

    from opentelemetry.trace import Status, StatusCode

    with active_tracer.start_as_current_span(f"sharedb.{operation}") as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)

        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
