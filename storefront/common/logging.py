import logging
from typing import Literal

from opentelemetry import trace

from .config import ServiceSettings


_TRACE_PLACEHOLDER = "-"
_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s "
    "| trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)


def _hex(value: int, length: int) -> str:
    return format(value, f"0{length}x")


class ServiceContextFilter(logging.Filter):
    """Stamp records with the service name and the active OpenTelemetry span."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = _hex(span_context.trace_id, 32)
            record.span_id = _hex(span_context.span_id, 16)
        else:
            record.trace_id = _TRACE_PLACEHOLDER
            record.span_id = _TRACE_PLACEHOLDER
        return True


def _attach(target: logging.Filterer, context_filter: ServiceContextFilter) -> None:
    for existing in list(target.filters):
        if isinstance(existing, ServiceContextFilter):
            target.removeFilter(existing)
    target.addFilter(context_filter)


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level, format and the service/trace context filter.

    Calling it again (one process hosting several apps in tests) replaces the
    previous filter so the latest service name wins.
    """

    logging_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = settings.log_level
    logging.basicConfig(level=logging_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(logging_level)
    context_filter = ServiceContextFilter(settings.app_name)
    _attach(root_logger, context_filter)
    for handler in root_logger.handlers:
        _attach(handler, context_filter)
