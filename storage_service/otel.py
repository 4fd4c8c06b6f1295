# otel.py
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from .src.config import settings

def _default_exporter(use_cloud_trace: bool) -> SpanExporter:
    if use_cloud_trace:
        # pip: opentelemetry-exporter-gcp-trace
        from opentelemetry.exporter.cloud_trace import CloudTraceSpanExporter
        return CloudTraceSpanExporter(project_id=settings.project_id)
    return ConsoleSpanExporter()

def init_tracing(
    service_name: str = settings.service_name,
    service_version: str = "v1",
    exporter: Optional[SpanExporter] = None,
    use_cloud_trace: Optional[bool] = None,
):
    """Install a global TracerProvider; the retry loop opens one span per attempt under it."""
    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
        "deployment.environment": os.getenv("ENVIRONMENT", "dev"),
        "gcs.bucket": settings.bucket or "",
    })
    provider = TracerProvider(resource=resource)
    if exporter is None:
        exporter = _default_exporter(settings.use_cloud_trace if use_cloud_trace is None else use_cloud_trace)

    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    return trace.get_tracer(service_name)
