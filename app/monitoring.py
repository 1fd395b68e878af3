"""Prometheus metrics instrumentation for application monitoring."""

from prometheus_fastapi_instrumentator import Instrumentator
from fastapi import FastAPI
from .config import settings


def setup_monitoring(app: FastAPI) -> None:
    """Instrument the API routes and expose /metrics.

    Static media downloads are left out so image traffic does not swamp the
    request histograms.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", f"/{settings.MEDIA_PUBLIC_PREFIX}/.*"],
        env_var_name="ENABLE_METRICS",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=True)
