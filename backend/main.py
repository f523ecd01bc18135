#!/usr/bin/env python3
"""
Nomad VMonitor - Image freshness exporter for Nomad clusters

Periodically inspects the running Nomad jobs, looks up the published tags
of every docker task's image and exposes per-task freshness as Prometheus
gauges on /metrics.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
import httpx
import uvicorn
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST

from config.settings import AppConfig, setup_logging
from monitor.metrics import FreshnessMetrics
from monitor.reconciler import Reconciler
from nomad.client import NomadClient
from nomad.event_stream import EventStream
from registry.freshness import FreshnessResolver
from registry.registry_adapter import RegistryAdapter

__version__ = "0.1.0"

# Configure logging
setup_logging(AppConfig.LOG_LEVEL, machine=AppConfig.LOG_MACHINE, log_to_file=AppConfig.LOG_TO_FILE)
logger = logging.getLogger(__name__)


def _handle_task_exception(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)


async def _cancel_task(task: Optional[asyncio.Task], name: str):
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"{name} cancelled successfully")
    except Exception as e:
        logger.error(f"Error during {name} shutdown: {e}")


def create_app(reconciler: Optional[Reconciler] = None, metrics: Optional[FreshnessMetrics] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        reconciler: prebuilt reconciler; when omitted the lifespan builds one
            from AppConfig with its own HTTP clients
        metrics: metrics sink shared by the reconciler and /metrics
    """
    if metrics is None:
        metrics = reconciler.metrics if reconciler is not None else FreshnessMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        # Validate configuration early to fail fast on misconfiguration
        AppConfig.validate()

        registry_session: Optional[aiohttp.ClientSession] = None
        nomad_http: Optional[httpx.AsyncClient] = None
        stream_task: Optional[asyncio.Task] = None

        active = reconciler
        if active is None:
            registry_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=AppConfig.REQUEST_TIMEOUT)
            )
            nomad_http = httpx.AsyncClient(timeout=AppConfig.REQUEST_TIMEOUT)

            nomad = NomadClient(AppConfig.NOMAD_URL, nomad_http, token=AppConfig.NOMAD_TOKEN)
            adapter = RegistryAdapter(
                registry_session,
                client_id=AppConfig.REGISTRY_CLIENT_ID,
                timeout=AppConfig.REQUEST_TIMEOUT,
            )
            active = Reconciler(
                nomad,
                FreshnessResolver(adapter),
                metrics,
                interval=AppConfig.CHECK_INTERVAL,
                concurrency=AppConfig.CHECK_CONCURRENCY,
            )

        app.state.reconciler = active

        logger.info(f"Monitoring Nomad at {AppConfig.NOMAD_URL}")
        check_task = asyncio.create_task(active.run(), name="reconciler")
        check_task.add_done_callback(_handle_task_exception)

        if AppConfig.EVENT_STREAM_ENABLED and nomad_http is not None:
            stream = EventStream(nomad_http, AppConfig.NOMAD_URL, active.trigger, token=AppConfig.NOMAD_TOKEN)
            stream_task = asyncio.create_task(stream.listen(active.shutdown_event), name="event-stream")
            stream_task.add_done_callback(_handle_task_exception)

        yield

        # Shutdown
        logger.info("Shutting down Nomad VMonitor...")
        active.shutdown_event.set()
        await _cancel_task(check_task, "Reconciliation task")
        await _cancel_task(stream_task, "Event stream task")

        if registry_session is not None:
            await registry_session.close()
        if nomad_http is not None:
            await nomad_http.aclose()
        logger.info("HTTP clients closed")

    app = FastAPI(
        title="Nomad VMonitor",
        version=__version__,
        lifespan=lifespan
    )

    @app.get("/metrics")
    def metrics_endpoint():
        """Prometheus scrape endpoint"""
        return Response(content=metrics.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for container health checks"""
        return {"status": "healthy", "service": "nomad-vmonitor"}

    @app.post("/api/check")
    async def trigger_check():
        """Run a reconciliation now instead of waiting for the next tick"""
        app.state.reconciler.trigger()
        logger.info("Manual check triggered")
        return {"status": "scheduled"}

    return app


app = create_app()


def main():
    uvicorn.run(app, host=AppConfig.HOST, port=AppConfig.PORT, log_config=None)


if __name__ == "__main__":
    main()
