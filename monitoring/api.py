"""
Supervisor Status API.

============================================================
PURPOSE
============================================================
Optional HTTP surface over the running supervisor.

ENDPOINTS:
- GET  /health      liveness of the API itself
- GET  /status      component states, jobs, counters
- GET  /alerts      persisted alerts (severity, component, resolved, limit)
- GET  /metrics     metric samples (component, metric, minutes, limit)
- GET  /recovery    recovery audit trail (component, limit)
- GET  /report      current health report (format=json|markdown)
- POST /recovery    run a recovery action (component, action_type, detail)

POST /recovery is the only mutating endpoint. It goes through the
Recovery Executor, so the attempt cap still applies.

============================================================
"""

import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from core.exceptions import UnknownRecoveryAction
from monitoring.models import AlertSeverity
from monitoring.reporting import render_markdown


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class StatusEncoder(json.JSONEncoder):
    """JSON encoder for supervisor data."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.Response(
        text=json.dumps(data, cls=StatusEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean: {value}")


def _parse_int(value: Optional[str], default: int, minimum: int = 1, maximum: int = 10000) -> int:
    if value is None or value == "":
        return default
    number = int(value)
    if not minimum <= number <= maximum:
        raise ValueError(f"Value {number} outside [{minimum}, {maximum}]")
    return number


# ============================================================
# API HANDLERS
# ============================================================

class StatusAPI:
    """HTTP handlers bound to one SupervisorScheduler."""

    def __init__(self, scheduler):
        self._scheduler = scheduler

    async def health(self, request: web.Request) -> web.Response:
        """GET /health"""
        return json_response({
            "status": "ok",
            "service": "supervisor",
            "running": self._scheduler.is_running,
            "timestamp": self._scheduler.now().isoformat(),
        })

    async def get_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        try:
            return json_response({"status": "ok", "data": self._scheduler.status()})
        except Exception as e:
            logger.error(f"Error getting status: {e}")
            return error_response(str(e), 500)

    async def get_alerts(self, request: web.Request) -> web.Response:
        """
        GET /alerts

        Query params:
        - severity: INFO, WARNING, ERROR, CRITICAL
        - component: component name
        - resolved: true / false
        - limit: max rows (default 100)
        """
        try:
            severity = request.query.get("severity")
            severity = AlertSeverity(severity.upper()) if severity else None
            resolved = _parse_bool(request.query.get("resolved"))
            limit = _parse_int(request.query.get("limit"), 100)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            alerts = await self._scheduler.store.list_alerts(
                severity=severity,
                component=request.query.get("component") or None,
                resolved=resolved,
                limit=limit,
            )
            return json_response({
                "status": "ok",
                "data": {
                    "alerts": [a.to_dict() for a in alerts],
                    "summary": self._scheduler.alerts.get_alert_summary(),
                },
            })
        except Exception as e:
            logger.error(f"Error getting alerts: {e}")
            return error_response(str(e), 500)

    async def get_metrics(self, request: web.Request) -> web.Response:
        """
        GET /metrics

        Query params:
        - component, metric: key filter
        - minutes: window (default 60)
        - limit: max rows (default 1000)
        """
        try:
            minutes = _parse_int(request.query.get("minutes"), 60, maximum=60 * 24 * 31)
            limit = _parse_int(request.query.get("limit"), 1000)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            since = self._scheduler.now() - timedelta(minutes=minutes)
            samples = await self._scheduler.store.list_metric_samples(
                since,
                component=request.query.get("component") or None,
                metric=request.query.get("metric") or None,
                limit=limit,
            )
            return json_response({"status": "ok", "data": [s.to_dict() for s in samples]})
        except Exception as e:
            logger.error(f"Error getting metrics: {e}")
            return error_response(str(e), 500)

    async def get_recovery(self, request: web.Request) -> web.Response:
        """GET /recovery?component=&limit="""
        try:
            limit = _parse_int(request.query.get("limit"), 100)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            attempts = await self._scheduler.store.list_recovery_attempts(
                component=request.query.get("component") or None, limit=limit
            )
            return json_response({"status": "ok", "data": [a.to_dict() for a in attempts]})
        except Exception as e:
            logger.error(f"Error getting recovery history: {e}")
            return error_response(str(e), 500)

    async def get_report(self, request: web.Request) -> web.Response:
        """GET /report?format=json|markdown"""
        fmt = request.query.get("format", "json").lower()
        if fmt not in ("json", "markdown"):
            return error_response(f"Unsupported format: {fmt}", 400)

        try:
            report = await self._scheduler.build_report()
        except Exception as e:
            logger.error(f"Error building report: {e}")
            return error_response(str(e), 500)

        if fmt == "markdown":
            return web.Response(text=render_markdown(report), content_type="text/markdown")
        return json_response({"status": "ok", "data": report.to_dict()})

    async def post_recovery(self, request: web.Request) -> web.Response:
        """
        POST /recovery

        Body: {"component": "...", "action_type": "restart-process", "detail": ""}
        """
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return error_response("Body must be JSON", 400)
        if not isinstance(body, dict):
            return error_response("Body must be a JSON object", 400)

        component = body.get("component")
        action_type = body.get("action_type")
        if not component or not action_type:
            return error_response("component and action_type are required", 400)
        if component != "system" and component not in self._scheduler.components:
            return error_response(f"Unknown component: {component}", 404)

        try:
            result = await self._scheduler.executor.execute(
                component, action_type, str(body.get("detail", ""))
            )
        except UnknownRecoveryAction as e:
            return error_response(e.message, 400)
        except Exception as e:
            logger.error(f"Error running recovery for {component}: {e}")
            return error_response(str(e), 500)

        logger.info(f"Manual recovery {action_type} for {component}: {result.message}")
        return json_response({"status": "ok", "data": result.to_dict()})


# ============================================================
# APP FACTORY
# ============================================================

def create_status_app(scheduler) -> web.Application:
    api = StatusAPI(scheduler)

    app = web.Application()
    app.router.add_get("/health", api.health)
    app.router.add_get("/status", api.get_status)
    app.router.add_get("/alerts", api.get_alerts)
    app.router.add_get("/metrics", api.get_metrics)
    app.router.add_get("/recovery", api.get_recovery)
    app.router.add_get("/report", api.get_report)
    app.router.add_post("/recovery", api.post_recovery)
    return app


async def start_status_api(scheduler, host: str, port: int) -> web.AppRunner:
    """Serve the status API; the caller owns runner.cleanup()."""
    runner = web.AppRunner(create_status_app(scheduler))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Status API listening on http://{host}:{port}")
    return runner
