"""
AEGIS Field — API Routes
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.errors import StorageError, ValidationError
from app.store import ReportFilter

from .service import FieldService

logger = logging.getLogger("aegis.field.routes")


def _parse_bool(value, name):
    if value is None or value == "":
        return None
    lowered = str(value).lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false", field=name)


def _parse_int(value, name):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", field=name)


def _filter_from_query(params) -> ReportFilter:
    return ReportFilter(
        synced=_parse_bool(params.get("synced"), "synced"),
        incident_type=params.get("incident_type") or None,
        severity=_parse_int(params.get("severity"), "severity"),
        since=_parse_int(params.get("since"), "since"),
        order_by=params.get("order_by") or "timestamp",
        descending=(params.get("order") or "desc").lower() != "asc",
        limit=_parse_int(params.get("limit"), "limit"),
    )


def register_field_routes(app: FastAPI, service: FieldService):
    """Register the presentation-facing endpoints."""

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse({"ok": False, "error": str(exc), "field": exc.field}, status_code=400)

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        logger.error(f"Storage error on {request.url.path}: {exc}")
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=507)

    # ---- Reports ----

    @app.post("/api/reports")
    async def api_create_report(request: Request):
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Request body must be JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        report = await run_in_threadpool(
            service.create_report,
            incident_type=data.get("incident_type", data.get("incidentType")),
            severity=data.get("severity"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            photo=data.get("photo"),
        )
        return {"ok": True, "report": report.to_dict(include_photo=False)}

    @app.get("/api/reports")
    async def api_list_reports(request: Request):
        report_filter = _filter_from_query(request.query_params)
        include_photo = _parse_bool(request.query_params.get("photos"), "photos") or False
        reports = service.list_reports(report_filter)
        return {
            "ok": True,
            "count": len(reports),
            "reports": [r.to_dict(include_photo=include_photo) for r in reports],
        }

    @app.get("/api/reports/pending")
    async def api_pending_count(request: Request):
        return {"ok": True, "pending": service.pending_count()}

    @app.get("/api/reports/summary")
    async def api_report_summary(request: Request):
        return {"ok": True, "summary": service.dashboard_summary()}

    @app.get("/api/reports/{report_id}")
    async def api_get_report(report_id: int, request: Request):
        report = service.store.get(report_id)
        if report is None:
            return JSONResponse({"ok": False, "error": "Report not found"}, status_code=404)
        return {"ok": True, "report": report.to_dict()}

    # ---- Session ----

    @app.get("/api/session")
    async def api_get_session(request: Request):
        session = service.current_session()
        return {"ok": True, "session": session.to_dict() if session else None}

    @app.post("/api/session")
    async def api_login(request: Request):
        try:
            data = await request.json()
        except ValueError:
            data = {}
        name = data.get("responder_name", data.get("name")) if isinstance(data, dict) else None
        session = service.login(name)
        return {"ok": True, "session": session.to_dict()}

    @app.delete("/api/session")
    async def api_logout(request: Request):
        service.logout()
        return {"ok": True}

    # ---- Sync / status ----

    @app.post("/api/sync")
    async def api_trigger_sync(request: Request):
        result = await run_in_threadpool(service.trigger_sync)
        return {"ok": True, "result": result.to_dict(), "pending": service.pending_count()}

    @app.get("/api/status")
    async def api_status(request: Request):
        return {"ok": True, **service.status()}
