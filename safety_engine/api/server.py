"""
Sentinel Safety Engine: HTTP API Server
=======================================

Reporting and observation boundaries over HTTP.

Endpoints:
- POST   /api/v1/subjects                      -> register subject
- POST   /api/v1/subjects/{id}/telemetry       -> location + battery update
- GET    /api/v1/subjects                      -> subject snapshots
- GET    /api/v1/subjects/{id}/zone            -> zone classification (cached)
- POST   /api/v1/subjects/{id}/anomaly-scan    -> run anomaly detection
- POST   /api/v1/incidents                     -> SOS or report
- GET    /api/v1/incidents                     -> incident snapshots
- POST   /api/v1/incidents/{id}/dispatch       -> Open -> Dispatched
- POST   /api/v1/incidents/{id}/resolve        -> Open|Dispatched -> Resolved
- GET    /api/v1/incidents/{id}/identity       -> disclosed identity (403 if denied)
- GET    /api/v1/notifications                 -> live notifications
- DELETE /api/v1/notifications/{id}            -> dismiss
- GET    /api/v1/changes?since=N               -> change events
- GET    /api/v1/stream                        -> SSE change stream

Usage:
    uvicorn safety_engine.api.server:app --reload
"""
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import json
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from ..contracts import (
    Contact,
    ErrorCode,
    IncidentKind,
    SafetyEngineError,
    SubjectProfile,
    UnitType,
)
from ..engine import SafetyEngine
from .mapper import (
    map_change,
    map_environment,
    map_identity,
    map_incident,
    map_notification,
    map_record,
    map_subject,
    map_zone,
)
from .schemas import (
    DispatchRequest,
    RegisterSubjectRequest,
    ReportIncidentRequest,
    RouteRequest,
    TelemetryRequest,
    VisionRequest,
)

logger = logging.getLogger(__name__)


_STATUS_FOR_ERROR = {
    ErrorCode.SUBJECT_NOT_FOUND: 404,
    ErrorCode.INCIDENT_NOT_FOUND: 404,
    ErrorCode.INVALID_STATE_TRANSITION: 409,
    ErrorCode.ACTIVE_SOS_EXISTS: 409,
    ErrorCode.DISCLOSURE_DENIED: 403,
    ErrorCode.INVALID_INPUT: 422,
}


def create_app(engine: Optional[SafetyEngine] = None, start_polling: bool = True) -> FastAPI:
    """
    Build the API app.

    Without an engine, one is built from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        instance = engine or SafetyEngine.from_env()
        app.state.engine = instance
        if start_polling:
            await instance.start()
        logger.info("Safety engine API ready")
        yield
        logger.info("Shutting down safety engine")
        await instance.aclose()
        app.state.engine = None

    app = FastAPI(
        title="Sentinel Safety Engine API",
        version="0.1.0",
        description="Incident triage, state and disclosure control for tourist safety",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SafetyEngineError)
    async def handle_engine_error(request: Request, exc: SafetyEngineError):
        return JSONResponse(
            status_code=_STATUS_FOR_ERROR.get(exc.code, 400),
            content={"error": exc.code.name, "detail": exc.message, "entity_id": exc.entity_id},
        )

    def get_engine(request: Request) -> SafetyEngine:
        instance = getattr(request.app.state, "engine", None)
        if instance is None:
            raise HTTPException(status_code=503, detail="Engine not initialized")
        return instance

    # =========================================================================
    # HEALTH
    # =========================================================================

    @app.get("/health")
    async def health_check(request: Request):
        """System status."""
        instance = get_engine(request)
        return {
            "status": "online",
            "provider": instance.client.provider.provider_id,
            "subjects": len(instance.subjects()),
            "version": instance.changes.version,
        }

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request):
        instance = get_engine(request)
        return {
            "metrics": instance.metrics.snapshot(),
            "cache": map_record(instance.cache_stats()),
        }

    # =========================================================================
    # SUBJECTS
    # =========================================================================

    @app.post("/api/v1/subjects", status_code=201)
    async def register_subject(body: RegisterSubjectRequest, request: Request):
        instance = get_engine(request)
        profile = SubjectProfile(
            name=body.name,
            age=body.age,
            gender=body.gender,
            nationality=body.nationality,
            contacts=tuple(Contact(c.name, c.relation, c.phone) for c in body.contacts),
            language=body.language,
            planned_route=tuple(body.planned_route),
            lat=body.lat,
            lng=body.lng,
            zone_name=body.zone_name,
            battery_level=body.battery_level,
        )
        subject = await instance.register_subject(profile)
        return map_subject(subject)

    @app.get("/api/v1/subjects")
    async def list_subjects(request: Request):
        return {"subjects": [map_subject(s) for s in get_engine(request).subjects()]}

    @app.get("/api/v1/subjects/{subject_id}")
    async def get_subject(subject_id: str, request: Request):
        return map_subject(get_engine(request).subject(subject_id))

    @app.post("/api/v1/subjects/{subject_id}/telemetry")
    async def update_telemetry(subject_id: str, body: TelemetryRequest, request: Request):
        subject = await get_engine(request).update_telemetry(
            subject_id, body.lat, body.lng, body.zone_name, body.battery_level
        )
        return map_subject(subject)

    @app.get("/api/v1/subjects/{subject_id}/zone")
    async def get_zone(subject_id: str, request: Request):
        zone = await get_engine(request).zone_classification(subject_id)
        return map_zone(zone)

    @app.get("/api/v1/subjects/{subject_id}/environment")
    async def get_environment(subject_id: str, request: Request):
        analysis = await get_engine(request).assess_environment(subject_id)
        return map_environment(analysis)

    @app.post("/api/v1/subjects/{subject_id}/anomaly-scan")
    async def anomaly_scan(subject_id: str, request: Request):
        incident = await get_engine(request).run_anomaly_detection(subject_id)
        return {"incident": map_incident(incident) if incident else None}

    # =========================================================================
    # INCIDENTS
    # =========================================================================

    @app.post("/api/v1/incidents", status_code=201)
    async def report_incident(body: ReportIncidentRequest, request: Request):
        incident = await get_engine(request).report_incident(
            body.subject_id,
            IncidentKind(body.kind),
            body.description,
            image_data_url=body.image,
            audio_data_url=body.audio,
        )
        return map_incident(incident)

    @app.get("/api/v1/incidents")
    async def list_incidents(request: Request):
        return {"incidents": [map_incident(i) for i in get_engine(request).incidents()]}

    @app.get("/api/v1/incidents/{incident_id}")
    async def get_incident(incident_id: str, request: Request):
        return map_incident(get_engine(request).incident(incident_id))

    @app.post("/api/v1/incidents/{incident_id}/dispatch")
    async def dispatch(incident_id: str, body: DispatchRequest, request: Request):
        incident = await get_engine(request).dispatch(incident_id, UnitType(body.unit))
        return map_incident(incident)

    @app.post("/api/v1/incidents/{incident_id}/resolve")
    async def resolve(incident_id: str, request: Request):
        incident = await get_engine(request).resolve(incident_id)
        return map_incident(incident)

    @app.get("/api/v1/incidents/{incident_id}/identity")
    async def get_identity(incident_id: str, request: Request):
        return map_identity(get_engine(request).disclosed_identity(incident_id))

    @app.post("/api/v1/incidents/{incident_id}/messages")
    async def emergency_messages(incident_id: str, request: Request):
        messages = await get_engine(request).generate_emergency_messages(incident_id)
        return {"messages": map_record(messages)}

    # =========================================================================
    # MEDIA AND ROUTES
    # =========================================================================

    @app.post("/api/v1/vision")
    async def analyze_image(body: VisionRequest, request: Request):
        return map_record(await get_engine(request).analyze_image(body.image))

    @app.post("/api/v1/routes")
    async def plan_route(body: RouteRequest, request: Request):
        return map_record(await get_engine(request).plan_safe_route(body.start, body.destination))

    # =========================================================================
    # NOTIFICATIONS AND CHANGES
    # =========================================================================

    @app.get("/api/v1/notifications")
    async def list_notifications(request: Request):
        return {"notifications": [map_notification(n) for n in get_engine(request).notifications()]}

    @app.delete("/api/v1/notifications/{notification_id}")
    async def dismiss_notification(notification_id: str, request: Request):
        return {"dismissed": get_engine(request).dismiss_notification(notification_id)}

    @app.get("/api/v1/changes")
    async def get_changes(request: Request, since: int = 0):
        instance = get_engine(request)
        return {
            "version": instance.changes.version,
            "events": [map_change(e) for e in instance.changes.poll(since)],
        }

    @app.get("/api/v1/stream")
    async def stream_changes(request: Request, since: int = 0):
        """
        Server-Sent Events (SSE) endpoint for live change events.

        Emits every ChangeEvent after `since`, then waits for more.
        """
        instance = get_engine(request)

        async def event_generator():
            last = since
            while True:
                if await request.is_disconnected():
                    break
                events = await instance.changes.wait_for_change(last, timeout=15.0)
                if not events:
                    yield ": keep-alive\n\n"
                    continue
                for event in events:
                    yield f"id: {event.version}\ndata: {json.dumps(map_change(event))}\n\n"
                last = events[-1].version
                await asyncio.sleep(0)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    return app


app = create_app()
