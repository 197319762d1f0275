"""
FastAPI Application — Admin and intake API for the NyayaMitra job pipeline.

Provides:
- Health, queue stats and job-system health
- Job inspection by queue and id
- SOS, corruption report and case endpoints that feed the queues

The lifespan builds the store, channels, external collaborators and the
JobScheduler, and starts the worker pools and recurring jobs. Everything
lives on ``app.state``; routes read it from the request.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.case_records import CaseRecordSource, create_case_record_source
from backend.emergency import EmergencyGateway, create_emergency_gateway
from channels import ChannelRegistry, create_channel_registry
from config.log import configure_logging
from config.settings import Settings, get_settings
from database.session import close_db, init_db
from database.store_base import BaseStore
from database.store_factory import create_store
from job_queue.health import check_job_system_health, get_queue_stats
from job_queue.message_queue import MessageQueue
from job_queue.payloads import Queues
from job_queue.scheduler import create_job_system
from models.schemas import Case, Location, ReportStatus, SosPriority, SosStatus
from services.case_service import CaseService
from services.errors import AppError
from services.report_service import ReportService
from services.sos_service import SosService

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class SosCreateRequest(BaseModel):
    user_id: str
    location: Location
    description: str
    priority: SosPriority = SosPriority.MEDIUM


class SosStatusRequest(BaseModel):
    status: SosStatus
    updated_by: str = ""


class ReportCreateRequest(BaseModel):
    user_id: str
    title: str
    description: str
    department: str
    official_name: Optional[str] = None
    location: str = ""
    incident_date: Optional[datetime] = None
    is_anonymous: bool = False


class ReportStatusRequest(BaseModel):
    status: ReportStatus
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None
    updated_by: str = ""


class CaseCreateRequest(BaseModel):
    case_number: str
    title: str
    description: str = ""
    court: str = ""
    judge: Optional[str] = None
    filing_date: Optional[datetime] = None
    next_hearing: Optional[datetime] = None


class CaseFollowRequest(BaseModel):
    user_id: str


# ──────────────────────────────────────────────────────────────
#  App Factory
# ──────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BaseStore] = None,
    channels: Optional[ChannelRegistry] = None,
    case_source: Optional[CaseRecordSource] = None,
    emergency: Optional[EmergencyGateway] = None,
    queue: Optional[MessageQueue] = None,
) -> FastAPI:
    """Collaborators passed in are used as given; the rest come from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        configure_logging(cfg.debug)

        owns_db = store is None and cfg.database.store_backend == "sql"
        if owns_db:
            await init_db(cfg.database.url)
        app_store = store or create_store({"store_backend": cfg.database.store_backend})
        registry = channels or await create_channel_registry(cfg.channels)
        source = case_source or create_case_record_source(cfg.case_api)
        gateway = emergency or create_emergency_gateway(cfg.emergency)

        scheduler, ctx = create_job_system(cfg, app_store, registry, source, gateway, queue=queue)
        await scheduler.start()

        app.state.settings = cfg
        app.state.store = app_store
        app.state.channels = registry
        app.state.scheduler = scheduler
        app.state.ctx = ctx
        app.state.sos_service = SosService(app_store, scheduler.producer)
        app.state.report_service = ReportService(app_store, scheduler.producer)
        app.state.case_service = CaseService(app_store, scheduler.producer)

        logger.info("nyayamitra_api_started",
                    queue_backend=type(scheduler.queue).__name__,
                    store_backend=type(app_store).__name__)
        yield

        await scheduler.stop()
        await registry.shutdown_all()
        await source.close()
        await gateway.close()
        if owns_db:
            await close_db()
        logger.info("nyayamitra_api_stopped")

    app = FastAPI(
        title="NyayaMitra Jobs API",
        description="Background job pipeline for SOS dispatch, notifications, case sync and report triage",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    app.include_router(router)
    return app


router = APIRouter()


# ══════════════════════════════════════════════════════════════
#  HEALTH & QUEUE STATS
# ══════════════════════════════════════════════════════════════

@router.get("/health")
async def health(request: Request):
    job_health = await check_job_system_health(
        request.app.state.scheduler,
        request.app.state.settings.queue.failed_threshold,
    )
    return {
        "status": job_health["status"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "channels": [c.value for c in request.app.state.channels.get_available()],
    }


@router.get("/api/v1/queue/stats")
async def queue_stats(request: Request):
    return await get_queue_stats(request.app.state.scheduler.queue)


@router.get("/api/v1/jobs/health")
async def job_health(request: Request):
    return await check_job_system_health(
        request.app.state.scheduler,
        request.app.state.settings.queue.failed_threshold,
    )


@router.get("/api/v1/jobs/{queue_name}/{job_id}")
async def get_job(request: Request, queue_name: str, job_id: str):
    if queue_name not in Queues.ALL:
        raise HTTPException(404, f"Unknown queue '{queue_name}'")
    job = await request.app.state.scheduler.queue.get_job(job_id)
    if job is None or job.queue != queue_name:
        raise HTTPException(404, "Job not found")
    return job.to_dict()


# ══════════════════════════════════════════════════════════════
#  SOS
# ══════════════════════════════════════════════════════════════

@router.post("/api/v1/sos", status_code=201)
async def create_sos(request: Request, req: SosCreateRequest):
    incident = await request.app.state.sos_service.create_incident(
        user_id=req.user_id,
        location=req.location,
        description=req.description,
        priority=req.priority,
    )
    return incident.model_dump(mode="json")


@router.patch("/api/v1/sos/{incident_id}/status")
async def update_sos_status(request: Request, incident_id: str, req: SosStatusRequest):
    incident = await request.app.state.sos_service.update_status(incident_id, req.status, req.updated_by)
    return incident.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════
#  CORRUPTION REPORTS
# ══════════════════════════════════════════════════════════════

@router.post("/api/v1/reports", status_code=201)
async def create_report(request: Request, req: ReportCreateRequest):
    report = await request.app.state.report_service.create_report(
        user_id=req.user_id,
        title=req.title,
        description=req.description,
        department=req.department,
        incident_date=req.incident_date,
        official_name=req.official_name,
        location=req.location,
        is_anonymous=req.is_anonymous,
    )
    return report.model_dump(mode="json")


@router.patch("/api/v1/reports/{report_id}/status")
async def update_report_status(request: Request, report_id: str, req: ReportStatusRequest):
    report = await request.app.state.report_service.update_status(
        report_id, req.status,
        assigned_to=req.assigned_to,
        resolution=req.resolution,
        updated_by=req.updated_by,
    )
    return report.model_dump(mode="json")


# ══════════════════════════════════════════════════════════════
#  CASES
# ══════════════════════════════════════════════════════════════

@router.post("/api/v1/cases", status_code=201)
async def create_case(request: Request, req: CaseCreateRequest):
    case = await request.app.state.case_service.create_case(Case(**req.model_dump()))
    return case.model_dump(mode="json")


@router.post("/api/v1/cases/{case_id}/follow", status_code=201)
async def follow_case(request: Request, case_id: str, req: CaseFollowRequest):
    follow = await request.app.state.case_service.follow_case(req.user_id, case_id)
    return follow.model_dump(mode="json")


@router.post("/api/v1/cases/sync", status_code=202)
async def sync_all_cases(request: Request) -> dict[str, Any]:
    return await request.app.state.case_service.request_sync_all()


@router.post("/api/v1/cases/{case_id}/sync", status_code=202)
async def sync_case(request: Request, case_id: str):
    job_id = await request.app.state.case_service.request_sync(case_id)
    return {"case_id": case_id, "job_id": job_id}


app = create_app()
