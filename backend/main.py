import logging
import secrets
from datetime import datetime, timezone
from typing import Optional
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from config import (
    ADMIN_TOKEN, CORS_ORIGINS, PORT, HOST, DEBUG,
    PRIORITY_TIMER_DURATION_SECONDS, QUEUE_IDLE_THRESHOLD_MINUTES,
    SCHEDULE_REFIRE_GUARD_MINUTES, SCHEDULE_TIMEZONE, SCHEDULE_TOLERANCE_SECONDS,
)
from constants import DAYS, EVENT_POLL_TIMEOUT_MAX
from database import get_db, init_db
from errors import BookingDeniedError, CourtQueueError
from events import broker
from logging_config import setup_logging
from models import (
    AdminQueueAdd, AdmissionDecision, EventsResponse,
    QueueEntry, QueueResponse,
    ScheduleCheckResult, ScheduleRule, ScheduleRuleCreate, ScheduleRuleUpdate,
    SweepResult, SystemState, SystemStateResponse,
)
import admission
import auto_schedule
import notifications
import queue_store
import sweeper
import system_state

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Court Queue API",
    version="1.0.0",
    docs_url="/api/docs" if DEBUG else None,
    redoc_url="/api/redoc" if DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(request: Request, status_code: int, message: str) -> dict:
    return {"error": True, "status_code": status_code, "message": message, "path": str(request.url.path)}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc.status_code, exc.detail))


@app.exception_handler(CourtQueueError)
async def court_queue_exception_handler(request: Request, exc: CourtQueueError):
    content = _error_body(request, exc.status_code, exc.message)
    if isinstance(exc, BookingDeniedError):
        content["reason"] = exc.reason
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content=_error_body(request, 500, "Internal server error"))


@app.on_event("startup")
def startup():
    init_db()


def require_admin(x_admin_token: Optional[str] = Header(None)):
    if not ADMIN_TOKEN or not x_admin_token or not secrets.compare_digest(x_admin_token, ADMIN_TOKEN):
        raise HTTPException(status_code=403, detail="Admin access required")


def state_response(state: SystemState, now: Optional[datetime] = None) -> SystemStateResponse:
    now = now or datetime.now(timezone.utc)
    return SystemStateResponse(
        mode=state.mode,
        priority_mode_active=state.priority_mode_active,
        open_for_all_active=state.open_for_all_active,
        priority_timer_started_at=state.priority_timer_started_at,
        priority_timer_duration_seconds=state.priority_timer_duration_seconds,
        time_remaining=admission.time_remaining(state, now),
        window_expired=admission.window_expired(state, now),
    )


def read_snapshot() -> tuple[SystemState, list[QueueEntry]]:
    """State and queue read in one transaction."""
    with get_db() as conn:
        cursor = conn.cursor()
        return system_state.load_state(cursor), queue_store.list_entries(cursor)


# ============ SYSTEM STATE ============

@app.get("/api/system", response_model=SystemStateResponse)
def get_system():
    return state_response(system_state.get_system_state())


@app.post("/api/system/priority", response_model=SystemStateResponse, dependencies=[Depends(require_admin)])
def start_priority_window(background_tasks: BackgroundTasks):
    transition = system_state.start_priority_window()
    if transition.notifications:
        background_tasks.add_task(notifications.deliver, transition.notifications)
    return state_response(transition.state)


@app.post("/api/system/open", response_model=SystemStateResponse, dependencies=[Depends(require_admin)])
def open_for_all(background_tasks: BackgroundTasks):
    transition = system_state.open_for_all()
    if transition.notifications:
        background_tasks.add_task(notifications.deliver, transition.notifications)
    return state_response(transition.state)


@app.post("/api/system/pause", response_model=SystemStateResponse, dependencies=[Depends(require_admin)])
def pause_system():
    return state_response(system_state.pause_system().state)


# ============ QUEUE ============

@app.get("/api/queue", response_model=QueueResponse)
def get_queue():
    return queue_store.summarize(queue_store.list_ordered(), queue_store.QueueCapacity())


@app.post("/api/queue/join", response_model=QueueEntry)
def join_queue(x_user_id: str = Header(...)):
    return queue_store.join(x_user_id)


@app.delete("/api/queue/me", response_model=QueueEntry)
def leave_queue(x_user_id: str = Header(...)):
    return queue_store.leave(x_user_id)


@app.post("/api/admin/queue", response_model=QueueEntry, dependencies=[Depends(require_admin)])
def add_to_queue(body: AdminQueueAdd):
    return queue_store.add_to_queue(body.user_id)


@app.delete("/api/admin/queue/{entry_id}", response_model=QueueEntry, dependencies=[Depends(require_admin)])
def remove_from_queue(entry_id: int):
    return queue_store.remove_from_queue(entry_id)


@app.delete("/api/admin/queue", dependencies=[Depends(require_admin)])
def clear_queue():
    cleared = queue_store.clear_queue()
    return {"message": "Queue cleared", "cleared_count": cleared}


# ============ ADMISSION ============

@app.get("/api/users/{user_id}/admission", response_model=AdmissionDecision)
def get_admission(user_id: str):
    now = datetime.now(timezone.utc)
    state, entries = read_snapshot()
    decision = admission.can_book(user_id, state, entries, now)
    return decision.model_copy(update={"time_remaining": admission.time_remaining(state, now)})


@app.post("/api/bookings/authorize", response_model=AdmissionDecision)
def authorize_booking(x_user_id: str = Header(...)):
    """Called by the booking service before it creates a booking."""
    state, entries = read_snapshot()
    return admission.ensure_can_book(x_user_id, state, entries)


# ============ SCHEDULES ============

@app.get("/api/schedules", response_model=list[ScheduleRule], dependencies=[Depends(require_admin)])
def list_schedules():
    return auto_schedule.list_schedules()


@app.post("/api/schedules", response_model=ScheduleRule, dependencies=[Depends(require_admin)])
def create_schedule(rule: ScheduleRuleCreate):
    return auto_schedule.create_schedule(rule)


@app.put("/api/schedules/{rule_id}", response_model=ScheduleRule, dependencies=[Depends(require_admin)])
def update_schedule(rule_id: int, update: ScheduleRuleUpdate):
    return auto_schedule.update_schedule(rule_id, update)


@app.delete("/api/schedules/{rule_id}", dependencies=[Depends(require_admin)])
def delete_schedule(rule_id: int):
    auto_schedule.delete_schedule(rule_id)
    return {"message": "Schedule deleted"}


# ============ JOBS ============

@app.post("/api/jobs/schedule-check", response_model=ScheduleCheckResult, dependencies=[Depends(require_admin)])
def run_schedule_check(background_tasks: BackgroundTasks):
    result, messages = auto_schedule.run_schedule_check()
    if messages:
        background_tasks.add_task(notifications.deliver, messages)
    return result


@app.post("/api/jobs/queue-sweep", response_model=SweepResult, dependencies=[Depends(require_admin)])
def run_queue_sweep():
    return sweeper.run_queue_sweep()


# ============ EVENTS ============

@app.get("/api/events", response_model=EventsResponse)
async def poll_events(since: int = Query(0, ge=0), timeout: float = Query(25, ge=0, le=EVENT_POLL_TIMEOUT_MAX)):
    """Long-poll for StateChanged events newer than `since`.

    Async so that waiting clients never occupy the threadpool the sync
    routes run on.
    """
    version, events = await broker.wait_for(since, timeout)
    return EventsResponse(version=version, events=[e.value for e in events])


# ============ CONFIGURATION ============

@app.get("/api/config")
def get_config():
    capacity = queue_store.QueueCapacity()
    return {
        "days": DAYS,
        "queue": {"max_size": capacity.max_size, "categories": capacity.categories},
        "priority_timer_duration_seconds": PRIORITY_TIMER_DURATION_SECONDS,
        "queue_idle_threshold_minutes": QUEUE_IDLE_THRESHOLD_MINUTES,
        "schedule": {
            "timezone": SCHEDULE_TIMEZONE,
            "tolerance_seconds": SCHEDULE_TOLERANCE_SECONDS,
            "refire_guard_minutes": SCHEDULE_REFIRE_GUARD_MINUTES,
        },
    }


# ============ HEALTH CHECK ============

@app.get("/api/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=HOST, port=PORT, reload=DEBUG, log_config=None)
