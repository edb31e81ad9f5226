import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from taskscope.models import (
    AnalysisStatus, CaptureSession, CaptureStatus, MonitorInfo, Screenshot, Task, TaskUpdate
)
from taskscope.services.controller import PipelineController
from taskscope.services.errors import (
    CaptureError, ConfigError, NotFoundError, ServiceError, SessionError
)

logger = logging.getLogger(__name__)


class StartCaptureRequest(BaseModel):
    interval: Optional[float] = None
    description: Optional[str] = None
    title: Optional[str] = None


class SettingValue(BaseModel):
    value: str


def _status_for(error: ServiceError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ConfigError, SessionError, CaptureError)):
        return 400
    return 500


def create_app(controller: PipelineController) -> FastAPI:
    """Build the HTTP API around an existing controller"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await controller.shutdown()

    app = FastAPI(title="taskscope", lifespan=lifespan)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        status = _status_for(exc)
        if status == 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # -- capture -----------------------------------------------------------

    @app.get("/api/capture/status", response_model=CaptureStatus)
    async def capture_status():
        return controller.capture_status()

    @app.post("/api/capture/start")
    async def start_capture(body: Optional[StartCaptureRequest] = None):
        body = body or StartCaptureRequest()
        session_id = await controller.start_capture(body.interval, body.description, body.title)
        return {"session_id": session_id}

    @app.post("/api/capture/stop")
    async def stop_capture():
        return {"session_id": await controller.stop_capture()}

    @app.get("/api/monitors", response_model=List[MonitorInfo])
    async def list_monitors():
        return controller.list_monitors()

    # -- sessions ----------------------------------------------------------

    @app.get("/api/sessions/current", response_model=Optional[CaptureSession])
    async def current_session():
        return controller.current_session()

    @app.get("/api/sessions", response_model=List[CaptureSession])
    async def list_sessions(status: str = "all", limit: int = 50, offset: int = 0):
        return controller.get_sessions(status, limit, offset)

    @app.get("/api/sessions/{session_id}", response_model=CaptureSession)
    async def get_session(session_id: int):
        return controller.get_session(session_id)

    @app.get("/api/sessions/{session_id}/screenshots", response_model=List[Screenshot])
    async def session_screenshots(session_id: int):
        return controller.get_session_screenshots(session_id)

    @app.get("/api/sessions/{session_id}/tasks", response_model=List[Task])
    async def session_tasks(session_id: int):
        return controller.get_session_tasks(session_id)

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: int):
        return {"deleted_files": controller.delete_session(session_id)}

    @app.delete("/api/screenshots/pending")
    async def clear_pending():
        return {"deleted": controller.clear_pending()}

    # -- analysis ----------------------------------------------------------

    @app.get("/api/analysis/status", response_model=AnalysisStatus)
    async def analysis_status():
        return controller.analysis_status()

    @app.post("/api/analysis/pending")
    async def analyze_pending(limit: int = 0):
        return {"processed": await controller.analyze_pending(limit)}

    @app.post("/api/analysis/sessions/{session_id}")
    async def analyze_session(session_id: int, limit: int = 0):
        return {"processed": await controller.analyze_session(session_id, limit)}

    @app.post("/api/analysis/all")
    async def analyze_all_pending():
        return {"processed": await controller.analyze_all_pending()}

    @app.post("/api/analysis/cancel")
    async def cancel_analysis():
        controller.cancel_analysis()
        return {"cancel_requested": True}

    # -- tasks -------------------------------------------------------------

    @app.get("/api/tasks", response_model=List[Task])
    async def list_tasks(limit: int = 50, offset: int = 0):
        return controller.get_tasks(limit, offset)

    @app.get("/api/tasks/{task_id}", response_model=Task)
    async def get_task(task_id: int):
        return controller.get_task(task_id)

    @app.patch("/api/tasks/{task_id}", response_model=Task)
    async def update_task(task_id: int, update: TaskUpdate):
        return controller.update_task(task_id, update)

    @app.delete("/api/tasks/{task_id}")
    async def delete_task(task_id: int):
        controller.delete_task(task_id)
        return {"deleted": task_id}

    @app.get("/api/tasks/{task_id}/screenshots", response_model=List[Screenshot])
    async def task_screenshots(task_id: int):
        return controller.get_task_screenshots(task_id)

    # -- settings ----------------------------------------------------------

    @app.get("/api/settings")
    async def get_settings():
        return controller.get_settings()

    @app.put("/api/settings/{key}")
    async def set_setting(key: str, body: SettingValue):
        controller.set_setting(key, body.value)
        return {"key": key, "value": controller.get_setting(key)}

    @app.get("/api/ollama/models")
    async def ollama_models(pull: bool = False):
        return {"models": await controller.check_ollama(pull_missing=pull)}

    return app
