import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from usage_commit.config import Settings, load_settings
from usage_commit.engine import BatchSubmissionEngine, connect_engine
from usage_commit.errors import RecordError, UsageCommitError
from usage_commit.models import RunReport, UsageRecord
from usage_commit.source import JsonFileRecordSource, RowRecordSource

log = logging.getLogger("usage_commit.app")


@dataclass
class RunState:
    run_id: int = 0
    status: str = "idle"  # idle | running | finished | failed
    records: int = 0
    report: RunReport | None = None
    error: str | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "records": self.records,
            "report": self.report.as_dict() if self.report else None,
            "error": self.error,
        }


class RunReq(BaseModel):
    records: list[dict[str, Any]] | None = None
    records_file: str | None = None
    wait: bool = False


async def _execute(engine: BatchSubmissionEngine, state: RunState, records: list[UsageRecord]) -> None:
    state.status = "running"
    try:
        state.report = await engine.run(records)
        state.status = "finished"
    except UsageCommitError as e:
        log.error("Run %s aborted: %s", state.run_id, e)
        state.status, state.error = "failed", str(e)
    except Exception as e:
        log.exception("Run %s crashed", state.run_id)
        state.status, state.error = "failed", f"{e.__class__.__name__}: {e}"


def create_app(settings: Settings | None = None, engine: BatchSubmissionEngine | None = None) -> FastAPI:
    """Build the service. With no engine given, settings are loaded and the node probed at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is None:
            s = settings or load_settings()
            app.state.engine = await connect_engine(s)
        else:
            app.state.engine = engine
        app.state.run = RunState()
        log.info("Ready to accept runs")
        try:
            yield
        finally:
            run: RunState = app.state.run
            if run.active:
                log.info("Shutting down, cancelling run %s...", run.run_id)
                app.state.engine.cancel.set()
                await run.task
            log.info("Shutdown complete")

    app = FastAPI(
        title="Usage Commit",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Runs", "description": "Start, watch and cancel batch runs"},
            {"name": "State", "description": "Failure artifact"},
        ],
    )

    r_runs = APIRouter(prefix="/runs", tags=["Runs"])
    r_state = APIRouter(prefix="/state", tags=["State"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @r_runs.post("")
    async def start_run(req: RunReq, request: Request):
        engine: BatchSubmissionEngine = request.app.state.engine
        run: RunState = request.app.state.run
        if run.active:
            raise HTTPException(status_code=409, detail=f"run {run.run_id} is still in progress")

        if req.records is not None:
            source = RowRecordSource(req.records)
        elif req.records_file:
            source = JsonFileRecordSource(req.records_file)
        else:
            raise HTTPException(status_code=422, detail="either records or records_file is required")
        try:
            records = list(source)
        except RecordError as e:
            raise HTTPException(status_code=400, detail=str(e))

        engine.cancel.clear()
        run = RunState(run_id=run.run_id + 1, status="running", records=len(records))
        request.app.state.run = run
        run.task = asyncio.create_task(_execute(engine, run, records), name=f"run-{run.run_id}")
        log.info("Started run %s with %s records", run.run_id, len(records))

        if req.wait:
            await run.task
            return run.as_dict()
        return JSONResponse(status_code=202, content=run.as_dict())

    @r_runs.get("/current")
    async def current_run(request: Request):
        return request.app.state.run.as_dict()

    @r_runs.post("/cancel")
    async def cancel_run(request: Request):
        run: RunState = request.app.state.run
        if not run.active:
            raise HTTPException(status_code=409, detail="no run in progress")
        request.app.state.engine.cancel.set()
        log.warning("Cancel requested for run %s", run.run_id)
        return {"run_id": run.run_id, "cancel_requested": True}

    @r_state.get("/failures")
    async def failures(request: Request):
        sink = request.app.state.engine.sink
        if not sink.exists():
            raise HTTPException(status_code=404, detail=f"no failure artifact at {sink.path}")
        try:
            records = sink.read()
        except (OSError, ValueError) as e:
            raise HTTPException(status_code=500, detail=f"unreadable failure artifact: {e}")
        return {"path": str(sink.path), "count": len(records), "records": [r.as_dict() for r in records]}

    app.include_router(r_runs)
    app.include_router(r_state)
    return app


app = create_app()
