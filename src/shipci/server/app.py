from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, List, Optional

import sqlalchemy as sa
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from shipci.model import Pipeline, PipelineResult, TriggerEvent
from shipci.pipelines import default_pipelines
from shipci.publish import DirectoryPublisher
from shipci.runner import run_pipeline
from shipci.settings import Settings, load_settings
from shipci.triggers import UnsupportedEvent, event_from_github, select_pipelines, verify_signature
from shipci.ui.console import get_console

from .db import make_engine, make_sessionmaker
from .models import Base, JobRecord, Run, now_utc

Dispatcher = Callable[[Pipeline, TriggerEvent], PipelineResult]

# -------------------- Schemas --------------------

class WebhookResponse(BaseModel):
    status: str  # queued|ignored|pong
    run_ids: list[str] = Field(default_factory=list)
    reason: str | None = None

class JobResponse(BaseModel):
    id: str
    job_name: str
    target: str | None
    status: str
    failed_step: str | None
    assets: list[str]
    logs: str | None

class RunResponse(BaseModel):
    id: str
    pipeline: str
    event: str
    ref: str
    sha: str | None
    repository: str | None
    status: str
    created_at: datetime
    finished_at: datetime | None
    jobs: list[JobResponse] = Field(default_factory=list)


def _run_response(run: Run, jobs: List[JobRecord]) -> RunResponse:
    return RunResponse(
        id=run.id,
        pipeline=run.pipeline,
        event=run.event,
        ref=run.ref,
        sha=run.sha,
        repository=run.repository,
        status=run.status,
        created_at=run.created_at,
        finished_at=run.finished_at,
        jobs=[
            JobResponse(
                id=j.id,
                job_name=j.job_name,
                target=j.target,
                status=j.status,
                failed_step=j.failed_step,
                assets=list(j.assets or []),
                logs=j.logs,
            )
            for j in jobs
        ],
    )


def _default_dispatcher(settings: Settings, source: Optional[str]) -> Dispatcher:
    def _dispatch(p: Pipeline, event: TriggerEvent) -> PipelineResult:
        return run_pipeline(
            p,
            event,
            source=source or event.clone_url or ".",
            token=settings.github_token,
            publisher=DirectoryPublisher(settings.publish_dir) if settings.publish_dir else None,
            max_workers=settings.workers,
        )
    return _dispatch


def create_app(
    settings: Optional[Settings] = None,
    pipelines: Optional[List[Pipeline]] = None,
    dispatcher: Optional[Dispatcher] = None,
    source: Optional[str] = None,
) -> FastAPI:
    """
    Build the webhook receiver.

    Args:
        settings: Loaded from the environment when omitted
        pipelines: Pipelines to trigger (built-in pipelines when omitted)
        dispatcher: Runs one pipeline for one event; blocking, called off the event loop
        source: Repository to check out (defaults to the event's clone URL)
    """
    settings = settings or load_settings()
    pipelines = pipelines if pipelines is not None else default_pipelines()
    run_one = dispatcher or _default_dispatcher(settings, source)

    engine = make_engine(settings.database_url)
    SessionLocal = make_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Creates tables if they don't exist.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        await engine.dispose()

    app = FastAPI(title="shipci webhook receiver", lifespan=lifespan)

    async def execute(run_id: str, p: Pipeline, event: TriggerEvent) -> None:
        async with SessionLocal() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                run.status = "running"

        try:
            result = await run_in_threadpool(run_one, p, event)
        except Exception as e:
            get_console().print_exception(e)
            async with SessionLocal() as s:
                async with s.begin():
                    run = await s.get(Run, run_id)
                    run.status = "failed"
                    run.finished_at = now_utc()
            return

        async with SessionLocal() as s:
            async with s.begin():
                run = await s.get(Run, run_id)
                run.status = result.status.value
                run.finished_at = now_utc()
                for j in result.jobs:
                    s.add(
                        JobRecord(
                            run_id=run_id,
                            job_name=j.name,
                            target=j.target,
                            status=j.status.value,
                            failed_step=j.failed_step,
                            assets=list(j.assets),
                            logs=j.logs or None,
                        )
                    )

    # -------------------- Endpoints --------------------

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "pipelines": [p.name for p in pipelines]}

    @app.post("/webhooks/github", status_code=202, response_model=WebhookResponse)
    async def github_webhook(
        request: Request,
        background: BackgroundTasks,
        x_github_event: str | None = Header(default=None),
        x_hub_signature_256: str | None = Header(default=None),
    ):
        body = await request.body()

        if settings.webhook_secret and not verify_signature(settings.webhook_secret, body, x_hub_signature_256):
            raise HTTPException(status_code=401, detail="Invalid signature")
        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")
        if x_github_event == "ping":
            return WebhookResponse(status="pong")

        try:
            payload = json.loads(body or b"{}")
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Body is not valid JSON")

        try:
            event = event_from_github(x_github_event, payload)
        except UnsupportedEvent as e:
            return WebhookResponse(status="ignored", reason=str(e))

        matched = select_pipelines(pipelines, event)
        if not matched:
            return WebhookResponse(status="ignored", reason="no pipeline matches the event")

        run_ids: list[str] = []
        async with SessionLocal() as s:
            async with s.begin():
                for p in matched:
                    run = Run(
                        pipeline=p.name,
                        event=event.name,
                        ref=event.ref,
                        sha=event.sha,
                        repository=event.repository,
                        status="queued",
                    )
                    s.add(run)
                    await s.flush()
                    run_ids.append(run.id)

        # schedule after the DB commit
        for run_id, p in zip(run_ids, matched):
            background.add_task(execute, run_id, p, event)

        return WebhookResponse(status="queued", run_ids=run_ids)

    @app.get("/runs", response_model=list[RunResponse])
    async def list_runs(limit: int = 50):
        async with SessionLocal() as s:
            q = sa.select(Run).order_by(Run.created_at.desc()).limit(limit)
            runs = (await s.execute(q)).scalars().all()
            return [_run_response(r, []) for r in runs]

    @app.get("/runs/{run_id}", response_model=RunResponse)
    async def get_run(run_id: str):
        """Get a run with its job records."""
        async with SessionLocal() as s:
            run = await s.get(Run, run_id)
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")
            q = sa.select(JobRecord).where(JobRecord.run_id == run_id).order_by(JobRecord.job_name)
            jobs = (await s.execute(q)).scalars().all()
            return _run_response(run, list(jobs))

    return app
