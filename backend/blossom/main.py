"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blossom.api import conversations, jobs, ops, rpc
from blossom.api.errors import install_error_handlers
from blossom.domain import container
from blossom.infra import postgres
from blossom.infra.redis import close_redis
from blossom.jobs.scheduler import PolicyScheduler
from blossom.obs import init as obs_init
from blossom.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	container.configure_postgres(pool)
	scheduler: PolicyScheduler | None = None
	if settings.policy_jobs_enabled:
		scheduler = PolicyScheduler()
		scheduler.start()
		scheduler.schedule_policy_jobs(hours=settings.policy_job_interval_hours)
		app.state.policy_scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await postgres.close_pool()
		await close_redis()


app = FastAPI(title="Blossom Conversation Policy", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:5173"] if settings.is_dev() else ["https://app.blossom.example"]

# Starlette disallows wildcard '*' with allow_credentials=True.
allow_credentials = "*" not in allow_origins

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=allow_credentials,
	allow_methods=["*"],
	allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-user-id", "x-request-id"],
)

obs_init(app)

app.include_router(rpc.router)
app.include_router(jobs.router)
app.include_router(conversations.router)
app.include_router(ops.router, tags=["ops"])


def run() -> None:
	uvicorn.run("blossom.main:app", host=settings.host, port=settings.port, log_config=None)
