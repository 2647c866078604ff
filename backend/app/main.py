"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import ops
from app.api.errors import install_error_handlers
from app.api.middleware_request_id import RequestIdMiddleware
from app.clubs.api import router as clubs_router
from app.clubs.container import build_services
from app.clubs.infra.postgres_store import PostgresItemStore
from app.clubs.infra.scheduler import ClubsMaintenanceScheduler
from app.clubs.jobs.capacity_integrity import CapacityIntegrityJob
from app.clubs.jobs.invitation_expiry import InvitationExpiryJob
from app.clubs.workers.waitlist_promoter import WaitlistPromoter
from app.infra import postgres
from app.obs import init as obs_init
from app.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	services = getattr(app.state, "clubs", None)
	owns_pool = False
	owns_services = services is None
	if services is None:
		if settings.clubs_store_backend == "postgres":
			pool = await postgres.init_pool()
			owns_pool = True
			store = PostgresItemStore(pool)
			await store.ensure_schema()
			services = build_services(store=store)
		else:
			services = build_services()
		app.state.clubs = services
	worker_tasks: list[asyncio.Task] = []
	worker_instances: list[object] = []
	scheduler: ClubsMaintenanceScheduler | None = None
	if settings.clubs_workers_enabled:
		promoter = WaitlistPromoter(participations=services.participations)
		expiry_job = InvitationExpiryJob(invitations=services.invitations)
		integrity_job = CapacityIntegrityJob(participations=services.participations)
		worker_instances.append(promoter)
		worker_tasks.append(asyncio.create_task(promoter.run_forever(), name="clubs-waitlist-promoter"))
		scheduler = ClubsMaintenanceScheduler()
		scheduler.register(invitation_expiry=expiry_job, capacity_integrity=integrity_job)
		scheduler.start()
		app.state.clubs_scheduler = scheduler
	app.state.clubs_workers = worker_instances
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		for instance in worker_instances:
			stop = getattr(instance, "stop", None)
			if callable(stop):
				stop()
		if worker_tasks:
			for task in worker_tasks:
				task.cancel()
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		if owns_services:
			await services.close()
		if owns_pool:
			await postgres.close_pool()


app = FastAPI(title="Clubride Clubs Core", lifespan=lifespan)
install_error_handlers(app)

allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
if allow_origins:
	app.add_middleware(
		CORSMiddleware,
		allow_origins=allow_origins,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)

obs_init(app)

# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router)
app.include_router(clubs_router)
