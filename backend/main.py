"""Timeline Studio — FastAPI application entry point.

Every router module under backend/routers/ (except the shared deps
helpers) is mounted here.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.routers import jobs, models, system, timelines
from backend.services.shared.config import get_config
from backend.services.shared.logging import setup_logging_from_config

setup_logging_from_config(get_config())

app = FastAPI(
    title="Timeline Studio",
    version="1.0.0",
    description="Long-form video timelines — segment routing, frame chaining, generation and rendering.",
)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────
# Critical: every imported router must be mounted. No orphan routers.
app.include_router(timelines.router, prefix="/api/timelines", tags=["Timelines"])
app.include_router(jobs.router,      prefix="/api/jobs",      tags=["Render Jobs"])
app.include_router(models.router,    prefix="/api/models",    tags=["Models"])
app.include_router(system.router,    prefix="/api/system",    tags=["System"])
