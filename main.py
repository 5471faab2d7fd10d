"""
Exam Integrity API: Main Application
FastAPI application for online exam delivery: attempt lifecycle, scoring,
violation tracking with auto-submit, and token-based sessions.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database.database import Base, SessionLocal, engine
from database.repositories import SqlRevocationList, SqlSessionStore
from routers import answer, auth, exam, violation
from services.errors import ServiceError

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")
log = logging.getLogger("integrity")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def _purge_expired():
    """Drop expired sessions and revocation rows left behind by earlier runs."""
    db = SessionLocal()
    try:
        now = datetime.now(timezone.utc)
        sessions = SqlSessionStore(db).purge_expired(now)
        revoked = SqlRevocationList(db).purge_expired(now)
        if sessions or revoked:
            log.info("purged %d expired sessions, %d expired revocations", sessions, revoked)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + purge expired auth rows."""
    Base.metadata.create_all(bind=engine)
    _purge_expired()
    yield


app = FastAPI(
    title="Exam Integrity API",
    description="Exam attempts, scoring, violation tracking and session management",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(auth.router)               # /auth/*
app.include_router(exam.router)               # /exam/{id}/start|submit|results
app.include_router(answer.router)             # /answer/save, /answer/{id}/progress
app.include_router(violation.router)          # /violation, /violation/stats


@app.get("/")
def root():
    return {
        "name": "Exam Integrity API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "auth": "/auth",
            "exam": "/exam",
            "answer": "/answer",
            "violation": "/violation",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "exam-integrity-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8001")))
