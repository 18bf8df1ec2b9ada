import logging
import os
import subprocess
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.database import init_db
from app.exceptions import MatchStateError, PersistenceError, ProgressionError
from app.routes import matches, phases, standings, teams, tiebreakers, tournaments

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Tournament Progression API"

app = FastAPI(title=APP_NAME)


def get_build_info():
    """Short git hash of the running checkout, or a startup timestamp outside git"""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=os.path.dirname(os.path.dirname(__file__)),
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass
    return datetime.now().strftime("%Y%m%d-%H%M%S")


BUILD_HASH = get_build_info()

# Local frontends plus anything listed in CORS_ORIGINS (comma separated)
_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
_origins += [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProgressionError)
def progression_error_handler(request: Request, exc: ProgressionError):
    """Domain errors a route didn't translate itself."""
    if isinstance(exc, PersistenceError):
        status_code = 503
    elif isinstance(exc, MatchStateError):
        status_code = 422
    else:
        status_code = 409
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


for module, tag in (
    (tournaments, "tournaments"),
    (teams, "teams"),
    (phases, "phases"),
    # Finishing a match triggers a progression pass
    (matches, "matches"),
    (standings, "standings"),
    (tiebreakers, "tiebreakers"),
):
    app.include_router(module.router, prefix="/api", tags=[tag])


@app.on_event("startup")
def on_startup():
    init_db()
    route_count = sum(1 for r in app.routes if getattr(r, "path", None))
    logger.info("%s started: %d routes, build %s", APP_NAME, route_count, BUILD_HASH)


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "build_hash": BUILD_HASH, "status": "healthy"}


@app.get("/")
def root():
    return {"message": APP_NAME, "docs": "/docs"}
