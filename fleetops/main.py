from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .routes import router as api_router
from .logging_setup import configure_logging
from .config import settings
from .db import init_db
from .errors import DashboardError
from . import tracking
import logging
import asyncio

# configure file logging for the app
configure_logging()
logger = logging.getLogger("fleetops.main")

app = FastAPI(title="FleetOps Admin API")

# Enable CORS for the dashboard UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/v1")


@app.exception_handler(DashboardError)
async def _dashboard_error(request: Request, exc: DashboardError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
async def _startup():
    logger.info("Starting FleetOps Admin API")
    await init_db()
    asyncio.create_task(tracking.poll_tracking())
    logger.info("Started tracking poller: interval=%ss", settings.TRACKING_POLL_INTERVAL_SEC)


@app.get("/")
async def read_root():
    return {"message": "FleetOps Admin API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
