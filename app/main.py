import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import router as api_v1_router
from app.core.config import settings
from app.core.database import create_async_supabase, create_supabase
from app.core.errors import AppError, CaptureConflict, ErrorKind
from app.core.vision import VisionClient
from app.pipeline.capture import CaptureRegistry

logging.basicConfig(
    format="%(asctime)s - %(levelname)s - %(message)s",
    level=settings.LOG_LEVEL,
)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.supabase = create_supabase(settings)
    app.state.async_supabase = await create_async_supabase(settings)
    app.state.vision = VisionClient.from_settings(settings)
    app.state.captures = CaptureRegistry(settings.CAPTURE_IDLE_SECONDS)
    log.info("Receipt tracker started (bucket=%s, table=%s)", settings.RECEIPTS_BUCKET, settings.RECEIPTS_TABLE)

    yield

    await app.state.vision.close()
    await app.state.async_supabase.remove_all_channels()
    log.info("Shutting down")


app = FastAPI(
    title="Receipt Tracker",
    description="Receipt photo → AI extraction → stored receipts → spending stats",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.kind is ErrorKind.UNEXPECTED_ERROR:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(CaptureConflict)
async def capture_conflict_handler(request: Request, exc: CaptureConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/")
async def root():
    return {"service": "Receipt Tracker", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


app.include_router(api_v1_router)
