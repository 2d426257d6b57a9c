import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine, ensure_schema
from .cleanup import purge_expired_sessions
from .errors import FeynBrainError
from .registry import SessionRegistry
from .settings import settings
from .store import DocumentStore, SessionStore
from .routers import health
from .routers import documents
from .routers import study
from .routers import history

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
# Quiet per-request client logging
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="FeynBrain API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(documents.router)
app.include_router(study.router)
app.include_router(history.router)

app.state.session_store = SessionStore()
app.state.document_store = DocumentStore()
app.state.registry = SessionRegistry(app.state.session_store, app.state.document_store)


@app.exception_handler(FeynBrainError)
async def feynbrain_error_handler(request: Request, exc: FeynBrainError):
	if exc.status_code >= 500:
		logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
	return JSONResponse(status_code=422, content={"error": "Invalid request", "detail": jsonable_encoder(exc.errors())})


async def _cleanup_watcher():
	# Startup already purged once; repeat daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		purge_expired_sessions(app.state.session_store)


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	purge_expired_sessions(app.state.session_store)
	app.state.cleanup_task = asyncio.create_task(_cleanup_watcher())
	logger.info("FeynBrain started in %s mode", settings.service_mode)


@app.on_event("shutdown")
async def shutdown_event():
	task = getattr(app.state, "cleanup_task", None)
	if task is not None:
		task.cancel()
	await app.state.registry.close_all()
