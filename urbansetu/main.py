import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

# --- FASTAPI IMPORTS ---
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

# --- LOCAL MODULES ---
from urbansetu.core.config import get_settings
from urbansetu.core.exceptions import AuthenticationError, UrbanSetuError
from urbansetu.models.user_model import UserType
from urbansetu.services.classifier_service import ImageClassifier
from urbansetu.services.complaint_repository import InMemoryComplaintRepository, MongoComplaintRepository
from urbansetu.services.geocode_service import ReverseGeocoder
from urbansetu.services.mongodb_service import close_db, get_db, get_fs, init_db
from urbansetu.services.redis_service import close_redis, init_redis
from urbansetu.services.session_service import InMemoryUserStore, MongoUserStore, SessionManager
from urbansetu.services.socket_manager import manager
from urbansetu.services.submission_events import (
    RecentSubmissionTracker,
    SubmissionEventBus,
    websocket_broadcaster,
)
from urbansetu.services.wizard_service import WizardRegistry

# --- ROUTES ---
from urbansetu.routes.admin import router as admin_router
from urbansetu.routes.auth import router as auth_router
from urbansetu.routes.complaints import images_router, router as complaints_router
from urbansetu.routes.dashboard import router as dashboard_router
from urbansetu.routes.wizard import router as wizard_router

settings = get_settings()

# --- LOGGING SETUP ---
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


# --- TIMING MIDDLEWARE ---
class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response


# --- LIFESPAN CONTEXT MANAGER ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"🚀 Starting {settings.app_name} ({settings.env})...")

    cache = await init_redis()
    if not cache.is_connected:
        cache = None

    mongo_ready = False
    if settings.use_memory_storage:
        logger.info("🧪 STORAGE_BACKEND=memory - complaints and users are kept in memory")
    else:
        try:
            mongo_ready = await init_db()
        except Exception as e:
            logger.error(f"❌ MongoDB initialization error: {e}", exc_info=True)

    if mongo_ready:
        db = get_db()
        app.state.repository = MongoComplaintRepository(db, get_fs(), cache=cache)
        app.state.sessions = SessionManager(MongoUserStore(db), cache=cache)
        logger.info("✅ MongoDB repository initialized")
    else:
        if not settings.use_memory_storage:
            logger.warning("⚠️ Running in fallback mode - data will not survive a restart")
        app.state.repository = InMemoryComplaintRepository(cache=cache)
        app.state.sessions = SessionManager(InMemoryUserStore(), cache=cache)

    app.state.events = SubmissionEventBus()
    app.state.tracker = RecentSubmissionTracker()
    app.state.events.subscribe(app.state.tracker.handle)
    app.state.events.subscribe(websocket_broadcaster(manager))

    app.state.wizards = WizardRegistry()
    app.state.classifier = ImageClassifier()
    app.state.geocoder = ReverseGeocoder()

    logger.info("✅ All services initialized - Server ready!")

    yield

    # Shutdown
    logger.info("🔄 Shutting down...")
    try:
        await close_db()
        await close_redis()
        logger.info("✅ All services closed gracefully")
    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}", exc_info=True)


# --- APP INITIALIZATION ---
app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)

# --- MIDDLEWARE ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TimingMiddleware)


# --- REQUEST LOGGING ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    path = request.url.path
    logger.info(f"📥 {request.method} {path}")
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"💥 Error causing 500: {path} - {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# --- ERROR HANDLING ---
@app.exception_handler(UrbanSetuError)
async def urbansetu_error_handler(request: Request, exc: UrbanSetuError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    else:
        logger.info(f"↩️ {request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# --- ROUTER MOUNTING ---
app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
app.include_router(wizard_router, prefix="/api/wizard", tags=["Wizard"])
app.include_router(complaints_router, prefix="/api", tags=["Complaints"])
app.include_router(images_router, prefix="/api", tags=["Images"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(dashboard_router, prefix="/api/dashboard", tags=["Dashboard"])


# --- WEBSOCKETS ---
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """Live complaint updates. Pass the bearer token as ``?token=``."""
    try:
        session = await websocket.app.state.sessions.resolve(token or "")
    except AuthenticationError as e:
        logger.warning(f"🚫 WebSocket refused: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, session.user_id, is_admin=session.user_type == UserType.admin)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"WebSocket Error: {e}")
        manager.disconnect(websocket)


# --- HEALTH ---
@app.get("/")
async def root():
    return {
        "status": "online",
        "version": "1.0.0",
        "storage": type(app.state.repository).__name__,
        "timestamp": datetime.utcnow().isoformat(),
    }


def main():
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Server starting on port {port}")
    uvicorn.run("urbansetu.main:app", host="0.0.0.0", port=port, reload=False, log_level=settings.log_level.lower())


# --- MAIN ---
if __name__ == "__main__":
    main()
