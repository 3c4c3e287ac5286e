# ==============================================================================
# == backend/app/main.py - Secure Briefcase Tracking API                     ==
# ==============================================================================

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud
from .config import settings
from .database import engine, get_db, init_db
from .device_client import DeviceClient
from .errors import register_exception_handlers
from .routers import gps, servo
from .websocket import BroadcastChannel

# Logging
_handlers = [logging.StreamHandler()]
if settings.LOG_FILE:
    _handlers.append(logging.FileHandler(settings.LOG_FILE, encoding='utf-8'))

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - API - %(levelname)s - %(message)s',
    handlers=_handlers
)
logger = logging.getLogger(__name__)


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Briefcase Tracking API starting...")

    await init_db()
    logger.info("✓ Database initialized")

    app.state.channel = BroadcastChannel()
    app.state.device_client = DeviceClient(settings.ESP32_URL, settings.DEVICE_TIMEOUT_SECONDS)

    mqtt_service = None
    if settings.MQTT_ENABLED:
        from mqtt_bridge import MQTTBridge
        mqtt_service = MQTTBridge(app.state.channel)
        mqtt_service.start()
        logger.info("✓ Background MQTT Service started")

    try:
        yield
    finally:
        logger.info("🛑 Shutting down...")
        if mqtt_service:
            mqtt_service.stop()
        await app.state.channel.close()
        await app.state.device_client.aclose()
        await engine.dispose()
        logger.info("✅ Shutdown complete")


# ============================================================================
# APP SETUP
# ============================================================================
app = FastAPI(
    title="Secure Briefcase Tracking API",
    lifespan=lifespan,
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(gps.router)
app.include_router(servo.router)


# ============================================================================
# WEBSOCKET & HEALTH CHECK
# ============================================================================
@app.websocket("/ws/updates")
async def websocket_endpoint(websocket: WebSocket):
    channel: BroadcastChannel = websocket.app.state.channel
    await channel.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        channel.disconnect(websocket)


@app.get("/api/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    counts = {}
    try:
        await db.execute(text("SELECT 1"))
        counts = {"fixes": await crud.count_fixes(db), "alerts": await crud.count_alerts(db)}
        db_ok = True
    except Exception as e:
        logger.error(f"Health check: database unavailable: {e}")
        db_ok = False

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
            "time": time.time(),
            **counts,
        },
    )
