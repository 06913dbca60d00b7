from dotenv import load_dotenv
import pathlib

# Load .env from backend folder (parent of app)
env_path = pathlib.Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healing import ElementHealingService, HealingConfig, PlaywrightSession, __version__
from healing_api import router as healing_router, attach_service

# ===== WINDOWS FIX FOR PLAYWRIGHT =====
# Fix for Windows: Playwright needs ProactorEventLoop on Windows
if sys.platform == 'win32':
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
# ======================================

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open a browser on HEALING_TARGET_URL and attach a healing service to it"""
    session = None
    service = None
    target_url = os.getenv("HEALING_TARGET_URL")

    if target_url:
        headless = os.getenv("HEALING_HEADLESS", "true").lower() not in ("0", "false", "no")
        session = PlaywrightSession(headless=headless)
        probe = await session.start(target_url)
        service = ElementHealingService(probe, HealingConfig.from_env())
        await service.start()
        attach_service(service)
        logger.info(f"Healing service attached to {target_url}")
    else:
        logger.warning("HEALING_TARGET_URL not set - healing endpoints will return 503")

    try:
        yield
    finally:
        attach_service(None)
        if service:
            await service.stop()
        if session:
            await session.close()


app = FastAPI(title="Self-Healing Element Locator", version=__version__, lifespan=lifespan)

# CORS Configuration
# In production, set CORS_ORIGINS environment variable to comma-separated allowed origins
cors_origins_env = os.getenv("CORS_ORIGINS", "")
if cors_origins_env:
    allowed_origins = [origin.strip() for origin in cors_origins_env.split(",")]
else:
    # Development defaults - localhost only
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)

app.include_router(healing_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}
