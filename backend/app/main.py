import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.limiter import limiter, _rate_limit_exceeded_handler
from app.core.errors import PortalError, portal_error_handler
from slowapi.errors import RateLimitExceeded
from app.auth.router import router as auth_router
from app.core.database import init_db
from app.messages.router import router as messages_router
from app.announcements.router import router as announcements_router
from app.realtime.gateway import SessionGateway
from app.realtime.router import router as realtime_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="School Portal Messaging API", version="0.1.0")

# Set up SlowAPI limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(PortalError, portal_error_handler)

@app.on_event("startup")
async def startup():
    # Initialize database
    init_db()

    # One live gateway per process, shared by every router
    gateway = SessionGateway.from_settings()
    await gateway.start()
    app.state.gateway = gateway
    logger.info(f"Live gateway started ({settings.LIVE_BACKPLANE} backplane)")

@app.on_event("shutdown")
async def shutdown():
    gateway = getattr(app.state, "gateway", None)
    if gateway is not None:
        await gateway.close()
        logger.info("Live gateway stopped")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    # WebSocket specific headers
    expose_headers=["*"],
)


# Include all routers

app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(messages_router, prefix="/api/v1/messages", tags=["messages"])
app.include_router(announcements_router, prefix="/api/v1/announcements", tags=["announcements"])
app.include_router(realtime_router, prefix="/api/v1/ws", tags=["websockets"])


@app.get("/api/health")
def health():
    return {"status": "OK", "message": "School Portal API is running"}
