from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pulse.config.database import Database, ensure_indexes
from pulse.config.settings import settings
from pulse.api.chats import router as chats_router
from pulse.api.escalations import router as escalations_router
from pulse.api.audit import router as audit_router
from pulse.errors import PulseError
from pulse.middleware import JWTAuthMiddleware
import logging

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Pulse triage service...")
    logger.info(f"Environment: {settings.environment}")

    try:
        await Database.connect_db()
        await ensure_indexes()
        logger.info("MongoDB connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        raise

    yield

    logger.info("Shutting down Pulse triage service...")
    await Database.close_db()
    logger.info("MongoDB connection closed")


app = FastAPI(
    title="Pulse - Patient Triage Service",
    description="AI-assisted patient chat with emergency escalation to physicians and a sanitized audit trail.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(PulseError)
async def pulse_error_handler(request: Request, exc: PulseError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.error_code},
    )


# add_middleware stacks LIFO: CORS (added last) runs outermost, so 401s from
# the JWT middleware still carry CORS headers.
app.add_middleware(JWTAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chats_router)
app.include_router(escalations_router)
app.include_router(audit_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    try:
        db = Database.get_database()
        await db.command("ping")
        mongodb_status = "connected"
    except Exception as e:
        logger.error(f"MongoDB health check failed: {e}")
        mongodb_status = f"error: {str(e)}"

    return {
        "status": "ok",
        "service": settings.service_name,
        "version": "1.0.0",
        "dependencies": {
            "mongodb": mongodb_status,
            "assistant": (
                "configured" if settings.openai_api_key else "not configured"
            ),
        },
    }


@app.get("/")
async def root():
    return {
        "message": "Pulse - Patient Triage Service",
        "version": "1.0.0",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
    )
