import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import get_settings
from .connections import test_all_connections
from .errors import register_exception_handlers
from .logging_config import configure_logging
from .routes import last_logon_router

logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="AD Last Logon API",
              description="Resolves the real last logon of directory accounts by asking every domain controller",
              version=__version__,
              debug=settings.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

app.include_router(last_logon_router, prefix="/api", tags=["Last Logon"])

register_exception_handlers(app)


@app.get("/")
def root():
    return {
        "message": "AD Last Logon API",
        "version": __version__,
        "docs": "/docs",
        "status": "online"
    }


@app.on_event("startup")
async def startup_event():
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    logger.info("🚀 FastAPI startup event")
    statuses = test_all_connections(settings)
    logger.info(f"🔌 Directory connection status: {statuses}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("lastlogon_api.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
