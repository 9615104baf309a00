import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from games.errors import OrchestratorError
from games.orchestrator import get_orchestrator

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🎯 Chat Arena backend starting up...")
    orch = get_orchestrator()
    await orch.reconcile()
    yield
    await orch.shutdown()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Chat Arena",
    version="0.1.0",
    description="Live-chat driven duel and elimination games for stream overlays",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(OrchestratorError)
async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": type(exc).__name__},
    )


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "chat-arena", "version": "0.1.0"}


from routers.control_router import router as control_router
from routers.ws_router import router as ws_router

app.include_router(control_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
