import uvicorn
import os
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.analyze import router as analyze_router
from app.api.history import router as history_router
from app.services.history_store import build_history_store
from app.utils.logging_config import setup_logging

setup_logging(level=logging.INFO, log_to_file=os.getenv("LOG_TO_FILE", "true").lower() == "true")
logger = logging.getLogger("main")


# ---------------------------------------------------------------------------
# Lifespan — history store init/teardown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    store = build_history_store()
    await store.start()
    app.state.history_store = store
    logger.info("History store ready (backend: %s)", store.backend_name)
    try:
        yield
    finally:
        await store.close()
        app.state.history_store = None


app = FastAPI(title="Code Fixer AI API", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Incoming: {request.method} {request.url.path} from {client_host}")

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"Outgoing: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Time: {process_time:.2f}ms"
            )
            return response
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path} - Error: {str(e)}")
            raise e

app.add_middleware(LoggingMiddleware)

# ---------------------------------------------------------------------------
# CORS — allow the React frontend (port 3000) to call the backend
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Caller-input errors are 400, distinct from upstream (502) failures
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected {request.method} {request.url.path}: {len(exc.errors())} validation error(s)")
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/")
async def root(request: Request):
    store = getattr(request.app.state, "history_store", None)
    return {
        "status": "Backend LIVE",
        "ai": "Gemini",
        "history": store.backend_name if store else "uninitialized",
        "time": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(analyze_router)
app.include_router(history_router)

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=int(os.getenv("PORT", 8000)), reload=True)
