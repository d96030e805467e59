import uvicorn
import time
import logging
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from labctl.api.rebuild import router as rebuild_router
from labctl.api.status import router as status_router
from labctl.api.reports import router as reports_router
from labctl.core.config import LOG_DIR, LOG_LEVEL
from labctl.utils.logging_config import setup_logging

setup_logging(level=getattr(logging, LOG_LEVEL, logging.INFO), log_dir=LOG_DIR or None)
logger = logging.getLogger("main")

app = FastAPI(title="labctl - Lab Stack Controller")


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise

        process_time = (time.time() - start_time) * 1000
        logger.info(
            "Outgoing: %s %s - Status: %d - Time: %.2fms",
            request.method, request.url.path, response.status_code, process_time,
        )
        return response


app.add_middleware(LoggingMiddleware)


# Health endpoint
@app.get("/health")
async def health_check():
    return {"status": "ok"}


# Register routers
app.include_router(rebuild_router, tags=["Rebuild"])
app.include_router(status_router, tags=["Rebuild"])
app.include_router(reports_router, tags=["Reports"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
