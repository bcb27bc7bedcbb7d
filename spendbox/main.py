import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from spendbox.core.config import settings
from spendbox.core.errors import register_error_handlers
from spendbox.core.rate_limit import api_limiter
from spendbox.db import dynamo
from spendbox.routers import ai, auth, expenses, health, plaid, realtime, users
from spendbox.utils.notifier import NotificationHub
from spendbox.utils.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.notifier = NotificationHub()
    if settings.DYNAMO_CREATE_TABLES:
        dynamo.create_tables()
    if settings.SCHEDULER_ENABLED:
        logger.info("Starting scheduler...")
        start_scheduler(app.state.notifier)
    yield
    if settings.SCHEDULER_ENABLED:
        logger.info("Stopping scheduler...")
        stop_scheduler()
    await app.state.notifier.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


register_error_handlers(app)


# Root endpoints
@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} API"}


@app.get("/health")
def liveness():
    return {"status": "OK", "service": settings.PROJECT_NAME}


# Register routers
api_limit = [Depends(api_limiter)]
app.include_router(health.router, prefix=f"{settings.API_PREFIX}", tags=["Health"], dependencies=api_limit)
app.include_router(auth.router, prefix=f"{settings.API_PREFIX}/auth", tags=["Auth"], dependencies=api_limit)
app.include_router(
    expenses.router, prefix=f"{settings.API_PREFIX}/expenses", tags=["Expenses"], dependencies=api_limit
)
app.include_router(ai.router, prefix=f"{settings.API_PREFIX}/ai", tags=["AI"], dependencies=api_limit)
app.include_router(users.router, prefix=f"{settings.API_PREFIX}/users", tags=["Users"], dependencies=api_limit)
app.include_router(plaid.router, prefix=f"{settings.API_PREFIX}/plaid", tags=["Plaid"], dependencies=api_limit)
app.include_router(realtime.router, tags=["Realtime"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("spendbox.main:app", host="0.0.0.0", port=settings.PORT)
