import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pymongo.errors import PyMongoError
from starlette.middleware.cors import CORSMiddleware

from interviewdesk import access, admin_routes, audit, auth, candidate_routes, dashboard_routes, embed_routes, health, tenants
from interviewdesk.admin_auth import AdminApiError, admin_api_error_handler, admin_cors_headers, error_response
from interviewdesk.config import CORS_ORIGINS
from interviewdesk.database import client
from interviewdesk.rate_limit import cleanup_limiters_periodically

ADMIN_PREFIX = "/api/admin"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="InterviewDesk")

app.include_router(auth.router)
app.include_router(tenants.router)
app.include_router(access.router)
app.include_router(audit.router)
app.include_router(dashboard_routes.router)
app.include_router(candidate_routes.router)
app.include_router(embed_routes.router)
app.include_router(embed_routes.script_router)
app.include_router(admin_routes.router)
app.include_router(health.router)


# ============ MIDDLEWARE ============

# Starlette runs the last registered middleware first
app.middleware("http")(tenants.tenant_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def admin_api_headers(request: Request, call_next):
    """Admin API CORS: answer preflights directly, stamp CORS and rate-limit headers"""
    if not request.url.path.startswith(ADMIN_PREFIX):
        return await call_next(request)

    if request.method == "OPTIONS":
        return Response(status_code=200, headers=admin_cors_headers())

    response = await call_next(request)
    response.headers.update(admin_cors_headers())
    rate_limit_headers = getattr(request.state, "rate_limit_headers", None)
    if rate_limit_headers:
        response.headers.update(rate_limit_headers)
    return response


# ============ EXCEPTION HANDLERS ============

app.add_exception_handler(AdminApiError, admin_api_error_handler)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    if request.url.path.startswith(ADMIN_PREFIX):
        return error_response("DATABASE_ERROR", "Database operation failed", 500)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if not request.url.path.startswith(ADMIN_PREFIX):
        return await request_validation_exception_handler(request, exc)

    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc") or ()
    field = str(loc[-1]) if loc else None
    return error_response("VALIDATION_ERROR", first.get("msg", "Invalid request"), 422, field=field)


# ============ LIFECYCLE ============

@app.on_event("startup")
async def start_background_tasks():
    app.state.limiter_cleanup = asyncio.create_task(cleanup_limiters_periodically())
    logger.info("InterviewDesk API started")


@app.on_event("shutdown")
async def shutdown_db_client():
    task = getattr(app.state, "limiter_cleanup", None)
    if task:
        task.cancel()
    client.close()
