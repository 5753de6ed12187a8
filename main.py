import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import models  # noqa: F401  registers the tables
from db import create_db_and_tables
from errors import DomainError
from routers import (
    admin,
    auth,
    dashboard,
    donations,
    ngos,
    notifications,
    password_reset,
    requests,
    reviews,
    search,
    setup,
    users,
)
from routers.auth import verify_session_token

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="DonorLink")


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()


def _request_user(request: Request):
    token = request.cookies.get("session")
    authorization = request.headers.get("authorization", "")
    if token is None and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    data = verify_session_token(token) if token else None
    return data["user_id"] if data else None


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    user_id = _request_user(request)
    user_info = f"user_id:{user_id}" if user_id else "anonymous"
    logger.info(
        "%s %s - %s - %s",
        request.method, request.url.path, response.status_code, user_info,
    )
    return response


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "code": "DATABASE_ERROR"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(donations.router, prefix="/donations")
app.include_router(requests.router, prefix="/requests")
app.include_router(ngos.router, prefix="/ngos")
app.include_router(notifications.router, prefix="/notifications")
app.include_router(reviews.router, prefix="/reviews")
app.include_router(admin.router, prefix="/admin")
app.include_router(dashboard.router)
app.include_router(search.router, prefix="/search")
app.include_router(password_reset.router, prefix="/password-reset")
app.include_router(setup.router, prefix="/setup")
