"""API v1 router - aggregates all endpoint routers."""

from fastapi import APIRouter

from peek.api.v1 import admin, hidden, library

api_router = APIRouter()

api_router.include_router(library.router, prefix="/users", tags=["library"])
api_router.include_router(hidden.router, prefix="/users", tags=["hidden"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
