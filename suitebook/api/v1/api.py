from fastapi import APIRouter
from suitebook.api.v1.routes.ops import router as ops_router
from suitebook.api.v1.routes.payments import router as payments_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(payments_router)
api_router.include_router(ops_router)
