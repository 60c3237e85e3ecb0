from fastapi import APIRouter

from sqlriver.api.v1.endpoints import river

api_router = APIRouter()
api_router.include_router(river.router, prefix="/river", tags=["river"])
