from fastapi import APIRouter

from phoneauth.api.v1.otp import router as otp_router

api_router = APIRouter()
api_router.include_router(otp_router)

__all__ = ["api_router"]
