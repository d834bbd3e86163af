from fastapi import APIRouter

from .accounts import router as accounts_router
from .coupons import router as coupons_router
from .links import router as links_router
from .payments import router as payments_router
from .wallet import router as wallet_router

api_router = APIRouter()
api_router.include_router(accounts_router, prefix="/accounts", tags=["accounts"])
api_router.include_router(wallet_router, prefix="/wallet", tags=["wallet"])
api_router.include_router(coupons_router, prefix="/coupons", tags=["coupons"])
api_router.include_router(payments_router, prefix="/payments", tags=["payments"])
api_router.include_router(links_router, prefix="/links", tags=["links"])
