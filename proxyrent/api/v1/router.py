from fastapi import APIRouter
from proxyrent.api.v1 import proxies, allocations, subscriptions, funds, billing, usage

api_router = APIRouter()

api_router.include_router(proxies.router, prefix="/proxies", tags=["proxies"])
api_router.include_router(allocations.router, prefix="/allocations", tags=["allocations"])
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(funds.router, prefix="/funds", tags=["funds"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
