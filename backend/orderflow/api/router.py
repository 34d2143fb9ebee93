from fastapi import APIRouter

from orderflow.api.routes import (
    earlypay,
    health,
    notifications,
    offers,
    orders,
    payments,
    quotes,
    rfqs,
    suppliers,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(rfqs.router)
api_router.include_router(quotes.router)
api_router.include_router(offers.router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(earlypay.router)
api_router.include_router(notifications.router)
api_router.include_router(suppliers.router)
