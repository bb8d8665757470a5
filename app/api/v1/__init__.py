from fastapi import APIRouter

from app.api.v1.routers import (
    business,
    document_requests,
    health,
    loan_applications,
    loan_products,
    offer_letters,
    users,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(webhooks.router)
api_router.include_router(users.router)
api_router.include_router(business.router)
api_router.include_router(loan_products.router)
api_router.include_router(loan_applications.router)
api_router.include_router(offer_letters.router)
api_router.include_router(document_requests.router)

__all__ = ["api_router"]
