"""
Registre central des routers.
- API v1: catalog, cart, referrals, checkout, payments (dont webhook), users
- Admin: ledger (commandes, parrainages, versements)
- Health: health_router
"""
from fastapi import FastAPI
from storefront.catalog import views as catalog_views
from storefront.cart import views as cart_views
from storefront.referrals import views as referrals_views
from storefront.checkout import views as checkout_views
from storefront.payments import views as payments_views
from storefront.users import views as users_views
from storefront.admin.views import router as admin_router
from storefront.health.router import router as health_router

def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(catalog_views.router)
    app.include_router(cart_views.router)
    app.include_router(referrals_views.router)
    app.include_router(checkout_views.router)
    app.include_router(payments_views.router)
    app.include_router(users_views.router)
    # Admin
    app.include_router(admin_router)
    # Health & monitoring
    app.include_router(health_router)
