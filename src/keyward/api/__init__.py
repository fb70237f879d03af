"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Access control is applied at the include_router level using
FastAPI's dependencies parameter where a whole router shares one rule.
Health and auth routers are open (individual auth routes such as
/profile pull in get_principal themselves); the admin router requires
the admin role on every route.
"""

from fastapi import APIRouter, Depends

from keyward.api.admin import router as admin_router
from keyward.api.auth import router as auth_router
from keyward.api.health import router as health_router
from keyward.api.webauthn import router as webauthn_router
from keyward.auth.dependencies import get_principal, require_admin

api_router = APIRouter()

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Any authenticated account
api_router.include_router(
    webauthn_router, tags=["webauthn"], dependencies=[Depends(get_principal)]
)

# Admin only
api_router.include_router(
    admin_router, tags=["admin"], dependencies=[Depends(require_admin)]
)
