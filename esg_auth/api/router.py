"""Main API router."""

from fastapi import APIRouter

from esg_auth.api.endpoints import admin_auth, admins, magic_link, passkey, session

api_router = APIRouter()

# End-user authentication
api_router.include_router(passkey.router, prefix="/auth/passkey", tags=["Passkeys"])
api_router.include_router(magic_link.router, prefix="/auth/magic-link", tags=["Magic Link"])
api_router.include_router(session.router, prefix="/auth", tags=["Session"])

# Admin panel
api_router.include_router(admin_auth.router, prefix="/admin/auth", tags=["Admin Auth"])
api_router.include_router(admins.router, prefix="/admin/admins", tags=["Admins"])
