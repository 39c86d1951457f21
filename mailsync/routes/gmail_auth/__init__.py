"""Gmail auth route aggregation."""

from fastapi import APIRouter

from mailsync.routes.gmail_auth import oauth, status

router = APIRouter(prefix="/auth/gmail", tags=["gmail-auth"])

router.include_router(oauth.router)
router.include_router(status.router)
