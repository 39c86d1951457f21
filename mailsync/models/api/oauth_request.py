# models/api/oauth_request.py
from pydantic import BaseModel, Field


class GmailAuthCallbackRequest(BaseModel):
    """Request for Gmail OAuth callback."""

    code: str = Field(..., min_length=1, description="Authorization code from OAuth flow")
    state: str = Field(..., min_length=1, description="Signed OAuth state from /auth/gmail/connect")


class GmailDisconnectRequest(BaseModel):
    """Request to disconnect a Gmail mailbox."""

    connection_id: int = Field(..., description="Connection to remove")
