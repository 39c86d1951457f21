# models/domain/crm_domain.py
"""
CRM entities shared with the surrounding product's manual forms.
The entity resolver only creates or links rows scoped to one user_id.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

EmailDirection = Literal["sent", "received"]


class Company(BaseModel):
    id: int
    user_id: str
    name: str
    domain: str | None = None


class Contact(BaseModel):
    id: int
    user_id: str
    company_id: int | None = None
    name: str
    email: str
    role: str | None = None
    status: str | None = None


class Interaction(BaseModel):
    id: int
    user_id: str
    contact_id: int
    interaction_type: str
    interaction_date: datetime
    notes: str = ""
    gmail_message_id: str | None = None
    gmail_thread_id: str | None = None
    is_gmail_synced: bool = False
    email_subject: str | None = None
    email_snippet: str | None = None
    email_direction: EmailDirection | None = None


class InteractionDraft(BaseModel):
    """Interaction fields derived from a message, before persistence."""

    user_id: str
    contact_id: int
    interaction_type: str
    interaction_date: datetime
    notes: str
    gmail_message_id: str
    gmail_thread_id: str | None = None
    email_subject: str | None = None
    email_snippet: str | None = None
    email_direction: EmailDirection = "received"
