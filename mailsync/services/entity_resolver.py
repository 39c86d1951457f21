"""
Entity resolver: maps a parsed Gmail message onto Company, Contact and
Interaction rows for one user.

Every external participant (From, To, Cc) gets its own rows. Per participant the
order is company -> contact -> interaction; each step is find-or-create on its
dedup key, so replaying a message only ever links existing rows.
"""

import re

from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.crm_domain import EmailDirection, InteractionDraft
from mailsync.models.domain.gmail_domain import EmailAddress, GmailMessage
from mailsync.models.domain.sync_domain import ResolveOutcome, ResolvedParticipant
from mailsync.repositories.crm_repository import CrmRepository
from mailsync.services.errors import SkippedNoContactError, UnparseableSenderError

logger = get_logger(__name__)

PUBLIC_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "icloud.com",
        "me.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "mail.com",
        "zoho.com",
    }
)

_AUTOMATED_LOCAL_PART = re.compile(
    r"^(no[-_.]?reply|do[-_.]?not[-_.]?reply|mailer[-_.]?daemon|postmaster|bounces?"
    r"|notifications?|notify|alerts?|newsletters?|updates|digest|automated|system"
    r"|calendar[-_.]notification)([-_.+].*)?$"
)
# Sending subdomain in front of a registrable domain: bounce.acme.com, not mail.com
_AUTOMATED_SUBDOMAIN = re.compile(r"^(bounces?|mailer|notifications?)\.[^.]+\.[^.]+")
_COMPANY_TLD_SUFFIX = re.compile(r"\.(com|org|net|io|ai|co|edu|gov)$")

NOTES_MAX_LENGTH = 500
SNIPPET_MAX_LENGTH = 500

REACH_OUT_STATUS = "To Reach Out"
FOLLOWING_UP_STATUS = "Following Up"


def is_public_email_domain(domain: str) -> bool:
    domain = domain.lower()
    return any(domain == public or domain.endswith("." + public) for public in PUBLIC_EMAIL_DOMAINS)


def is_automated_sender(address: EmailAddress) -> bool:
    """Heuristic for machine-sent mail (no-reply, daemons, notification senders)."""
    if _AUTOMATED_LOCAL_PART.match(address.local_part):
        return True
    return bool(_AUTOMATED_SUBDOMAIN.match(address.domain)) and not is_public_email_domain(
        address.domain
    )


def company_name_from_domain(domain: str) -> str:
    """'www.acme-corp.com' -> 'Acme Corp'."""
    name = re.sub(r"^www\.", "", domain.lower())
    name = _COMPANY_TLD_SUFFIX.sub("", name)
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[.-]", name) if word)


def contact_name_for(address: EmailAddress) -> str:
    """Display name, or the address prefix title-cased ('jane.doe' -> 'Jane Doe')."""
    if address.name:
        return address.name
    parts = re.split(r"[._-]", address.local_part)
    return " ".join(part[:1].upper() + part[1:] for part in parts if part) or address.email


def classify_interaction(subject: str, body: str) -> str:
    subject = subject.lower()
    body = body.lower()

    if "interview" in subject or "interview" in body:
        return "Informational Interview"

    if "meeting" in subject or "meeting" in body:
        if any(keyword in body for keyword in ("zoom", "teams", "google meet")):
            return "Video Meeting"
        return "In-Person Meeting"

    if "coffee" in subject or "coffee chat" in body:
        return "Coffee Chat"

    if "event" in subject or "conference" in subject:
        return "Event/Conference"

    return "Email"


def build_interaction_notes(subject: str, content: str) -> str:
    notes = f"Subject: {subject}\n\n"
    if content:
        if len(content) > NOTES_MAX_LENGTH:
            content = content[:NOTES_MAX_LENGTH] + "..."
        notes += content
    return notes


class EntityResolver:
    """Resolve one message into CRM rows scoped to a user."""

    def __init__(self, crm: CrmRepository):
        self.crm = crm

    def _participants(
        self, message: GmailMessage, mailbox_address: str
    ) -> tuple[list[EmailAddress], EmailDirection]:
        """External people on the message in From, To, Cc order, each address once."""
        sender = message.sender
        if sender is None:
            raise UnparseableSenderError(
                f"No valid sender address in From header: {message.from_header[:100]!r}"
            )

        owner = mailbox_address.lower()
        if sender.email == owner:
            direction: EmailDirection = "sent"
        elif is_automated_sender(sender):
            raise SkippedNoContactError(f"Automated sender {sender.email}")
        else:
            direction = "received"

        seen = {owner}
        participants = []
        for address in [sender, *message.recipients, *message.cc]:
            if address.email in seen or is_automated_sender(address):
                continue
            seen.add(address.email)
            participants.append(address)

        if not participants:
            raise SkippedNoContactError("Message has no external participant")
        return participants, direction

    async def resolve(
        self, user_id: str, message: GmailMessage, mailbox_address: str
    ) -> ResolveOutcome:
        """
        Create or link company, contact and interaction for every external participant.

        Raises:
            UnparseableSenderError: From header has no valid address
            SkippedNoContactError: Automated sender or no external participant
        """
        participants, direction = self._participants(message, mailbox_address)
        outcome = ResolveOutcome()
        for address in participants:
            outcome.participants.append(
                await self._resolve_participant(user_id, message, address, direction)
            )

        logger.debug(
            "Message resolved",
            message_id=message.id,
            direction=direction,
            participants=len(outcome.participants),
            companies_created=outcome.companies_created,
            contacts_created=outcome.contacts_created,
            interactions_created=outcome.interactions_created,
        )
        return outcome

    async def _resolve_participant(
        self,
        user_id: str,
        message: GmailMessage,
        address: EmailAddress,
        direction: EmailDirection,
    ) -> ResolvedParticipant:
        company_id = None
        company_created = False
        if not is_public_email_domain(address.domain):
            company, company_created = await self.crm.find_or_create_company(
                user_id,
                name=company_name_from_domain(address.domain),
                domain=address.domain,
            )
            company_id = company.id

        contact, contact_created = await self.crm.find_or_create_contact(
            user_id,
            email=address.email,
            name=contact_name_for(address),
            company_id=company_id,
        )

        body = message.body
        draft = InteractionDraft(
            user_id=user_id,
            contact_id=contact.id,
            interaction_type=classify_interaction(message.subject, body),
            interaction_date=message.sent_at,
            notes=build_interaction_notes(message.subject, body or message.snippet),
            gmail_message_id=message.id,
            gmail_thread_id=message.thread_id,
            email_subject=message.subject,
            email_snippet=(message.snippet or "")[:SNIPPET_MAX_LENGTH],
            email_direction=direction,
        )
        interaction, interaction_created = await self.crm.find_or_create_interaction(draft)

        if interaction_created and contact.status == REACH_OUT_STATUS:
            promoted = await self.crm.promote_contact_status(
                contact.id, REACH_OUT_STATUS, FOLLOWING_UP_STATUS
            )
            if promoted:
                logger.debug("Contact status advanced", contact_id=contact.id)

        return ResolvedParticipant(
            email=address.email,
            direction=direction,
            company_id=company_id,
            contact_id=contact.id,
            interaction_id=interaction.id,
            company_created=company_created,
            contact_created=contact_created,
            interaction_created=interaction_created,
        )
