"""
Find-or-create persistence for companies, contacts and interactions.

Each helper looks the row up by its dedup key and otherwise inserts with
ON CONFLICT DO NOTHING followed by a re-read, so concurrent creators converge
on one row. Returns (row, created).
"""

from mailsync.db.helpers import DatabaseError, execute_query, fetch_one, with_db_retry
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.crm_domain import Company, Contact, Interaction, InteractionDraft

logger = get_logger(__name__)

DEFAULT_CONTACT_STATUS = "Connected"


class CrmRepositoryError(DatabaseError):
    """Insert lost a conflict but the winning row could not be re-read."""


class CrmRepository:
    """Persistence helpers for the shared CRM tables."""

    COMPANY_COLUMNS = "id, user_id, name, domain"
    CONTACT_COLUMNS = "id, user_id, company_id, name, email, role, status"
    INTERACTION_COLUMNS = """
        id, user_id, contact_id, interaction_type, interaction_date, notes,
        gmail_message_id, gmail_thread_id, is_gmail_synced, email_subject,
        email_snippet, email_direction
    """

    @staticmethod
    def _company(row: dict) -> Company:
        return Company(
            id=row["id"], user_id=str(row["user_id"]), name=row["name"], domain=row.get("domain")
        )

    @staticmethod
    def _contact(row: dict) -> Contact:
        return Contact(
            id=row["id"],
            user_id=str(row["user_id"]),
            company_id=row.get("company_id"),
            name=row["name"],
            email=row["email"],
            role=row.get("role"),
            status=row.get("status"),
        )

    @staticmethod
    def _interaction(row: dict) -> Interaction:
        return Interaction(
            **{**row, "user_id": str(row["user_id"]), "notes": row.get("notes") or ""}
        )

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------

    async def _company_by_domain(self, user_id: str, domain: str) -> dict | None:
        query = f"""
            SELECT {self.COMPANY_COLUMNS}
            FROM companies
            WHERE user_id = %s AND lower(domain) = lower(%s)
        """
        return await fetch_one(query, (user_id, domain))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def find_or_create_company(
        self, user_id: str, name: str, domain: str
    ) -> tuple[Company, bool]:
        """
        Resolve the company for a domain.

        A manually created company with the same name and no domain is
        adopted and gets the domain back-filled.
        """
        row = await self._company_by_domain(user_id, domain)
        if row:
            return self._company(row), False

        adopt_query = f"""
            UPDATE companies
            SET domain = %s
            WHERE id = (
                SELECT id FROM companies
                WHERE user_id = %s AND lower(name) = lower(%s) AND domain IS NULL
                ORDER BY id
                LIMIT 1
            )
            AND domain IS NULL
            RETURNING {self.COMPANY_COLUMNS}
        """
        row = await fetch_one(adopt_query, (domain.lower(), user_id, name))
        if row:
            logger.debug("Company domain back-filled", company_id=row["id"], domain=domain)
            return self._company(row), False

        insert_query = f"""
            INSERT INTO companies (user_id, name, domain)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, lower(domain)) WHERE domain IS NOT NULL DO NOTHING
            RETURNING {self.COMPANY_COLUMNS}
        """
        row = await fetch_one(insert_query, (user_id, name, domain.lower()))
        if row:
            return self._company(row), True

        row = await self._company_by_domain(user_id, domain)
        if not row:
            raise CrmRepositoryError(
                f"Company for domain {domain} vanished after conflict",
                operation="find_or_create_company",
            )
        return self._company(row), False

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def _contact_by_email(self, user_id: str, email: str) -> dict | None:
        query = f"""
            SELECT {self.CONTACT_COLUMNS}
            FROM contacts
            WHERE user_id = %s AND lower(email) = lower(%s)
        """
        return await fetch_one(query, (user_id, email))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def find_or_create_contact(
        self, user_id: str, email: str, name: str, company_id: int | None
    ) -> tuple[Contact, bool]:
        row = await self._contact_by_email(user_id, email)
        if row:
            return self._contact(row), False

        insert_query = f"""
            INSERT INTO contacts (user_id, company_id, name, email, status)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id, lower(email)) WHERE email IS NOT NULL DO NOTHING
            RETURNING {self.CONTACT_COLUMNS}
        """
        row = await fetch_one(
            insert_query, (user_id, company_id, name, email.lower(), DEFAULT_CONTACT_STATUS)
        )
        if row:
            return self._contact(row), True

        row = await self._contact_by_email(user_id, email)
        if not row:
            raise CrmRepositoryError(
                "Contact vanished after conflict", operation="find_or_create_contact"
            )
        return self._contact(row), False

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def promote_contact_status(
        self, contact_id: int, from_status: str, to_status: str
    ) -> bool:
        query = """
            UPDATE contacts
            SET status = %s
            WHERE id = %s AND status = %s
        """
        return await execute_query(query, (to_status, contact_id, from_status)) > 0

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def find_or_create_interaction(self, draft: InteractionDraft) -> tuple[Interaction, bool]:
        """Insert the interaction unless (contact_id, gmail_message_id) already exists."""
        insert_query = f"""
            INSERT INTO interactions (
                user_id, contact_id, interaction_type, interaction_date, notes,
                gmail_message_id, gmail_thread_id, is_gmail_synced,
                email_subject, email_snippet, email_direction
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, true, %s, %s, %s)
            ON CONFLICT (contact_id, gmail_message_id) WHERE gmail_message_id IS NOT NULL
            DO NOTHING
            RETURNING {self.INTERACTION_COLUMNS}
        """
        row = await fetch_one(
            insert_query,
            (
                draft.user_id,
                draft.contact_id,
                draft.interaction_type,
                draft.interaction_date,
                draft.notes,
                draft.gmail_message_id,
                draft.gmail_thread_id,
                draft.email_subject,
                draft.email_snippet,
                draft.email_direction,
            ),
        )
        if row:
            return self._interaction(row), True

        select_query = f"""
            SELECT {self.INTERACTION_COLUMNS}
            FROM interactions
            WHERE contact_id = %s AND gmail_message_id = %s
        """
        row = await fetch_one(select_query, (draft.contact_id, draft.gmail_message_id))
        if not row:
            raise CrmRepositoryError(
                "Interaction vanished after conflict", operation="find_or_create_interaction"
            )
        return self._interaction(row), False
