from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from conftest import USER_ID
from mailsync.db import helpers
from mailsync.db.helpers import DatabaseError
from mailsync.models.domain.crm_domain import InteractionDraft
from mailsync.repositories import crm_repository
from mailsync.repositories.crm_repository import CrmRepository, CrmRepositoryError

SENT_AT = datetime(2025, 10, 6, 9, 30, tzinfo=UTC)

ACME = {"id": 3, "user_id": USER_ID, "name": "Acme", "domain": "acme.com"}
JANE = {
    "id": 8,
    "user_id": USER_ID,
    "company_id": 3,
    "name": "Jane Doe",
    "email": "jane@acme.com",
    "role": None,
    "status": "Connected",
}
INTERACTION = {
    "id": 21,
    "user_id": USER_ID,
    "contact_id": 8,
    "interaction_type": "Email",
    "interaction_date": SENT_AT,
    "notes": None,
    "gmail_message_id": "m1",
    "gmail_thread_id": "t1",
    "is_gmail_synced": True,
    "email_subject": "Intro",
    "email_snippet": "Hi there",
    "email_direction": "received",
}


@pytest.fixture
def fetch_one(monkeypatch):
    mock = AsyncMock()
    monkeypatch.setattr(crm_repository, "fetch_one", mock)
    return mock


def _draft():
    return InteractionDraft(
        user_id=USER_ID,
        contact_id=8,
        interaction_type="Email",
        interaction_date=SENT_AT,
        notes="Intro",
        gmail_message_id="m1",
        gmail_thread_id="t1",
        email_subject="Intro",
        email_snippet="Hi there",
    )


def _queries(mock):
    return [" ".join(call.args[0].split()) for call in mock.await_args_list]


@pytest.mark.asyncio
async def test_existing_company_returned_by_domain(fetch_one):
    fetch_one.side_effect = [ACME]

    company, created = await CrmRepository().find_or_create_company(USER_ID, "Acme", "Acme.com")

    assert (company.id, created) == (3, False)
    assert fetch_one.await_count == 1


@pytest.mark.asyncio
async def test_company_inserted_when_missing(fetch_one):
    fetch_one.side_effect = [None, None, ACME]

    company, created = await CrmRepository().find_or_create_company(USER_ID, "Acme", "Acme.com")

    assert created is True
    assert company.domain == "acme.com"
    insert = fetch_one.await_args_list[2].args
    assert "ON CONFLICT (user_id, lower(domain))" in insert[0]
    assert insert[1] == (USER_ID, "Acme", "acme.com")


@pytest.mark.asyncio
async def test_manual_company_adopted_and_domain_backfilled(fetch_one):
    fetch_one.side_effect = [None, {**ACME, "id": 5}]

    company, created = await CrmRepository().find_or_create_company(USER_ID, "Acme", "Acme.com")

    assert (company.id, created) == (5, False)
    adopt = fetch_one.await_args_list[1].args
    assert "domain IS NULL" in adopt[0]
    assert adopt[1] == ("acme.com", USER_ID, "Acme")


@pytest.mark.asyncio
async def test_company_conflict_rereads_winning_row(fetch_one):
    # lookup, adopt and insert all miss; a concurrent insert won the conflict
    fetch_one.side_effect = [None, None, None, ACME]

    company, created = await CrmRepository().find_or_create_company(USER_ID, "Acme", "acme.com")

    assert (company.id, created) == (3, False)
    queries = _queries(fetch_one)
    assert queries[0] == queries[3]
    assert queries[0].startswith("SELECT")


@pytest.mark.asyncio
async def test_company_missing_after_conflict_exhausts_retries(fetch_one, monkeypatch):
    fetch_one.return_value = None
    sleep = AsyncMock()
    monkeypatch.setattr(helpers.asyncio, "sleep", sleep)

    with pytest.raises(DatabaseError) as exc_info:
        await CrmRepository().find_or_create_company(USER_ID, "Acme", "acme.com")

    assert exc_info.value.recoverable is False
    assert isinstance(exc_info.value.__cause__, CrmRepositoryError)
    assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2, 0.4]
    assert fetch_one.await_count == 16


@pytest.mark.asyncio
async def test_contact_inserted_with_default_status(fetch_one):
    fetch_one.side_effect = [None, JANE]

    contact, created = await CrmRepository().find_or_create_contact(
        USER_ID, "Jane@Acme.com", "Jane Doe", 3
    )

    assert (contact.id, created) == (8, True)
    params = fetch_one.await_args_list[1].args[1]
    assert params == (USER_ID, 3, "Jane Doe", "jane@acme.com", "Connected")


@pytest.mark.asyncio
async def test_contact_conflict_rereads_winning_row(fetch_one):
    fetch_one.side_effect = [None, None, JANE]

    contact, created = await CrmRepository().find_or_create_contact(
        USER_ID, "jane@acme.com", "Jane Doe", 3
    )

    assert (contact.id, created) == (8, False)
    assert fetch_one.await_args_list[2].args[1] == (USER_ID, "jane@acme.com")


@pytest.mark.asyncio
async def test_interaction_inserted(fetch_one):
    fetch_one.side_effect = [INTERACTION]

    interaction, created = await CrmRepository().find_or_create_interaction(_draft())

    assert created is True
    assert interaction.notes == ""
    assert interaction.is_gmail_synced is True
    assert "ON CONFLICT (contact_id, gmail_message_id)" in fetch_one.await_args.args[0]


@pytest.mark.asyncio
async def test_interaction_conflict_returns_existing_row(fetch_one):
    fetch_one.side_effect = [None, INTERACTION]

    interaction, created = await CrmRepository().find_or_create_interaction(_draft())

    assert (interaction.id, created) == (21, False)
    assert fetch_one.await_args_list[1].args[1] == (8, "m1")


@pytest.mark.asyncio
async def test_promote_only_when_status_matches(monkeypatch):
    execute_query = AsyncMock(side_effect=[1, 0])
    monkeypatch.setattr(crm_repository, "execute_query", execute_query)
    repository = CrmRepository()

    assert await repository.promote_contact_status(8, "Reach Out", "Following Up") is True
    assert await repository.promote_contact_status(8, "Reach Out", "Following Up") is False
    assert execute_query.await_args.args[1] == ("Following Up", 8, "Reach Out")
