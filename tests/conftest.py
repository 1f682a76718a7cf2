"""Shared fixtures for MartialBase tests."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from uuid import UUID

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from martialbase.api.app import _db, app, limiter
from martialbase.config import settings
from martialbase.models import Organisation, Person, School, UserAccount
from martialbase.storage.database import Database


def make_token(subject: str | None, invitation_code: str | None = None, **claims) -> str:
    """Mint an HS256 token the configured shared-secret verifier accepts."""
    payload = {"exp": int(time.time()) + 3600, **claims}
    if subject is not None:
        payload["sub"] = subject
    if invitation_code is not None:
        payload["extension_InvitationCode"] = invitation_code
    secret = os.environ.get("MB_JWT_SECRET", settings.jwt_secret)
    return jwt.encode(payload, secret, algorithm="HS256")


@dataclass
class SeededUser:
    person: Person
    account: UserAccount
    external_id: str | None

    @property
    def id(self) -> UUID:
        return self.person.id

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(self.external_id)}"}


class Seeder:
    """Creates people, accounts and memberships in a connected database."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def user(
        self,
        first_name: str,
        *roles: str,
        registered: bool = True,
        invitation_code: str | None = None,
    ) -> SeededUser:
        person = await self.db.insert_person(first_name, "Tester")
        external_id = f"ext-{first_name.lower()}" if registered else None
        account = await self.db.insert_user(
            person.id, external_id=external_id, invitation_code=invitation_code
        )
        for role in roles:
            await self.db.grant_role(account.id, role)
        return SeededUser(person=person, account=account, external_id=external_id)

    async def organisation(
        self, initials: str, *, parent: Organisation | None = None, is_public: bool = False
    ) -> Organisation:
        return await self.db.insert_organisation(
            initials,
            f"{initials} Association",
            parent_id=parent.id if parent else None,
            is_public=is_public,
        )

    async def member(
        self, organisation: Organisation, user: SeededUser, *, admin: bool = False
    ) -> None:
        await self.db.add_organisation_person(organisation.id, user.id, is_admin=admin)

    async def school(
        self, organisation: Organisation, name: str, *, head_instructor: SeededUser | None = None
    ) -> School:
        head_instructor_id = head_instructor.id if head_instructor else None
        return await self.db.insert_school(
            organisation.id, name, head_instructor_id=head_instructor_id
        )

    async def student(
        self,
        school: School,
        user: SeededUser,
        *,
        instructor: bool = False,
        secretary: bool = False,
    ) -> None:
        await self.db.add_school_student(
            school.id, user.id, is_instructor=instructor, is_secretary=secretary
        )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep ambient MB_* variables from leaking into request-time config."""
    for name in (
        "MB_ENVIRONMENT",
        "MB_AUTH_PROVIDER",
        "MB_JWT_AUDIENCE",
        "MB_SUBJECT_CLAIM",
        "MB_INVITATION_CODE_CLAIM",
        "MB_INVITATION_CODE_LENGTH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database for each test."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def seed(db):
    return Seeder(db)


@pytest_asyncio.fixture
async def client(tmp_path):
    """HTTP test client wired to a fresh database."""
    # Swap the global DB for tests
    _db.db_path = tmp_path / "api_test.db"
    await _db.connect()

    # Disable rate limiter for tests
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await _db.close()


@pytest_asyncio.fixture
async def api_seed(client):
    """Seeder bound to the database behind :func:`client`."""
    return Seeder(_db)


@pytest.fixture
def token_for():
    """Return the token minting helper."""
    return make_token
