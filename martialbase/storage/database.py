"""Async SQLite storage layer for MartialBase.

Uses aiosqlite for async access. One :class:`Database` implements every
store protocol in :mod:`martialbase.stores`, plus the seeding helpers the
API and tests use to create people, accounts and memberships.
"""

from __future__ import annotations

import logging
import os
import secrets
import string
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID, uuid4

import aiosqlite

from martialbase.exceptions import EntityNotFoundError, OrphanEntityError, StorageError
from martialbase.models import (
    Organisation,
    OrganisationMembership,
    OrganisationPerson,
    Person,
    School,
    SchoolMembership,
    SchoolStudent,
    UserAccount,
)
from martialbase.roles import ROLE_CATALOG, UserRole

logger = logging.getLogger("martialbase.storage")

DEFAULT_DB_PATH = Path(os.environ.get("MB_DB_PATH", "martialbase.db"))

_INVITATION_ALPHABET = string.ascii_uppercase + string.digits

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS people (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    person_id TEXT NOT NULL UNIQUE REFERENCES people (id),
    external_id TEXT UNIQUE,
    invitation_code TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS user_role_grants (
    user_id TEXT NOT NULL REFERENCES users (id),
    role_id TEXT NOT NULL REFERENCES user_roles (id),
    PRIMARY KEY (user_id, role_id)
);

CREATE TABLE IF NOT EXISTS organisations (
    id TEXT PRIMARY KEY,
    initials TEXT NOT NULL,
    name TEXT NOT NULL,
    parent_id TEXT REFERENCES organisations (id),
    is_public INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS organisation_people (
    organisation_id TEXT NOT NULL REFERENCES organisations (id),
    person_id TEXT NOT NULL REFERENCES people (id),
    is_admin INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (organisation_id, person_id)
);

CREATE TABLE IF NOT EXISTS schools (
    id TEXT PRIMARY KEY,
    organisation_id TEXT NOT NULL REFERENCES organisations (id),
    name TEXT NOT NULL,
    head_instructor_id TEXT REFERENCES people (id)
);

CREATE TABLE IF NOT EXISTS school_students (
    school_id TEXT NOT NULL REFERENCES schools (id),
    person_id TEXT NOT NULL REFERENCES people (id),
    is_instructor INTEGER NOT NULL DEFAULT 0,
    is_secretary INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (school_id, person_id)
);

CREATE INDEX IF NOT EXISTS idx_users_external_id
    ON users (external_id);

CREATE INDEX IF NOT EXISTS idx_organisation_people_person
    ON organisation_people (person_id);

CREATE INDEX IF NOT EXISTS idx_school_students_person
    ON school_students (person_id);

CREATE INDEX IF NOT EXISTS idx_organisations_parent
    ON organisations (parent_id);
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid_or_none(value: str | None) -> UUID | None:
    return UUID(value) if value is not None else None


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA_SQL)
        await self._seed_role_catalog()
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Database not connected. Call connect() first.")
        return self._db

    async def _seed_role_catalog(self) -> None:
        for role in ROLE_CATALOG:
            await self.db.execute(
                "INSERT OR IGNORE INTO user_roles (id, name) VALUES (?, ?)",
                (str(uuid4()), role.value),
            )

    async def _exists(self, sql: str, params: tuple) -> bool:
        cursor = await self.db.execute(f"SELECT EXISTS ({sql})", params)
        row = await cursor.fetchone()
        return bool(row[0])

    # --- People ---

    async def insert_person(
        self,
        first_name: str,
        last_name: str,
        email: str | None = None,
        person_id: UUID | None = None,
    ) -> Person:
        person = Person(
            id=person_id or uuid4(), first_name=first_name, last_name=last_name, email=email
        )
        await self.db.execute(
            "INSERT INTO people (id, first_name, last_name, email, created_at) VALUES (?, ?, ?, ?, ?)",
            (str(person.id), person.first_name, person.last_name, person.email, _utcnow()),
        )
        await self.db.commit()
        return person

    async def person_exists(self, person_id: UUID) -> bool:
        return await self._exists("SELECT 1 FROM people WHERE id = ?", (str(person_id),))

    async def get_person(self, person_id: UUID) -> Person | None:
        cursor = await self.db.execute("SELECT * FROM people WHERE id = ?", (str(person_id),))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_person(row)

    def _row_to_person(self, row: aiosqlite.Row) -> Person:
        return Person(
            id=UUID(row["id"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
        )

    # --- Users and roles ---

    async def insert_user(
        self,
        person_id: UUID,
        external_id: str | None = None,
        invitation_code: str | None = None,
    ) -> UserAccount:
        user = UserAccount(
            id=uuid4(),
            person_id=person_id,
            external_id=external_id,
            invitation_code=invitation_code,
        )
        await self.db.execute(
            """INSERT INTO users (id, person_id, external_id, invitation_code, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (str(user.id), str(person_id), external_id, invitation_code, _utcnow()),
        )
        await self.db.commit()
        return user

    async def user_exists(self, user_id: UUID) -> bool:
        return await self._exists("SELECT 1 FROM users WHERE id = ?", (str(user_id),))

    async def get_user_account(self, user_id: UUID) -> UserAccount | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE id = ?", (str(user_id),))
        row = await cursor.fetchone()
        if row is None:
            return None
        return UserAccount(
            id=UUID(row["id"]),
            person_id=UUID(row["person_id"]),
            external_id=row["external_id"],
            invitation_code=row["invitation_code"],
        )

    async def find_person_id_by_external_id(self, external_id: str) -> UUID | None:
        cursor = await self.db.execute(
            "SELECT person_id FROM users WHERE external_id = ?", (external_id,)
        )
        row = await cursor.fetchone()
        return UUID(row["person_id"]) if row else None

    async def claim_invitation_code(self, invitation_code: str, external_id: str) -> UUID | None:
        """Bind *external_id* to the account holding *invitation_code*.

        The code is consumed, and the account receives the roles implied by
        the person's existing school enrolments, head-instructor posts and
        organisation memberships.
        """
        cursor = await self.db.execute(
            "SELECT id, person_id FROM users WHERE invitation_code IS NOT NULL AND invitation_code = ?",
            (invitation_code,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        user_id, person_id = row["id"], row["person_id"]
        await self.db.execute(
            "UPDATE users SET external_id = ?, invitation_code = NULL WHERE id = ?",
            (external_id, user_id),
        )
        await self._grant_derived_roles(user_id, person_id)
        await self.db.commit()
        logger.info("Invitation code claimed for user %s", user_id)
        return UUID(person_id)

    async def _grant_derived_roles(self, user_id: str, person_id: str) -> None:
        cursor = await self.db.execute(
            """SELECT COUNT(*) AS enrolments,
                      COALESCE(MAX(is_instructor), 0) AS instructor,
                      COALESCE(MAX(is_secretary), 0) AS secretary
               FROM school_students WHERE person_id = ?""",
            (person_id,),
        )
        school_row = await cursor.fetchone()
        cursor = await self.db.execute(
            """SELECT COUNT(*) AS memberships, COALESCE(MAX(is_admin), 0) AS admin
               FROM organisation_people WHERE person_id = ?""",
            (person_id,),
        )
        organisation_row = await cursor.fetchone()
        heads_school = await self._exists(
            "SELECT 1 FROM schools WHERE head_instructor_id = ?", (person_id,)
        )

        derived: list[str] = []
        if school_row["enrolments"]:
            derived.append(UserRole.SCHOOL_MEMBER)
        if school_row["instructor"]:
            derived.append(UserRole.SCHOOL_INSTRUCTOR)
        if school_row["secretary"]:
            derived.append(UserRole.SCHOOL_SECRETARY)
        if heads_school:
            derived.append(UserRole.SCHOOL_HEAD_INSTRUCTOR)
        if organisation_row["memberships"]:
            derived.append(UserRole.ORGANISATION_MEMBER)
        if organisation_row["admin"]:
            derived.append(UserRole.ORGANISATION_ADMIN)
        for role in derived:
            await self._insert_grant(user_id, role)

    async def _insert_grant(self, user_id: str, role_name: str) -> None:
        await self.db.execute(
            """INSERT OR IGNORE INTO user_role_grants (user_id, role_id)
               SELECT ?, id FROM user_roles WHERE name = ?""",
            (user_id, role_name),
        )

    async def role_exists(self, role_name: str) -> bool:
        return await self._exists("SELECT 1 FROM user_roles WHERE name = ?", (role_name,))

    async def grant_role(self, user_id: UUID, role_name: str) -> None:
        await self._insert_grant(str(user_id), role_name)
        await self.db.commit()

    async def revoke_role(self, user_id: UUID, role_name: str) -> None:
        await self.db.execute(
            """DELETE FROM user_role_grants
               WHERE user_id = ? AND role_id IN (SELECT id FROM user_roles WHERE name = ?)""",
            (str(user_id), role_name),
        )
        await self.db.commit()

    async def set_roles(self, user_id: UUID, role_names: list[str]) -> None:
        """Replace every role grant of *user_id* with *role_names*."""
        await self.db.execute("DELETE FROM user_role_grants WHERE user_id = ?", (str(user_id),))
        for role_name in role_names:
            await self._insert_grant(str(user_id), role_name)
        await self.db.commit()

    async def get_user_account_id_for_person(self, person_id: UUID) -> UUID | None:
        cursor = await self.db.execute(
            "SELECT id FROM users WHERE person_id = ?", (str(person_id),)
        )
        row = await cursor.fetchone()
        return UUID(row["id"]) if row else None

    async def get_roles_for_person(self, person_id: UUID) -> list[str]:
        cursor = await self.db.execute(
            """SELECT r.name FROM user_role_grants g
               JOIN users u ON u.id = g.user_id
               JOIN user_roles r ON r.id = g.role_id
               WHERE u.person_id = ?
               ORDER BY r.name""",
            (str(person_id),),
        )
        rows = await cursor.fetchall()
        return [r["name"] for r in rows]

    async def get_roles_for_user(self, user_id: UUID) -> list[str]:
        cursor = await self.db.execute(
            """SELECT r.name FROM user_role_grants g
               JOIN user_roles r ON r.id = g.role_id
               WHERE g.user_id = ?
               ORDER BY r.name""",
            (str(user_id),),
        )
        rows = await cursor.fetchall()
        return [r["name"] for r in rows]

    async def generate_invitation_code(self, user_id: UUID, length: int = 7) -> str:
        """Assign a fresh, unique invitation code to the account and return it."""
        while True:
            code = "".join(secrets.choice(_INVITATION_ALPHABET) for _ in range(length))
            if not await self._exists(
                "SELECT 1 FROM users WHERE invitation_code = ?", (code,)
            ):
                break
        await self.db.execute(
            "UPDATE users SET invitation_code = ? WHERE id = ?", (code, str(user_id))
        )
        await self.db.commit()
        return code

    async def disassociate_external_user(self, user_id: UUID) -> None:
        """Clear the external id and any pending invitation code of an account."""
        await self.db.execute(
            "UPDATE users SET external_id = NULL, invitation_code = NULL WHERE id = ?",
            (str(user_id),),
        )
        await self.db.commit()
        logger.info("External identity disassociated from user %s", user_id)

    # --- Organisations ---

    async def insert_organisation(
        self,
        initials: str,
        name: str,
        parent_id: UUID | None = None,
        is_public: bool = False,
    ) -> Organisation:
        organisation = Organisation(
            id=uuid4(), initials=initials, name=name, parent_id=parent_id, is_public=is_public
        )
        await self.db.execute(
            "INSERT INTO organisations (id, initials, name, parent_id, is_public) VALUES (?, ?, ?, ?, ?)",
            (
                str(organisation.id),
                initials,
                name,
                str(parent_id) if parent_id else None,
                int(is_public),
            ),
        )
        await self.db.commit()
        return organisation

    async def organisation_exists(self, organisation_id: UUID) -> bool:
        return await self._exists(
            "SELECT 1 FROM organisations WHERE id = ?", (str(organisation_id),)
        )

    async def get_organisation(self, organisation_id: UUID) -> Organisation | None:
        cursor = await self.db.execute(
            "SELECT * FROM organisations WHERE id = ?", (str(organisation_id),)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_organisation(row)

    async def list_organisations(self, parent_id: UUID | None = None) -> list[Organisation]:
        if parent_id is None:
            cursor = await self.db.execute("SELECT * FROM organisations ORDER BY initials")
        else:
            cursor = await self.db.execute(
                "SELECT * FROM organisations WHERE parent_id = ? ORDER BY initials",
                (str(parent_id),),
            )
        rows = await cursor.fetchall()
        return [self._row_to_organisation(r) for r in rows]

    def _row_to_organisation(self, row: aiosqlite.Row) -> Organisation:
        return Organisation(
            id=UUID(row["id"]),
            initials=row["initials"],
            name=row["name"],
            parent_id=_uuid_or_none(row["parent_id"]),
            is_public=bool(row["is_public"]),
        )

    async def organisation_has_member(self, organisation_id: UUID, person_id: UUID) -> bool:
        """True for explicit members, and for everyone when the organisation is public."""
        return await self._exists(
            """SELECT 1 FROM organisations o
               WHERE o.id = ? AND (
                   o.is_public = 1 OR EXISTS (
                       SELECT 1 FROM organisation_people op
                       WHERE op.organisation_id = o.id AND op.person_id = ?))""",
            (str(organisation_id), str(person_id)),
        )

    async def organisation_is_admin(self, organisation_id: UUID, person_id: UUID) -> bool:
        return await self._exists(
            """SELECT 1 FROM organisation_people
               WHERE organisation_id = ? AND person_id = ? AND is_admin = 1""",
            (str(organisation_id), str(person_id)),
        )

    async def get_organisation_parent_id(self, organisation_id: UUID) -> UUID | None:
        cursor = await self.db.execute(
            "SELECT parent_id FROM organisations WHERE id = ?", (str(organisation_id),)
        )
        row = await cursor.fetchone()
        return _uuid_or_none(row["parent_id"]) if row else None

    async def change_organisation_parent(
        self, organisation_id: UUID, parent_id: UUID | None
    ) -> None:
        await self.db.execute(
            "UPDATE organisations SET parent_id = ? WHERE id = ?",
            (str(parent_id) if parent_id else None, str(organisation_id)),
        )
        await self.db.commit()

    async def add_organisation_person(
        self, organisation_id: UUID, person_id: UUID, is_admin: bool = False
    ) -> None:
        await self.db.execute(
            """INSERT INTO organisation_people (organisation_id, person_id, is_admin)
               VALUES (?, ?, ?)
               ON CONFLICT (organisation_id, person_id) DO UPDATE SET is_admin = excluded.is_admin""",
            (str(organisation_id), str(person_id), int(is_admin)),
        )
        await self.db.commit()

    async def remove_organisation_person(self, organisation_id: UUID, person_id: UUID) -> None:
        """Remove a membership, refusing to leave the person in no organisation."""
        if not await self._exists(
            "SELECT 1 FROM organisation_people WHERE organisation_id = ? AND person_id = ?",
            (str(organisation_id), str(person_id)),
        ):
            raise EntityNotFoundError("Organisation person", person_id)

        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM organisation_people WHERE person_id = ?", (str(person_id),)
        )
        row = await cursor.fetchone()
        if row[0] == 1:
            raise OrphanEntityError(
                f"Person '{person_id}' would no longer belong to any organisation."
            )

        await self.db.execute(
            "DELETE FROM organisation_people WHERE organisation_id = ? AND person_id = ?",
            (str(organisation_id), str(person_id)),
        )
        await self.db.commit()

    async def list_organisation_people(self, organisation_id: UUID) -> list[OrganisationPerson]:
        cursor = await self.db.execute(
            """SELECT p.*, op.is_admin FROM organisation_people op
               JOIN people p ON p.id = op.person_id
               WHERE op.organisation_id = ?
               ORDER BY p.last_name, p.first_name""",
            (str(organisation_id),),
        )
        rows = await cursor.fetchall()
        return [
            OrganisationPerson(person=self._row_to_person(r), is_admin=bool(r["is_admin"]))
            for r in rows
        ]

    async def list_organisations_for_person(self, person_id: UUID) -> list[OrganisationMembership]:
        cursor = await self.db.execute(
            """SELECT o.*, op.is_admin FROM organisation_people op
               JOIN organisations o ON o.id = op.organisation_id
               WHERE op.person_id = ?
               ORDER BY o.initials""",
            (str(person_id),),
        )
        rows = await cursor.fetchall()
        return [
            OrganisationMembership(
                organisation=self._row_to_organisation(r), is_admin=bool(r["is_admin"])
            )
            for r in rows
        ]

    # --- Schools ---

    async def insert_school(
        self, organisation_id: UUID, name: str, head_instructor_id: UUID | None = None
    ) -> School:
        school = School(
            id=uuid4(),
            organisation_id=organisation_id,
            name=name,
            head_instructor_id=head_instructor_id,
        )
        await self.db.execute(
            "INSERT INTO schools (id, organisation_id, name, head_instructor_id) VALUES (?, ?, ?, ?)",
            (
                str(school.id),
                str(organisation_id),
                name,
                str(head_instructor_id) if head_instructor_id else None,
            ),
        )
        await self.db.commit()
        return school

    async def school_exists(self, school_id: UUID) -> bool:
        return await self._exists("SELECT 1 FROM schools WHERE id = ?", (str(school_id),))

    async def get_school(self, school_id: UUID) -> School | None:
        cursor = await self.db.execute("SELECT * FROM schools WHERE id = ?", (str(school_id),))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_school(row)

    def _row_to_school(self, row: aiosqlite.Row) -> School:
        return School(
            id=UUID(row["id"]),
            organisation_id=UUID(row["organisation_id"]),
            name=row["name"],
            head_instructor_id=_uuid_or_none(row["head_instructor_id"]),
        )

    async def add_school_student(
        self,
        school_id: UUID,
        person_id: UUID,
        is_instructor: bool = False,
        is_secretary: bool = False,
    ) -> None:
        await self.db.execute(
            """INSERT INTO school_students (school_id, person_id, is_instructor, is_secretary)
               VALUES (?, ?, ?, ?)
               ON CONFLICT (school_id, person_id) DO UPDATE SET
                   is_instructor = excluded.is_instructor,
                   is_secretary = excluded.is_secretary""",
            (str(school_id), str(person_id), int(is_instructor), int(is_secretary)),
        )
        await self.db.commit()

    async def school_has_student(self, school_id: UUID, person_id: UUID) -> bool:
        return await self._exists(
            "SELECT 1 FROM school_students WHERE school_id = ? AND person_id = ?",
            (str(school_id), str(person_id)),
        )

    async def school_has_secretary(self, school_id: UUID, person_id: UUID) -> bool:
        return await self._exists(
            """SELECT 1 FROM school_students
               WHERE school_id = ? AND person_id = ? AND is_secretary = 1""",
            (str(school_id), str(person_id)),
        )

    async def list_school_students(self, school_id: UUID) -> list[SchoolStudent]:
        cursor = await self.db.execute(
            """SELECT p.*, ss.is_instructor, ss.is_secretary FROM school_students ss
               JOIN people p ON p.id = ss.person_id
               WHERE ss.school_id = ?
               ORDER BY p.last_name, p.first_name""",
            (str(school_id),),
        )
        rows = await cursor.fetchall()
        return [
            SchoolStudent(
                student=self._row_to_person(r),
                is_instructor=bool(r["is_instructor"]),
                is_secretary=bool(r["is_secretary"]),
            )
            for r in rows
        ]

    async def list_schools_for_person(self, person_id: UUID) -> list[SchoolMembership]:
        cursor = await self.db.execute(
            """SELECT s.*, ss.is_instructor, ss.is_secretary FROM school_students ss
               JOIN schools s ON s.id = ss.school_id
               WHERE ss.person_id = ?
               ORDER BY s.name""",
            (str(person_id),),
        )
        rows = await cursor.fetchall()
        return [
            SchoolMembership(
                school=self._row_to_school(r),
                is_instructor=bool(r["is_instructor"]),
                is_secretary=bool(r["is_secretary"]),
            )
            for r in rows
        ]
