"""Tests for access validation of schools, organisations and people."""

from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio

from martialbase.access import AccessDecision, AccessOutcome, AccessValidator
from martialbase.caching import ScopedCache
from martialbase.exceptions import (
    EntityNotFoundError,
    ErrorCode,
    InsufficientRoleError,
    NoRelationshipError,
    StorageError,
)
from martialbase.identity import UserResolver
from martialbase.models import Organisation
from martialbase.roles import UserRole


def _validator(db) -> AccessValidator:
    resolver = UserResolver(db, ScopedCache())
    return AccessValidator(resolver, organisations=db, schools=db, people=db)


@pytest_asyncio.fixture
async def world(seed):
    """Two organisations, a public one, a school, and people with various roles."""
    w = {}
    w["org_a"] = await seed.organisation("AAA")
    w["org_b"] = await seed.organisation("BBB")
    w["org_public"] = await seed.organisation("PUB", is_public=True)
    w["school"] = await seed.school(w["org_a"], "North Dojo")

    w["alice"] = await seed.user(
        "Alice", UserRole.ORGANISATION_ADMIN, UserRole.ORGANISATION_MEMBER
    )
    w["bob"] = await seed.user("Bob", UserRole.ORGANISATION_MEMBER, UserRole.SCHOOL_MEMBER)
    w["sam"] = await seed.user("Sam", UserRole.SCHOOL_SECRETARY, UserRole.ORGANISATION_MEMBER)
    w["carol"] = await seed.user("Carol", UserRole.ORGANISATION_ADMIN, UserRole.SCHOOL_SECRETARY)
    w["dave"] = await seed.user("Dave")
    w["root"] = await seed.user("Root", UserRole.SUPER_USER)

    await seed.member(w["org_a"], w["alice"], admin=True)
    await seed.member(w["org_a"], w["bob"])
    await seed.member(w["org_a"], w["sam"])
    await seed.member(w["org_b"], w["carol"], admin=True)
    await seed.student(w["school"], w["bob"])
    await seed.student(w["school"], w["sam"], secretary=True)
    return w


# ---------------------------------------------------------------------------
# Schools
# ---------------------------------------------------------------------------


class TestSchoolAccess:
    async def test_student_with_member_role_is_allowed(self, db, world):
        decision = await _validator(db).member_access_to_school(world["bob"].id, world["school"].id)
        assert decision.allowed

    async def test_role_without_enrolment_is_not_student(self, db, world):
        decision = await _validator(db).member_access_to_school(
            world["carol"].id, world["school"].id
        )
        assert decision.outcome is AccessOutcome.DENIED_NO_RELATIONSHIP
        assert decision.code is ErrorCode.NOT_SCHOOL_STUDENT

    async def test_no_school_role_is_insufficient(self, db, world):
        decision = await _validator(db).member_access_to_school(
            world["alice"].id, world["school"].id
        )
        assert decision.outcome is AccessOutcome.DENIED_INSUFFICIENT_ROLE
        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE

    async def test_missing_school(self, db, world):
        missing = uuid4()
        decision = await _validator(db).member_access_to_school(world["bob"].id, missing)
        assert decision.outcome is AccessOutcome.ENTITY_NOT_FOUND
        assert decision.entity_id == missing

    async def test_secretary_has_admin_access(self, db, world):
        decision = await _validator(db).admin_access_to_school(world["sam"].id, world["school"].id)
        assert decision.allowed

    async def test_secretary_of_another_school_is_denied(self, db, world):
        decision = await _validator(db).admin_access_to_school(
            world["carol"].id, world["school"].id
        )
        assert decision.code is ErrorCode.NOT_SCHOOL_SECRETARY

    async def test_student_has_no_admin_role(self, db, world):
        decision = await _validator(db).admin_access_to_school(world["bob"].id, world["school"].id)
        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE

    async def test_super_user_needs_no_enrolment(self, db, world):
        validator = _validator(db)
        root, school = world["root"], world["school"]
        assert (await validator.member_access_to_school(root.id, school.id)).allowed
        assert (await validator.admin_access_to_school(root.id, school.id)).allowed


# ---------------------------------------------------------------------------
# Organisations
# ---------------------------------------------------------------------------


class TestOrganisationAccess:
    async def test_member_is_allowed(self, db, world):
        decision = await _validator(db).member_access_to_organisation(
            world["bob"].id, world["org_a"].id
        )
        assert decision.allowed

    async def test_non_member_is_denied(self, db, world):
        decision = await _validator(db).member_access_to_organisation(
            world["bob"].id, world["org_b"].id
        )
        assert decision.code is ErrorCode.NO_ORGANISATION_ACCESS

    async def test_public_organisation_admits_everyone_with_a_role(self, db, world):
        decision = await _validator(db).member_access_to_organisation(
            world["bob"].id, world["org_public"].id
        )
        assert decision.allowed

    async def test_public_organisation_still_requires_a_role(self, db, world):
        decision = await _validator(db).member_access_to_organisation(
            world["dave"].id, world["org_public"].id
        )
        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE

    async def test_admin_is_allowed(self, db, world):
        decision = await _validator(db).admin_access_to_organisation(
            world["alice"].id, world["org_a"].id
        )
        assert decision.allowed

    async def test_admin_of_another_organisation_is_denied(self, db, world):
        decision = await _validator(db).admin_access_to_organisation(
            world["carol"].id, world["org_a"].id
        )
        assert decision.code is ErrorCode.NOT_ORGANISATION_ADMIN

    async def test_member_role_is_not_admin_role(self, db, world):
        decision = await _validator(db).admin_access_to_organisation(
            world["bob"].id, world["org_a"].id
        )
        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE

    async def test_admin_implies_member(self, db, seed, world):
        admin_only = await seed.user("Olga", UserRole.ORGANISATION_ADMIN)
        await seed.member(world["org_b"], admin_only, admin=True)
        validator = _validator(db)
        org_b = world["org_b"]

        assert (await validator.admin_access_to_organisation(admin_only.id, org_b.id)).allowed
        assert (await validator.member_access_to_organisation(admin_only.id, org_b.id)).allowed

    async def test_missing_organisation(self, db, world):
        decision = await _validator(db).admin_access_to_organisation(world["root"].id, uuid4())
        assert decision.outcome is AccessOutcome.ENTITY_NOT_FOUND


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


class TestPersonAccess:
    async def test_self_access_needs_no_role(self, db, world):
        decision = await _validator(db).access_to_person(world["dave"].id, world["dave"].id)
        assert decision.allowed

    async def test_secretary_of_targets_school(self, db, world):
        decision = await _validator(db).access_to_person(world["sam"].id, world["bob"].id)
        assert decision.allowed

    async def test_admin_of_targets_organisation(self, db, world):
        decision = await _validator(db).access_to_person(world["alice"].id, world["bob"].id)
        assert decision.allowed

    async def test_unrelated_admin_is_denied(self, db, world):
        decision = await _validator(db).access_to_person(world["carol"].id, world["bob"].id)
        assert decision.code is ErrorCode.NO_ACCESS_TO_PERSON

    async def test_plain_member_cannot_see_others(self, db, world):
        decision = await _validator(db).access_to_person(world["bob"].id, world["sam"].id)
        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE

    async def test_no_roles_cannot_see_others(self, db, world):
        decision = await _validator(db).access_to_person(world["dave"].id, world["bob"].id)
        assert decision.outcome is AccessOutcome.DENIED_INSUFFICIENT_ROLE

    async def test_no_roles_and_missing_target_is_not_found(self, db, world):
        validator = _validator(db)
        for check in (
            validator.access_to_person,
            validator.member_access_to_organisation,
            validator.admin_access_to_school,
        ):
            decision = await check(world["dave"].id, uuid4())
            assert decision.outcome is AccessOutcome.ENTITY_NOT_FOUND

    async def test_super_user(self, db, world):
        decision = await _validator(db).access_to_person(world["root"].id, world["carol"].id)
        assert decision.allowed

    async def test_missing_person(self, db, world):
        decision = await _validator(db).access_to_person(world["root"].id, uuid4())
        assert decision.outcome is AccessOutcome.ENTITY_NOT_FOUND
        assert decision.entity_kind == "Person"


# ---------------------------------------------------------------------------
# Evaluation order and caching
# ---------------------------------------------------------------------------


class TestEvaluationOrder:
    async def test_existence_is_checked_before_roles(self):
        resolver = AsyncMock()
        organisations = AsyncMock()
        organisations.organisation_exists.return_value = False
        validator = AccessValidator(resolver, organisations, AsyncMock(), AsyncMock())

        decision = await validator.admin_access_to_organisation(uuid4(), uuid4())

        assert decision.outcome is AccessOutcome.ENTITY_NOT_FOUND
        resolver.resolve_roles.assert_not_awaited()
        organisations.organisation_is_admin.assert_not_awaited()

    async def test_missing_role_skips_relationship_lookup(self):
        resolver = AsyncMock()
        resolver.resolve_roles.return_value = ("User",)
        schools = AsyncMock()
        schools.school_exists.return_value = True
        validator = AccessValidator(resolver, AsyncMock(), schools, AsyncMock())

        decision = await validator.member_access_to_school(uuid4(), uuid4())

        assert decision.code is ErrorCode.INSUFFICIENT_USER_ROLE
        schools.school_has_student.assert_not_awaited()

    async def test_roles_fetched_once_across_validations(self):
        store = AsyncMock()
        store.get_roles_for_person.return_value = ["OrganisationMember"]
        organisations = AsyncMock()
        organisations.organisation_exists.return_value = True
        organisations.organisation_has_member.return_value = True
        validator = AccessValidator(
            UserResolver(store, ScopedCache()), organisations, AsyncMock(), AsyncMock()
        )
        person_id = uuid4()

        for _ in range(3):
            assert (await validator.member_access_to_organisation(person_id, uuid4())).allowed

        store.get_roles_for_person.assert_awaited_once_with(person_id)

    async def test_store_failure_propagates(self):
        resolver = AsyncMock()
        schools = AsyncMock()
        schools.school_exists.side_effect = StorageError("database unavailable")
        validator = AccessValidator(resolver, AsyncMock(), schools, AsyncMock())

        with pytest.raises(StorageError):
            await validator.member_access_to_school(uuid4(), uuid4())


# ---------------------------------------------------------------------------
# List filtering
# ---------------------------------------------------------------------------


class TestFilterByMemberAccess:
    async def test_keeps_accessible_in_input_order(self, db, world):
        organisations = [world["org_public"], world["org_b"], world["org_a"]]
        visible = await _validator(db).filter_by_member_access(organisations, world["bob"].id)
        assert [o.initials for o in visible] == ["PUB", "AAA"]
        assert visible[1] is world["org_a"]

    async def test_super_user_gets_everything(self, db, world):
        organisations = [world["org_b"], world["org_a"]]
        visible = await _validator(db).filter_by_member_access(organisations, world["root"].id)
        assert visible == organisations

    async def test_no_role_filters_everything(self, db, world):
        organisations = [world["org_a"], world["org_public"]]
        assert await _validator(db).filter_by_member_access(organisations, world["dave"].id) == []

    async def test_empty_input(self, db, world):
        assert await _validator(db).filter_by_member_access([], world["bob"].id) == []

    async def test_missing_organisation_raises(self, db, world):
        ghost = Organisation(id=uuid4(), initials="GHO", name="Ghost")
        with pytest.raises(EntityNotFoundError):
            await _validator(db).filter_by_member_access(
                [world["org_a"], ghost], world["bob"].id
            )

    async def test_store_failure_propagates(self):
        resolver = AsyncMock()
        resolver.resolve_roles.return_value = ("OrganisationMember",)
        organisations = AsyncMock()
        organisations.organisation_exists.return_value = True
        organisations.organisation_has_member.side_effect = StorageError("gone")
        validator = AccessValidator(resolver, organisations, AsyncMock(), AsyncMock())
        items = [Organisation(id=uuid4(), initials="AAA", name="A")]

        with pytest.raises(StorageError):
            await validator.filter_by_member_access(items, uuid4())


# ---------------------------------------------------------------------------
# AccessDecision
# ---------------------------------------------------------------------------


class TestRaiseForDenial:
    def test_allowed_does_nothing(self):
        AccessDecision(AccessOutcome.ALLOWED).raise_for_denial()

    def test_not_found(self):
        entity_id = uuid4()
        decision = AccessDecision(
            AccessOutcome.ENTITY_NOT_FOUND, entity_kind="School", entity_id=entity_id
        )
        with pytest.raises(EntityNotFoundError, match=f"School ID '{entity_id}' not found."):
            decision.raise_for_denial()

    def test_insufficient_role(self):
        decision = AccessDecision(
            AccessOutcome.DENIED_INSUFFICIENT_ROLE, code=ErrorCode.INSUFFICIENT_USER_ROLE
        )
        with pytest.raises(InsufficientRoleError):
            decision.raise_for_denial()

    def test_no_relationship_carries_code(self):
        decision = AccessDecision(
            AccessOutcome.DENIED_NO_RELATIONSHIP, code=ErrorCode.NOT_ORGANISATION_ADMIN
        )
        with pytest.raises(NoRelationshipError) as exc_info:
            decision.raise_for_denial()
        assert exc_info.value.code is ErrorCode.NOT_ORGANISATION_ADMIN
        assert exc_info.value.status_code == 403
