"""
Unit tests for AdminPolicy.
"""

import pytest

from soma.modules.admin import AdminPolicy
from soma.modules.shared.exceptions import PermissionDeniedError
from tests.conftest import ADMIN, ALICE, BOB, ROLE_ADMIN, ROLE_VIP, SERVER


@pytest.mark.asyncio
class TestIsAdmin:
    """Test the three ways an actor can qualify."""

    async def test_allowlisted_user(self, admin_policy):
        assert await admin_policy.is_admin(None, ADMIN)

    async def test_admin_role_in_request(self, admin_policy):
        assert await admin_policy.is_admin(None, ALICE, [ROLE_VIP, ROLE_ADMIN])

    async def test_other_roles_do_not_qualify(self, admin_policy):
        assert not await admin_policy.is_admin(None, ALICE, [ROLE_VIP])

    async def test_missing_actor(self, admin_policy):
        assert not await admin_policy.is_admin(None, None, [ROLE_ADMIN])

    async def test_admin_role_in_role_cache(self, session, admin_policy, user_service, role_service):
        await user_service.get_or_create_user(session, BOB)
        await user_service.get_or_create_server(session, SERVER)
        await role_service.update_user_roles(session, BOB, SERVER, [ROLE_ADMIN])

        assert await admin_policy.is_admin(session, BOB)
        assert not await admin_policy.is_admin(session, ALICE)

    async def test_role_cache_needs_session(self, admin_policy):
        assert not await admin_policy.is_admin(None, BOB)

    async def test_no_admin_roles_configured(self, role_service):
        policy = AdminPolicy(admin_users=[ADMIN], role_service=role_service)
        assert not await policy.is_admin(None, ALICE, [ROLE_ADMIN])


@pytest.mark.asyncio
class TestRequire:
    async def test_admin_passes(self, admin_policy):
        await admin_policy.require(None, ADMIN, "grant")

    async def test_non_admin_refused(self, admin_policy):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await admin_policy.require(None, ALICE, "set_balance")

        assert exc_info.value.actor == ALICE
        assert exc_info.value.action == "set_balance"


class TestConstruction:
    def test_ids_are_stripped_and_blank_dropped(self):
        policy = AdminPolicy(admin_users=[f" {ADMIN} ", ""], admin_roles=[ROLE_ADMIN])

        assert policy.admin_users == frozenset({ADMIN})
        assert policy.admin_roles == frozenset({ROLE_ADMIN})

    def test_malformed_admin_id_warns(self, mocker):
        log = mocker.patch("soma.modules.admin.policy.logger")

        AdminPolicy(admin_users=["not-a-snowflake", ADMIN])

        log.warning.assert_called_once()
        assert log.warning.call_args.kwargs["extra"]["invalid_id"] == "not-a-snowflake"

    def test_from_config(self, mocker):
        mocker.patch("soma.modules.admin.policy.Config.ADMIN_USERS", [ADMIN])
        mocker.patch("soma.modules.admin.policy.Config.ADMIN_ROLES", [])

        policy = AdminPolicy.from_config()

        assert policy.admin_users == frozenset({ADMIN})
        assert policy.admin_roles == frozenset()
