from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from progresswall.db.models import MemberRole, SystemRole
from progresswall.services.errors import ForbiddenError, InternalError, NotFoundError
from progresswall.services.membership_service import add_project_member, add_team_member
from progresswall.services.permission_service import (
    ResourceKind,
    can_access,
    can_manage,
    ensure_can_access,
    ensure_can_manage,
    resolve_project_id,
)


@pytest.fixture
async def task_id(kanban, add_column, add_tasks) -> int:
    column = await add_column("Todo")
    return (await add_tasks(column.id, ["write docs"]))[0].id


@pytest.mark.asyncio
async def test_sys_admin_passes_everything_without_memberships(session, kanban, make_user, add_column, task_id) -> None:
    admin = await make_user("root", SystemRole.ADMIN)
    column = await add_column("Review")

    for kind, resource_id in (
        (ResourceKind.TEAM, kanban.team_id),
        (ResourceKind.PROJECT, kanban.project_id),
        (ResourceKind.BOARD, kanban.board_id),
        (ResourceKind.COLUMN, column.id),
        (ResourceKind.TASK, task_id),
    ):
        assert await can_access(session, admin.id, kind, resource_id)
        assert await can_manage(session, admin.id, kind, resource_id)


@pytest.mark.asyncio
async def test_team_admin_manages_projects_without_project_membership(session, kanban, make_user, task_id) -> None:
    lead = await make_user("lead")
    await add_team_member(session, kanban.team_id, lead.id, MemberRole.ADMIN)

    assert await can_manage(session, lead.id, ResourceKind.TEAM, kanban.team_id)
    assert await can_manage(session, lead.id, ResourceKind.PROJECT, kanban.project_id)
    assert await can_manage(session, lead.id, ResourceKind.TASK, task_id)
    assert await can_access(session, lead.id, ResourceKind.BOARD, kanban.board_id)


@pytest.mark.asyncio
async def test_project_member_can_access_but_not_manage(session, kanban, make_user, add_column) -> None:
    dev = await make_user("dev")
    await add_project_member(session, kanban.project_id, dev.id)
    column = await add_column("Todo")

    assert await can_access(session, dev.id, ResourceKind.PROJECT, kanban.project_id)
    assert await can_access(session, dev.id, ResourceKind.COLUMN, column.id)
    assert not await can_manage(session, dev.id, ResourceKind.PROJECT, kanban.project_id)
    assert not await can_manage(session, dev.id, ResourceKind.COLUMN, column.id)
    assert not await can_access(session, dev.id, ResourceKind.TEAM, kanban.team_id)


@pytest.mark.asyncio
async def test_project_admin_does_not_manage_team(session, kanban, make_user) -> None:
    pm = await make_user("pm")
    await add_project_member(session, kanban.project_id, pm.id, MemberRole.ADMIN)

    assert await can_manage(session, pm.id, ResourceKind.BOARD, kanban.board_id)
    assert not await can_manage(session, pm.id, ResourceKind.TEAM, kanban.team_id)


@pytest.mark.asyncio
async def test_plain_team_member_needs_project_membership(session, kanban, make_user) -> None:
    member = await make_user("member")
    await add_team_member(session, kanban.team_id, member.id)

    assert await can_access(session, member.id, ResourceKind.TEAM, kanban.team_id)
    assert not await can_manage(session, member.id, ResourceKind.TEAM, kanban.team_id)
    assert not await can_access(session, member.id, ResourceKind.PROJECT, kanban.project_id)


@pytest.mark.asyncio
async def test_ensure_helpers_raise_forbidden(session, kanban, make_user) -> None:
    outsider = await make_user("outsider")

    with pytest.raises(ForbiddenError):
        await ensure_can_access(session, outsider.id, ResourceKind.PROJECT, kanban.project_id)
    with pytest.raises(ForbiddenError):
        await ensure_can_manage(session, outsider.id, ResourceKind.BOARD, kanban.board_id)

    await ensure_can_manage(session, kanban.owner.id, ResourceKind.PROJECT, kanban.project_id)


@pytest.mark.asyncio
async def test_missing_resource_is_not_found_even_for_admin(session, kanban, make_user) -> None:
    admin = await make_user("root", SystemRole.ADMIN)

    with pytest.raises(NotFoundError):
        await can_access(session, admin.id, ResourceKind.TASK, 404)
    with pytest.raises(NotFoundError):
        await can_manage(session, admin.id, ResourceKind.TEAM, 404)


@pytest.mark.asyncio
async def test_resolve_project_id_walks_column_to_board(session, kanban, add_column, task_id) -> None:
    column = await add_column("Doing")

    assert await resolve_project_id(session, ResourceKind.COLUMN, column.id) == kanban.project_id
    assert await resolve_project_id(session, ResourceKind.TASK, task_id) == kanban.project_id
    assert await resolve_project_id(session, ResourceKind.BOARD, kanban.board_id) == kanban.project_id


@pytest.mark.asyncio
async def test_storage_failure_fails_closed(session, kanban, monkeypatch) -> None:
    owner_id, project_id = kanban.owner.id, kanban.project_id

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection reset"))

    monkeypatch.setattr(session, "execute", broken_execute)

    with pytest.raises(InternalError):
        await can_access(session, owner_id, ResourceKind.PROJECT, project_id)
    with pytest.raises(InternalError):
        await can_manage(session, owner_id, ResourceKind.PROJECT, project_id)
    with pytest.raises(InternalError):
        await ensure_can_access(session, owner_id, ResourceKind.PROJECT, project_id)
