from __future__ import annotations

import pytest
from sqlalchemy import select

from progresswall.db.models import MemberRole, ProjectMember, TeamMember
from progresswall.services.errors import ConflictError, NotFoundError
from progresswall.services.membership_service import (
    add_project_member,
    add_team_member,
    create_board,
    create_project,
)


@pytest.mark.asyncio
async def test_creators_become_admins(session, kanban) -> None:
    team_role = await session.scalar(
        select(TeamMember.role).where(TeamMember.team_id == kanban.team_id, TeamMember.user_id == kanban.owner.id)
    )
    project_role = await session.scalar(
        select(ProjectMember.role).where(
            ProjectMember.project_id == kanban.project_id, ProjectMember.user_id == kanban.owner.id
        )
    )

    assert team_role == MemberRole.ADMIN.value
    assert project_role == MemberRole.ADMIN.value


@pytest.mark.asyncio
async def test_duplicate_membership_is_conflict(session, kanban, make_user) -> None:
    user = await make_user("alice")
    user_id, team_id, project_id = user.id, kanban.team_id, kanban.project_id
    await add_team_member(session, team_id, user_id)

    with pytest.raises(ConflictError):
        await add_team_member(session, team_id, user_id, MemberRole.ADMIN)

    await add_project_member(session, project_id, user_id)
    with pytest.raises(ConflictError):
        await add_project_member(session, project_id, user_id)


@pytest.mark.asyncio
async def test_missing_parents_are_not_found(session, kanban, make_user) -> None:
    user = await make_user("bob")
    user_id, owner_id = user.id, kanban.owner.id

    with pytest.raises(NotFoundError):
        await add_project_member(session, 999, user_id)
    with pytest.raises(NotFoundError):
        await add_team_member(session, 999, user_id)
    with pytest.raises(NotFoundError):
        await create_project(session, 999, "Ghost", "", owner_id)
    with pytest.raises(NotFoundError):
        await create_board(session, 999, "Ghost board", owner_id)
