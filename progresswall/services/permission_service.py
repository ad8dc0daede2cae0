"""Role-based access checks over the team → project → board/column/task tree.

Board, column and task permissions are whatever the enclosing project grants;
there is no finer-grained rule below the project.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import Select, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from progresswall.db.models import (
    Board,
    BoardColumn,
    MemberRole,
    Project,
    ProjectMember,
    SystemRole,
    Task,
    Team,
    TeamMember,
    User,
)
from progresswall.services.errors import ForbiddenError, InternalError, NotFoundError

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    TEAM = "team"
    PROJECT = "project"
    BOARD = "board"
    COLUMN = "column"
    TASK = "task"


@dataclass(frozen=True)
class ResolvedScope:
    team_id: int
    project_id: int | None


def _project_scope_query(kind: ResourceKind, resource_id: int) -> Select[tuple[int, int]]:
    stmt = select(Project.id, Project.team_id).where(Project.deleted_at.is_(None))
    if kind is ResourceKind.PROJECT:
        return stmt.where(Project.id == resource_id)
    if kind is ResourceKind.BOARD:
        return stmt.join(Board, Board.project_id == Project.id).where(
            Board.id == resource_id, Board.deleted_at.is_(None)
        )
    if kind is ResourceKind.COLUMN:
        return (
            stmt.join(Board, Board.project_id == Project.id)
            .join(BoardColumn, BoardColumn.board_id == Board.id)
            .where(BoardColumn.id == resource_id, BoardColumn.deleted_at.is_(None), Board.deleted_at.is_(None))
        )
    if kind is ResourceKind.TASK:
        return stmt.join(Task, Task.project_id == Project.id).where(Task.id == resource_id, Task.deleted_at.is_(None))
    raise ValueError(f"{kind.value} does not resolve to a project")


async def resolve_scope(session: AsyncSession, kind: ResourceKind, resource_id: int) -> ResolvedScope:
    if kind is ResourceKind.TEAM:
        result = await session.execute(select(Team.id).where(Team.id == resource_id, Team.deleted_at.is_(None)))
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"team {resource_id} not found")
        return ResolvedScope(team_id=resource_id, project_id=None)

    result = await session.execute(_project_scope_query(kind, resource_id))
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"{kind.value} {resource_id} not found")
    project_id, team_id = row
    return ResolvedScope(team_id=team_id, project_id=project_id)


async def resolve_project_id(session: AsyncSession, kind: ResourceKind, resource_id: int) -> int:
    scope = await resolve_scope(session, kind, resource_id)
    if scope.project_id is None:
        raise ValueError("teams do not belong to a project")
    return scope.project_id


async def is_sys_admin(session: AsyncSession, user_id: int) -> bool:
    result = await session.execute(select(User.system_role).where(User.id == user_id))
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError(f"user {user_id} not found")
    return role == SystemRole.ADMIN.value


async def _team_role(session: AsyncSession, user_id: int, team_id: int) -> str | None:
    result = await session.execute(
        select(TeamMember.role).where(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
    )
    return result.scalar_one_or_none()


async def _project_role(session: AsyncSession, user_id: int, project_id: int) -> str | None:
    result = await session.execute(
        select(ProjectMember.role).where(ProjectMember.user_id == user_id, ProjectMember.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def _can_manage(session: AsyncSession, user_id: int, scope: ResolvedScope) -> bool:
    if await is_sys_admin(session, user_id):
        return True
    if await _team_role(session, user_id, scope.team_id) == MemberRole.ADMIN.value:
        return True
    if scope.project_id is None:
        return False
    return await _project_role(session, user_id, scope.project_id) == MemberRole.ADMIN.value


async def _can_access(session: AsyncSession, user_id: int, scope: ResolvedScope) -> bool:
    if await _can_manage(session, user_id, scope):
        return True
    if scope.project_id is None:
        return await _team_role(session, user_id, scope.team_id) is not None
    return await _project_role(session, user_id, scope.project_id) is not None


async def can_manage(session: AsyncSession, user_id: int, kind: ResourceKind, resource_id: int) -> bool:
    try:
        scope = await resolve_scope(session, kind, resource_id)
        return await _can_manage(session, user_id, scope)
    except SQLAlchemyError as exc:
        logger.exception(
            "Manage permission check failed",
            extra={"user_id": user_id, "resource_kind": kind.value, "resource_id": resource_id},
        )
        raise InternalError("permission check failed") from exc


async def can_access(session: AsyncSession, user_id: int, kind: ResourceKind, resource_id: int) -> bool:
    try:
        scope = await resolve_scope(session, kind, resource_id)
        return await _can_access(session, user_id, scope)
    except SQLAlchemyError as exc:
        logger.exception(
            "Access permission check failed",
            extra={"user_id": user_id, "resource_kind": kind.value, "resource_id": resource_id},
        )
        raise InternalError("permission check failed") from exc


async def ensure_can_manage(session: AsyncSession, user_id: int, kind: ResourceKind, resource_id: int) -> None:
    if not await can_manage(session, user_id, kind, resource_id):
        raise ForbiddenError(f"user {user_id} cannot manage {kind.value} {resource_id}")


async def ensure_can_access(session: AsyncSession, user_id: int, kind: ResourceKind, resource_id: int) -> None:
    if not await can_access(session, user_id, kind, resource_id):
        raise ForbiddenError(f"user {user_id} cannot access {kind.value} {resource_id}")
