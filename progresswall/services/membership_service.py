from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from progresswall.db.models import Board, MemberRole, Project, ProjectMember, Team, TeamMember, User
from progresswall.db.session import transaction
from progresswall.services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


async def _get_live(session: AsyncSession, model: type[Team] | type[Project], entity_id: int) -> Team | Project:
    result = await session.execute(select(model).where(model.id == entity_id, model.deleted_at.is_(None)))
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFoundError(f"{model.__tablename__.rstrip('s')} {entity_id} not found")
    return entity


async def _ensure_user(session: AsyncSession, user_id: int) -> None:
    if await session.get(User, user_id) is None:
        raise NotFoundError(f"user {user_id} not found")


async def create_team(session: AsyncSession, name: str, description: str, creator_id: int) -> Team:
    """Create a team whose creator is its first admin."""
    async with transaction(session):
        await _ensure_user(session, creator_id)
        team = Team(name=name.strip(), description=description.strip(), creator_id=creator_id)
        session.add(team)
        await session.flush()
        session.add(TeamMember(team_id=team.id, user_id=creator_id, role=MemberRole.ADMIN.value))
        await session.flush()
    logger.info("Team created", extra={"team_id": team.id, "creator_id": creator_id})
    return team


async def create_project(session: AsyncSession, team_id: int, name: str, description: str, owner_id: int) -> Project:
    async with transaction(session):
        await _get_live(session, Team, team_id)
        await _ensure_user(session, owner_id)
        project = Project(team_id=team_id, owner_id=owner_id, name=name.strip(), description=description.strip())
        session.add(project)
        await session.flush()
        session.add(ProjectMember(project_id=project.id, user_id=owner_id, role=MemberRole.ADMIN.value))
        await session.flush()
    logger.info("Project created", extra={"project_id": project.id, "team_id": team_id})
    return project


async def create_board(session: AsyncSession, project_id: int, name: str, owner_id: int) -> Board:
    async with transaction(session):
        await _get_live(session, Project, project_id)
        board = Board(project_id=project_id, owner_id=owner_id, name=name.strip())
        session.add(board)
        await session.flush()
    return board


async def add_team_member(
    session: AsyncSession, team_id: int, user_id: int, role: MemberRole = MemberRole.MEMBER
) -> TeamMember:
    async with transaction(session):
        await _get_live(session, Team, team_id)
        await _ensure_user(session, user_id)
        existing = await session.execute(
            select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"user {user_id} is already a member of team {team_id}")
        member = TeamMember(team_id=team_id, user_id=user_id, role=role.value)
        session.add(member)
        try:
            await session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent add on the unique (team, user) pair.
            raise ConflictError(f"user {user_id} is already a member of team {team_id}") from exc
    return member


async def add_project_member(
    session: AsyncSession, project_id: int, user_id: int, role: MemberRole = MemberRole.MEMBER
) -> ProjectMember:
    async with transaction(session):
        await _get_live(session, Project, project_id)
        await _ensure_user(session, user_id)
        existing = await session.execute(
            select(ProjectMember.id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"user {user_id} is already a member of project {project_id}")
        member = ProjectMember(project_id=project_id, user_id=user_id, role=role.value)
        session.add(member)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"user {user_id} is already a member of project {project_id}") from exc
    return member
