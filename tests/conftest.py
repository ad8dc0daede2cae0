from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from progresswall.db.base import Base
from progresswall.db.models import BoardColumn, SystemRole, Task, User
from progresswall.services.membership_service import create_board, create_project, create_team
from progresswall.services.ordering_service import ItemKind, insert_item


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make(username: str, system_role: SystemRole = SystemRole.USER) -> User:
        user = User(username=username, email=f"{username}@example.com", system_role=system_role.value)
        session.add(user)
        await session.commit()
        return user

    return _make


@dataclass
class Kanban:
    owner: User
    team_id: int
    project_id: int
    board_id: int


@pytest.fixture
async def kanban(session: AsyncSession, make_user) -> Kanban:
    owner = await make_user("owner")
    team = await create_team(session, "Core", "platform team", owner.id)
    project = await create_project(session, team.id, "Wall", "", owner.id)
    board = await create_board(session, project.id, "Sprint 1", owner.id)
    return Kanban(owner=owner, team_id=team.id, project_id=project.id, board_id=board.id)


@pytest.fixture
def add_column(session: AsyncSession, kanban: Kanban) -> Callable[..., Awaitable[BoardColumn]]:
    async def _add(name: str, board_id: int | None = None) -> BoardColumn:
        column = BoardColumn(name=name)
        return await insert_item(session, ItemKind.COLUMN, column, board_id or kanban.board_id)

    return _add


@pytest.fixture
def add_tasks(session: AsyncSession, kanban: Kanban) -> Callable[..., Awaitable[list[Task]]]:
    async def _add(column_id: int, titles: list[str]) -> list[Task]:
        tasks = []
        for title in titles:
            task = Task(title=title, creator_id=kanban.owner.id)
            tasks.append(await insert_item(session, ItemKind.TASK, task, column_id))
        return tasks

    return _add


async def task_order(session: AsyncSession, column_id: int) -> list[tuple[str, int]]:
    result = await session.execute(
        select(Task.title, Task.position)
        .where(Task.column_id == column_id, Task.deleted_at.is_(None))
        .order_by(Task.position, Task.id)
    )
    return [(title, position) for title, position in result.all()]


async def column_order(session: AsyncSession, board_id: int) -> list[tuple[str, int]]:
    result = await session.execute(
        select(BoardColumn.name, BoardColumn.position)
        .where(BoardColumn.board_id == board_id, BoardColumn.deleted_at.is_(None))
        .order_by(BoardColumn.position, BoardColumn.id)
    )
    return [(name, position) for name, position in result.all()]


@pytest.fixture
def order_of():
    return task_order


@pytest.fixture
def columns_of():
    return column_order
