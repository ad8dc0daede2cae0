from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progresswall.db.models import ActionType, ActivityLog, EntityType

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


async def record_activity(
    session: AsyncSession,
    *,
    user_id: int,
    username: str,
    action_type: ActionType,
    entity_type: EntityType,
    entity_id: int,
    description: str,
    board_id: int | None = None,
    task_id: int | None = None,
    project_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """Append an audit entry to the caller's unit of work.

    The entry is flushed but never committed here, so it lands or rolls back
    together with the change it describes.
    """
    entry = ActivityLog(
        user_id=user_id,
        username=username,
        action_type=action_type.value,
        entity_type=entity_type.value,
        entity_id=entity_id,
        board_id=board_id,
        task_id=task_id,
        project_id=project_id,
        description=description,
        extra=metadata,
    )
    session.add(entry)
    await session.flush()
    return entry


def normalize_page(page: int, page_size: int) -> tuple[int, int]:
    if page < 1:
        page = 1
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE
    return page, page_size


async def _list_by(session: AsyncSession, condition: Any, page: int, page_size: int) -> tuple[list[ActivityLog], int]:
    page, page_size = normalize_page(page, page_size)
    total = await session.scalar(select(func.count(ActivityLog.id)).where(condition))
    result = await session.execute(
        select(ActivityLog)
        .where(condition)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0


async def list_board_activities(
    session: AsyncSession, board_id: int, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[ActivityLog], int]:
    return await _list_by(session, ActivityLog.board_id == board_id, page, page_size)


async def list_task_activities(
    session: AsyncSession, task_id: int, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[ActivityLog], int]:
    return await _list_by(session, ActivityLog.task_id == task_id, page, page_size)


async def list_project_activities(
    session: AsyncSession, project_id: int, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[ActivityLog], int]:
    return await _list_by(session, ActivityLog.project_id == project_id, page, page_size)
