from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progresswall.config import Settings
from progresswall.db.models import Task, TaskStatus

logger = logging.getLogger(__name__)

DEADLINE_NOTIFICATION_TYPE = "TASK_DEADLINE_APPROACHING"
_CLOSED_STATUSES = (TaskStatus.DONE.value, TaskStatus.ARCHIVED.value)


async def list_pending_deadline_tasks(session: AsyncSession, now_utc: datetime, window_hours: int) -> list[Task]:
    result = await session.execute(
        select(Task)
        .where(
            Task.deleted_at.is_(None),
            Task.status.not_in(_CLOSED_STATUSES),
            Task.due_date.is_not(None),
            Task.due_date > now_utc,
            Task.due_date < now_utc + timedelta(hours=window_hours),
            Task.deadline_alert_sent.is_(False),
        )
        .order_by(Task.due_date.asc())
    )
    return list(result.scalars().all())


def build_deadline_payload(task: Task) -> dict[str, object]:
    return {
        "user_id": task.assignee_id or task.creator_id,
        "task_id": task.id,
        "task_title": task.title,
        "notification_type": DEADLINE_NOTIFICATION_TYPE,
    }


async def process_deadline_alerts(
    session_factory: async_sessionmaker[AsyncSession],
    client: httpx.AsyncClient,
    base_url: str,
    now_utc: datetime | None = None,
    window_hours: int = 24,
) -> int:
    """Notify about tasks due within the window; returns how many were sent.

    A task is flagged only after the notification service accepts it, so a
    failed delivery is retried on the next run.
    """
    now = now_utc or datetime.now(UTC)
    sent = 0
    async with session_factory() as session:
        tasks = await list_pending_deadline_tasks(session, now, window_hours)
        logger.info("Deadline scan found tasks", extra={"count": len(tasks)})

        for task in tasks:
            try:
                response = await client.post(f"{base_url}/api/notifications", json=build_deadline_payload(task))
                response.raise_for_status()
            except httpx.HTTPError:
                logger.exception("Failed to send deadline alert", extra={"task_id": task.id})
                continue

            task.deadline_alert_sent = True
            await session.commit()
            sent += 1

    return sent


def build_scheduler(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    client: httpx.AsyncClient,
) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        process_deadline_alerts,
        trigger="interval",
        minutes=settings.DEADLINE_SCAN_MINUTES,
        kwargs={
            "session_factory": session_factory,
            "client": client,
            "base_url": settings.notification_url,
            "window_hours": settings.DEADLINE_WINDOW_HOURS,
        },
        id="deadline_alerts",
        max_instances=1,
        coalesce=True,
    )
    return scheduler
