from __future__ import annotations

import pytest

from progresswall.db.models import ActionType, EntityType
from progresswall.services.activity_service import (
    list_board_activities,
    list_project_activities,
    list_task_activities,
    normalize_page,
    record_activity,
)


def test_normalize_page_falls_back_to_defaults() -> None:
    assert normalize_page(0, 0) == (1, 20)
    assert normalize_page(-3, 101) == (1, 20)
    assert normalize_page(2, 100) == (2, 100)


@pytest.mark.asyncio
async def test_board_activities_are_paginated_newest_first(session, kanban) -> None:
    for index in range(5):
        await record_activity(
            session,
            user_id=kanban.owner.id,
            username=kanban.owner.username,
            action_type=ActionType.UPDATE,
            entity_type=EntityType.BOARD,
            entity_id=kanban.board_id,
            board_id=kanban.board_id,
            project_id=kanban.project_id,
            description=f"edit {index}",
        )
    await session.commit()

    first_page, total = await list_board_activities(session, kanban.board_id, page=1, page_size=2)
    third_page, _ = await list_board_activities(session, kanban.board_id, page=3, page_size=2)

    assert total == 5
    assert [entry.description for entry in first_page] == ["edit 4", "edit 3"]
    assert [entry.description for entry in third_page] == ["edit 0"]

    project_entries, project_total = await list_project_activities(session, kanban.project_id)
    assert project_total == 5
    assert len(project_entries) == 5

    task_entries, task_total = await list_task_activities(session, 12345)
    assert task_entries == []
    assert task_total == 0
