"""Dense position ordering for columns within a board and tasks within a column.

Every mutation runs in its own transaction on the given session and locks the
parent rows of the scopes it touches, so two operations on the same board or
column serialise while unrelated scopes run in parallel. Positions of live
siblings stay 0..N-1 after each operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from progresswall.db.models import ActionType, Board, BoardColumn, EntityType, Task, User
from progresswall.db.session import transaction
from progresswall.services.activity_service import record_activity
from progresswall.services.errors import ConflictError, InternalError, NotFoundError
from progresswall.services.permission_service import ResourceKind, ensure_can_access

logger = logging.getLogger(__name__)

Item = Task | BoardColumn
Parent = BoardColumn | Board


class ItemKind(str, Enum):
    TASK = "task"
    COLUMN = "column"


@dataclass(frozen=True)
class _Scope:
    item_model: type[Item]
    parent_model: type[Parent]
    parent_key: str
    entity_type: EntityType
    item_resource: ResourceKind
    parent_resource: ResourceKind

    @property
    def parent_fk(self) -> InstrumentedAttribute[int]:
        return getattr(self.item_model, self.parent_key)


_SCOPES: dict[ItemKind, _Scope] = {
    ItemKind.TASK: _Scope(
        item_model=Task,
        parent_model=BoardColumn,
        parent_key="column_id",
        entity_type=EntityType.TASK,
        item_resource=ResourceKind.TASK,
        parent_resource=ResourceKind.COLUMN,
    ),
    ItemKind.COLUMN: _Scope(
        item_model=BoardColumn,
        parent_model=Board,
        parent_key="board_id",
        entity_type=EntityType.COLUMN,
        item_resource=ResourceKind.COLUMN,
        parent_resource=ResourceKind.BOARD,
    ),
}


async def _get_item(session: AsyncSession, scope: _Scope, item_id: int, *, lock: bool = False) -> Item:
    model = scope.item_model
    stmt = select(model).where(model.id == item_id, model.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"{scope.entity_type.value} {item_id} not found")
    return item


async def _lock_parents(session: AsyncSession, scope: _Scope, parent_ids: set[int]) -> dict[int, Parent]:
    # Fixed id order keeps two movers over the same pair of scopes from deadlocking.
    model = scope.parent_model
    result = await session.execute(
        select(model)
        .where(model.id.in_(parent_ids), model.deleted_at.is_(None))
        .order_by(model.id)
        .with_for_update()
    )
    parents = {parent.id: parent for parent in result.scalars().all()}
    missing = parent_ids - parents.keys()
    if missing:
        raise NotFoundError(f"{scope.parent_resource.value} {min(missing)} not found")
    return parents


async def _count_siblings(session: AsyncSession, scope: _Scope, parent_id: int, exclude_id: int | None = None) -> int:
    model = scope.item_model
    stmt = select(func.count(model.id)).where(scope.parent_fk == parent_id, model.deleted_at.is_(None))
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    return (await session.execute(stmt)).scalar_one()


async def _shift(session: AsyncSession, scope: _Scope, parent_id: int, delta: int, *conditions: Any) -> None:
    model = scope.item_model
    await session.execute(
        update(model)
        .where(scope.parent_fk == parent_id, model.deleted_at.is_(None), *conditions)
        .values(position=model.position + delta)
    )


async def _column_project_id(session: AsyncSession, column: BoardColumn) -> int:
    result = await session.execute(select(Board.project_id).where(Board.id == column.board_id))
    return result.scalar_one()


async def list_items(session: AsyncSession, kind: ItemKind, parent_id: int) -> list[Item]:
    scope = _SCOPES[kind]
    model = scope.item_model
    result = await session.execute(
        select(model)
        .where(scope.parent_fk == parent_id, model.deleted_at.is_(None))
        .order_by(model.position, model.id)
    )
    return list(result.scalars().all())


async def insert_item(session: AsyncSession, kind: ItemKind, item: Item, parent_id: int) -> Item:
    """Append ``item`` after the last live sibling in ``parent_id``."""
    scope = _SCOPES[kind]
    model = scope.item_model
    try:
        async with transaction(session):
            parents = await _lock_parents(session, scope, {parent_id})
            max_position = (
                await session.execute(
                    select(func.coalesce(func.max(model.position), -1)).where(
                        scope.parent_fk == parent_id, model.deleted_at.is_(None)
                    )
                )
            ).scalar_one()

            setattr(item, scope.parent_key, parent_id)
            item.position = max_position + 1
            if kind is ItemKind.TASK:
                item.project_id = await _column_project_id(session, parents[parent_id])
            session.add(item)
            await session.flush()
    except SQLAlchemyError as exc:
        logger.exception("Insert failed", extra={"kind": kind.value, "parent_id": parent_id})
        raise InternalError(f"failed to insert {kind.value}") from exc
    return item


async def move_item(
    session: AsyncSession,
    kind: ItemKind,
    item_id: int,
    new_parent_id: int,
    new_index: int,
    actor: User,
) -> Item:
    """Move an item to ``new_index`` within ``new_parent_id``.

    ``new_index`` is clamped to the destination's valid range. A move into a
    different parent appends one ``move`` activity entry in the same
    transaction; a move within the parent records nothing.
    """
    scope = _SCOPES[kind]
    model = scope.item_model
    try:
        async with transaction(session):
            item = await _get_item(session, scope, item_id)
            old_parent_id: int = getattr(item, scope.parent_key)

            await ensure_can_access(session, actor.id, scope.item_resource, item_id)
            await ensure_can_access(session, actor.id, scope.parent_resource, new_parent_id)

            parents = await _lock_parents(session, scope, {old_parent_id, new_parent_id})
            item = await _get_item(session, scope, item_id, lock=True)
            if getattr(item, scope.parent_key) != old_parent_id:
                raise ConflictError(f"{kind.value} {item_id} was moved concurrently")

            old_index = item.position
            sibling_count = await _count_siblings(session, scope, new_parent_id, exclude_id=item_id)
            target = max(0, min(new_index, sibling_count))

            if old_parent_id == new_parent_id:
                if old_index < target:
                    await _shift(session, scope, old_parent_id, -1, model.position > old_index, model.position <= target)
                elif old_index > target:
                    await _shift(session, scope, old_parent_id, 1, model.position >= target, model.position < old_index)
                else:
                    return item
                item.position = target
                await session.flush()
                logger.info(
                    "Reordered item",
                    extra={"kind": kind.value, "item_id": item_id, "from": old_index, "to": target},
                )
                return item

            await _shift(session, scope, old_parent_id, -1, model.position > old_index)
            await _shift(session, scope, new_parent_id, 1, model.position >= target)

            setattr(item, scope.parent_key, new_parent_id)
            item.position = target
            old_parent = parents[old_parent_id]
            new_parent = parents[new_parent_id]
            if kind is ItemKind.TASK:
                board_id = old_parent.board_id
                item.project_id = await _column_project_id(session, new_parent)
                project_id = item.project_id
                task_id: int | None = item.id
            else:
                board_id = new_parent.id
                project_id = new_parent.project_id
                task_id = None
                if old_parent.project_id != new_parent.project_id:
                    # Tasks carry their own project_id; keep them in the column's project.
                    await session.execute(
                        update(Task).where(Task.column_id == item.id).values(project_id=new_parent.project_id)
                    )
            await session.flush()

            await record_activity(
                session,
                user_id=actor.id,
                username=actor.username,
                action_type=ActionType.MOVE,
                entity_type=scope.entity_type,
                entity_id=item.id,
                board_id=board_id,
                task_id=task_id,
                project_id=project_id,
                description=f'moved this {kind.value} from "{old_parent.name}" to "{new_parent.name}"',
                metadata={
                    "from_parent_id": old_parent_id,
                    "to_parent_id": new_parent_id,
                    "from_position": old_index,
                    "to_position": target,
                },
            )
            logger.info(
                "Moved item across parents",
                extra={
                    "kind": kind.value,
                    "item_id": item_id,
                    "from_parent_id": old_parent_id,
                    "to_parent_id": new_parent_id,
                    "to": target,
                },
            )
    except SQLAlchemyError as exc:
        logger.exception("Move failed", extra={"kind": kind.value, "item_id": item_id, "new_parent_id": new_parent_id})
        raise InternalError(f"failed to move {kind.value}") from exc
    return item


async def delete_item(session: AsyncSession, kind: ItemKind, item_id: int) -> None:
    """Tombstone an item and close the gap it leaves among its siblings."""
    scope = _SCOPES[kind]
    model = scope.item_model
    try:
        async with transaction(session):
            item = await _get_item(session, scope, item_id)
            parent_id: int = getattr(item, scope.parent_key)
            await _lock_parents(session, scope, {parent_id})
            item = await _get_item(session, scope, item_id, lock=True)
            if getattr(item, scope.parent_key) != parent_id:
                raise ConflictError(f"{kind.value} {item_id} was moved concurrently")

            await _shift(session, scope, parent_id, -1, model.position > item.position)
            item.deleted_at = datetime.now(UTC)
            await session.flush()
    except SQLAlchemyError as exc:
        logger.exception("Delete failed", extra={"kind": kind.value, "item_id": item_id})
        raise InternalError(f"failed to delete {kind.value}") from exc
