"""Guarded status writes shared by the order and contract lifecycles.

Every status change is a single conditional UPDATE that repeats the state the
caller validated against in its WHERE clause. If another request moved the row
in between, no row matches and the change is refused instead of overwriting.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import update
from sqlalchemy.orm import Session


class TransitionError(ValueError):
    pass


class ConcurrentUpdateError(TransitionError):
    pass


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def allowed_next(table: Mapping[Enum, frozenset], current: Enum) -> frozenset:
    return table.get(current, frozenset())


def check_transition(table: Mapping[Enum, frozenset], current: Enum, target: Enum, *, label: str) -> None:
    if current == target:
        raise TransitionError(f'{label} is already {target.value}')
    if target not in allowed_next(table, current):
        raise TransitionError(f'Cannot move {label} from {current.value} to {target.value}')


def apply_guarded_update(
    db: Session,
    model,
    *,
    row_id: uuid.UUID,
    expected: Mapping[str, object],
    values: Mapping[str, object],
    label: str,
) -> None:
    conditions = [model.id == row_id]
    for column_name, value in expected.items():
        column = getattr(model, column_name)
        conditions.append(column.is_(None) if value is None else column == value)

    result = db.execute(
        update(model)
        .where(*conditions)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentUpdateError(f'{label} was changed by another request; reload and try again')
