"""Transactional unit of work over an AsyncSession."""

import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from carelink.core.exceptions import CarelinkError, NotFoundError, UnexpectedError
from carelink.workflow.validation import validate_entity

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionalUnitOfWork:
    """Runs a multi-step write atomically.

    ``run(fn)`` awaits ``fn(session)``, validates every new or modified
    entity, then commits. Any error before the commit completes rolls
    the session back and is re-raised; errors outside the domain
    taxonomy are wrapped in ``UnexpectedError``.

    Callbacks registered with ``after_commit`` run once the commit has
    succeeded. They are best-effort: failures are logged, never raised,
    and never undo the commit.
    """

    def __init__(
        self,
        session: AsyncSession,
        validator: Callable[[Any], None] = validate_entity,
    ) -> None:
        self.session = session
        self._validator = validator
        self._after_commit: list[Callable[[], Any]] = []

    def after_commit(self, callback: Callable[[], Any]) -> None:
        self._after_commit.append(callback)

    async def run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        self._after_commit = []
        try:
            result = await fn(self.session)
            self._validate_pending()
            await self.session.commit()
        except CarelinkError as exc:
            await self.session.rollback()
            logger.warning(f"Unit of work rolled back: {exc.message}", extra={"kind": exc.kind})
            raise
        except Exception as exc:
            await self.session.rollback()
            logger.exception("Unit of work failed unexpectedly")
            raise UnexpectedError("An unexpected error occurred while saving changes") from exc

        await self._run_after_commit()
        return result

    def _validate_pending(self) -> None:
        for entity in [*self.session.new, *self.session.dirty]:
            self._validator(entity)

    async def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                outcome = callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning(f"After-commit callback failed: {exc}")


async def lock_current_status(session: AsyncSession, entity: Any) -> str:
    """Re-read an entity's stored status under a row lock.

    The stored value replaces whatever the in-memory object holds, so
    the transition that follows is validated against the row as it is
    now. Backends without ``FOR UPDATE`` (SQLite) skip the lock.
    """
    model = type(entity)
    result = await session.execute(
        select(model.status).where(model.id == entity.id).with_for_update()
    )
    current = result.scalar_one_or_none()
    if current is None:
        raise NotFoundError(f"{model.__name__} not found")
    if current != entity.status:
        set_committed_value(entity, "status", current)
    return current
