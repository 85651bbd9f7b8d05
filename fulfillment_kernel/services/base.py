"""
BaseService -- shared plumbing for kernel write services.

Kernel services work inside a transaction they do not own: they lock, mutate
and ``flush()``.  Committing is left to the Fulfillment Service, the bulk
coordinator or a test.

Failure modes:
    - OptimisticLockError from ``_flush`` when the row's version counter
      moved since it was loaded.  The caller must roll the session back.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fulfillment_kernel.db.base import Base
from fulfillment_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session.  Never commits or rolls back."""

    def __init__(self, session: Session):
        self.session = session

    def _locked_get(self, model: type[ModelType], entity_id: str) -> ModelType | None:
        """
        SELECT ... FOR UPDATE by id.

        ``populate_existing`` replaces any stale copy already in the identity
        map, so the version counter checked at flush is the one just read.
        """
        stmt = (
            select(model)
            .where(model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _flush(self, entity_type: str, entity_id: str) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, entity_id) from exc
