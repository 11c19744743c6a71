import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from core.errors import ConflictError, StaleStateError

logger = logging.getLogger(__name__)


class BaseRepo:
    def __init__(self, db):
        self.db = db

    async def db_commit(self):
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning("Optimistic version check failed: %s", e)
            raise StaleStateError(
                "Record was modified by another operation, re-read and retry"
            ) from e
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Record conflicts with existing data") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def db_flush(self):
        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            raise StaleStateError(
                "Record was modified by another operation, re-read and retry"
            ) from e
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Record conflicts with existing data") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def db_add_and_flush(self, value):
        self.db.add(value)
        await self.db_flush()
        return value

    async def _commit_and_refresh(self, value):
        await self.db_commit()
        await self.db.refresh(value)
        return value

    async def reload(self, value):
        await self.db.refresh(value)
        return value

    async def rollback(self):
        await self.db.rollback()

    async def _fetch_locked(self, stmt):
        # Pending changes must reach the row before it is re-read, since
        # populate_existing overwrites in-memory state.
        await self.db_flush()
        result = await self.db.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
