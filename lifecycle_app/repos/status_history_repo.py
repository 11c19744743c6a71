import uuid

from sqlalchemy import select

from models.enums import EntityType
from models.models import StatusHistory
from schemas.schema import Actor

from .base_repo import BaseRepo


class StatusHistoryRepo(BaseRepo):
    def record(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        from_status,
        to_status,
        actor: Actor | None = None,
        reason: str | None = None,
    ) -> StatusHistory:
        # Added to the caller's unit of work, committed with the transition.
        entry = StatusHistory(
            entity_type=entity_type,
            entity_id=entity_id,
            from_status=getattr(from_status, "value", from_status),
            to_status=getattr(to_status, "value", to_status),
            actor_id=actor.id if actor else None,
            actor_role=actor.role if actor else None,
            reason=reason,
        )
        self.db.add(entry)
        return entry

    async def list_for(self, entity_type: EntityType, entity_id: uuid.UUID):
        result = await self.db.execute(
            select(StatusHistory)
            .where(
                StatusHistory.entity_type == entity_type,
                StatusHistory.entity_id == entity_id,
            )
            .order_by(StatusHistory.id)
        )
        return result.scalars().all()
