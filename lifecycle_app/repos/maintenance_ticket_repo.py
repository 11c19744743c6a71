import uuid

from sqlalchemy import select

from models.models import MaintenanceTicket

from .base_repo import BaseRepo


class MaintenanceTicketRepo(BaseRepo):
    async def create(self, ticket: MaintenanceTicket) -> MaintenanceTicket:
        return await self.db_add_and_flush(ticket)

    async def get_id(self, ticket_id: uuid.UUID) -> MaintenanceTicket | None:
        result = await self.db.execute(
            select(MaintenanceTicket).where(MaintenanceTicket.id == ticket_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, ticket_id: uuid.UUID) -> MaintenanceTicket | None:
        return await self._fetch_locked(
            select(MaintenanceTicket).where(MaintenanceTicket.id == ticket_id)
        )
