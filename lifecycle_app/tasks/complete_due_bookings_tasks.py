import asyncio
import logging

from core.get_db import AsyncSessionLocal
from services.lifecycle import Lifecycle

logger = logging.getLogger("bookings.complete_due")


def create_complete_due_bookings_task(app):
    class CompleteDueBookingsTask(app.Task):
        name = "complete_due_bookings"

        autoretry_for = (RuntimeError, ConnectionError)
        retry_backoff = True
        retry_jitter = True
        max_retries = 3
        default_retry_delay = 60

        def _run_async(self, coro):
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                return loop.run_until_complete(coro)
            finally:
                loop.close()

        def run(self):
            async def _runner():
                async with AsyncSessionLocal() as session:
                    try:
                        return await Lifecycle(session).bookings.complete_due_bookings()
                    except Exception:
                        logger.exception("Completing due bookings failed")
                        raise

            return self._run_async(_runner())

    return CompleteDueBookingsTask
