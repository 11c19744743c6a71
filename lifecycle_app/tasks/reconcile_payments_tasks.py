import asyncio
import logging

from core.get_db import AsyncSessionLocal
from services.lifecycle import Lifecycle

logger = logging.getLogger("payments.reconcile")


def create_reconcile_payments_task(app):
    class ReconcilePaymentsTask(app.Task):
        name = "reconcile_stale_payments"

        autoretry_for = (RuntimeError, ConnectionError)
        retry_backoff = True
        retry_jitter = True
        max_retries = 3
        default_retry_delay = 30

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
                        summary = await Lifecycle(session).processor.reconcile_stale()
                    except Exception:
                        logger.exception("Payment reconciliation failed")
                        raise
                logger.info("Reconciled stale payments: %s", summary)
                return summary

            return self._run_async(_runner())

    return ReconcilePaymentsTask
