from datetime import timedelta

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.enum import PaymentStatus
from skillify.core.settings import settings
from skillify.db.models.database import Payments
from skillify.libs.formats.datetime import now


class PaymentSweeper:
    """Orders that never came back for verification end up failed."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def sweep_stale_payments_async(self, older_than_hours: int | None = None) -> int:
        hours = older_than_hours or settings.STALE_PAYMENT_HOURS
        cutoff = now() - timedelta(hours=hours)
        try:
            result = await self.db.execute(
                update(Payments)
                .where(
                    Payments.status == PaymentStatus.CREATED.value,
                    Payments.created_at < cutoff,
                )
                .values(status=PaymentStatus.FAILED.value, updated_at=now())
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if result.rowcount:
            logger.info(f"Marked {result.rowcount} stale payment(s) as failed")
        return result.rowcount
