from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..orm import WebhookEventSeen
from ...helpers import now_ts


class WebhookEventStore:
    """Processed provider event ids, kept in the main database."""

    def __init__(self, *, db: AsyncSession) -> None:
        self.db = db

    async def is_event_seen(self, evt_id: Optional[str]) -> bool:
        if not evt_id:
            return False
        async with self.db.begin():
            row = await self.db.get(WebhookEventSeen, evt_id)
        return row is not None

    async def mark_event_seen(self, evt_id: Optional[str]) -> bool:
        """True if the id was recorded now, False if it already existed."""
        if not evt_id:
            return True
        try:
            async with self.db.begin():
                self.db.add(
                    WebhookEventSeen(event_id=evt_id, created_at=now_ts())
                )
        except IntegrityError:
            # a concurrent delivery of the same event got there first
            return False
        return True
