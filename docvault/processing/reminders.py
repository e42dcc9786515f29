"""
Reminder Scheduler — auto-generated reminders derived from classification.

  expiry reminder   expiry_date − lead_days (30), urgency high
  tax deadline      31 July of the following year − 60 days, urgency medium
                    (Tax documents only)

Both are idempotent per (document, reminder_date): reprocessing a document
never schedules the same reminder twice. An expiry yields exactly one expiry
reminder, and only while the expiry date is still ahead. A Tax document that
also expires gets both reminders, since they are dated independently.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from docvault.pipeline.store import DocumentStore, ReminderRecord
from docvault.processing.insights import NewDocument
from docvault.schemas.documents import DocumentCategory, ExpiryInfo, Urgency

logger = logging.getLogger(__name__)

TAX_FILING_LEAD_DAYS = 60


def tax_filing_deadline(today: date) -> date:
    """ITR due date for the assessment year that starts after `today`'s year."""
    return date(today.year + 1, 7, 31)


class ReminderScheduler:

    def __init__(self, store: DocumentStore, lead_days: int | None = None) -> None:
        from docvault.core.config import settings

        self._store     = store
        self._lead_days = settings.reminder_lead_days if lead_days is None else lead_days

    async def schedule(
        self,
        document:    NewDocument,
        expiry_info: ExpiryInfo | None,
        today:       date | None = None,
    ) -> list[ReminderRecord]:
        """Create every reminder the classification calls for; returns the new ones."""
        created: list[ReminderRecord] = []

        expiry = await self.schedule_expiry(document, expiry_info, today)
        if expiry is not None:
            created.append(expiry)

        deadline = await self.schedule_tax_deadline(document, today)
        if deadline is not None:
            created.append(deadline)

        return created

    async def schedule_expiry(
        self,
        document:    NewDocument,
        expiry_info: ExpiryInfo | None,
        today:       date | None = None,
    ) -> ReminderRecord | None:
        if expiry_info is None or not expiry_info.has_expiry or expiry_info.expiry_date is None:
            return None

        expiry_date = expiry_info.expiry_date
        if expiry_date <= (today or date.today()):
            logger.info("Reminders | doc=%s already expired on %s, no reminder", document.id, expiry_date)
            return None

        reminder_date = expiry_date - timedelta(days=self._lead_days)
        return await self._insert_once(
            ReminderRecord(
                user_id=document.user_id,
                related_document_id=document.id,
                title=f"Renewal due: {document.name}",
                description=(
                    f"{document.name} expires on {expiry_date.strftime('%d %b %Y')}. "
                    f"Renew it before the expiry date."
                ),
                reminder_date=reminder_date,
                category=document.category,
                urgency=Urgency.HIGH.value,
                is_auto_generated=True,
            )
        )

    async def schedule_tax_deadline(
        self,
        document: NewDocument,
        today:    date | None = None,
    ) -> ReminderRecord | None:
        if document.category != DocumentCategory.TAX.value:
            return None

        deadline      = tax_filing_deadline(today or date.today())
        reminder_date = deadline - timedelta(days=TAX_FILING_LEAD_DAYS)
        return await self._insert_once(
            ReminderRecord(
                user_id=document.user_id,
                related_document_id=document.id,
                title="Income tax filing deadline",
                description=(
                    f"File your income tax return by {deadline.strftime('%d %b %Y')}. "
                    f"Keep {document.name} ready."
                ),
                reminder_date=reminder_date,
                category=document.category,
                urgency=Urgency.MEDIUM.value,
                is_auto_generated=True,
            )
        )

    async def _insert_once(self, record: ReminderRecord) -> ReminderRecord | None:
        if await self._store.reminder_exists(record.related_document_id, record.reminder_date):
            logger.debug(
                "Reminders | doc=%s date=%s already scheduled",
                record.related_document_id, record.reminder_date,
            )
            return None

        record.id = await self._store.insert_reminder(record)
        logger.info(
            "Reminders | doc=%s date=%s urgency=%s title=%r",
            record.related_document_id, record.reminder_date, record.urgency, record.title,
        )
        return record
