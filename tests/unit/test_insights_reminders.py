"""
Unit Tests — InsightGenerator and ReminderScheduler
════════════════════════════════════════════════════

Coverage targets:
  ✅ Missing Identity / Financial / Insurance / Medical → one compliance insight
  ✅ New Insurance document → premium review opportunity (₹7,500)
  ✅ New Tax document → high-priority tax opportunity (₹46,800)
  ✅ Reprocessing never duplicates an open insight
  ✅ Only completed documents (plus the new one) feed the histogram
  ✅ Expiry reminder 30 days before expiry, urgency high, created once
  ✅ Tax filing reminder for Tax documents (alongside any expiry reminder)
  ✅ Already-expired documents get no expiry reminder
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import date
from unittest.mock import AsyncMock

import pytest

from docvault.pipeline.errors import InsightGenerationFailure
from docvault.processing.insights import (
    INSIGHT_RULES,
    InsightDraft,
    InsightGenerator,
    NewDocument,
    evaluate_rules,
    missing_important_categories,
)
from docvault.processing.reminders import ReminderScheduler, tax_filing_deadline
from docvault.schemas.documents import ExpiryInfo


def _new_document(user_id, category, name="doc.pdf") -> NewDocument:
    return NewDocument(id=uuid.uuid4(), user_id=user_id, name=name, category=category)


# ─────────────────────────────────────────────────────────────────────────────
# Rules (pure)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.insights
class TestInsightRules:

    def test_missing_categories_listed_in_fixed_order(self, user_id):
        drafts = missing_important_categories(
            Counter({"Financial": 2}), _new_document(user_id, "Financial"),
        )
        assert len(drafts) == 1
        assert drafts[0].insight_type == "compliance"
        assert drafts[0].title == "Missing Important Documents"
        assert drafts[0].description == (
            "Consider uploading Identity, Insurance, Medical documents for complete protection."
        )

    def test_no_compliance_insight_when_all_present(self, user_id):
        histogram = Counter({"Identity": 1, "Financial": 1, "Insurance": 1, "Medical": 1})
        assert missing_important_categories(histogram, _new_document(user_id, "Identity")) == []

    def test_rules_are_extensible(self, user_id):
        def always(histogram, document):
            return [InsightDraft(insight_type="info", title="Hello", description="World")]

        drafts = evaluate_rules(Counter(), _new_document(user_id, "Personal"), (*INSIGHT_RULES, always))
        assert [d.title for d in drafts] == ["Missing Important Documents", "Hello"]


# ─────────────────────────────────────────────────────────────────────────────
# Generator
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.insights
class TestInsightGenerator:

    async def test_first_insurance_document(self, store, user_id, make_document):
        doc = make_document(name="policy.pdf", status="processing")

        created = await InsightGenerator(store).generate(user_id, doc.id, "Insurance", doc.name)

        titles = [i.title for i in created]
        assert titles == ["Missing Important Documents", "Insurance Premium Review"]
        compliance, review = created
        assert compliance.description == (
            "Consider uploading Identity, Financial, Medical documents for complete protection."
        )
        assert review.insight_type == "opportunity"
        assert review.savings_potential == "₹7,500"
        assert review.related_document_ids == [doc.id]
        assert len(store.insights) == 2

    async def test_tax_document_is_high_priority(self, store, user_id, make_document):
        for category in ("Identity", "Financial", "Insurance", "Medical"):
            make_document(status="completed", category=category)
        doc = make_document(name="itr_2024.pdf", status="processing")

        created = await InsightGenerator(store).generate(user_id, doc.id, "Tax", doc.name)

        assert len(created) == 1
        assert created[0].title == "Tax Savings Opportunity"
        assert created[0].priority == "high"
        assert created[0].savings_potential == "₹46,800"

    async def test_reprocessing_does_not_duplicate(self, store, user_id, make_document):
        doc = make_document(name="policy.pdf", status="processing")
        generator = InsightGenerator(store)

        await generator.generate(user_id, doc.id, "Insurance", doc.name)
        again = await generator.generate(user_id, doc.id, "Insurance", doc.name)

        assert again == []
        assert len(store.insights) == 2

    async def test_histogram_ignores_unfinished_documents(self, store, user_id, make_document):
        make_document(status="processing", category="Identity")
        make_document(status="error", category="Financial")
        make_document(status="completed", category="Medical")
        doc = make_document(status="processing")

        created = await InsightGenerator(store).generate(user_id, doc.id, "Insurance", doc.name)

        assert created[0].description == (
            "Consider uploading Identity, Financial documents for complete protection."
        )

    async def test_other_users_documents_do_not_count(self, store, user_id, make_document):
        stranger = uuid.uuid4()
        for category in ("Identity", "Financial", "Medical"):
            make_document(status="completed", category=category, user_id=stranger)
        doc = make_document(status="processing")

        created = await InsightGenerator(store).generate(user_id, doc.id, "Insurance", doc.name)

        assert "Identity, Financial, Medical" in created[0].description

    async def test_only_medical_missing(self, store, user_id, make_document):
        for category in ("Identity", "Financial", "Insurance"):
            make_document(status="completed", category=category)
        doc = make_document(name="pan_card.pdf", status="processing")

        created = await InsightGenerator(store).generate(user_id, doc.id, "Identity", doc.name)

        compliance = [i for i in created if i.insight_type == "compliance"]
        assert len(compliance) == 1
        assert compliance[0].description == (
            "Consider uploading Medical documents for complete protection."
        )

    async def test_store_error_raises_generation_failure(self, store, user_id):
        store.list_documents = AsyncMock(side_effect=ConnectionError("db down"))
        with pytest.raises(InsightGenerationFailure, match="db down"):
            await InsightGenerator(store).generate(user_id, uuid.uuid4(), "Tax")


# ─────────────────────────────────────────────────────────────────────────────
# Reminders
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.reminders
class TestReminderScheduler:

    async def test_expiry_reminder_thirty_days_before(self, store, user_id):
        doc    = _new_document(user_id, "Identity", name="passport.pdf")
        expiry = ExpiryInfo(has_expiry=True, expiry_date=date(2029, 12, 31))

        created = await ReminderScheduler(store, lead_days=30).schedule(doc, expiry)

        assert len(created) == 1
        reminder = created[0]
        assert reminder.reminder_date == date(2029, 12, 1)
        assert reminder.urgency == "high"
        assert reminder.related_document_id == doc.id
        assert reminder.category == "Identity"
        assert reminder.is_auto_generated is True
        assert reminder.title == "Renewal due: passport.pdf"
        assert "31 Dec 2029" in reminder.description

    async def test_expiry_reminder_created_once(self, store, user_id):
        doc       = _new_document(user_id, "Identity", name="passport.pdf")
        expiry    = ExpiryInfo(has_expiry=True, expiry_date=date(2029, 12, 31))
        scheduler = ReminderScheduler(store, lead_days=30)

        await scheduler.schedule(doc, expiry)
        again = await scheduler.schedule(doc, expiry)

        assert again == []
        assert len(store.reminders) == 1

    async def test_no_expiry_no_reminder(self, store, user_id):
        doc = _new_document(user_id, "Financial")
        assert await ReminderScheduler(store).schedule(doc, None) == []
        assert await ReminderScheduler(store).schedule(doc, ExpiryInfo(has_expiry=False)) == []
        assert store.reminders == []

    async def test_tax_document_gets_filing_reminder(self, store, user_id):
        doc = _new_document(user_id, "Tax", name="form16.pdf")

        created = await ReminderScheduler(store).schedule(doc, None, today=date(2024, 10, 1))

        assert len(created) == 1
        assert created[0].reminder_date == date(2025, 6, 1)
        assert created[0].urgency == "medium"
        assert "31 Jul 2025" in created[0].description

    def test_tax_filing_deadline(self):
        assert tax_filing_deadline(date(2024, 10, 1)) == date(2025, 7, 31)

    async def test_already_expired_document_gets_no_reminder(self, store, user_id):
        doc    = _new_document(user_id, "Identity", name="old_passport.pdf")
        expiry = ExpiryInfo(has_expiry=True, expiry_date=date(2025, 9, 14))

        created = await ReminderScheduler(store).schedule(doc, expiry, today=date(2026, 10, 19))

        assert created == []
        assert store.reminders == []

    async def test_expiring_today_gets_no_reminder(self, store, user_id):
        doc    = _new_document(user_id, "Identity", name="passport.pdf")
        expiry = ExpiryInfo(has_expiry=True, expiry_date=date(2026, 10, 19))

        assert await ReminderScheduler(store).schedule(doc, expiry, today=date(2026, 10, 19)) == []

    async def test_tax_document_with_expiry_gets_both_reminders(self, store, user_id):
        doc    = _new_document(user_id, "Tax", name="tax_certificate.pdf")
        expiry = ExpiryInfo(has_expiry=True, expiry_date=date(2030, 6, 30))

        created = await ReminderScheduler(store, lead_days=30).schedule(
            doc, expiry, today=date(2029, 10, 1),
        )

        expiry_reminders = [r for r in created if r.urgency == "high"]
        filing_reminders = [r for r in created if r.urgency == "medium"]
        assert len(expiry_reminders) == 1
        assert expiry_reminders[0].reminder_date == date(2030, 5, 31)
        assert len(filing_reminders) == 1
        assert filing_reminders[0].reminder_date == date(2030, 6, 1)
