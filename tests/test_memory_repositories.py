"""Tests for the in-memory repositories."""

from decimal import Decimal

from square_sync.repositories.base import Contribution, RecurringContribution


class TestIdAllocation:
    def test_auto_id_skips_explicit_contribution_id(self, repos):
        """An explicitly numbered record is never overwritten by a later create."""
        explicit = repos.contributions.create(Contribution(id=1, contact_id=7, trxn_id="A", total_amount=Decimal("5")))
        auto = repos.contributions.create(Contribution(contact_id=7, trxn_id="B", total_amount=Decimal("6")))

        assert auto.id != explicit.id
        assert repos.contributions.get_by_trxn_id("A").id == explicit.id
        assert len(repos.contributions.all()) == 2

    def test_auto_id_after_high_explicit_id(self, repos):
        repos.contributions.create(Contribution(id=40, contact_id=7, total_amount=Decimal("5")))

        assert repos.contributions.create(Contribution(contact_id=7, total_amount=Decimal("5"))).id == 41

    def test_auto_id_skips_explicit_recurring_id(self, repos):
        explicit = repos.recurring.create(RecurringContribution(id=1, contact_id=7, amount=Decimal("25"), processor_id="SUB_A"))
        auto = repos.recurring.create(RecurringContribution(contact_id=7, amount=Decimal("25"), processor_id="SUB_B"))

        assert auto.id != explicit.id
        assert repos.recurring.get_by_processor_id("SUB_A").id == explicit.id
