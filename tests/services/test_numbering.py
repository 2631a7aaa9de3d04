"""
Tests for document numbering.

Numbers come from locked counter rows, restart each year for loans and
payments and each day for entries.
"""

from datetime import date

from pawn_kernel.services.numbering_service import NumberingService
from pawn_kernel.services.sequence_service import SequenceService


class TestSequenceService:

    def test_first_value_is_one(self, session):
        assert SequenceService(session).next_value("test:a") == 1

    def test_values_increase(self, session):
        sequences = SequenceService(session)
        values = [sequences.next_value("test:b") for _ in range(3)]
        assert values == [1, 2, 3]
        assert sequences.current_value("test:b") == 3

    def test_unknown_sequence_has_no_current_value(self, session):
        assert SequenceService(session).current_value("test:none") is None


class TestNumberingService:

    def test_loan_numbers(self, session):
        numbering = NumberingService(session)
        assert numbering.next_loan_number(date(2024, 3, 1)) == "LN-2024-000001"
        assert numbering.next_loan_number(date(2024, 12, 31)) == "LN-2024-000002"

    def test_loan_numbers_restart_each_year(self, session):
        numbering = NumberingService(session)
        numbering.next_loan_number(date(2024, 3, 1))
        assert numbering.next_loan_number(date(2025, 1, 1)) == "LN-2025-000001"

    def test_payment_and_loan_counters_are_independent(self, session):
        numbering = NumberingService(session)
        numbering.next_loan_number(date(2024, 3, 1))
        assert numbering.next_payment_number(date(2024, 3, 1)) == "PY-2024-000001"

    def test_entry_numbers_are_daily(self, session):
        numbering = NumberingService(session)
        assert numbering.next_entry_number(date(2024, 3, 1)) == "JE-20240301-0001"
        assert numbering.next_entry_number(date(2024, 3, 1)) == "JE-20240301-0002"
        assert numbering.next_entry_number(date(2024, 3, 2)) == "JE-20240302-0001"

    def test_sale_numbers(self, session):
        numbering = NumberingService(session)
        assert numbering.next_sale_number(date(2024, 6, 1)) == "SL-2024-000001"
