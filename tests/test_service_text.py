"""
Tests for the service column parser.
"""

from decimal import Decimal

from services.service_text import ServiceTextParser


class TestServiceTextParser:
    """Test splitting and parsing of service text."""

    def test_two_entries(self):
        """Entries run together and are split at each price."""
        parsed = ServiceTextParser().parse('Shirt - 2 pcs - GH₵50.00Trousers - 1 pcs - GH₵30.00')

        assert [(e.name, e.quantity, e.price) for e in parsed.entries] == [
            ('Shirt', 2, Decimal('50.00')),
            ('Trousers', 1, Decimal('30.00')),
        ]
        assert parsed.malformed == []
        assert sum(e.line_cost for e in parsed.entries) == Decimal('130.00')

    def test_thousands_separator(self):
        parsed = ServiceTextParser().parse('Wedding gown - 1 pcs - GH₵1,250.50')

        assert parsed.entries[0].price == Decimal('1250.50')

    def test_prices_rounded_to_cents(self):
        """Prices are kept to the two decimals the services table stores."""
        parsed = ServiceTextParser().parse('Buttons - 4 pcs - GH₵12.345Zip - 1 pcs - GH₵0.004')

        assert [e.price for e in parsed.entries] == [Decimal('12.35'), Decimal('0.00')]
        assert parsed.entries[0].line_cost == Decimal('49.40')

    def test_empty_text(self):
        assert ServiceTextParser().parse('').entries == []
        assert ServiceTextParser().parse(None).entries == []

    def test_malformed_entry_dropped(self):
        """A malformed entry is dropped; its neighbours still parse."""
        parsed = ServiceTextParser().parse('Shirt 2 pieces GH₵50.00Trousers - 1 pcs - GH₵30.00')

        assert [e.name for e in parsed.entries] == ['Trousers']
        assert parsed.malformed == ['Shirt 2 pieces GH₵50.00']

    def test_trailing_text_without_price(self):
        parsed = ServiceTextParser().parse('Shirt - 2 pcs - GH₵50.00 Alterations')

        assert len(parsed.entries) == 1
        assert parsed.malformed == ['Alterations']

    def test_other_currency_symbol(self):
        parsed = ServiceTextParser(currency_symbol='$').parse('Hem - 3 pcs - $4.50')

        assert parsed.entries[0].line_cost == Decimal('13.50')

    def test_case_insensitive_pcs(self):
        parsed = ServiceTextParser().parse('Shirt - 2 PCS - GH₵50')

        assert parsed.entries[0].quantity == 2
