"""
Parser for the free-text service column of an order export.

The column lists services back to back, each entry ending with its
price::

    Shirt - 2 pcs - GH₵50.00Trousers - 1 pcs - GH₵30.00

Entries are therefore delimited by the currency marker and its amount.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY_SYMBOL = 'GH₵'

_AMOUNT = r'[\d,]+(?:\.\d+)?'

# Prices are stored as numeric(12, 2)
CENTS = Decimal('0.01')


@dataclass(frozen=True)
class ServiceEntry:
    """One ``<name> - <qty> pcs - <currency><amount>`` entry."""
    name: str
    quantity: int
    price: Decimal

    @property
    def line_cost(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class ParsedServiceText:
    entries: List[ServiceEntry] = field(default_factory=list)
    malformed: List[str] = field(default_factory=list)


class ServiceTextParser:
    """Split and parse service text; malformed entries are collected, not raised."""

    def __init__(self, currency_symbol: str = DEFAULT_CURRENCY_SYMBOL):
        self.currency_symbol = currency_symbol
        currency = re.escape(currency_symbol)
        self._delimiter_re = re.compile(currency + r'\s*' + _AMOUNT)
        self._entry_re = re.compile(
            r'^(?P<name>.+?)\s*-\s*(?P<quantity>\d+)\s*pcs\s*-\s*'
            + currency + r'\s*(?P<amount>' + _AMOUNT + r')$',
            re.IGNORECASE | re.DOTALL
        )

    def parse(self, text: Optional[str]) -> ParsedServiceText:
        result = ParsedServiceText()
        if not text or not text.strip():
            return result

        start = 0
        for match in self._delimiter_re.finditer(text):
            chunk = text[start:match.end()].strip()
            start = match.end()

            entry = self.parse_entry(chunk)
            if entry is None:
                result.malformed.append(chunk)
            else:
                result.entries.append(entry)

        trailing = text[start:].strip()
        if trailing:
            result.malformed.append(trailing)

        if result.malformed:
            logger.debug(f"Dropped {len(result.malformed)} malformed service entries from {text!r}")
        return result

    def parse_entry(self, chunk: str) -> Optional[ServiceEntry]:
        match = self._entry_re.match(chunk)
        if not match:
            return None

        name = match.group('name').strip()
        if not name:
            return None

        return ServiceEntry(
            name=name,
            quantity=int(match.group('quantity')),
            price=Decimal(match.group('amount').replace(',', '')).quantize(CENTS, ROUND_HALF_UP)
        )
