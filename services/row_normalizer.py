"""
Row Normalizer - map spreadsheet columns onto canonical order fields.

The operator chooses, for each column of the uploaded file, which order
field it feeds (or none). The mapping is validated once, up front; each
row is then turned into an enum-keyed ``NormalizedRow`` with dates and
status vocabulary normalized.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from services.errors import HeaderMappingError

logger = logging.getLogger(__name__)

# Spreadsheet serial day 0 (accounts for the 1900 leap-year bug)
SERIAL_EPOCH = datetime(1899, 12, 30)
CANONICAL_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

_SERIAL_RE = re.compile(r'^\d+(\.\d+)?$')
_DMY_RE = re.compile(
    r'^(?P<day>\d{1,2})/(?P<month>\d{1,2})/(?P<year>\d{4})'
    r'(?:\s+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?$'
)


class OrderField(str, Enum):
    """Canonical fields a column can be mapped to."""
    ORDER_CREATED_AT = 'order_created_at'
    ORDER_NUMBER = 'order_number'
    STATUS = 'status'
    CLIENT_NAME = 'client_name'
    CLIENT_PHONE = 'client_phone'
    CLIENT_EMAIL = 'client_email'
    CLIENT_ADDRESS = 'client_address'
    DUE_DATE = 'due_date'
    SERVICE = 'service'
    PRODUCT = 'product'
    DESCRIPTION = 'description'
    ASSIGNED_TOP_WORKER = 'assigned_top_worker'
    ASSIGNED_BOTTOM_WORKER = 'assigned_bottom_worker'
    CLIENT_TOP_MEASUREMENT = 'client_top_measurement'
    CLIENT_BOTTOM_MEASUREMENT = 'client_bottom_measurement'
    CUSTOM_FIELD = 'custom_field'


# Conventional column headings, used to suggest a mapping
COLUMN_LABELS = {
    OrderField.ORDER_CREATED_AT: 'Created at',
    OrderField.ORDER_NUMBER: 'Order #',
    OrderField.STATUS: 'Status',
    OrderField.CLIENT_NAME: 'Client name',
    OrderField.CLIENT_PHONE: 'Client phone number',
    OrderField.CLIENT_EMAIL: 'Email',
    OrderField.CLIENT_ADDRESS: 'Address',
    OrderField.DUE_DATE: 'Due date',
    OrderField.SERVICE: 'Services/Labors',
    OrderField.PRODUCT: 'Products',
    OrderField.DESCRIPTION: 'Order description',
    OrderField.ASSIGNED_TOP_WORKER: 'Assigned Top Tailor',
    OrderField.ASSIGNED_BOTTOM_WORKER: 'Assigned Down Tailor',
    OrderField.CLIENT_TOP_MEASUREMENT: 'Top Measurements',
    OrderField.CLIENT_BOTTOM_MEASUREMENT: 'Down Measurements',
}

DATE_FIELDS = frozenset({OrderField.ORDER_CREATED_AT, OrderField.DUE_DATE})
REQUIRED_FIELDS = (OrderField.ORDER_NUMBER,)

STATUS_VOCABULARY = {
    'new': 'pending',
    'done': 'completed',
}
STATUS_FALLBACK = 'in_progress'


@dataclass(frozen=True)
class HeaderMapping:
    """
    Validated column -> field mapping.

    ``columns`` holds the columns mapped to a canonical field; each field
    is the target of at most one column. ``custom_columns`` lists columns
    flagged as custom fields, whose header becomes the field title.
    """
    columns: Tuple[Tuple[str, OrderField], ...]
    custom_columns: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Optional[str]]) -> 'HeaderMapping':
        """
        Build a mapping from ``{column: field_name}``.

        Empty or None targets mean "not imported".

        Raises:
            HeaderMappingError: unknown target field, or two columns
                mapped to the same canonical field.
        """
        columns: List[Tuple[str, OrderField]] = []
        custom: List[str] = []
        seen: Dict[OrderField, str] = {}

        for column, target in raw.items():
            if target is None or (isinstance(target, str) and not target.strip()):
                continue
            try:
                order_field = OrderField(target.strip() if isinstance(target, str) else target)
            except ValueError:
                raise HeaderMappingError(
                    f"Column '{column}' is mapped to unknown field '{target}'"
                )

            if order_field is OrderField.CUSTOM_FIELD:
                custom.append(column)
                continue

            if order_field in seen:
                raise HeaderMappingError(
                    f"Field '{order_field.value}' is mapped twice "
                    f"(columns '{seen[order_field]}' and '{column}')"
                )
            seen[order_field] = column
            columns.append((column, order_field))

        return cls(columns=tuple(columns), custom_columns=tuple(custom))

    def is_mapped(self, order_field: OrderField) -> bool:
        return any(mapped is order_field for _, mapped in self.columns)

    def require(self, *fields: OrderField):
        """Raise ``HeaderMappingError`` if any of ``fields`` has no column."""
        missing = [f.value for f in fields if not self.is_mapped(f)]
        if missing:
            raise HeaderMappingError(f"Required field not mapped: {', '.join(missing)}")

    def to_dict(self) -> Dict[str, str]:
        mapping = {column: order_field.value for column, order_field in self.columns}
        mapping.update({column: OrderField.CUSTOM_FIELD.value for column in self.custom_columns})
        return mapping


@dataclass
class NormalizedRow:
    """One source row keyed by canonical field."""
    index: int
    values: Dict[OrderField, Optional[str]] = field(default_factory=dict)
    custom_fields: Dict[str, str] = field(default_factory=dict)

    def get(self, order_field: OrderField) -> Optional[str]:
        return self.values.get(order_field)

    @property
    def order_number(self) -> Optional[str]:
        return self.get(OrderField.ORDER_NUMBER)

    @property
    def client_name(self) -> Optional[str]:
        return self.get(OrderField.CLIENT_NAME)

    @property
    def client_phone(self) -> Optional[str]:
        return self.get(OrderField.CLIENT_PHONE)

    @property
    def label(self) -> str:
        """Human-readable reference for log lines."""
        return f"row {self.index + 1} (order {self.order_number or 'without number'})"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_date(value: Optional[str]) -> Optional[str]:
    """
    Convert a date cell to the canonical timestamp string.

    Accepts spreadsheet serial numbers, ``DD/MM/YYYY[ HH:mm[:ss]]`` and ISO
    timestamps. Returns None for empty or unparseable input.
    """
    text = _clean(value)
    if text is None:
        return None

    if _SERIAL_RE.match(text):
        try:
            parsed = SERIAL_EPOCH + timedelta(days=float(text))
        except (OverflowError, ValueError):
            # Compact dates such as 20240115 land far past datetime.max
            return None
        # Serial fractions rarely land on whole seconds
        parsed = (parsed + timedelta(microseconds=500000)).replace(microsecond=0)
        return parsed.strftime(CANONICAL_TIMESTAMP_FORMAT)

    match = _DMY_RE.match(text)
    if match:
        parts = match.groupdict()
        try:
            parsed = datetime(
                int(parts['year']), int(parts['month']), int(parts['day']),
                int(parts['hour'] or 0), int(parts['minute'] or 0), int(parts['second'] or 0)
            )
        except ValueError:
            return None
        return parsed.strftime(CANONICAL_TIMESTAMP_FORMAT)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.replace(tzinfo=None).strftime(CANONICAL_TIMESTAMP_FORMAT)


def normalize_status(value: Optional[str]) -> Optional[str]:
    """Map free-text status onto the order status vocabulary."""
    text = _clean(value)
    if text is None:
        return None
    return STATUS_VOCABULARY.get(text.lower(), STATUS_FALLBACK)


class RowNormalizer:
    """Apply a ``HeaderMapping`` to raw rows."""

    def __init__(self, mapping: HeaderMapping, reporter=None):
        self.mapping = mapping
        self.reporter = reporter
        self.unparseable_dates = 0

    def normalize(self, rows: Iterable[Mapping[str, str]]) -> List[NormalizedRow]:
        normalized = [self.normalize_row(index, row) for index, row in enumerate(rows)]
        logger.info(f"Normalized {len(normalized)} rows "
                    f"({self.unparseable_dates} unparseable dates)")
        return normalized

    def normalize_row(self, index: int, row: Mapping[str, str]) -> NormalizedRow:
        result = NormalizedRow(index=index)

        for column, order_field in self.mapping.columns:
            raw = row.get(column)
            if order_field in DATE_FIELDS:
                value = normalize_date(raw)
                if value is None and _clean(raw) is not None:
                    self.unparseable_dates += 1
                    self._warn(f"Warning: row {index + 1}: could not parse "
                               f"{order_field.value} '{raw}', leaving it empty")
            elif order_field is OrderField.STATUS:
                value = normalize_status(raw)
            else:
                value = _clean(raw)
            result.values[order_field] = value

        for column in self.mapping.custom_columns:
            value = _clean(row.get(column))
            if value is not None:
                result.custom_fields[column] = value

        return result

    def _warn(self, message: str):
        if self.reporter is not None:
            self.reporter.log(message)
        else:
            logger.warning(message)
