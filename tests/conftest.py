"""
Pytest configuration and fixtures for order import tests.
"""

import copy
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from dotenv import load_dotenv

from backend.models.schema import Base
from services.data_store import DataStore, TABLE_MODELS
from services.errors import DataStoreError

# Load environment
load_dotenv()

ORG_ID = 'org-test'


class InMemoryDataStore(DataStore):
    """
    DataStore kept in dicts, for pipeline tests.

    ``fail_tables`` makes every write to a table fail; ``fail_calls`` maps
    a table to the 1-based numbers of its insert calls that should fail.
    Every call is appended to ``journal`` as (operation, table, payload).
    """

    def __init__(self, organization_id: str = ORG_ID, page_size: int = 1000):
        super().__init__(organization_id, page_size)
        self.tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TABLE_MODELS}
        self.next_id: Dict[str, int] = {name: 1 for name in TABLE_MODELS}
        self.fail_tables = set()
        self.fail_calls: Dict[str, set] = {}
        self.insert_calls: Dict[str, int] = {name: 0 for name in TABLE_MODELS}
        self.journal: List[tuple] = []
        self.after_insert = None

    def seed(self, table: str, records: List[Dict[str, Any]], organization_id: Optional[str] = None):
        """Add rows directly, bypassing failure injection and the journal."""
        created = []
        for record in records:
            row = {**record, 'id': self.next_id[table],
                   'organization_id': organization_id or self.organization_id}
            self.next_id[table] += 1
            self.tables[table].append(row)
            created.append(copy.deepcopy(row))
        return created

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return [row for row in self.tables[table] if row['organization_id'] == self.organization_id]

    def calls(self, operation: str, table: str) -> List[tuple]:
        return [entry for entry in self.journal if entry[0] == operation and entry[1] == table]

    def _check_failure(self, table: str):
        self.insert_calls[table] += 1
        if table in self.fail_tables or self.insert_calls[table] in self.fail_calls.get(table, ()):
            raise DataStoreError(table, f"simulated failure on call {self.insert_calls[table]}")

    def bulk_insert(self, table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not records:
            return []
        self.journal.append(('insert', table, copy.deepcopy(records)))
        self._check_failure(table)
        created = self.seed(table, self._scoped(records))
        if self.after_insert is not None:
            self.after_insert(table, created)
        return created

    def bulk_upsert(self, table: str, records: List[Dict[str, Any]],
                    conflict_columns: Sequence[str]) -> List[Dict[str, Any]]:
        if not records:
            return []
        self.journal.append(('upsert', table, copy.deepcopy(records)))
        self._check_failure(table)

        result = []
        for record in self._scoped(records):
            key = tuple(record.get(column) for column in conflict_columns)
            existing = next(
                (row for row in self.rows(table)
                 if tuple(row.get(column) for column in conflict_columns) == key),
                None
            )
            if existing is not None:
                existing.update(record)
                result.append(copy.deepcopy(existing))
            else:
                result.extend(self.seed(table, [record]))
        return result

    def bulk_select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                    columns: Optional[Sequence[str]] = None,
                    offset: int = 0, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        self.journal.append(('select', table, {'filters': filters, 'offset': offset, 'limit': limit}))
        matched = [row for row in self.rows(table) if _matches(row, filters)]
        end = None if limit is None else offset + limit
        page = matched[offset:end]
        if columns:
            page = [{column: row.get(column) for column in columns} for row in page]
        return copy.deepcopy(page)

    def bulk_update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        self.journal.append(('update', table, {'filters': filters, 'patch': patch}))
        matched = [row for row in self.rows(table) if _matches(row, filters)]
        for row in matched:
            row.update(patch)
        return len(matched)


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set)):
            if row.get(key) not in value:
                return False
        elif row.get(key) != value:
            return False
    return True


@pytest.fixture
def store():
    """Empty in-memory data store for the test organization."""
    return InMemoryDataStore()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the organization tables."""
    eng = create_engine('sqlite://')
    Base.metadata.create_all(eng, tables=[model.__table__ for model in TABLE_MODELS.values()])
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    """Create a new database session for a test."""
    Session = sessionmaker(bind=engine)
    sess = Session()

    yield sess

    sess.close()


@pytest.fixture
def header_mapping():
    """Mapping for the sample export headers."""
    return {
        'Order #': 'order_number',
        'Created at': 'order_created_at',
        'Status': 'status',
        'Client name': 'client_name',
        'Client phone number': 'client_phone',
        'Due date': 'due_date',
        'Services/Labors': 'service',
        'Order description': 'description',
        'Assigned Top Tailor': 'assigned_top_worker',
        'Assigned Down Tailor': 'assigned_bottom_worker',
        'Top Measurements': 'client_top_measurement',
        'Notes': None,
    }


def make_row(order_number: str, client: str = 'Ama', phone: str = '0551234567',
             services: str = 'Shirt - 2 pcs - GH₵50.00', top: str = '', bottom: str = '',
             **extra) -> Dict[str, str]:
    row = {
        'Order #': order_number,
        'Created at': '15/01/2024 10:30',
        'Status': 'new',
        'Client name': client,
        'Client phone number': phone,
        'Due date': '45322',
        'Services/Labors': services,
        'Order description': f'Order {order_number}',
        'Assigned Top Tailor': top,
        'Assigned Down Tailor': bottom,
        'Top Measurements': '',
        'Notes': 'ignored',
    }
    row.update(extra)
    return row


@pytest.fixture
def row_factory():
    """Build one raw export row; see make_row for the defaults."""
    return make_row


@pytest.fixture
def sample_rows():
    """Three orders: two for the same new client, one for another client."""
    return [
        make_row('ORD-001', services='Shirt - 2 pcs - GH₵50.00Trousers - 1 pcs - GH₵30.00',
                 top='Kwame', bottom='Esi', **{'Top Measurements': 'Chest 40'}),
        make_row('ORD-002', services='Shirt - 1 pcs - GH₵50.00', top='Kwame'),
        make_row('ORD-003', client='Yaw', phone='0209876543',
                 services='Kaba - 1 pcs - GH₵120.00', bottom='Esi'),
    ]


@pytest.fixture
def money():
    """Shorthand for Decimal amounts."""
    return lambda value: Decimal(str(value))
