"""
Tests for order preparation and the worker repair path.
"""

from decimal import Decimal

import pytest

from services.import_context import BASE_PROJECT_NAME, ImportContext
from services.order_preparer import OrderPreparer, WorkerResolver
from services.progress_reporter import ProgressReporter
from services.row_normalizer import HeaderMapping, RowNormalizer


@pytest.fixture
def seeded_store(store):
    """Store holding Ama, two services and Kwame with his base project."""
    store.seed('clients', [{'name': 'Ama', 'phone': '0551234567'}])
    store.seed('services', [
        {'name': 'Shirt', 'cost': Decimal('50.00')},
        {'name': 'Trousers', 'cost': Decimal('30.00')},
    ])
    kwame = store.seed('workers', [{'name': 'Kwame'}])[0]
    store.seed('worker_projects', [{'worker_id': kwame['id'], 'name': BASE_PROJECT_NAME}])
    return store


@pytest.fixture
def normalize(header_mapping):
    normalizer = RowNormalizer(HeaderMapping.from_dict(header_mapping))
    return normalizer.normalize


def make_preparer(store):
    context = ImportContext.from_store(store, ProgressReporter())
    return OrderPreparer(store, context), context


class TestOrderPreparer:
    """Test turning normalized rows into prepared orders."""

    def test_prepare_order(self, seeded_store, normalize, row_factory, money):
        """Lines resolve by (name, price) and the total is the sum of line costs."""
        preparer, context = make_preparer(seeded_store)
        row = normalize([row_factory(
            'ORD-001', services='Shirt - 2 pcs - GH₵50.00Trousers - 1 pcs - GH₵30.00', top='Kwame'
        )])[0]

        prepared = preparer.prepare(row)

        assert prepared.total_amount == money('130.00')
        assert prepared.order['outstanding_balance'] == money('130.00')
        assert prepared.order['payment_status'] == 'unpaid'
        assert prepared.order['status'] == 'pending'
        assert prepared.order['client_id'] == seeded_store.rows('clients')[0]['id']
        assert prepared.order['created_at'] == '2024-01-15 10:30:00'
        assert [(line.quantity, line.cost) for line in prepared.service_lines] == [
            (2, money('100.00')), (1, money('30.00'))
        ]
        kwame = seeded_store.rows('workers')[0]
        assert prepared.assignments[0].worker_id == kwame['id']

    def test_unresolved_service_omitted(self, seeded_store, normalize, row_factory, money):
        """A line naming an unknown service is dropped from the order and its total."""
        preparer, context = make_preparer(seeded_store)
        row = normalize([row_factory(
            'ORD-002', services='Shirt - 1 pcs - GH₵50.00Kaba - 1 pcs - GH₵120.00'
        )])[0]

        prepared = preparer.prepare(row)

        assert len(prepared.service_lines) == 1
        assert prepared.total_amount == money('50.00')
        assert preparer.stats['unresolved_services'] == 1

    def test_price_mismatch_is_unresolved(self, seeded_store, normalize, row_factory):
        preparer, _ = make_preparer(seeded_store)
        row = normalize([row_factory('ORD-003', services='Shirt - 1 pcs - GH₵55.00')])[0]

        assert preparer.prepare(row).service_lines == []

    def test_client_not_found_skips_row(self, seeded_store, normalize, row_factory):
        preparer, context = make_preparer(seeded_store)
        row = normalize([row_factory('ORD-004', client='Kofi', phone='0240000000')])[0]

        assert preparer.prepare(row) is None
        assert preparer.stats['skipped_rows'] == 1
        assert any('Client not found for order ORD-004' in line for line in context.reporter.lines())

    def test_missing_order_number_skips_row(self, seeded_store, normalize, row_factory):
        preparer, _ = make_preparer(seeded_store)
        row = normalize([row_factory('')])[0]

        assert preparer.prepare(row) is None
        assert preparer.stats['skipped_rows'] == 1

    def test_missing_created_at_defaults_to_now(self, seeded_store, normalize, row_factory):
        preparer, _ = make_preparer(seeded_store)
        row = normalize([row_factory('ORD-005', **{'Created at': ''})])[0]

        created_at = preparer.prepare(row).order['created_at']

        assert len(created_at) == len('2024-01-15 10:30:00')

    def test_prepare_all_keeps_row_indexes(self, seeded_store, normalize, row_factory):
        preparer, _ = make_preparer(seeded_store)
        rows = normalize([
            row_factory('ORD-1'),
            row_factory('ORD-2', client='Nobody'),
            row_factory('ORD-3'),
        ])

        prepared = preparer.prepare_all(rows)

        assert [order.row_index for order in prepared] == [0, 2]
        assert preparer.stats['prepared'] == 2

    def test_sub_cent_price_resolves_stored_service(self, seeded_store, normalize, row_factory, money):
        """A stored price of 12.35 matches service text written as 12.345."""
        seeded_store.seed('services', [{'name': 'Buttons', 'cost': Decimal('12.35')}])
        preparer, _ = make_preparer(seeded_store)
        row = normalize([row_factory('ORD-7', services='Buttons - 2 pcs - GH₵12.345')])[0]

        prepared = preparer.prepare(row)

        assert len(prepared.service_lines) == 1
        assert prepared.total_amount == money('24.70')
        assert preparer.stats['unresolved_services'] == 0


class TestWorkerRepair:
    """Test the single-row fallback for workers missing at preparation time."""

    def test_cached_worker_needs_no_writes(self, seeded_store):
        context = ImportContext.from_store(seeded_store, ProgressReporter())
        resolver = WorkerResolver(seeded_store, context)

        first = resolver.resolve('Kwame')
        second = resolver.resolve(' KWAME ')

        assert first == second
        assert [entry for entry in seeded_store.journal if entry[0] == 'insert'] == []
        assert context.repairs.total == 0

    def test_missing_worker_repaired(self, seeded_store):
        """A worker absent from the snapshot is created with a base project."""
        context = ImportContext.from_store(seeded_store, ProgressReporter())
        resolver = WorkerResolver(seeded_store, context)

        assignment = resolver.resolve('Kofi')

        assert assignment is not None
        assert context.repairs.workers_created == 1
        assert context.repairs.projects_created == 1
        project = seeded_store.rows('worker_projects')[-1]
        assert assignment.project_id == project['id']
        assert any(line.endswith('Repair: creating missing worker Kofi') for line in context.reporter.lines())

    def test_missing_project_repaired(self, seeded_store):
        esi = seeded_store.seed('workers', [{'name': 'Esi'}])[0]
        context = ImportContext.from_store(seeded_store, ProgressReporter())

        assignment = WorkerResolver(seeded_store, context).resolve('Esi')

        assert assignment.worker_id == esi['id']
        assert context.repairs.to_dict() == {
            'projects_created': 1, 'workers_created': 0, 'failures': 0
        }

    def test_failed_repair_not_cached(self, seeded_store):
        """A failed repair returns None and is retried for the next row."""
        seeded_store.fail_tables.add('workers')
        context = ImportContext.from_store(seeded_store, ProgressReporter())
        resolver = WorkerResolver(seeded_store, context)

        assert resolver.resolve('Kofi') is None
        assert resolver.resolve('Kofi') is None

        assert context.repairs.failures == 2
        assert len(seeded_store.calls('insert', 'workers')) == 2
        assert 'kofi' not in context.worker_cache

    def test_failed_worker_category_not_repaired(self, seeded_store):
        """Workers lost to a failed bulk create stay unresolved; no single-row retries."""
        context = ImportContext.from_store(seeded_store, ProgressReporter())
        context.failed_categories.add('workers')
        resolver = WorkerResolver(seeded_store, context)

        assert resolver.resolve('Kofi') is None
        assert resolver.resolve('Kwame') is not None

        assert seeded_store.calls('insert', 'workers') == []
        assert context.repairs.total == 0

    def test_unresolved_worker_keeps_order(self, seeded_store, normalize, row_factory):
        """An unresolvable worker drops the assignment, not the order."""
        seeded_store.fail_tables.add('workers')
        preparer, _ = make_preparer(seeded_store)
        row = normalize([row_factory('ORD-6', top='Kwame', bottom='Kofi')])[0]

        prepared = preparer.prepare(row)

        assert len(prepared.assignments) == 1
        assert preparer.stats['unresolved_workers'] == 1
