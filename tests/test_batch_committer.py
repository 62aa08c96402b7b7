"""
Tests for batched order commits.
"""

from decimal import Decimal

import pytest

from services.batch_committer import BatchCommitter, chunked
from services.import_context import WorkerAssignment
from services.order_preparer import PreparedOrder, ServiceLine
from services.progress_reporter import ProgressReporter


def prepared_order(row_index, order_number=None, lines=1, assignments=()):
    number = order_number or f'ORD-{row_index + 1}'
    return PreparedOrder(
        row_index=row_index,
        order={'order_number': number, 'client_id': 1, 'total_amount': Decimal('50.00')},
        service_lines=[ServiceLine(service_id=10 + i, quantity=1, cost=Decimal('50.00'))
                       for i in range(lines)],
        assignments=list(assignments),
    )


@pytest.fixture
def reporter():
    reporter = ProgressReporter()
    reporter.start(5, 'test')
    return reporter


class TestChunked:
    def test_chunks(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert chunked([], 3) == []


class TestBatchCommitter:
    """Test order batches, line sub-batches and cancellation."""

    def test_commit_all(self, store, reporter):
        orders = [prepared_order(i) for i in range(5)]

        stats = BatchCommitter(store, reporter, order_batch_size=2).commit(orders)

        assert stats.batches_total == 3
        assert stats.orders_created == 5
        assert stats.services_created == 5
        assert len(store.calls('insert', 'orders')) == 3
        assert reporter.current == 5

    def test_failed_batch_is_skipped(self, store, reporter):
        """A failed order batch is logged with its order numbers; later batches still run."""
        store.fail_calls['orders'] = {2}
        orders = [prepared_order(i) for i in range(5)]

        stats = BatchCommitter(store, reporter, order_batch_size=2).commit(orders)

        assert stats.orders_created == 3
        assert stats.batches_failed == 1
        assert [o['order_number'] for o in store.rows('orders')] == ['ORD-1', 'ORD-2', 'ORD-5']
        assert any('Error creating order batch 2 (orders ORD-3, ORD-4)' in error
                   for error in reporter.errors)
        # Lines of the failed batch were never attempted
        assert stats.services_created == 3

    def test_failed_last_batch_still_reports_progress(self, store):
        snapshots = []
        reporter = ProgressReporter(listener=snapshots.append)
        reporter.start(3, 'test')
        store.fail_calls['orders'] = {3}

        BatchCommitter(store, reporter, order_batch_size=1).commit(
            [prepared_order(i) for i in range(3)])

        order_snapshots = [s for s in snapshots if s['stage'] == 'orders']
        assert [s['current'] for s in order_snapshots][-1] == 3
        assert order_snapshots[-1]['message'] == 'Created 2 orders, 2 services, 0 workers'

    def test_lines_reference_created_orders(self, store, reporter):
        orders = [prepared_order(0, lines=2), prepared_order(1)]

        BatchCommitter(store, reporter).commit(orders)

        order_ids = {o['order_number']: o['id'] for o in store.rows('orders')}
        lines = store.rows('order_services')
        assert [line['order_id'] for line in lines] == [order_ids['ORD-1'], order_ids['ORD-1'],
                                                         order_ids['ORD-2']]

    def test_repeated_order_numbers_match_in_order(self, store, reporter):
        """Two orders with the same number pair with the returned rows first-in first-out."""
        first = prepared_order(0, 'ORD-X', lines=1)
        second = prepared_order(1, 'ORD-X', lines=2)

        BatchCommitter(store, reporter).commit([first, second])

        first_id, second_id = [o['id'] for o in store.rows('orders')]
        by_order = {}
        for line in store.rows('order_services'):
            by_order.setdefault(line['order_id'], []).append(line['service_id'])
        assert by_order == {first_id: [10], second_id: [10, 11]}

    def test_duplicate_assignment_skipped(self, store, reporter):
        """The same worker as top and bottom is assigned once."""
        kojo = WorkerAssignment(worker_id=7, project_id=70)
        esi = WorkerAssignment(worker_id=8, project_id=80)
        order = prepared_order(0, assignments=[kojo, kojo, esi])

        stats = BatchCommitter(store, reporter).commit([order])

        assert [(w['worker_id'], w['project_id']) for w in store.rows('order_workers')] == [
            (7, 70), (8, 80)
        ]
        assert stats.duplicate_assignments == 1
        assert any('Skipping duplicate worker assignment for order ORD-1' in line
                   for line in reporter.lines())

    def test_same_worker_on_two_orders_kept(self, store, reporter):
        kojo = WorkerAssignment(worker_id=7, project_id=70)

        stats = BatchCommitter(store, reporter).commit([
            prepared_order(0, assignments=[kojo]), prepared_order(1, assignments=[kojo])
        ])

        assert stats.workers_created == 2

    def test_line_sub_batches(self, store, reporter):
        """Lines are inserted in sub-batches; one failing sub-batch loses only its lines."""
        store.fail_calls['order_services'] = {2}
        order = prepared_order(0, lines=5)

        stats = BatchCommitter(store, reporter, line_batch_size=2).commit([order])

        assert len(store.calls('insert', 'order_services')) == 3
        assert stats.services_created == 3
        assert stats.line_batches_failed == 1
        assert stats.orders_created == 1

    def test_cancel_between_batches(self, store, reporter):
        """Cancelling during batch 2 lets it finish; batches 3-5 are not attempted."""
        def cancel_after_second(table, created):
            if table == 'orders' and len(store.calls('insert', 'orders')) == 2:
                reporter.cancel()

        store.after_insert = cancel_after_second
        orders = [prepared_order(i) for i in range(5)]

        stats = BatchCommitter(store, reporter, order_batch_size=1).commit(orders)

        assert stats.cancelled_at_batch == 2
        assert stats.orders_created == 2
        assert len(store.calls('insert', 'orders')) == 2
        assert any(line.endswith('Import cancelled after batch 2 of 5; batches 3-5 were not attempted')
                   for line in reporter.lines())

    def test_progress_follows_row_index(self, store, reporter):
        """Progress is the highest source row reached, not the count of orders."""
        BatchCommitter(store, reporter).commit([prepared_order(3)])

        assert reporter.current == 4

    def test_invalid_batch_size(self, store, reporter):
        with pytest.raises(ValueError):
            BatchCommitter(store, reporter, order_batch_size=0)
