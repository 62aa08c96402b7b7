"""
Batch Committer - insert prepared orders and their lines in batches.

For every batch of orders: one bulk insert, match the returned rows back
to the prepared orders by order number, then insert the service lines and
worker assignments of the orders that were created, in sub-batches of
their own. Batches run strictly one after another; cancellation is
checked only between them.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Tuple

from services.data_store import DataStore
from services.errors import DataStoreError
from services.order_preparer import PreparedOrder
from services.progress_reporter import ProgressReporter

logger = logging.getLogger(__name__)

DEFAULT_ORDER_BATCH_SIZE = 20
DEFAULT_LINE_BATCH_SIZE = 50


@dataclass
class CommitStats:
    orders_created: int = 0
    services_created: int = 0
    workers_created: int = 0
    batches_total: int = 0
    batches_committed: int = 0
    batches_failed: int = 0
    line_batches_failed: int = 0
    duplicate_assignments: int = 0
    cancelled_at_batch: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orders_created': self.orders_created,
            'services_created': self.services_created,
            'workers_created': self.workers_created,
            'batches_total': self.batches_total,
            'batches_committed': self.batches_committed,
            'batches_failed': self.batches_failed,
            'line_batches_failed': self.line_batches_failed,
            'duplicate_assignments': self.duplicate_assignments,
            'cancelled_at_batch': self.cancelled_at_batch,
        }


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    return [items[start:start + size] for start in range(0, len(items), size)]


class BatchCommitter:
    """Commit ``PreparedOrder`` objects through a ``DataStore``."""

    def __init__(
        self,
        store: DataStore,
        reporter: ProgressReporter,
        order_batch_size: int = DEFAULT_ORDER_BATCH_SIZE,
        line_batch_size: int = DEFAULT_LINE_BATCH_SIZE
    ):
        if order_batch_size < 1 or line_batch_size < 1:
            raise ValueError("batch sizes must be positive")
        self.store = store
        self.reporter = reporter
        self.order_batch_size = order_batch_size
        self.line_batch_size = line_batch_size
        self.stats = CommitStats()

    def commit(self, prepared: List[PreparedOrder]) -> CommitStats:
        batches = chunked(prepared, self.order_batch_size)
        self.stats.batches_total = len(batches)

        for number, batch in enumerate(batches, 1):
            if self.reporter.cancelled:
                self.stats.cancelled_at_batch = number - 1
                self.reporter.log(self._cancel_message(number - 1, len(batches)))
                break

            self.reporter.set_stage(
                'orders', f"Creating orders batch {number} of {len(batches)}..."
            )
            self._commit_batch(number, batch)
            # Failed batches advance the counter too
            self.reporter.update(
                max(order.row_index for order in batch) + 1,
                f"Created {self.stats.orders_created} orders, "
                f"{self.stats.services_created} services, "
                f"{self.stats.workers_created} workers"
            )

        return self.stats

    @staticmethod
    def _cancel_message(completed: int, total: int) -> str:
        if completed >= total:
            return f"Import cancelled after batch {completed} of {total}"
        remaining = (f"batch {completed + 1} was" if completed + 1 == total
                     else f"batches {completed + 1}-{total} were")
        return f"Import cancelled after batch {completed} of {total}; {remaining} not attempted"

    def _commit_batch(self, number: int, batch: List[PreparedOrder]) -> List[PreparedOrder]:
        """Insert one batch; return the prepared orders that were created."""
        try:
            rows = self.store.bulk_insert('orders', [order.order for order in batch])
        except DataStoreError as e:
            self.stats.batches_failed += 1
            numbers = ', '.join(order.order_number for order in batch)
            self.reporter.error(f"Error creating order batch {number} (orders {numbers}): {e.message}")
            return []

        matched = self._match(batch, rows)
        self.stats.batches_committed += 1
        self.stats.orders_created += len(matched)
        for order, _ in matched:
            self.reporter.log(f"Created order {order.order_number}")

        self._insert_service_lines(number, matched)
        self._insert_assignments(number, matched)
        return [order for order, _ in matched]

    def _match(self, batch: List[PreparedOrder],
               rows: List[Dict[str, Any]]) -> List[Tuple[PreparedOrder, Any]]:
        """
        Pair returned rows with prepared orders by order number.

        Repeated order numbers pair in submission order. Returned rows
        that match nothing are logged and ignored.
        """
        pending: Dict[str, Deque[PreparedOrder]] = defaultdict(deque)
        for order in batch:
            pending[order.order_number].append(order)

        matched = []
        for row in rows:
            queue = pending.get(row.get('order_number'))
            if not queue:
                self.reporter.warning(f"Created order {row.get('order_number')} matches no prepared order")
                continue
            matched.append((queue.popleft(), row['id']))

        for number, queue in pending.items():
            for order in queue:
                self.reporter.warning(f"Order {number} was not returned by the store; "
                                      f"its services and workers were not saved")
        return matched

    def _insert_service_lines(self, number: int, matched: List[Tuple[PreparedOrder, Any]]):
        records = [
            {
                'order_id': order_id,
                'service_id': line.service_id,
                'quantity': line.quantity,
                'cost': line.cost,
            }
            for order, order_id in matched
            for line in order.service_lines
        ]
        self.stats.services_created += self._insert_lines('order_services', number, records)

    def _insert_assignments(self, number: int, matched: List[Tuple[PreparedOrder, Any]]):
        records = []
        for order, order_id in matched:
            seen = set()
            for assignment in order.assignments:
                pair = (assignment.worker_id, assignment.project_id)
                if pair in seen:
                    self.stats.duplicate_assignments += 1
                    self.reporter.log(
                        f"Skipping duplicate worker assignment for order {order.order_number}"
                    )
                    continue
                seen.add(pair)
                records.append({
                    'order_id': order_id,
                    'worker_id': assignment.worker_id,
                    'project_id': assignment.project_id,
                    'status': 'assigned',
                })
        self.stats.workers_created += self._insert_lines('order_workers', number, records)

    def _insert_lines(self, table: str, number: int, records: List[Dict[str, Any]]) -> int:
        created = 0
        for chunk in chunked(records, self.line_batch_size):
            try:
                created += len(self.store.bulk_insert(table, chunk))
            except DataStoreError as e:
                self.stats.line_batches_failed += 1
                self.reporter.error(
                    f"Error creating {len(chunk)} {table} for order batch {number}: {e.message}"
                )
        return created
