"""
Order Preparer - turn normalized rows into order records ready to commit.

Each row is handled on its own: resolve the client, parse and resolve the
service lines, resolve the assigned workers, compute the total. Nothing is
inserted here except by ``WorkerRepair``, the single-row fallback used
when a worker or its base project is missing from the snapshot.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from services.data_store import DataStore
from services.dependency_materializer import base_project_record
from services.entity_diff import WORKER_FIELDS
from services.errors import DataStoreError
from services.import_context import ImportContext, WorkerAssignment, worker_key
from services.row_normalizer import CANONICAL_TIMESTAMP_FORMAT, NormalizedRow, OrderField
from services.service_text import ServiceTextParser

logger = logging.getLogger(__name__)

DEFAULT_ORDER_STATUS = 'pending'
ORDER_TYPE = 'service_order'
INITIAL_PAYMENT_STATUS = 'unpaid'


@dataclass(frozen=True)
class ServiceLine:
    service_id: Any
    quantity: int
    cost: Decimal


@dataclass
class PreparedOrder:
    """An order not yet persisted, with its pending lines and assignments."""
    row_index: int
    order: Dict[str, Any]
    service_lines: List[ServiceLine] = field(default_factory=list)
    assignments: List[WorkerAssignment] = field(default_factory=list)

    @property
    def order_number(self) -> str:
        return self.order['order_number']

    @property
    def total_amount(self) -> Decimal:
        return self.order['total_amount']


class WorkerRepair:
    """
    Single-row creates for workers or base projects missing at preparation
    time. In a healthy run this never fires; ``context.repairs`` counts
    every time it does.
    """

    def __init__(self, store: DataStore, context: ImportContext):
        self.store = store
        self.context = context
        self.reporter = context.reporter

    def create_project(self, worker: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.reporter.log(f"Repair: creating missing base project for worker {worker.get('name')}")
        try:
            created = self.store.bulk_insert('worker_projects', [base_project_record(worker['id'])])
        except DataStoreError as e:
            self.context.repairs.failures += 1
            self.reporter.error(f"Repair failed: base project for worker {worker.get('name')}: {e.message}")
            return None

        self.context.add_worker_projects(created)
        self.context.repairs.projects_created += 1
        return created[0]

    def create_worker(self, name: str) -> Optional[Dict[str, Any]]:
        self.reporter.log(f"Repair: creating missing worker {name}")
        try:
            created = self.store.bulk_insert('workers', [{'name': name, 'status': 'active'}])
        except DataStoreError as e:
            self.context.repairs.failures += 1
            self.reporter.error(f"Repair failed: worker {name}: {e.message}")
            return None

        self.context.add_workers(created)
        self.context.repairs.workers_created += 1
        return created[0]


class WorkerResolver:
    """Resolve worker names to (worker, base project) pairs, caching hits."""

    def __init__(self, store: DataStore, context: ImportContext):
        self.context = context
        self.repair = WorkerRepair(store, context)

    def resolve(self, name: Optional[str]) -> Optional[WorkerAssignment]:
        key = worker_key(name)
        if key is None:
            return None

        cached = self.context.worker_cache.get(key)
        if cached is not None:
            return cached

        worker = self.context.workers.get(key)
        if worker is None:
            # Already reported by the materializer; not retried row by row
            if 'workers' in self.context.failed_categories:
                return None
            worker = self.repair.create_worker(name.strip())
            if worker is None:
                return None

        project = self.context.worker_projects.get(worker['id'])
        if project is None:
            project = self.repair.create_project(worker)
            if project is None:
                return None

        assignment = WorkerAssignment(worker_id=worker['id'], project_id=project['id'])
        self.context.worker_cache[key] = assignment
        return assignment


class OrderPreparer:
    """Build ``PreparedOrder`` objects against the updated working snapshot."""

    def __init__(self, store: DataStore, context: ImportContext,
                 parser: Optional[ServiceTextParser] = None):
        self.context = context
        self.reporter = context.reporter
        self.parser = parser or ServiceTextParser()
        self.workers = WorkerResolver(store, context)
        self.stats = {
            'prepared': 0,
            'skipped_rows': 0,
            'unresolved_services': 0,
            'malformed_services': 0,
            'unresolved_workers': 0,
        }

    def prepare_all(self, rows: List[NormalizedRow]) -> List[PreparedOrder]:
        prepared = []
        total = len(rows)
        for position, row in enumerate(rows, 1):
            self.reporter.set_stage('preparing', f"Preparing order {position} of {total}...")
            order = self.prepare(row)
            if order is not None:
                prepared.append(order)

        logger.info(f"Prepared {len(prepared)} orders from {total} rows")
        return prepared

    def prepare(self, row: NormalizedRow) -> Optional[PreparedOrder]:
        if not row.order_number:
            self.stats['skipped_rows'] += 1
            self.reporter.warning(f"{row.label}: no order number, row skipped")
            return None

        client = self.context.find_client(row.client_name, row.client_phone)
        if client is None:
            self.stats['skipped_rows'] += 1
            self.reporter.warning(
                f"Client not found for order {row.order_number} "
                f"({row.client_name or 'no name'}, {row.client_phone or 'no phone'}), row skipped"
            )
            return None

        lines = self._service_lines(row)
        total = sum((line.cost for line in lines), Decimal('0'))

        return self._build(row, client, lines, self._assignments(row), total)

    def _service_lines(self, row: NormalizedRow) -> List[ServiceLine]:
        parsed = self.parser.parse(row.get(OrderField.SERVICE))

        for chunk in parsed.malformed:
            self.stats['malformed_services'] += 1
            self.reporter.warning(f"Order {row.order_number}: could not parse service entry '{chunk}'")

        lines = []
        for entry in parsed.entries:
            service = self.context.find_service(entry.name, entry.price)
            if service is None:
                self.stats['unresolved_services'] += 1
                self.reporter.warning(
                    f"Service not found for order {row.order_number}: {entry.name} at {entry.price}"
                )
                continue
            lines.append(ServiceLine(service_id=service['id'], quantity=entry.quantity,
                                     cost=entry.line_cost))
        return lines

    def _assignments(self, row: NormalizedRow) -> List[WorkerAssignment]:
        assignments = []
        for worker_field in WORKER_FIELDS:
            name = row.get(worker_field)
            if not name:
                continue
            assignment = self.workers.resolve(name)
            if assignment is None:
                self.stats['unresolved_workers'] += 1
                self.reporter.warning(f"Worker not resolved for order {row.order_number}: {name}")
                continue
            assignments.append(assignment)
        return assignments

    def _build(self, row: NormalizedRow, client: Dict[str, Any], lines: List[ServiceLine],
               assignments: List[WorkerAssignment], total: Decimal) -> PreparedOrder:
        created_at = (row.get(OrderField.ORDER_CREATED_AT)
                      or datetime.utcnow().strftime(CANONICAL_TIMESTAMP_FORMAT))
        order = {
            'order_number': row.order_number,
            'client_id': client['id'],
            'description': row.get(OrderField.DESCRIPTION),
            'due_date': row.get(OrderField.DUE_DATE),
            'status': row.get(OrderField.STATUS) or DEFAULT_ORDER_STATUS,
            'order_type': ORDER_TYPE,
            'total_amount': total,
            'outstanding_balance': total,
            'payment_status': INITIAL_PAYMENT_STATUS,
            'created_at': created_at,
        }
        self.stats['prepared'] += 1
        return PreparedOrder(row_index=row.index, order=order,
                             service_lines=lines, assignments=assignments)
