"""
Dependency Materializer - persist new clients, services and workers.

Entities are created in dependency order, derived from the table
dependency graph: clients (and their custom fields), services, workers,
then one base project per new worker. After each bulk call the returned
rows are merged into the ``ImportContext`` snapshot so later stages can
resolve them without another select.
"""

import logging
from typing import Any, Dict, List

import networkx as nx

from services.data_store import DataStore
from services.entity_diff import EntityDiff
from services.errors import DataStoreError
from services.import_context import BASE_PROJECT_NAME, ImportContext

logger = logging.getLogger(__name__)

BASE_PROJECT_DESCRIPTION = 'Base project for worker'
CUSTOM_FIELD_TYPE = 'text'

# (dependency, dependent) pairs between the tables an import writes
TABLE_DEPENDENCIES = (
    ('clients', 'client_custom_fields'),
    ('clients', 'orders'),
    ('services', 'orders'),
    ('workers', 'worker_projects'),
    ('orders', 'order_services'),
    ('services', 'order_services'),
    ('orders', 'order_workers'),
    ('workers', 'order_workers'),
    ('worker_projects', 'order_workers'),
)

ENTITY_TABLES = frozenset({
    'clients', 'client_custom_fields', 'services', 'workers', 'worker_projects'
})


def build_dependency_graph() -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_edges_from(TABLE_DEPENDENCIES)
    return graph


def creation_order(graph: nx.DiGraph = None) -> List[str]:
    """
    Entity tables in the order they must be created.

    Ties are broken by a fixed priority so clients always precede
    services, which precede workers.
    """
    graph = graph if graph is not None else build_dependency_graph()
    priority = {'clients': 0, 'client_custom_fields': 1, 'services': 2,
                'workers': 3, 'worker_projects': 4}
    ordered = nx.lexicographical_topological_sort(
        graph, key=lambda table: (priority.get(table, len(priority)), table)
    )
    return [table for table in ordered if table in ENTITY_TABLES]


def base_project_record(worker_id: Any) -> Dict[str, Any]:
    return {
        'worker_id': worker_id,
        'name': BASE_PROJECT_NAME,
        'description': BASE_PROJECT_DESCRIPTION,
        'price': 0,
        'status': 'active',
    }


class DependencyMaterializer:
    """Bulk-create the entities of an ``EntityDiff``."""

    def __init__(self, store: DataStore, context: ImportContext):
        self.store = store
        self.context = context
        self.reporter = context.reporter
        # Worker ids created in this run, awaiting their base project
        self._new_worker_ids: List[Any] = []
        self._steps = {
            'clients': self._create_clients,
            'client_custom_fields': self._create_client_custom_fields,
            'services': self._create_services,
            'workers': self._create_workers,
            'worker_projects': self._create_worker_projects,
        }

    def materialize(self, diff: EntityDiff) -> Dict[str, int]:
        """
        Create everything in ``diff``; return per-table created counts.

        A failing bulk call marks its category failed and the run goes on.
        Rows depending on a failed category are skipped later, when the
        order preparer cannot resolve them.
        """
        self._new_worker_ids = []
        for table in creation_order():
            self._steps[table](diff)
        return dict(self.context.created)

    def _fail(self, category: str, count: int, error: DataStoreError):
        self.context.failed_categories.add(category)
        self.reporter.error(f"Failed to create {count} {category}: {error.message}")

    def _create_clients(self, diff: EntityDiff):
        if not diff.clients:
            return
        self.reporter.set_stage('clients', f"Creating {len(diff.clients)} new clients...")

        records = [client.to_record() for client in diff.clients.values()]
        try:
            created = self.store.bulk_insert('clients', records)
        except DataStoreError as e:
            self._fail('clients', len(records), e)
            return

        self.context.add_clients(created)
        self.context.created['clients'] += len(created)
        for row in created:
            self.reporter.log(f"Created client: {row.get('name')} ({row.get('phone') or 'no phone'})")

    def _create_client_custom_fields(self, diff: EntityDiff):
        records = []
        for key, client in diff.clients.items():
            if not client.custom_fields:
                continue
            stored = self.context.clients.get(key)
            if stored is None or 'clients' in self.context.failed_categories:
                continue
            for title, value in client.custom_fields.items():
                records.append({
                    'client_id': stored['id'],
                    'title': title,
                    'value': value,
                    'type': CUSTOM_FIELD_TYPE,
                })
        if not records:
            return

        try:
            created = self.store.bulk_insert('client_custom_fields', records)
        except DataStoreError as e:
            # Clients exist without their measurements; orders are unaffected
            self.reporter.warning(f"Could not save {len(records)} client custom fields: {e.message}")
            return

        self.context.created['client_custom_fields'] += len(created)
        self.reporter.log(f"Saved {len(created)} client custom fields")

    def _create_services(self, diff: EntityDiff):
        if not diff.services:
            return
        self.reporter.set_stage('services', f"Creating {len(diff.services)} new services...")

        records = [service.to_record() for service in diff.services.values()]
        try:
            created = self.store.bulk_upsert('services', records, conflict_columns=('name', 'cost'))
        except DataStoreError as e:
            self._fail('services', len(records), e)
            return

        self.context.add_services(created)
        self.context.created['services'] += len(created)
        for row in created:
            self.reporter.log(f"Created service: {row.get('name')} ({row.get('cost')})")

    def _create_workers(self, diff: EntityDiff):
        if not diff.workers:
            return
        self.reporter.set_stage('workers', f"Creating {len(diff.workers)} new workers...")

        records = [worker.to_record() for worker in diff.workers.values()]
        try:
            created = self.store.bulk_insert('workers', records)
        except DataStoreError as e:
            self._fail('workers', len(records), e)
            return

        self.context.add_workers(created)
        self.context.created['workers'] += len(created)
        self._new_worker_ids = [row['id'] for row in created]
        for row in created:
            self.reporter.log(f"Created worker: {row.get('name')}")

    def _create_worker_projects(self, diff: EntityDiff):
        worker_ids = [wid for wid in self._new_worker_ids
                      if wid not in self.context.worker_projects]
        if not worker_ids:
            return
        self.reporter.set_stage('worker_projects',
                                f"Creating base projects for {len(worker_ids)} workers...")

        records = [base_project_record(worker_id) for worker_id in worker_ids]
        try:
            created = self.store.bulk_insert('worker_projects', records)
        except DataStoreError as e:
            # Order preparation repairs missing projects one worker at a time
            self._fail('worker_projects', len(records), e)
            return

        self.context.add_worker_projects(created)
        self.context.created['worker_projects'] += len(created)
        self.reporter.log(f"Created {len(created)} base worker projects")

