"""
End-to-end tests for the order import pipeline against the in-memory store.
"""

import csv

import pytest

from services.errors import DataStoreError
from services.order_import_service import (
    OrderImportService, STATUS_CANCELLED, STATUS_FAILED, STATUS_SUCCESS
)


def entity_writes(store):
    return [entry for entry in store.journal
            if entry[0] in ('insert', 'upsert') and entry[1] not in
            ('orders', 'order_services', 'order_workers')]


class TestOrderImportService:
    """Test the full import run."""

    def test_import_sample(self, store, sample_rows, header_mapping, money):
        """Three rows create two clients, three services, two workers and three orders."""
        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['status'] == STATUS_SUCCESS
        assert result['errors'] == []
        stats = result['stats']
        assert stats['entities_created'] == {
            'clients': 2, 'client_custom_fields': 1, 'services': 3,
            'workers': 2, 'worker_projects': 2,
        }
        assert stats['orders_created'] == 3
        assert stats['services_created'] == 4
        assert stats['workers_created'] == 4

        totals = {o['order_number']: o['total_amount'] for o in store.rows('orders')}
        assert totals == {'ORD-001': money('130.00'), 'ORD-002': money('50.00'),
                          'ORD-003': money('120.00')}

    def test_repeated_client_shares_id(self, store, sample_rows, header_mapping):
        """Rows naming the same client produce one client row, referenced by both orders."""
        OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert len([c for c in store.rows('clients') if c['name'] == 'Ama']) == 1
        client_ids = {o['order_number']: o['client_id'] for o in store.rows('orders')}
        assert client_ids['ORD-001'] == client_ids['ORD-002']
        assert client_ids['ORD-001'] != client_ids['ORD-003']

    def test_rerun_creates_no_entities(self, store, sample_rows, header_mapping):
        """Importing the same file twice creates clients, services and workers only once."""
        service = OrderImportService(store)
        service.import_rows(sample_rows, header_mapping)
        writes_after_first = len(entity_writes(store))

        result = service.import_rows(sample_rows, header_mapping)

        assert result['status'] == STATUS_SUCCESS
        assert set(result['stats']['entities_created'].values()) == {0}
        assert len(entity_writes(store)) == writes_after_first
        assert result['stats']['repairs']['projects_created'] == 0

    def test_assignments_use_created_projects(self, store, sample_rows, header_mapping):
        """Every assignment points at a base project returned by a project insert."""
        returned = set()

        def record_projects(table, created):
            if table == 'worker_projects':
                returned.update(row['id'] for row in created)

        store.after_insert = record_projects

        OrderImportService(store).import_rows(sample_rows, header_mapping)

        assigned = {w['project_id'] for w in store.rows('order_workers')}
        assert assigned <= returned
        assert len(assigned) == 2

    def test_same_worker_top_and_bottom(self, store, row_factory, header_mapping):
        rows = [row_factory('ORD-1', top='Kojo', bottom='kojo')]

        result = OrderImportService(store).import_rows(rows, header_mapping)

        assert result['stats']['entities_created']['workers'] == 1
        assert len(store.rows('order_workers')) == 1
        assert result['stats']['duplicate_assignments'] == 1

    def test_cancel_after_second_batch(self, store, row_factory, header_mapping):
        """Cancel takes effect between batches and reports where it stopped."""
        rows = [row_factory(f'ORD-{i}') for i in range(1, 6)]
        service = OrderImportService(store, order_batch_size=1)

        def cancel_after_second(table, created):
            if table == 'orders' and len(store.calls('insert', 'orders')) == 2:
                service.cancel()

        store.after_insert = cancel_after_second

        result = service.import_rows(rows, header_mapping)

        assert result['status'] == STATUS_CANCELLED
        assert result['cancelled_at_batch'] == 2
        assert len(store.rows('orders')) == 2
        assert any('Import cancelled after batch 2 of 5; batches 3-5 were not attempted' in line
                   for line in result['log'])

    def test_external_cancel_check(self, store, sample_rows, header_mapping):
        """A cancel flag set before the run stops it before any entity is written."""
        result = OrderImportService(store, cancel_check=lambda: True).import_rows(
            sample_rows, header_mapping)

        assert result['status'] == STATUS_CANCELLED
        assert result['cancelled_at_batch'] == 0
        assert entity_writes(store) == []

    def test_invalid_mapping_fails_without_store_calls(self, store, sample_rows):
        result = OrderImportService(store).import_rows(sample_rows, {'Client name': 'client_name'})

        assert result['status'] == STATUS_FAILED
        assert 'order_number' in result['errors'][0]
        assert store.journal == []

    def test_unknown_field_fails_without_store_calls(self, store, sample_rows):
        result = OrderImportService(store).import_rows(
            sample_rows, {'Order #': 'order_number', 'Status': 'state'})

        assert result['status'] == STATUS_FAILED
        assert store.journal == []

    def test_snapshot_failure(self, store, sample_rows, header_mapping, monkeypatch):
        def broken_select(*args, **kwargs):
            raise DataStoreError('clients', 'connection refused')

        monkeypatch.setattr(store, 'bulk_select', broken_select)

        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['status'] == STATUS_FAILED
        assert entity_writes(store) == []

    def test_client_failure_skips_their_orders(self, store, sample_rows, header_mapping):
        """Failed client creation is reported; the run completes without those orders."""
        store.fail_tables.add('clients')

        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['status'] == STATUS_SUCCESS
        assert result['stats']['failed_categories'] == ['clients']
        assert result['stats']['orders_created'] == 0
        assert result['stats']['skipped_rows'] == 3
        assert result['stats']['entities_created']['services'] == 3
        assert any('Failed to create 2 clients' in error for error in result['errors'])

    def test_worker_project_failure_repaired(self, store, sample_rows, header_mapping):
        """Base projects that failed in bulk are created one at a time during preparation."""
        store.fail_calls['worker_projects'] = {1}

        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['stats']['repairs']['projects_created'] == 2
        assert result['stats']['workers_created'] == 4

    def test_worker_failure_leaves_assignments_unresolved(self, store, sample_rows, header_mapping):
        """Orders of a failed worker category are saved without their assignments."""
        store.fail_tables.add('workers')

        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['stats']['failed_categories'] == ['workers']
        assert result['stats']['orders_created'] == 3
        assert result['stats']['repairs']['workers_created'] == 0
        assert len(store.calls('insert', 'workers')) == 1
        assert store.rows('order_workers') == []

    def test_duplicate_filter(self, store, sample_rows, header_mapping):
        result = OrderImportService(store, filter_duplicate_names=True).import_rows(
            sample_rows, header_mapping)

        assert result['stats']['duplicate_rows_removed'] == 1
        assert [o['order_number'] for o in store.rows('orders')] == ['ORD-001', 'ORD-003']

    def test_out_of_range_date_imports_row(self, store, row_factory, header_mapping):
        """A compact YYYYMMDD due date is dropped, not fatal to the run."""
        rows = [row_factory('ORD-1', **{'Due date': '20240115'}), row_factory('ORD-2')]

        result = OrderImportService(store).import_rows(rows, header_mapping)

        assert result['status'] == STATUS_SUCCESS
        due = {o['order_number']: o['due_date'] for o in store.rows('orders')}
        assert due['ORD-1'] is None
        assert due['ORD-2'] == '2024-01-31 00:00:00'

    def test_progress_callback(self, store, sample_rows, header_mapping):
        snapshots = []

        OrderImportService(store, progress_callback=snapshots.append).import_rows(
            sample_rows, header_mapping)

        stages = [s['stage'] for s in snapshots]
        assert stages[0] == 'starting'
        assert stages[-1] == 'complete'
        assert 'orders' in stages
        assert snapshots[-1]['percent'] == 100.0
        currents = [s['current'] for s in snapshots]
        assert currents == sorted(currents)

    def test_organization_scoping(self, store, sample_rows, header_mapping):
        """Clients of another organization are invisible to the import."""
        store.seed('clients', [{'name': 'Ama', 'phone': '0551234567'}], organization_id='org-other')

        result = OrderImportService(store).import_rows(sample_rows, header_mapping)

        assert result['stats']['entities_created']['clients'] == 2
        assert all(o['organization_id'] == store.organization_id for o in store.rows('orders'))


class TestImportFile:
    """Test importing straight from an export file."""

    def test_csv_with_suggested_mapping(self, store, tmp_path, sample_rows):
        path = tmp_path / 'orders.csv'
        with open(path, 'w', newline='', encoding='utf-8-sig') as handle:
            writer = csv.DictWriter(handle, fieldnames=list(sample_rows[0]))
            writer.writeheader()
            writer.writerows(sample_rows)

        result = OrderImportService(store).import_file(str(path))

        assert result['status'] == STATUS_SUCCESS
        assert result['stats']['orders_created'] == 3

    def test_unsupported_file(self, store, tmp_path):
        path = tmp_path / 'orders.txt'
        path.write_text('Order #\nORD-1\n')

        result = OrderImportService(store).import_file(str(path))

        assert result['status'] == STATUS_FAILED
        assert "Unsupported file type '.txt'" in result['errors'][0]

    @pytest.mark.parametrize('name', ['missing.csv', 'missing.xlsx'])
    def test_missing_file(self, store, tmp_path, name):
        result = OrderImportService(store).import_file(str(tmp_path / name))

        assert result['status'] == STATUS_FAILED
        assert store.journal == []

    def test_undecodable_csv_fails_cleanly(self, store, tmp_path):
        path = tmp_path / 'orders.csv'
        path.write_bytes('Order #,Client name\nORD-1,Kwamé\n'.encode('latin-1'))

        result = OrderImportService(store).import_file(str(path))

        assert result['status'] == STATUS_FAILED
        assert 'Could not read orders.csv' in result['errors'][0]
        assert store.journal == []
