"""
Order Import Service - framework-agnostic orchestration of an order import.

Runs the pipeline stages in order against a ``DataStore``:

    normalize -> (duplicate pre-pass) -> snapshot -> diff -> materialize
    -> prepare -> commit

and reports progress through a callback so the Celery task, the CLI and
the tests can all drive it the same way.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from services.batch_committer import (
    BatchCommitter, DEFAULT_LINE_BATCH_SIZE, DEFAULT_ORDER_BATCH_SIZE
)
from services.data_store import DEFAULT_PAGE_SIZE, DataStore
from services.dependency_materializer import DependencyMaterializer
from services.duplicate_filter import DuplicateFilter
from services.entity_diff import affected_rows, compute_entity_diff
from services.errors import DataStoreError, HeaderMappingError, OrderImportError
from services.import_context import ImportContext
from services.order_preparer import OrderPreparer
from services.progress_reporter import ProgressReporter
from services.row_normalizer import HeaderMapping, REQUIRED_FIELDS, RowNormalizer
from services.row_source import read_rows, suggest_mapping
from services.service_text import DEFAULT_CURRENCY_SYMBOL, ServiceTextParser

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_CANCELLED = 'cancelled'
STATUS_FAILED = 'failed'


class OrderImportService:
    """
    Import historical orders for one organization.

    The service holds no state between runs except its settings; every
    call to ``import_rows`` builds a fresh ``ImportContext`` and reporter.
    """

    def __init__(
        self,
        store: DataStore,
        progress_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        order_batch_size: int = DEFAULT_ORDER_BATCH_SIZE,
        line_batch_size: int = DEFAULT_LINE_BATCH_SIZE,
        snapshot_page_size: int = DEFAULT_PAGE_SIZE,
        currency_symbol: str = DEFAULT_CURRENCY_SYMBOL,
        filter_duplicate_names: bool = False,
        filter_duplicate_phones: bool = False,
        cancel_check: Optional[Callable[[], bool]] = None
    ):
        """
        Args:
            store: Data store scoped to the target organization
            progress_callback: Receives a progress snapshot dict after
                every stage change and every committed batch
            order_batch_size: Orders per bulk insert
            line_batch_size: Service lines / worker assignments per bulk insert
            snapshot_page_size: Page size for the initial snapshot selects
            currency_symbol: Currency marker used in the service column
            filter_duplicate_names: Drop rows repeating an earlier client name
            filter_duplicate_phones: Drop rows repeating an earlier client phone
            cancel_check: Polled between batches; True requests cancellation
        """
        self.store = store
        self.progress_callback = progress_callback
        self.order_batch_size = order_batch_size
        self.line_batch_size = line_batch_size
        self.snapshot_page_size = snapshot_page_size
        self.parser = ServiceTextParser(currency_symbol)
        self.filter_duplicate_names = filter_duplicate_names
        self.filter_duplicate_phones = filter_duplicate_phones
        self.cancel_check = cancel_check
        self.reporter: Optional[ProgressReporter] = None
        self._cancel_requested = False

    def cancel(self):
        """Request cancellation; takes effect at the next batch boundary."""
        self._cancel_requested = True
        if self.reporter is not None:
            self.reporter.cancel()

    def import_file(self, file_path: str,
                    header_mapping: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, Any]:
        """Read a csv/xlsx export and import it; suggests a mapping when none is given."""
        self.reporter = None
        try:
            row_set = read_rows(file_path)
        except OrderImportError as e:
            logger.error(f"Could not read {file_path}: {e}")
            return self._result(STATUS_FAILED, {}, [str(e)])

        if header_mapping is None:
            header_mapping = suggest_mapping(row_set.headers)
            logger.info(f"Using suggested header mapping: {header_mapping}")
        return self.import_rows(row_set.rows, header_mapping)

    def import_rows(self, rows: List[Mapping[str, str]],
                    header_mapping: Mapping[str, Optional[str]]) -> Dict[str, Any]:
        """
        Run the full pipeline over ``rows``.

        Returns:
            {
                'status': 'success' | 'cancelled' | 'failed',
                'stats': dict,
                'errors': list of error log lines,
                'cancelled_at_batch': int or None,
                'log': list of formatted log lines
            }
        """
        reporter = ProgressReporter(listener=self.progress_callback, cancel_check=self.cancel_check)
        self.reporter = reporter
        if self._cancel_requested:
            reporter.cancel()

        try:
            mapping = HeaderMapping.from_dict(header_mapping)
            mapping.require(*REQUIRED_FIELDS)
        except HeaderMappingError as e:
            reporter.error(f"Invalid header mapping: {e}")
            return self._result(STATUS_FAILED, {}, [str(e)])

        reporter.start(len(rows), f"Importing {len(rows)} rows...")
        reporter.log(f"Starting import of {len(rows)} rows for organization {self.store.organization_id}")

        normalizer = RowNormalizer(mapping, reporter)
        normalized = normalizer.normalize(rows)

        duplicates = DuplicateFilter(self.filter_duplicate_names, self.filter_duplicate_phones, reporter)
        filtered = duplicates.apply(normalized)
        normalized = filtered.kept

        stats: Dict[str, Any] = {
            'rows_total': len(rows),
            'unparseable_dates': normalizer.unparseable_dates,
            'duplicate_rows_removed': filtered.removed,
        }

        try:
            reporter.set_stage('snapshot', 'Loading existing clients, services and workers...')
            context = ImportContext.from_store(self.store, reporter, self.snapshot_page_size)
        except DataStoreError as e:
            reporter.error(f"Could not load existing records: {e}")
            return self._result(STATUS_FAILED, stats, reporter.errors)

        if reporter.cancelled:
            return self._cancelled(stats, 0)

        reporter.set_stage('diff', 'Finding new clients, services and workers...')
        diff = compute_entity_diff(normalized, context.clients, context.services,
                                   context.workers, self.parser)
        reporter.log(f"New entities needed: {diff.counts()} "
                     f"(referenced by {len(affected_rows(normalized, diff))} rows)")

        DependencyMaterializer(self.store, context).materialize(diff)

        if reporter.cancelled:
            stats.update(self._context_stats(context))
            return self._cancelled(stats, 0)

        preparer = OrderPreparer(self.store, context, self.parser)
        prepared = preparer.prepare_all(normalized)

        committer = BatchCommitter(self.store, reporter, self.order_batch_size, self.line_batch_size)
        commit_stats = committer.commit(prepared)

        stats.update(self._context_stats(context))
        stats.update(preparer.stats)
        stats.update(commit_stats.to_dict())

        if commit_stats.cancelled_at_batch is not None:
            return self._result(STATUS_CANCELLED, stats, reporter.errors,
                                cancelled_at_batch=commit_stats.cancelled_at_batch)

        reporter.set_stage('complete', 'Import complete')
        reporter.update(reporter.total)
        reporter.log(
            f"Import complete: {commit_stats.orders_created} orders, "
            f"{commit_stats.services_created} order services, "
            f"{commit_stats.workers_created} worker assignments"
        )
        return self._result(STATUS_SUCCESS, stats, reporter.errors)

    @staticmethod
    def _context_stats(context: ImportContext) -> Dict[str, Any]:
        return {
            'entities_created': dict(context.created),
            'failed_categories': sorted(context.failed_categories),
            'repairs': context.repairs.to_dict(),
        }

    def _cancelled(self, stats: Dict[str, Any], completed_batches: int) -> Dict[str, Any]:
        self.reporter.log(f"Import cancelled before orders were created "
                          f"(after {completed_batches} batches)")
        return self._result(STATUS_CANCELLED, stats, self.reporter.errors,
                            cancelled_at_batch=completed_batches)

    def _result(self, status: str, stats: Dict[str, Any], errors: List[str],
                cancelled_at_batch: Optional[int] = None) -> Dict[str, Any]:
        logger.info(f"Import finished with status {status}")
        return {
            'status': status,
            'stats': stats,
            'errors': errors,
            'cancelled_at_batch': cancelled_at_batch,
            'log': self.reporter.lines() if self.reporter else [],
        }
