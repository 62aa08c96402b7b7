"""
Tests for the progress and log reporter.
"""

from services.progress_reporter import ProgressReporter


class TestProgressReporter:
    """Test counters, log lines and cancellation."""

    def test_counter_is_monotonic_and_clamped(self):
        reporter = ProgressReporter()
        reporter.start(10, 'Importing')

        reporter.update(4)
        reporter.update(2)
        assert reporter.current == 4

        reporter.update(15)
        assert reporter.current == 10
        assert reporter.percent == 100.0

    def test_percent_without_total(self):
        assert ProgressReporter().percent == 0.0

    def test_log_lines_and_errors(self):
        reporter = ProgressReporter()

        reporter.log('Created client: Ama')
        reporter.warning('row 2: no order number, row skipped')
        reporter.error('Failed to create 2 clients: timeout')

        lines = reporter.lines()
        assert lines[0].endswith('] Created client: Ama')
        assert lines[1].endswith('Warning: row 2: no order number, row skipped')
        assert reporter.errors == ['Error: Failed to create 2 clients: timeout']

    def test_listener_receives_snapshots(self):
        snapshots = []
        reporter = ProgressReporter(listener=snapshots.append)

        reporter.start(4, 'Importing 4 rows...')
        reporter.set_stage('orders', 'Creating orders batch 1 of 2...')
        reporter.update(2)

        assert [s['stage'] for s in snapshots] == ['starting', 'orders', 'orders']
        last = snapshots[-1]
        assert last['current'] == 2
        assert last['total'] == 4
        assert last['percent'] == 50.0
        assert last['message'] == 'Creating orders batch 1 of 2...'
        assert last['cancel_requested'] is False

    def test_cancel_flag(self):
        reporter = ProgressReporter()
        assert not reporter.cancelled

        reporter.cancel()

        assert reporter.cancelled
        assert reporter.snapshot()['cancel_requested'] is True

    def test_cancel_check_is_sticky(self):
        """Once the external check reports True the reporter stays cancelled."""
        answers = iter([False, True, False])
        reporter = ProgressReporter(cancel_check=lambda: next(answers))

        assert not reporter.cancelled
        assert reporter.cancelled
        assert reporter.cancelled
