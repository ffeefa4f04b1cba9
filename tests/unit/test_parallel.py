"""Unit tests for parallel module."""

import threading
import time

import pytest

from azmachine.errors import ConflictError, DriverError, ErrorKind
from azmachine.parallel import (
    EMPTY_TASK_MESSAGE,
    EmptyTaskError,
    ParallelTaskError,
    run_all,
    run_in_parallel,
)


class TestRunAll:
    """Tests for run_all."""

    def test_empty_list(self):
        assert run_all([]) == []

    def test_results_in_submission_order(self):
        """Slower early tasks still occupy their own slot."""

        def task(value, delay):
            def run():
                time.sleep(delay)
                return value

            return run

        outcomes = run_all([task("a", 0.05), task("b", 0.0), task("c", 0.02)])
        assert [o.value for o in outcomes] == ["a", "b", "c"]
        assert [o.index for o in outcomes] == [0, 1, 2]
        assert all(o.succeeded for o in outcomes)

    def test_failure_does_not_cancel_siblings(self):
        done = []
        lock = threading.Lock()

        def ok(name):
            def run():
                time.sleep(0.01)
                with lock:
                    done.append(name)

            return run

        def fail():
            raise DriverError("boom")

        outcomes = run_all([fail, ok("x"), ok("y")])
        assert sorted(done) == ["x", "y"]
        assert str(outcomes[0].error) == "boom"
        assert outcomes[1].succeeded and outcomes[2].succeeded

    def test_none_task_is_a_failure(self):
        outcomes = run_all([None, lambda: 1])
        assert isinstance(outcomes[0].error, EmptyTaskError)
        assert str(outcomes[0].error) == EMPTY_TASK_MESSAGE
        assert outcomes[1].value == 1

    def test_max_workers_bounds_concurrency(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        def task():
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        run_all([task] * 6, max_workers=2)
        assert peak <= 2


class TestRunInParallel:
    """Tests for run_in_parallel error aggregation."""

    def test_success(self):
        run_in_parallel([lambda: None, lambda: None])

    def test_errors_joined_in_order(self):
        def fail(message):
            def run():
                raise DriverError(message)

            return run

        with pytest.raises(ParallelTaskError) as exc_info:
            run_in_parallel([fail("first"), lambda: None, fail("second")])
        assert str(exc_info.value) == "first\nsecond"
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.kind == ErrorKind.UNKNOWN

    def test_conflict_kind_propagates(self):
        def conflict():
            raise ConflictError("NIC", "vm-nic", "other-vm")

        with pytest.raises(ParallelTaskError) as exc_info:
            run_in_parallel([conflict])
        assert exc_info.value.kind == ErrorKind.CONFLICT

    def test_empty_task_reported(self):
        with pytest.raises(ParallelTaskError, match=EMPTY_TASK_MESSAGE):
            run_in_parallel([None])

    def test_custom_message_keeps_errors(self):
        errors = [ConflictError("disk", "vm-os-disk", "other-vm")]
        error = ParallelTaskError(errors, "failed to delete 1 resource(s)")
        assert str(error) == "failed to delete 1 resource(s)"
        assert error.errors == errors
        assert error.kind == ErrorKind.CONFLICT
