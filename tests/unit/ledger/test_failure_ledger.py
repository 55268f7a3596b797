from __future__ import annotations

import threading

from redgreen.ledger import FailureLedger


def test_ensure_tracked_is_idempotent() -> None:
    ledger = FailureLedger()

    ledger.ensure_tracked("tests/test_a.py")
    ledger.ensure_tracked("tests/test_a.py")

    assert ledger.tracked_files() == ("tests/test_a.py",)
    assert ledger.snapshot() == {"tests/test_a.py": {}}


def test_recording_is_a_set_union() -> None:
    ledger = FailureLedger()

    ledger.record_failure("tests/test_a.py", "TestA", "test_x")
    ledger.record_failure("tests/test_a.py", "TestA", "test_x")
    ledger.record_failure("tests/test_a.py", "TestA", "test_w")

    assert ledger.snapshot() == {"tests/test_a.py": {"TestA": ("test_w", "test_x")}}
    assert ledger.failure_count() == 2
    assert ledger.tainted is True


def test_all_good_iff_empty() -> None:
    ledger = FailureLedger()
    assert ledger.is_all_good()

    ledger.ensure_tracked("tests/test_a.py")
    assert not ledger.is_all_good()
    assert ledger.tainted is False

    ledger.record_failure("tests/test_b.py", "", "test_module_level")
    assert not ledger.is_all_good()

    ledger.clear()
    assert ledger.is_all_good()
    assert ledger.tainted is False
    assert ledger.failure_count() == 0


def test_tracking_keeps_recorded_failures() -> None:
    ledger = FailureLedger()
    ledger.record_failure("tests/test_a.py", "TestA", "test_x")

    ledger.ensure_tracked("tests/test_a.py")

    assert ledger.snapshot() == {"tests/test_a.py": {"TestA": ("test_x",)}}


def test_snapshot_is_detached_from_ledger() -> None:
    ledger = FailureLedger()
    ledger.record_failure("tests/test_a.py", "TestA", "test_x")

    snapshot = ledger.snapshot()
    ledger.record_failure("tests/test_a.py", "TestA", "test_y")

    assert snapshot == {"tests/test_a.py": {"TestA": ("test_x",)}}


def test_concurrent_reports_are_all_recorded() -> None:
    ledger = FailureLedger()

    def report(worker: int) -> None:
        for index in range(200):
            ledger.record_failure(f"tests/test_{worker}.py", "TestW", f"test_{index % 50}")
            ledger.ensure_tracked(f"tests/test_extra_{worker}.py")

    threads = [threading.Thread(target=report, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ledger.failure_count() == 4 * 50
    assert len(ledger.tracked_files()) == 8
