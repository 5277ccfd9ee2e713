import os
import time

import pytest

from scancore.engine.enricher import HeuristicEnricher
from scancore.engine.errors import CancelOutcome, InvalidInput, NotFound
from scancore.engine.findings import Severity
from scancore.engine.source import SourceRef
from scancore.engine.states import ScanConfig, ScanStatus
from scancore.tools.registry import ToolSpec

from tests.helpers import (
    SAMPLE_CONTRACT,
    ConcurrencyCounter,
    CountingAdapter,
    FailingAdapter,
    HangingAdapter,
    StaticAdapter,
    make_finding,
    wait_for,
)


def _source():
    return SourceRef.from_content(SAMPLE_CONTRACT, filename="Vault.sol")


def _wait_terminal(service, job_id, timeout=5.0):
    assert wait_for(lambda: service.get_status(job_id).is_terminal, timeout=timeout)
    return service.get_status(job_id)


def test_completed_job_carries_report(make_service):
    slither = StaticAdapter("slither", [
        make_finding("slither", Severity.HIGH, "Reentrancy", line=9),
        make_finding("slither", Severity.HIGH, "Arbitrary Send", line=12),
        make_finding("slither", Severity.MEDIUM, "Unchecked Call", line=9),
    ])
    service = make_service(slither)

    job_id = service.submit(_source(), owner_id="alice")
    snapshot = _wait_terminal(service, job_id)

    assert snapshot.status == ScanStatus.COMPLETED
    assert snapshot.progress == 100
    assert snapshot.error is None
    assert snapshot.result is not None
    assert snapshot.result.score == 50
    assert snapshot.owner_id == "alice"
    assert snapshot.tool_results["slither"].succeeded


def test_submit_returns_before_tools_run(make_service):
    hang = HangingAdapter()
    service = make_service(hang)

    job_id = service.submit(_source())

    assert service.get_status(job_id).status in (ScanStatus.PENDING, ScanStatus.RUNNING)
    hang.release.set()
    assert _wait_terminal(service, job_id).status == ScanStatus.COMPLETED


def test_progress_never_decreases(make_service):
    service = make_service(
        StaticAdapter("fast"),
        StaticAdapter("medium", delay=0.1),
        StaticAdapter("slow", delay=0.2),
    )
    job_id = service.submit(_source())

    seen = []
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        snapshot = service.get_status(job_id)
        seen.append(snapshot.progress)
        if snapshot.is_terminal:
            break
        time.sleep(0.005)

    assert seen == sorted(seen)
    assert seen[-1] == 100


def test_terminal_job_is_frozen(make_service):
    service = make_service(StaticAdapter("slither", [make_finding("slither")]))
    job_id = service.submit(_source())
    before = _wait_terminal(service, job_id)

    assert service.cancel(job_id) == CancelOutcome.ALREADY_TERMINAL
    time.sleep(0.1)

    assert service.get_status(job_id) == before


def test_one_tool_timing_out_does_not_fail_the_job(make_service):
    hang = HangingAdapter("slow")
    service = make_service(
        StaticAdapter("slither", [make_finding("slither", Severity.HIGH, "Reentrancy")]),
        FailingAdapter("mythril", "docker daemon unavailable"),
        ToolSpec(name="slow", adapter=hang, timeout=0.3),
    )

    job_id = service.submit(_source())
    snapshot = _wait_terminal(service, job_id)

    assert snapshot.status == ScanStatus.COMPLETED
    assert snapshot.tool_results["slow"].error_kind == "timeout"
    assert snapshot.tool_results["mythril"].error_kind == "error"
    assert snapshot.result.summary.high == 1
    statuses = {t.name: t.success for t in snapshot.result.tools}
    assert statuses == {"slither": True, "mythril": False, "slow": False}


def test_all_tools_failing_fails_the_job(make_service):
    service = make_service(FailingAdapter("slither"), FailingAdapter("mythril"))

    job_id = service.submit(_source())
    snapshot = _wait_terminal(service, job_id)

    assert snapshot.status == ScanStatus.FAILED
    assert snapshot.result is None
    assert snapshot.error_kind == "all_tools_failed"
    assert "slither" in snapshot.error


def test_timeout_counts_from_tool_start_not_submission(make_service):
    first = StaticAdapter("first", delay=0.3)
    second = StaticAdapter("second", [make_finding("second")], delay=0.3)
    service = make_service(
        ToolSpec(name="first", adapter=first, timeout=2.0),
        ToolSpec(name="second", adapter=second, timeout=0.5),
        max_concurrent_tool_runs=1,
    )

    job_id = service.submit(_source())
    snapshot = _wait_terminal(service, job_id)

    assert snapshot.status == ScanStatus.COMPLETED
    assert snapshot.tool_results["second"].succeeded


def test_tool_runs_queue_beyond_the_concurrency_limit(make_service):
    counter = ConcurrencyCounter()
    service = make_service(*[CountingAdapter(f"tool{i}", counter) for i in range(6)], max_concurrent_tool_runs=2)

    job_ids = [service.submit(_source()) for _ in range(3)]
    snapshots = [_wait_terminal(service, job_id, timeout=10.0) for job_id in job_ids]

    assert all(s.status == ScanStatus.COMPLETED for s in snapshots)
    assert counter.runs == 18
    assert 0 < counter.peak <= 2


def test_cancel_is_idempotent(make_service):
    hang = HangingAdapter()
    service = make_service(hang)
    job_id = service.submit(_source())
    assert hang.started.wait(5)

    assert service.cancel(job_id) == CancelOutcome.CANCELLED
    assert service.cancel(job_id) == CancelOutcome.ALREADY_TERMINAL

    snapshot = service.get_status(job_id)
    assert snapshot.status == ScanStatus.CANCELLED
    assert snapshot.result is None
    time.sleep(0.1)
    assert service.get_status(job_id).status == ScanStatus.CANCELLED


def test_inline_source_is_cleaned_up(make_service):
    slither = StaticAdapter("slither")
    service = make_service(slither)

    job_id = service.submit(_source())
    _wait_terminal(service, job_id)

    target = slither.targets[0]
    assert os.path.basename(target) == "Vault.sol"
    assert wait_for(lambda: not os.path.exists(target))


def test_enrichment_follows_config(make_service):
    slither = StaticAdapter("slither", [make_finding("slither", Severity.HIGH, "Reentrancy", category="reentrancy")])
    service = make_service(slither, enricher=HeuristicEnricher())

    enriched = _wait_terminal(service, service.submit(_source()))
    plain = _wait_terminal(service, service.submit(_source(), config=ScanConfig(ai_analysis=False)))

    assert enriched.result.enriched is True
    assert enriched.result.findings[0].risk_score == 95
    assert plain.result.enriched is False
    assert plain.result.findings[0].risk_score is None


def test_invalid_submissions_are_rejected(make_service):
    service = make_service(StaticAdapter("slither"))

    with pytest.raises(InvalidInput):
        service.submit(SourceRef.from_content("   "))
    with pytest.raises(InvalidInput):
        service.submit(_source(), tools=["nonexistent"])
    with pytest.raises(InvalidInput):
        service.submit(_source(), tools=[])
    with pytest.raises(InvalidInput):
        service.submit(SourceRef(path="/no/such/Contract.sol"))
    assert len(service.registry) == 0


def test_unknown_job_is_not_found(make_service):
    service = make_service(StaticAdapter("slither"))
    with pytest.raises(NotFound):
        service.get_status("missing")
    with pytest.raises(NotFound):
        service.cancel("missing")
