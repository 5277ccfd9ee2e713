from datetime import timedelta

import pytest

from scancore.engine.db import create_session_factory
from scancore.engine.errors import NotFound
from scancore.engine.findings import AggregatedReport
from scancore.engine.job_manager import ScanJobRegistry
from scancore.engine.source import SourceRef
from scancore.engine.states import ScanConfig, ScanJob, ScanStatus, ToolRun
from scancore.engine.store import ScanHistoryStore


def _job(job_id="job-1", owner_id="alice", tools=("slither", "mythril")):
    return ScanJob(id=job_id, source=SourceRef.from_content("contract A {}", filename="A.sol"),
                   network="ethereum", tools=tools, config=ScanConfig(), owner_id=owner_id)


@pytest.fixture
def store():
    return ScanHistoryStore(create_session_factory("sqlite://"))


def test_put_and_get():
    registry = ScanJobRegistry()
    job = _job()
    registry.put(job)

    assert registry.get("job-1") is job
    assert "job-1" in registry
    assert len(registry) == 1
    with pytest.raises(ValueError):
        registry.put(_job())
    with pytest.raises(NotFound):
        registry.get("job-2")


def test_state_machine_transitions():
    registry = ScanJobRegistry()
    registry.put(_job())

    assert not registry.mutate("job-1", lambda j: j.complete(AggregatedReport()))
    assert registry.mutate("job-1", lambda j: j.start())
    assert not registry.mutate("job-1", lambda j: j.start())
    assert registry.mutate("job-1", lambda j: j.record_tool(ToolRun(tool="slither")))
    assert not registry.mutate("job-1", lambda j: j.record_tool(ToolRun(tool="slither")))
    assert registry.snapshot("job-1").progress == 50
    assert registry.mutate("job-1", lambda j: j.fail("boom", "internal"))
    assert not registry.mutate("job-1", lambda j: j.cancel())

    snapshot = registry.snapshot("job-1")
    assert snapshot.status == ScanStatus.FAILED
    assert snapshot.error == "boom"
    assert snapshot.progress == 50


def test_terminal_listeners_fire_once():
    registry = ScanJobRegistry()
    seen = []
    registry.add_terminal_listener(lambda snapshot: seen.append(snapshot.status))
    registry.add_terminal_listener(lambda snapshot: 1 / 0)
    registry.put(_job())

    registry.mutate("job-1", lambda j: j.start())
    registry.mutate("job-1", lambda j: j.cancel())
    registry.mutate("job-1", lambda j: j.cancel())

    assert seen == [ScanStatus.CANCELLED]


def test_purge_terminal_only_drops_finished_jobs():
    registry = ScanJobRegistry()
    registry.put(_job("done"))
    registry.put(_job("running"))
    registry.mutate("done", lambda j: j.cancel())
    registry.mutate("running", lambda j: j.start())

    assert registry.purge_terminal(timedelta(hours=1)) == 0
    assert registry.purge_terminal(timedelta(0)) == 1
    assert "running" in registry
    with pytest.raises(NotFound):
        registry.snapshot("done")


def test_list_jobs_filters_by_owner():
    registry = ScanJobRegistry()
    registry.put(_job("a", owner_id="alice"))
    registry.put(_job("b", owner_id="bob"))

    assert [s.job_id for s in registry.list_jobs("alice")] == ["a"]
    assert len(registry.list_jobs()) == 2


def test_history_rows_follow_the_job(store):
    registry = ScanJobRegistry(store=store)
    registry.put(_job())
    registry.mutate("job-1", lambda j: j.start())

    rows = store.scan_history(owner_id="alice")
    assert rows[0]["status"] == "running"
    assert rows[0]["tools"] == ["slither", "mythril"]
    assert rows[0]["finished_at"] is None

    registry.mutate("job-1", lambda j: j.record_tool(ToolRun(tool="slither")))
    registry.mutate("job-1", lambda j: j.complete(AggregatedReport(score=90)))

    rows = store.scan_history(status="completed")
    assert len(rows) == 1
    assert rows[0]["score"] == 90
    assert rows[0]["progress"] == 100
    assert rows[0]["finished_at"] is not None
    assert store.scan_history(owner_id="bob") == []
