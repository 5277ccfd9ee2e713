import pytest

from scancore.engine.job_manager import ScanJobRegistry
from scancore.engine.scan_service import ScanService
from scancore.tools.registry import ToolRegistry, ToolSpec

from tests.helpers import ContentAdapter, HangingAdapter


@pytest.fixture
def make_service():
    created = []

    def _make(*specs, max_concurrent_tool_runs=4, **kwargs):
        tools = ToolRegistry([
            spec if isinstance(spec, ToolSpec) else ToolSpec(name=spec.name, adapter=spec, timeout=5.0)
            for spec in specs
        ])
        service = ScanService(ScanJobRegistry(), tools, max_concurrent_tool_runs=max_concurrent_tool_runs,
                              poll_interval=0.01, **kwargs)
        created.append((service, tools))
        return service

    yield _make

    for service, tools in created:
        for name in tools.names():
            adapter = tools.get(name).adapter
            if isinstance(adapter, (HangingAdapter, ContentAdapter)):
                adapter.release.set()
        service.shutdown(wait=False)
