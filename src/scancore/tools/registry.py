# src/scancore/tools/registry.py
"""
ToolRegistry: the analysis tools a deployment offers, each with its mandatory timeout.
Per-tool settings can be overridden from a YAML file:

    tools:
      mythril:
        timeout: 900
        image: mythril/myth:0.24.8
      manticore:
        enabled: false
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List

import yaml

from scancore.engine.errors import InvalidInput
from .base import SecurityToolAdapter
from .echidna_adapter import EchidnaAdapter
from .manticore_adapter import ManticoreAdapter
from .mythril_adapter import DEFAULT_MYTHRIL_IMAGE, MythrilAdapter
from .pattern_adapter import PatternRuleAdapter
from .slither_adapter import SlitherAdapter


@dataclass(frozen=True)
class ToolSpec:
    name: str
    adapter: SecurityToolAdapter
    timeout: float

    def __post_init__(self):
        if not self.timeout or self.timeout <= 0:
            raise ValueError(f"Tool {self.name} needs a positive timeout, got {self.timeout!r}")


class ToolRegistry:
    def __init__(self, specs=()):
        self._specs: "OrderedDict[str, ToolSpec]" = OrderedDict()
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec):
        self._specs[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise InvalidInput(f"Unknown security tool: {name}")
        return spec

    def names(self) -> List[str]:
        return list(self._specs)

    def describe(self) -> List[dict]:
        return [{"name": spec.name, "timeout": spec.timeout} for spec in self._specs.values()]

    def __contains__(self, name):
        return name in self._specs


TOOL_BUILDERS = {
    "slither": lambda cfg: SlitherAdapter(),
    "mythril": lambda cfg: MythrilAdapter(image=cfg.get("image") or DEFAULT_MYTHRIL_IMAGE),
    "manticore": lambda cfg: ManticoreAdapter(),
    "echidna": lambda cfg: EchidnaAdapter(config=cfg.get("config")),
    "patterns": lambda cfg: PatternRuleAdapter(rules_path=cfg.get("rules")),
}


def load_tools_config(path: str) -> Dict[str, dict]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    tools = data.get("tools") or {}
    if not isinstance(tools, dict):
        raise ValueError(f"'tools' in {path} must be a mapping of tool name to settings")
    return {name: (cfg or {}) for name, cfg in tools.items()}


def build_tool_registry(settings) -> ToolRegistry:
    overrides = load_tools_config(settings.tools_config) if settings.tools_config else {}
    registry = ToolRegistry()
    for name, build in TOOL_BUILDERS.items():
        cfg = overrides.get(name, {})
        if cfg.get("enabled", True) is False:
            continue
        timeout = float(cfg.get("timeout", settings.default_tool_timeout))
        registry.register(ToolSpec(name=name, adapter=build(cfg), timeout=timeout))
    return registry
