"""
Tool registry: name -> executor lookup.

The registry is an explicit value built once at startup and handed to the
components that need it (job manager, worker pool, API). Nothing imports a
module-level instance.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from osintforge.base.config import SandboxConfig
from osintforge.errors import ErrorCode, ValidationError
from osintforge.toolkit.executor import ProcessSandbox, SandboxedToolExecutor, ToolDefinition, ToolExecutor
from osintforge.toolkit.models import ToolCategory, ToolMetadata

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, executors: Iterable[ToolExecutor] = ()):
        self._executors: Dict[str, ToolExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: ToolExecutor) -> None:
        name = executor.metadata.name
        if name in self._executors:
            logger.warning(f"[Registry] Tool {name} is already registered. Overwriting.")
        self._executors[name] = executor

    def unregister(self, name: str) -> bool:
        return self._executors.pop(name, None) is not None

    def get(self, name: str) -> Optional[ToolExecutor]:
        return self._executors.get(name)

    def require(self, name: str) -> ToolExecutor:
        executor = self._executors.get(name)
        if executor is None:
            raise ValidationError(
                f"Unknown tool: {name}",
                code=ErrorCode.TOOL_NOT_FOUND,
                errors=[{"field": "tool_name", "message": f"available: {', '.join(self.names())}"}],
            )
        return executor

    def names(self) -> List[str]:
        return sorted(self._executors)

    def all_metadata(self) -> List[ToolMetadata]:
        return [self._executors[name].metadata for name in self.names()]

    def by_category(self, category: ToolCategory) -> List[ToolMetadata]:
        return [meta for meta in self.all_metadata() if meta.category == category]

    def __contains__(self, name: object) -> bool:
        return name in self._executors

    def __len__(self) -> int:
        return len(self._executors)


def build_default_registry(
    sandbox: ProcessSandbox,
    config: Optional[SandboxConfig] = None,
    definitions: Optional[Iterable[ToolDefinition]] = None,
) -> ToolRegistry:
    """Registry with every bundled tool wired to ``sandbox``."""
    from osintforge.toolkit.tools import ALL_DEFINITIONS

    cfg = config or SandboxConfig()
    registry = ToolRegistry()
    for definition in definitions if definitions is not None else ALL_DEFINITIONS:
        executor = SandboxedToolExecutor(
            definition, sandbox, max_timeout_ms=cfg.max_timeout_ms, uploads_dir=cfg.uploads_dir
        )
        registry.register(executor)
    logger.info(f"[Registry] Registered {len(registry)} tools: {', '.join(registry.names())}")
    return registry
