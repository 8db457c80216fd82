"""
Module executor: the contract every OSINT tool satisfies, and the one
implementation that runs tools in a sandbox.

A tool is described by a ToolDefinition value (metadata, pydantic input model,
argv builder, output parser). SandboxedToolExecutor composes that value with a
SandboxRunner; there is no per-tool subclass.

Execution stages and the progress reported at each:
    0 init -> 20 sandbox-init -> 40 execution -> 80 parsing -> 100 done
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, Type, runtime_checkable

import pydantic
from pydantic import BaseModel

from osintforge.base.config import SandboxConfig
from osintforge.base.timeutil import now_iso
from osintforge.engine.sandbox import Mount, ProcessResult, SandboxRequest
from osintforge.errors import ExecutionError, OsintError, ValidationError
from osintforge.toolkit.models import (
    STAGE_DONE,
    STAGE_INIT,
    STAGE_PARSING,
    ExecutionOptions,
    ParsedResult,
    ParseOutcome,
    ParserStrategy,
    ResultMetadata,
    ToolMetadata,
)
from osintforge.toolkit.sanitize import sanitize_arguments

logger = logging.getLogger(__name__)


class ProcessSandbox(Protocol):
    async def run(
        self, request: SandboxRequest, timeout_ms: int, options: Optional[ExecutionOptions] = None
    ) -> ProcessResult: ...


@runtime_checkable
class ToolExecutor(Protocol):
    @property
    def metadata(self) -> ToolMetadata: ...

    def validate(self, raw: Mapping[str, Any]) -> BaseModel: ...

    async def execute(self, raw: Mapping[str, Any], options: Optional[ExecutionOptions] = None) -> ParsedResult: ...


@dataclass(frozen=True)
class ToolDefinition:
    metadata: ToolMetadata
    input_model: Type[BaseModel]
    build_command: Callable[[Any], List[str]]
    parse_output: Callable[[str], ParseOutcome]
    # Receives the validated params and the uploads root; raises ValidationError
    # for any host path outside that root.
    mounts: Optional[Callable[[Any, Path], Sequence[Mount]]] = None


def _field_errors(exc: pydantic.ValidationError) -> List[dict]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or "input", "message": err["msg"]}
        for err in exc.errors()
    ]


class SandboxedToolExecutor:
    """Runs a ToolDefinition through a sandbox and returns a ParsedResult."""

    def __init__(
        self,
        definition: ToolDefinition,
        sandbox: ProcessSandbox,
        max_timeout_ms: int = 900_000,
        uploads_dir: Optional[Path] = None,
    ):
        self.definition = definition
        self.sandbox = sandbox
        self.max_timeout_ms = max_timeout_ms
        self.uploads_dir = Path(uploads_dir) if uploads_dir is not None else SandboxConfig().uploads_dir

    @property
    def metadata(self) -> ToolMetadata:
        return self.definition.metadata

    @property
    def name(self) -> str:
        return self.definition.metadata.name

    def validate(self, raw: Mapping[str, Any]) -> BaseModel:
        if isinstance(raw, self.definition.input_model):
            return raw
        try:
            params = self.definition.input_model.model_validate(dict(raw or {}))
        except pydantic.ValidationError as exc:
            errors = _field_errors(exc)
            summary = ", ".join(f"{e['field']}: {e['message']}" for e in errors)
            raise ValidationError(
                f"Invalid input for {self.name}: {summary}",
                errors=errors,
                details={"tool": self.name},
            ) from exc
        # Host paths are checked at intake so a bad path never becomes a job
        self.resolve_mounts(params)
        return params

    def resolve_mounts(self, params: BaseModel) -> Tuple[Mount, ...]:
        if self.definition.mounts is None:
            return ()
        try:
            return tuple(self.definition.mounts(params, self.uploads_dir))
        except ValidationError as exc:
            exc.details.setdefault("tool", self.name)
            raise

    def resolve_timeout(self, options: ExecutionOptions) -> int:
        requested = options.timeout_ms or self.metadata.default_timeout_ms
        return max(1, min(requested, self.max_timeout_ms))

    def build_request(self, params: BaseModel) -> SandboxRequest:
        meta = self.metadata
        command = list(meta.command) + sanitize_arguments(self.definition.build_command(params))
        return SandboxRequest(
            image=meta.sandbox_image, command=command, profile=meta.sandbox, mounts=self.resolve_mounts(params)
        )

    async def execute(self, raw: Mapping[str, Any], options: Optional[ExecutionOptions] = None) -> ParsedResult:
        options = options or ExecutionOptions()
        # Validation failures surface before any progress event or spawn.
        params = self.validate(raw)
        options.report(STAGE_INIT, f"Starting {self.metadata.display_name}")

        started = time.monotonic()
        try:
            request = self.build_request(params)
            result = await self.sandbox.run(request, self.resolve_timeout(options), options)
            options.report(STAGE_PARSING, "Parsing output")
            outcome = self.definition.parse_output(result.stdout)
        except OsintError as exc:
            qualified = exc.qualified(self.name)
            if qualified is exc:
                raise
            raise qualified from exc
        except Exception as exc:
            raise ExecutionError(
                f"Execution failed for {self.name}: {exc}",
                details={"tool": self.name, "original_type": type(exc).__name__},
            ) from exc

        if outcome.strategy is ParserStrategy.TEXT_FALLBACK:
            logger.warning(f"[{self.name}] Structured output missing; parsed with text fallback (degraded)")

        options.report(STAGE_DONE, "Completed")
        return ParsedResult(
            raw=result.stdout,
            parsed=outcome.data,
            metadata=ResultMetadata(
                execution_time_ms=int((time.monotonic() - started) * 1000),
                timestamp=now_iso(),
                parser=outcome.strategy,
                truncated=result.truncated,
            ),
        )
