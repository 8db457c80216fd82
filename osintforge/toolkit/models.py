"""Value types shared between tool definitions, executors and the worker pool."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ToolCategory(str, Enum):
    USERNAME = "username"
    DOMAIN = "domain"
    EMAIL = "email"
    PHONE = "phone"
    IMAGE = "image"
    SOCIAL = "social"


class NetworkMode(str, Enum):
    NONE = "none"
    BRIDGE = "bridge"


class ParserStrategy(str, Enum):
    STRUCTURED = "structured"
    TEXT_FALLBACK = "text-fallback"


@dataclass(frozen=True)
class RateLimitSpec:
    max_requests: int
    window_ms: int


@dataclass(frozen=True)
class SandboxProfile:
    """Resource ceiling applied to every container a tool runs in."""

    memory: str = "512m"
    cpus: str = "1.0"
    network: NetworkMode = NetworkMode.BRIDGE


@dataclass(frozen=True)
class ToolMetadata:
    name: str
    display_name: str
    description: str
    category: ToolCategory
    sandbox_image: str
    command: Tuple[str, ...]
    estimated_time: str
    rate_limit: Optional[RateLimitSpec] = None
    default_timeout_ms: int = 300_000
    sandbox: SandboxProfile = field(default_factory=SandboxProfile)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["command"] = list(self.command)
        data["sandbox"]["network"] = self.sandbox.network.value
        return data


@dataclass(frozen=True)
class ProgressEvent:
    percentage: int
    stage: str
    message: str = ""


# Stage checkpoints every execution passes through, in order.
STAGE_INIT = (0, "init")
STAGE_SANDBOX_INIT = (20, "sandbox-init")
STAGE_EXECUTION = (40, "execution")
STAGE_PARSING = (80, "parsing")
STAGE_DONE = (100, "done")


@dataclass
class ExecutionOptions:
    """
    Per-execution knobs. The progress channel belongs to exactly one in-flight
    execution; the consumer (the worker pool) drains it in order.
    """

    timeout_ms: Optional[int] = None
    progress: Optional["asyncio.Queue[ProgressEvent]"] = None

    def report(self, stage: Tuple[int, str], message: str = "") -> None:
        if self.progress is None:
            return
        percentage, name = stage
        self.progress.put_nowait(ProgressEvent(percentage, name, message))


@dataclass(frozen=True)
class ResultMetadata:
    execution_time_ms: int
    timestamp: str
    parser: ParserStrategy = ParserStrategy.STRUCTURED
    truncated: bool = False


@dataclass(frozen=True)
class ParsedResult:
    raw: str
    parsed: Dict[str, Any]
    metadata: ResultMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw,
            "parsed": self.parsed,
            "metadata": {
                "executionTime": self.metadata.execution_time_ms,
                "timestamp": self.metadata.timestamp,
                "parser": self.metadata.parser.value,
                "truncated": self.metadata.truncated,
            },
        }


@dataclass(frozen=True)
class ParseOutcome:
    """What a tool parser hands back: the structured dict and which tier produced it."""

    data: Dict[str, Any]
    strategy: ParserStrategy = ParserStrategy.STRUCTURED
