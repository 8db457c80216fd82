"""
Module sandbox: run one tool invocation inside a discard-after-use container.

The runner never goes through a shell. It assembles a `docker run` argv with
hard resource ceilings and dropped privileges, makes sure the image is present,
then hands the argv to `run_process`, which owns the wall-clock timeout and the
bounded output buffers.

Progress checkpoints emitted here: 20 (sandbox-init) and 40 (execution).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from osintforge.base.config import SandboxConfig
from osintforge.errors import SandboxError, SandboxFailure
from osintforge.toolkit.models import (
    STAGE_EXECUTION,
    STAGE_SANDBOX_INIT,
    ExecutionOptions,
    SandboxProfile,
)
from osintforge.toolkit.sanitize import render_command

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
_READ_CHUNK = 64 * 1024
_STDERR_TAIL = 2000


@dataclass(frozen=True)
class Mount:
    source: str
    target: str
    read_only: bool = True

    def as_flag(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.source}:{self.target}{suffix}"


@dataclass(frozen=True)
class SandboxRequest:
    image: str
    command: Sequence[str]
    profile: SandboxProfile = field(default_factory=SandboxProfile)
    mounts: Sequence[Mount] = ()


@dataclass
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    truncated: bool = False


class _BoundedBuffer:
    """Collects bytes up to a ceiling and counts (but drops) the rest."""

    def __init__(self, limit: int):
        self.limit = limit
        self._chunks: List[bytes] = []
        self._size = 0
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self.limit - self._size
        if room <= 0:
            self.truncated = True
            return
        if len(chunk) > room:
            chunk = chunk[:room]
            self.truncated = True
        self._chunks.append(chunk)
        self._size += len(chunk)

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


async def _drain(stream: Optional[asyncio.StreamReader], buffer: _BoundedBuffer) -> None:
    if stream is None:
        return
    # Keep reading past the ceiling so the child never blocks on a full pipe.
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        buffer.feed(chunk)


async def _kill_and_reap(proc: asyncio.subprocess.Process, grace_seconds: float) -> None:
    try:
        if proc.returncode is None:
            proc.kill()
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"[Sandbox] pid {proc.pid} did not exit {grace_seconds}s after SIGKILL")


async def run_process(
    argv: Sequence[str],
    timeout_ms: int,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    kill_grace_seconds: float = 2.0,
) -> ProcessResult:
    """
    Execute ``argv`` with a hard wall-clock timeout.

    Raises:
        SandboxError(SPAWN): the executable could not be started
        SandboxError(TIMEOUT): the process outlived ``timeout_ms`` and was killed

    A non-zero exit code is returned, not raised; callers decide what it means.
    """
    if not argv:
        raise SandboxError(SandboxFailure.SPAWN, "Empty command")

    started = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise SandboxError(SandboxFailure.SPAWN, f"{argv[0]} not installed or not in PATH") from exc
    except OSError as exc:
        raise SandboxError(SandboxFailure.SPAWN, f"{argv[0]} failed to start: {exc}") from exc

    stdout = _BoundedBuffer(max_output_bytes)
    stderr = _BoundedBuffer(max_output_bytes)

    try:
        await asyncio.wait_for(
            asyncio.gather(_drain(proc.stdout, stdout), _drain(proc.stderr, stderr), proc.wait()),
            timeout=timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        await _kill_and_reap(proc, kill_grace_seconds)
        raise SandboxError(
            SandboxFailure.TIMEOUT,
            f"Execution timed out after {timeout_ms}ms",
            details={"timeout_ms": timeout_ms},
        ) from None
    except asyncio.CancelledError:
        await asyncio.shield(_kill_and_reap(proc, kill_grace_seconds))
        raise

    duration_ms = int((time.monotonic() - started) * 1000)
    truncated = stdout.truncated or stderr.truncated
    if truncated:
        logger.warning(f"[Sandbox] Output of {argv[0]} exceeded {max_output_bytes} bytes; truncated")

    return ProcessResult(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.text(),
        stderr=stderr.text(),
        duration_ms=duration_ms,
        truncated=truncated,
    )


class SandboxRunner:
    """Builds and runs isolated container invocations for tool executors."""

    def __init__(self, config: Optional[SandboxConfig] = None):
        self.config = config or SandboxConfig()
        self._image_locks: Dict[str, asyncio.Lock] = {}
        self._present: Set[str] = set()
        self._cleanups: Set[asyncio.Task] = set()

    def build_invocation(self, request: SandboxRequest, container_name: str) -> List[str]:
        profile = request.profile
        argv = [
            self.config.docker_binary,
            "run",
            "--rm",
            "--name", container_name,
            f"--memory={profile.memory}",
            f"--cpus={profile.cpus}",
            f"--pids-limit={self.config.pids_limit}",
            f"--network={profile.network.value}",
            "--security-opt=no-new-privileges",
            "--cap-drop=ALL",
        ]
        for mount in request.mounts:
            argv.extend(["-v", mount.as_flag()])
        argv.append(request.image)
        argv.extend(request.command)
        return argv

    async def ensure_image(self, image: str) -> None:
        """Inspect the image locally and pull it if it is missing."""
        if image in self._present:
            return
        lock = self._image_locks.setdefault(image, asyncio.Lock())
        async with lock:
            if image in self._present:
                return
            docker = self.config.docker_binary
            inspect = await run_process([docker, "image", "inspect", image], timeout_ms=30_000)
            if inspect.exit_code != 0:
                logger.info(f"[Sandbox] Pulling image {image}")
                pull = await run_process(
                    [docker, "pull", image],
                    timeout_ms=int(self.config.pull_timeout_seconds * 1000),
                )
                if pull.exit_code != 0:
                    raise SandboxError(
                        SandboxFailure.IMAGE,
                        f"Failed to pull image {image}: {pull.stderr.strip()[-_STDERR_TAIL:]}",
                        exit_code=pull.exit_code,
                        stderr=pull.stderr,
                    )
            self._present.add(image)

    async def run(
        self,
        request: SandboxRequest,
        timeout_ms: int,
        options: Optional[ExecutionOptions] = None,
    ) -> ProcessResult:
        options = options or ExecutionOptions()
        options.report(STAGE_SANDBOX_INIT, f"Preparing {request.image}")
        await self.ensure_image(request.image)

        container_name = f"osint-{uuid.uuid4().hex[:12]}"
        argv = self.build_invocation(request, container_name)
        options.report(STAGE_EXECUTION, "Running tool")
        logger.info(f"[Sandbox] {render_command(argv)}")

        try:
            result = await run_process(
                argv,
                timeout_ms=timeout_ms,
                max_output_bytes=self.config.max_output_bytes,
                kill_grace_seconds=self.config.kill_grace_seconds,
            )
        except SandboxError as exc:
            if exc.kind is SandboxFailure.TIMEOUT:
                self._schedule_removal(container_name)
            raise
        except asyncio.CancelledError:
            self._schedule_removal(container_name)
            raise

        if result.exit_code != 0:
            tail = result.stderr.strip()[-_STDERR_TAIL:]
            raise SandboxError(
                SandboxFailure.EXIT,
                f"Process exited with code {result.exit_code}. Error: {tail}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def _schedule_removal(self, container_name: str) -> None:
        # The caller fails the job right away; removal finishes in the background.
        task = asyncio.create_task(self._force_remove(container_name), name=f"rm-{container_name}")
        self._cleanups.add(task)
        task.add_done_callback(self._cleanups.discard)

    async def drain(self) -> None:
        """Wait for pending container removals."""
        while self._cleanups:
            results = await asyncio.gather(*list(self._cleanups), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"[Sandbox] Container removal raised: {result}")

    async def _force_remove(self, container_name: str) -> None:
        # Killing the docker CLI does not stop the container it started.
        try:
            await run_process(
                [self.config.docker_binary, "rm", "-f", container_name],
                timeout_ms=int(self.config.kill_grace_seconds * 1000) + 5000,
            )
        except SandboxError as exc:
            logger.warning(f"[Sandbox] Could not remove container {container_name}: {exc}")
