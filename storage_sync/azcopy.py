"""
Runs azcopy once per container to mirror blobs into local directories.
"""

import os
import sys
import shlex
import logging
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, IO, Iterable, List, Optional

from storage_sync.config import DEFAULT_AZCOPY
from storage_sync.errors import AzCopyLaunchError
from storage_sync.storage import SyncJob, redact_sas

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., int]


def local_path_for(container: str) -> str:
    """Relative local directory for a container, e.g. ./logs"""
    return f"{os.curdir}{os.sep}{container}"


def build_azcopy_command(
    job: SyncJob,
    azcopy_options: Optional[str] = None,
    executable: str = DEFAULT_AZCOPY
) -> List[str]:
    """
    Build the azcopy sync command line for a container.

    Args:
        job: Container and its SAS-scoped source URL
        azcopy_options: Extra options appended after the source and destination
        executable: azcopy executable name or path

    Returns:
        Command as an argument list
    """
    command = [executable, "sync", job.source_url, local_path_for(job.container)]
    if azcopy_options:
        command.extend(shlex.split(azcopy_options, posix=os.name != "nt"))
    return command


def format_command(command: List[str]) -> str:
    """Printable command line with SAS signatures hidden"""
    return redact_sas(subprocess.list2cmdline(command) if os.name == "nt" else shlex.join(command))


def _forward_lines(pipe: IO[str], sink: IO[str]) -> None:
    # the pipe is always drained, even once the sink stops accepting lines
    dropped = 0
    with pipe:
        for line in pipe:
            try:
                sink.write(line)
                sink.flush()
            except UnicodeEncodeError:
                encoding = getattr(sink, "encoding", None) or "ascii"
                try:
                    sink.write(line.encode(encoding, "replace").decode(encoding))
                    sink.flush()
                except (OSError, ValueError):
                    dropped += 1
            except (OSError, ValueError):
                dropped += 1
    if dropped:
        logger.warning(f"Could not write {dropped} line(s) of azcopy output to the console")


def run_process(
    command: List[str],
    stdout: Optional[IO[str]] = None,
    stderr: Optional[IO[str]] = None,
    cwd: Optional[str] = None
) -> int:
    """
    Run a process, forwarding each output line to the console as it arrives.

    Both pipes are drained by their own thread so a full pipe cannot block the
    child; the readers are joined before waiting for the exit code.

    Args:
        command: Command as an argument list
        stdout: Sink for the child's standard output (defaults to sys.stdout)
        stderr: Sink for the child's standard error (defaults to sys.stderr)
        cwd: Working directory for the child

    Returns:
        The process exit code

    Raises:
        AzCopyLaunchError: If the executable cannot be started
    """
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    try:
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            text=True,
            errors="replace",
            bufsize=1,
        )
    except OSError as e:
        raise AzCopyLaunchError(command, e) from e

    readers = [
        threading.Thread(target=_forward_lines, args=(process.stdout, stdout), daemon=True),
        threading.Thread(target=_forward_lines, args=(process.stderr, stderr), daemon=True),
    ]
    for reader in readers:
        reader.start()
    for reader in readers:
        reader.join()

    return process.wait()


@dataclass
class SyncResult:
    """Outcome of syncing one container"""
    container: str
    exit_code: int
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass
class SyncSummary:
    """Outcome of a whole run"""
    results: List[SyncResult] = field(default_factory=list)

    @property
    def failed(self) -> List[SyncResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def exit_code(self) -> int:
        """The first nonzero azcopy exit code, or 0 when every container synced"""
        for result in self.results:
            if not result.succeeded:
                return result.exit_code
        return 0


class AzCopySynchronizer:
    """
    Mirrors containers into local directories, one azcopy process at a time.

    By default every container is attempted and failures are collected in the
    summary; with fail_fast the run stops at the first failing container. A
    launch failure always stops the run.
    """

    def __init__(
        self,
        azcopy_options: Optional[str] = None,
        what_if: bool = False,
        executable: str = DEFAULT_AZCOPY,
        sync_root: str = ".",
        fail_fast: bool = False,
        runner: ProcessRunner = run_process,
        stdout: Optional[IO[str]] = None,
        stderr: Optional[IO[str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.azcopy_options = azcopy_options
        self.what_if = what_if
        self.executable = executable
        self.sync_root = Path(sync_root)
        self.fail_fast = fail_fast
        self.runner = runner
        self.stdout = stdout
        self.stderr = stderr
        self.logger = logger or logging.getLogger(__name__)

    def sync_container(self, job: SyncJob) -> int:
        """
        Sync one container into ./<container> under the sync root.

        Returns:
            azcopy's exit code (0 in what-if mode)
        """
        (self.sync_root / job.container).mkdir(parents=True, exist_ok=True)

        self.logger.debug(f"Processing container {job.container}")
        command = build_azcopy_command(job, self.azcopy_options, self.executable)

        if self.what_if:
            self.logger.info(f"What-If: {format_command(command)}")
            return 0

        self.logger.debug(f"Running command {format_command(command)}")
        exit_code = self.runner(
            command,
            stdout=self.stdout,
            stderr=self.stderr,
            cwd=str(self.sync_root),
        )

        if exit_code != 0:
            self.logger.error(f"azcopy exited with code {exit_code} for container {job.container}")
        return exit_code

    def sync_all(self, jobs: Iterable[SyncJob]) -> SyncSummary:
        """Sync containers in order and collect their results."""
        summary = SyncSummary()

        for job in jobs:
            exit_code = self.sync_container(job)
            summary.results.append(SyncResult(job.container, exit_code, skipped=self.what_if))

            if exit_code != 0 and self.fail_fast:
                self.logger.error(f"Stopping after failure of container {job.container}")
                break

        if summary.failed:
            names = ", ".join(r.container for r in summary.failed)
            self.logger.warning(f"{len(summary.failed)}/{len(summary.results)} containers failed: {names}")
        else:
            self.logger.debug(f"Synced {len(summary.results)} containers")

        return summary
