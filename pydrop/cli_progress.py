"""CLI reporting of run progress.

``RunReporter`` consumes the RunProgressInfo events of the sync engine. It
prints one line per classified file, optional verbose details and a final
summary, and shows a Rich progress bar while the run is going on when
stdout is a terminal.
"""

import threading
from typing import Optional

from rich.pretty import Pretty
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

from .models import ActionStatus, File, SyncPolicy
from .output import OutputFormatter
from .sync.progress import RunEvent, RunProgressInfo, RunStats
from .utils import format_duration, format_size, plural, progress_percent

# Fixed-width tags, as printed in front of each file
STATUS_TAGS = {
    ActionStatus.CREATED: ("[created]", "green"),
    ActionStatus.UPDATED: ("[updated]", "cyan"),
    ActionStatus.DELETED: ("[deleted]", "red"),
    ActionStatus.IDENTICAL: ("[identic]", "dim"),
    ActionStatus.UNCHANGED: ("[unchang]", "dim"),
}

FAILED_TAG = ("[failed] ", "bold red")

# Minimum verbosity for a status line to be printed
STATUS_VERBOSITY = {
    ActionStatus.CREATED: 0,
    ActionStatus.UPDATED: 0,
    ActionStatus.DELETED: 0,
    ActionStatus.IDENTICAL: 1,
    ActionStatus.UNCHANGED: 1,
}


def policy_warnings(policy: SyncPolicy) -> list[str]:
    """Describe the force and read-only switches in effect.

    Returns:
        One warning line per active switch, empty for a normal run
    """
    lines = []
    if policy.readonly.remote and policy.readonly.cache:
        lines.append("Dry run: neither the remote nor the cache will be written.")
    elif policy.readonly.remote:
        lines.append("Read-only remote: only the cache is being updated.")
    elif policy.readonly.cache:
        lines.append("Read-only cache: the cache will not be updated.")

    if policy.force.remote:
        lines.append("Forced remote: every file is checked against the remote.")
    if policy.force.cache:
        lines.append("Forced cache: the cache is ignored for this run.")
    return lines


class RunReporter:
    """Prints the progress of a run.

    Verbosity levels:
        0: changed files (created, updated, deleted, failed) and the summary
        1: also identical and unchanged files
        2: cache and remote status breakdown
        3: size and compression
        4: full record dump
    """

    def __init__(self, out: OutputFormatter, verbose: int = 0):
        self.out = out
        self.verbose = verbose
        self._lock = threading.Lock()
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    @property
    def enabled(self) -> bool:
        return not (self.out.quiet or self.out.json_output)

    def print_policy(self, policy: SyncPolicy) -> None:
        """Echo the force and read-only switches before the run starts."""
        for line in policy_warnings(policy):
            self.out.warning(line)

    # =========================
    # Events
    # =========================

    def handle(self, info: RunProgressInfo) -> None:
        """Progress callback given to the sync engine."""
        if not self.enabled:
            return

        with self._lock:
            if info.event == RunEvent.FILE_CLASSIFIED and info.file is not None:
                self._print_file(info.file)
            elif info.event == RunEvent.FILE_FAILED and info.file is not None:
                self._print_file(info.file)
            self._update_progress(info.stats)

    def _print_file(self, file: File) -> None:
        if file.failed:
            tag, style = FAILED_TAG
            line = Text.assemble((tag, style), " ", file.relative)
            line.append(f" ({file.error})", style="red")
            self._console_print(line)
            return

        if file.status is None or self.verbose < STATUS_VERBOSITY[file.status]:
            return

        tag, style = STATUS_TAGS[file.status]
        self._console_print(Text.assemble((tag, style), " ", file.relative))

        if self.verbose >= 2:
            self._print_status_details(file)
        if self.verbose >= 3:
            self._print_size_details(file)
        if self.verbose >= 4:
            self._console_print(Pretty(file.to_dict()))

    def _print_status_details(self, file: File) -> None:
        if file.local_details is not None:
            local = file.local_details
            self._console_print(
                Text(
                    f"          cache: {local.overall().value} "
                    f"(content {local.content.value}, headers {local.headers.value}, "
                    f"remote {local.remote.value})",
                    style="dim",
                )
            )
        if file.status_details is not None:
            remote = file.status_details
            self._console_print(
                Text(
                    f"          dest: {remote.overall().value} "
                    f"(content {remote.content.value}, headers {remote.headers.value}, "
                    f"remote {remote.remote.value})",
                    style="dim",
                )
            )

    def _print_size_details(self, file: File) -> None:
        if file.content is None:
            return
        line = f"          size: {format_size(file.size)}"
        if file.content.type != "raw" and file.size:
            ratio = int(round(file.content.size * 100 / file.size))
            line += f", {file.content.type}: {format_size(file.content.size)} ({ratio}%)"
        self._console_print(Text(line, style="dim"))

    def _console_print(self, renderable) -> None:
        console = self._progress.console if self._progress else self.out.console
        console.print(renderable)

    # =========================
    # Progress bar
    # =========================

    def _update_progress(self, stats: RunStats) -> None:
        if self._progress is None or self._task is None:
            return
        done = stats.stat.creation + stats.stat.update + stats.stat.unchange
        self._progress.update(
            self._task,
            total=stats.match.total or None,
            completed=done + stats.failed,
            files_info=f"{stats.upload.count} uploaded, {stats.delete.count} deleted",
        )

    def __enter__(self) -> "RunReporter":
        """Start the progress bar when stdout is a terminal."""
        if self.enabled and self.out.console.is_terminal:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("[cyan]{task.fields[files_info]}"),
                TimeElapsedColumn(),
                console=self.out.console,
                transient=True,
                refresh_per_second=4,
            )
            self._progress.__enter__()
            self._task = self._progress.add_task(
                "Processing", total=None, files_info="0 uploaded, 0 deleted"
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None

    # =========================
    # Summary
    # =========================

    def summary_lines(self, stats: RunStats, with_delete: bool) -> list[str]:
        """Build the final report lines."""
        processed = stats.stat.creation + stats.stat.update + stats.stat.unchange
        lines = [
            f"Matched files: {stats.match.count} ({format_size(stats.match.size)}), "
            f"{progress_percent(processed + stats.failed, stats.match.total)}%.",
            f"Uploaded files: {stats.upload.count} ({format_size(stats.upload.size)})"
            f"{', done.' if stats.upload.done else '.'}",
        ]
        if with_delete:
            lines.append(
                f"Deleted remote files: {stats.delete.count} "
                f"({format_size(stats.delete.size)})"
                f"{', done.' if stats.delete.done else '.'}"
            )
        lines.append(f"Elapsed time: {format_duration(stats.elapsed)}.")

        stat = stats.stat
        lines.append(
            f"{stat.creation} creation{plural(stat.creation)}, "
            f"{stat.update} update{plural(stat.update)}, "
            f"{stat.deletion} deletion{plural(stat.deletion)}, "
            f"{stat.unchange} skip{plural(stat.unchange)}."
        )
        if stats.failed:
            lines.append(f"{stats.failed} file{plural(stats.failed)} failed.")
        return lines

    def print_summary(self, stats: RunStats, with_delete: bool) -> None:
        """Print the final report, or the statistics as JSON."""
        if self.out.json_output:
            self.out.output_json(stats.to_dict())
            return
        if not self.enabled:
            return
        self.out.print()
        for line in self.summary_lines(stats, with_delete):
            self.out.info(line)
