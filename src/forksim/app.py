"""forksim - Main Textual application."""

import argparse
import colorsys
import logging
from collections.abc import Sequence
from pathlib import Path
from queue import Empty, Queue

from rich.color import Color
from rich.console import Console
from rich.style import Style
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.css.query import NoMatches
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Log, Static, TextArea, Tree

from forksim.engine import SimulationEngine
from forksim.hierarchy import build_tree, render_tree
from forksim.models import ProcessSnapshot, ProcessStatus, RunStatus, TickResult, TreeNode
from forksim.runner import SimulationRunner

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = """\
#include <stdio.h>
#include <unistd.h>

int main() {
    printf("Start: PID %d\\n", getpid());
    pid_t child_pid = fork();
    printf("fork returned %d\\n", child_pid);
    printf("My parent is %d\\n", getppid());
    fork();
    printf("Hello from %d\\n", getpid());
    return 0;
}
"""


def pid_style(pid: int) -> Style:
    """Background colour for lines where a process stands, one hue per PID."""
    hue = (pid * 40) % 360
    red, green, blue = colorsys.hls_to_rgb(hue / 360, 0.85, 1.0)
    return Style(
        color="black",
        bgcolor=Color.from_rgb(int(red * 255), int(green * 255), int(blue * 255)),
    )


class CodeView(Static):
    """Numbered source listing showing where each process currently is."""

    DEFAULT_CSS = """
    CodeView {
        height: auto;
        padding: 0 1;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize CodeView."""
        super().__init__(*args, **kwargs)
        self._lines: tuple[str, ...] = ()
        self._highlights: tuple[tuple[int, int], ...] = ()

    @property
    def highlights(self) -> tuple[tuple[int, int], ...]:
        return self._highlights

    def set_source(self, lines: Sequence[str]) -> None:
        """Show a new listing with no highlights."""
        self._lines = tuple(lines)
        self._highlights = ()
        self.update(self._build_text())

    def show_highlights(self, highlights: Sequence[tuple[int, int]]) -> None:
        """Mark ``(line_index, pid)`` positions, replacing the previous marks."""
        self._highlights = tuple(highlights)
        self.update(self._build_text())

    def _build_text(self) -> Text:
        if not self._lines:
            return Text("(no code loaded)", style="dim")

        # Positions past the last line have nothing to mark.
        pids_at: dict[int, list[int]] = {}
        for line_index, pid in self._highlights:
            pids_at.setdefault(line_index, []).append(pid)

        width = len(str(len(self._lines)))
        text = Text()
        for index, line in enumerate(self._lines):
            pids = pids_at.get(index)
            text.append(f"{index + 1:>{width}} ", style="dim")
            text.append(line or " ", style=pid_style(pids[0]) if pids else "")
            if pids:
                text.append(" ← " + ",".join(f"P{pid}" for pid in pids), style="bold")
            text.append("\n")
        return text


class ProcessTreeView(Tree[int]):
    """Process hierarchy, finished processes dimmed."""

    DEFAULT_CSS = """
    ProcessTreeView {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTreeView."""
        super().__init__("No processes", *args, **kwargs)

    @staticmethod
    def _label(node: TreeNode) -> str:
        if node.status is ProcessStatus.FINISHED:
            return f"[dim]{node.name} (finished)[/dim]"
        return f"[green]{node.name}[/green]"

    def update_tree(self, root: TreeNode | None) -> None:
        """Rebuild the widget from a hierarchy snapshot."""
        if root is None:
            self.reset("No processes")
            return

        self.reset(self._label(root), root.pid)
        pending = [(root, self.root)]
        while pending:
            node, branch = pending.pop()
            for child in node.children:
                if child.children:
                    leaf = branch.add(self._label(child), data=child.pid, expand=True)
                else:
                    leaf = branch.add_leaf(self._label(child), data=child.pid)
                pending.append((child, leaf))
        self.root.expand()


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=6)
        table.add_column("PPID", key="ppid", width=6)
        table.add_column("PC", key="pc", width=5)
        table.add_column("STATUS", key="status", width=10)
        table.add_column("FORK", key="fork", width=6)

    def update_processes(self, processes: Sequence[ProcessSnapshot]) -> None:
        """
        Update the process table with new data.

        Uses update_cell for existing rows to avoid re-rendering the whole table.
        """
        table = self.query_one("#process-table", DataTable)
        ordered = sorted(processes, key=lambda proc: proc.pid)
        new_pids = {proc.pid for proc in ordered}

        # Rows vanish only when a run is reset
        for pid in self._current_pids - new_pids:
            table.remove_row(str(pid))

        for proc in ordered:
            row_key = str(proc.pid)
            if proc.pid in self._current_pids:
                self._update_row(table, row_key, proc)
            else:
                table.add_row(*self._cells(proc), key=row_key)

        self._current_pids = new_pids

    @staticmethod
    def _cells(proc: ProcessSnapshot) -> tuple[str, ...]:
        fork_return = "-" if proc.last_fork_return is None else str(proc.last_fork_return)
        return (
            str(proc.pid),
            str(proc.ppid),
            str(proc.program_counter + 1),
            proc.status.value,
            fork_return,
        )

    def _update_row(self, table: DataTable, row_key: str, proc: ProcessSnapshot) -> None:
        """Update an existing row using update_cell."""
        for column, value in zip(("pid", "ppid", "pc", "status", "fork"), self._cells(proc)):
            table.update_cell(row_key, column, value)


class ForkSimApp(App):
    """Main forksim application."""

    TITLE = "forksim"
    SUB_TITLE = "fork() Process Simulator"

    CSS = """
    Screen {
        layout: vertical;
    }

    #main {
        height: 1fr;
    }

    #left, #right {
        width: 1fr;
    }

    #editor {
        height: 1fr;
    }

    #code-scroll {
        height: 1fr;
        border: solid $primary;
    }

    #sim-output {
        height: 1fr;
        border: solid $primary;
    }

    #status {
        height: 1;
        padding: 0 1;
        background: $surface;
    }
    """

    BINDINGS = [
        ("f5", "start", "Start"),
        ("f6", "reset", "Reset"),
        ("f10", "quit", "Quit"),
    ]

    def __init__(self, source: str = DEFAULT_SOURCE, tick_interval: float = 1.0) -> None:
        """Initialize the ForkSimApp."""
        super().__init__()
        self._source = source
        self._update_queue: Queue[TickResult] = Queue()
        self._runner = SimulationRunner(self._update_queue, tick_interval=tick_interval)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        with Horizontal(id="main"):
            with Vertical(id="left"):
                yield TextArea(self._source, id="editor")
                with VerticalScroll(id="code-scroll"):
                    yield CodeView(id="code-view")
            with Vertical(id="right"):
                yield ProcessTreeView(id="process-tree")
                yield ProcessTable()
                yield Log(id="sim-output")
        yield Static(RunStatus.IDLE.value, id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Show the initial listing and start polling the runner queue."""
        self.query_one(CodeView).set_source(self._source.splitlines())
        self.set_interval(0.1, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Apply every queued tick result, in order."""
        while True:
            try:
                result = self._update_queue.get_nowait()
            except Empty:
                break
            try:
                self._apply(result)
            except NoMatches:
                # Widgets not mounted yet or already torn down
                logger.debug("Dropped tick %d update", result.tick)

    def _apply(self, result: TickResult) -> None:
        """Update the UI with one tick result."""
        self.query_one("#status", Static).update(result.status.value)
        self.query_one(CodeView).show_highlights(() if result.complete else result.highlights)
        self.query_one(ProcessTreeView).update_tree(result.tree)
        self.query_one(ProcessTable).update_processes(result.processes)

        output = self.query_one("#sim-output", Log)
        for event in result.events:
            output.write_line(event.message)

    def action_start(self) -> None:
        """Load the editor contents and run them from the start."""
        if self._runner.is_running:
            self.notify("Simulation already running")
            return

        lines = self.query_one("#editor", TextArea).text.splitlines()
        self._runner.reset()
        self.query_one("#sim-output", Log).clear()
        self.query_one(CodeView).set_source(lines)
        self._runner.start(lines)

    def action_reset(self) -> None:
        """Stop the run and clear every panel."""
        self._runner.reset()
        self.query_one("#sim-output", Log).clear()
        self.query_one(CodeView).show_highlights(())

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._runner.stop()
        self.exit()


def run_batch(
    source: str,
    console: Console | None = None,
    max_ticks: int | None = None,
) -> SimulationEngine:
    """Run a program without the UI, printing events and the final tree."""
    console = console if console is not None else Console()
    engine = SimulationEngine()
    engine.initialize(source.splitlines())

    for result in engine.run(max_ticks):
        for event in result.events:
            console.print(event.message, markup=False, highlight=False)

    if not engine.is_complete:
        console.print(f"[yellow]Stopped after {engine.tick_count} ticks.[/yellow]")
    console.print(render_tree(build_tree(engine.processes)))
    return engine


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forksim",
        description="Step-by-step simulator of fork() process creation.",
    )
    parser.add_argument(
        "source",
        nargs="?",
        type=Path,
        help="C source file to load (default: built-in sample)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=1.0,
        help="seconds between ticks (default: 1.0)",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="run to completion without the UI and print the output",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="stop a batch run after this many ticks",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging threshold (default: WARNING)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for forksim application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    source = DEFAULT_SOURCE
    if args.source is not None:
        try:
            source = args.source.read_text(encoding="utf-8")
        except OSError as exc:
            parser.error(f"cannot read {args.source}: {exc.strerror}")

    if args.batch:
        logging.basicConfig(level=args.log_level)
        run_batch(source, max_ticks=args.max_ticks)
        return

    logging.basicConfig(level=args.log_level, handlers=[TextualHandler()])
    app = ForkSimApp(source, tick_interval=args.interval)
    app.run()


if __name__ == "__main__":
    main()
