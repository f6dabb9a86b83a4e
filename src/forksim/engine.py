"""Tick-driven process simulation engine for forksim."""

import logging
from collections.abc import Callable, Iterator, Sequence

from forksim import formatter
from forksim.classifier import InstructionKind, LineClassifier
from forksim.hierarchy import build_tree
from forksim.models import (
    EventKind,
    ProcessRecord,
    RunStatus,
    SimEvent,
    TickResult,
    TreeNode,
)

logger = logging.getLogger(__name__)

HighlightSink = Callable[[int, int], None]
TreeSink = Callable[[TreeNode | None], None]

ROOT_PID = 1


class SimulationEngine:
    """
    Owns the state of one simulation run.

    A driver calls ``tick()`` once per unit of simulated time. In each tick
    every process that was running when the tick began executes at most one
    line, in ascending PID order. Children created by a fork wait for the
    next tick.

    Two optional collaborators can observe the run: ``highlight_sink`` is
    told ``(line_index, pid)`` at the start of every process turn, and
    ``tree_sink`` receives a fresh hierarchy after every fork or finish and
    at completion.
    """

    def __init__(
        self,
        highlight_sink: HighlightSink | None = None,
        tree_sink: TreeSink | None = None,
    ) -> None:
        self._highlight_sink = highlight_sink
        self._tree_sink = tree_sink
        self.reset()

    def reset(self) -> None:
        """Discard the run and return to the pre-initialization state."""
        self._processes: list[ProcessRecord] = []
        self._next_pid = ROOT_PID
        self._source_lines: tuple[str, ...] = ()
        self._classifier = LineClassifier(self._source_lines)
        self._status = RunStatus.IDLE
        self._tick_count = 0
        self._log: list[str] = []

    def initialize(self, source_lines: Sequence[str]) -> None:
        """Start a new run over ``source_lines`` with a single root process."""
        self.reset()
        self._source_lines = tuple(source_lines)
        self._classifier = LineClassifier(self._source_lines)
        self._processes.append(ProcessRecord(pid=self._allocate_pid(), ppid=0))
        self._status = RunStatus.READY
        logger.debug("Initialized run with %d source lines", len(self._source_lines))

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def source_lines(self) -> tuple[str, ...]:
        return self._source_lines

    @property
    def processes(self) -> list[ProcessRecord]:
        """Live process records in creation order."""
        return list(self._processes)

    @property
    def transcript(self) -> str:
        """Every event message of the run, newline-terminated."""
        return "".join(f"{message}\n" for message in self._log)

    @property
    def is_complete(self) -> bool:
        return self._status is RunStatus.FINISHED

    def get_process(self, pid: int) -> ProcessRecord | None:
        for process in self._processes:
            if process.pid == pid:
                return process
        return None

    def _allocate_pid(self) -> int:
        pid = self._next_pid
        self._next_pid += 1
        return pid

    def snapshot(
        self,
        events: Sequence[SimEvent] = (),
        highlights: Sequence[tuple[int, int]] = (),
    ) -> TickResult:
        """Describe the current state without advancing it."""
        return TickResult(
            tick=self._tick_count,
            status=self._status,
            events=tuple(events),
            highlights=tuple(highlights),
            processes=tuple(process.snapshot() for process in self._processes),
            tree=build_tree(self._processes),
            complete=self.is_complete,
        )

    def tick(self) -> TickResult:
        """Execute one unit of simulated time."""
        if self._status is RunStatus.IDLE:
            return TickResult(tick=0, status=self._status, complete=True)

        if self.is_complete:
            return self.snapshot()

        active = [process for process in self._processes if process.is_running]
        if not active:
            return self._complete([])

        self._status = RunStatus.RUNNING
        self._tick_count += 1
        events: list[SimEvent] = []
        highlights: list[tuple[int, int]] = []
        progressed = 0

        for process in sorted(active, key=lambda p: p.pid):
            if not process.is_running:
                continue
            highlights.append((process.program_counter, process.pid))
            self._highlight(process.program_counter, process.pid)

            program_counter = process.program_counter
            self._step(process, events)
            if process.program_counter != program_counter or not process.is_running:
                progressed += 1

        if not progressed:
            # Nothing moved this tick: stop instead of looping forever.
            logger.debug("Tick %d made no progress; completing run", self._tick_count)
            return self._complete(events, highlights)

        return self.snapshot(events, highlights)

    def run(self, max_ticks: int | None = None) -> Iterator[TickResult]:
        """Tick until the run completes, yielding every result."""
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            result = self.tick()
            yield result
            if result.complete:
                return
            ticks += 1

    def _step(self, process: ProcessRecord, events: list[SimEvent]) -> None:
        """Execute the line at the process's program counter."""
        if process.program_counter >= len(self._source_lines):
            process.finish()
            self._emit(
                events,
                EventKind.END_OF_CODE,
                f"Process {process.pid} finished (reached end of code).",
                process.pid,
            )
            self._publish_tree()
            return

        instruction = self._classifier.classify(process.program_counter)

        if instruction.kind is InstructionKind.FORK:
            child = process.spawn_child(self._allocate_pid())
            self._processes.append(child)
            self._emit(
                events,
                EventKind.FORK,
                f"Process {process.pid} called fork(). Created child Process {child.pid}.",
                process.pid,
            )
            self._publish_tree()
        elif instruction.kind is InstructionKind.TERMINATE:
            process.finish()
            self._emit(
                events,
                EventKind.EXIT,
                f"Process {process.pid} finished (return/exit scope).",
                process.pid,
            )
            self._publish_tree()
            return
        elif instruction.kind is InstructionKind.OUTPUT:
            text = formatter.render(instruction.format_spec or "", process, instruction.line)
            self._emit(events, EventKind.OUTPUT, f"[PID:{process.pid}] {text}", process.pid)

        process.program_counter += 1

    def _complete(
        self,
        events: list[SimEvent],
        highlights: Sequence[tuple[int, int]] = (),
    ) -> TickResult:
        self._status = RunStatus.FINISHED
        self._emit(events, EventKind.COMPLETE, "Simulation finished.")
        self._publish_tree()
        logger.debug("Run finished after %d ticks", self._tick_count)
        return self.snapshot(events, highlights)

    def _emit(
        self,
        events: list[SimEvent],
        kind: EventKind,
        message: str,
        pid: int | None = None,
    ) -> None:
        events.append(SimEvent(kind=kind, message=message, pid=pid))
        self._log.append(message)

    def _highlight(self, line_index: int, pid: int) -> None:
        if self._highlight_sink is None:
            return
        try:
            self._highlight_sink(line_index, pid)
        except Exception:
            logger.debug(
                "Highlight sink failed for PID %d at line %d",
                pid,
                line_index,
                exc_info=True,
            )

    def _publish_tree(self) -> None:
        if self._tree_sink is None:
            return
        try:
            self._tree_sink(build_tree(self._processes))
        except Exception:
            logger.debug("Tree sink failed", exc_info=True)
