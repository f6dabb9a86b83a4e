"""Data models for forksim."""

import copy
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


class ProcessStatus(Enum):
    """Lifecycle of a simulated process."""

    RUNNING = "running"
    FINISHED = "finished"


class RunStatus(Enum):
    """Lifecycle of a whole simulation run."""

    IDLE = "Idle"
    READY = "Ready"
    RUNNING = "Running..."
    FINISHED = "Finished"


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of a simulated process, safe to hand to renderers."""

    pid: int
    ppid: int
    program_counter: int
    status: ProcessStatus
    last_fork_return: int | None


@dataclass(slots=True)
class ProcessRecord:
    """
    Mutable state of one simulated process.

    Only the engine touches a record, and only during that process's turn.
    """

    pid: int
    ppid: int  # 0 means no parent (the root)
    program_counter: int = 0
    status: ProcessStatus = ProcessStatus.RUNNING
    variables: dict[str, object] = field(default_factory=dict)
    last_fork_return: int | None = None

    @property
    def is_running(self) -> bool:
        """Check if the process can still execute."""
        return self.status is ProcessStatus.RUNNING

    def finish(self) -> None:
        """Retire the process. There is no way back to running."""
        self.status = ProcessStatus.FINISHED

    def spawn_child(self, child_pid: int) -> "ProcessRecord":
        """
        Create the child produced by a fork at the current line.

        The child resumes after the fork line with its own deep copy of the
        variables, and sees 0 as the fork result. The parent sees the child PID.
        """
        child = ProcessRecord(
            pid=child_pid,
            ppid=self.pid,
            program_counter=self.program_counter + 1,
            variables=copy.deepcopy(self.variables),
            last_fork_return=0,
        )
        self.last_fork_return = child_pid
        return child

    def snapshot(self) -> ProcessSnapshot:
        """Freeze the current state."""
        return ProcessSnapshot(
            pid=self.pid,
            ppid=self.ppid,
            program_counter=self.program_counter,
            status=self.status,
            last_fork_return=self.last_fork_return,
        )


@dataclass(slots=True)
class TreeNode:
    """Lightweight hierarchy node for tree renderers."""

    pid: int
    ppid: int
    status: ProcessStatus
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"PID {self.pid}"

    def walk(self) -> Iterator["TreeNode"]:
        """Iterate over this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


class EventKind(Enum):
    """Kinds of lines sent to the simulated output panel."""

    FORK = "fork"
    OUTPUT = "output"
    EXIT = "exit"
    END_OF_CODE = "end_of_code"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class SimEvent:
    """One human-readable event produced during a tick."""

    kind: EventKind
    message: str
    pid: int | None = None


@dataclass(slots=True, frozen=True)
class TickResult:
    """Everything renderers need after one tick."""

    tick: int
    status: RunStatus
    events: tuple[SimEvent, ...] = ()
    highlights: tuple[tuple[int, int], ...] = ()  # (line_index, pid)
    processes: tuple[ProcessSnapshot, ...] = ()
    tree: TreeNode | None = None
    complete: bool = False
