"""Line classification for the fork simulator.

Each source line is mapped to one simulated instruction by plain text
matching. There is no parser: block nesting is not tracked, and the
end-of-scope test below is a deliberate approximation that a block-depth
tracker can later replace behind the same interface.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from forksim.formatter import extract_format_spec

FORK_TOKEN = "fork()"
OUTPUT_TOKEN = "printf"
RETURN_KEYWORD = "return"
CLOSE_SCOPE = "}"


class InstructionKind(Enum):
    """Simulated instruction types, in classification priority order."""

    FORK = "fork"
    TERMINATE = "terminate"
    OUTPUT = "output"
    NOOP = "noop"


@dataclass(slots=True, frozen=True)
class Instruction:
    """A classified source line."""

    kind: InstructionKind
    line: str
    format_spec: str | None = None  # only set for OUTPUT


class LineClassifier:
    """Classify lines of a fixed source sequence."""

    def __init__(self, source_lines: Sequence[str]) -> None:
        self._lines = tuple(source_lines)

    def __len__(self) -> int:
        return len(self._lines)

    def is_end_of_scope(self, index: int) -> bool:
        """
        Decide whether a return/closing-brace line ends the process.

        True when the trimmed line starts with ``return`` or is a bare ``}``,
        or when it is the last line of the source.
        """
        line = self._lines[index].strip()
        if line.startswith(RETURN_KEYWORD) or line == CLOSE_SCOPE:
            return True
        return index >= len(self._lines) - 1

    def classify(self, index: int) -> Instruction:
        """
        Classify the line at ``index``.

        Priority is fork, then terminate, then output; anything else
        (including getpid()/getppid() calls) is a no-op.
        """
        line = self._lines[index].strip()

        if FORK_TOKEN in line:
            return Instruction(InstructionKind.FORK, line)

        if RETURN_KEYWORD in line or line.startswith(CLOSE_SCOPE):
            if self.is_end_of_scope(index):
                return Instruction(InstructionKind.TERMINATE, line)

        if line.startswith(OUTPUT_TOKEN):
            return Instruction(
                InstructionKind.OUTPUT,
                line,
                format_spec=extract_format_spec(line),
            )

        return Instruction(InstructionKind.NOOP, line)
