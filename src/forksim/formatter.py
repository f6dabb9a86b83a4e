"""Rendering of simulated printf() calls."""

import logging
import re

from forksim.errors import OutputFormatError
from forksim.models import ProcessRecord

logger = logging.getLogger(__name__)

OUTPUT_LITERAL = re.compile(r'printf\("([^"]*)"')
INT_PLACEHOLDER = re.compile(r"%d")

PID_QUERY = "getpid()"
PPID_QUERY = "getppid()"
# Only this variable name is recognised as holding the fork result.
FORK_RESULT_NAME = "child_pid"

UNRESOLVED = "?"
PARSE_ERROR = "Error parsing printf"


def parse_literal(line: str) -> str:
    """Return the first printf string literal on the line."""
    match = OUTPUT_LITERAL.search(line)
    if match is None:
        raise OutputFormatError(f"no string literal in {line!r}")
    return match.group(1)


def extract_format_spec(line: str) -> str:
    """Return the first printf string literal on the line, or "" if none."""
    match = OUTPUT_LITERAL.search(line)
    return match.group(1) if match else ""


def _resolve_placeholder(line: str, process: ProcessRecord) -> str:
    if PID_QUERY in line:
        return str(process.pid)
    if PPID_QUERY in line:
        return str(process.ppid)
    if FORK_RESULT_NAME in line and process.last_fork_return is not None:
        return str(process.last_fork_return)
    return UNRESOLVED


def render(format_spec: str, process: ProcessRecord, line: str) -> str:
    """
    Render the text printed by ``process`` for an output line.

    Escaped newlines become real line breaks, then every ``%d`` is filled
    from the whole line: getpid() gives the PID, getppid() the PPID, and a
    ``child_pid`` reference the last fork result. Falls back to a fixed
    error string when the line carries no string literal.
    """
    try:
        parse_literal(line)
    except OutputFormatError as exc:
        logger.debug("PID %d: %s", process.pid, exc)
        return PARSE_ERROR

    text = format_spec.replace("\\n", "\n")
    text = INT_PLACEHOLDER.sub(lambda _: _resolve_placeholder(line, process), text)
    return text.strip()
