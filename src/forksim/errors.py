"""Exceptions for forksim."""


class ForkSimError(Exception):
    """Base class for forksim errors."""


class OutputFormatError(ForkSimError):
    """An output line has no string literal to render."""
