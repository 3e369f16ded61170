"""Exceptions raised while evaluating code."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class EvalError(Exception):
    """Base error for evaluation failures; carries a plain message."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class CompilationErrors(EvalError):
    """One or more compilation errors were reported for the evaluated code."""

    def __init__(self, errors: Iterable[Any]) -> None:
        self.errors = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        return "".join(str(error.message) for error in self.errors)


class TypeRedefinedVariablesLost(EvalError):
    """Redefining a type caused existing variables of that type to be dropped."""

    def __init__(self, variables: Iterable[str]) -> None:
        self.variables = list(variables)
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            "A type redefinition resulted in the following variables being lost: "
            + ", ".join(self.variables)
        )


class SubprocessTerminated(EvalError):
    """The child process that runs evaluated code terminated."""