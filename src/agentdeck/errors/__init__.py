"""agentdeck error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    COMMAND = "command"
    GIT = "git"
    ISOLATION = "isolation"
    TERMINAL = "terminal"
    CONFIGURATION = "configuration"
    STORAGE = "storage"
    INTERNAL = "internal"


class DeckError(Exception):
    """Base error for all engine exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class CommandError(DeckError):
    """An external command exited non-zero or could not be started."""

    def __init__(
        self,
        message: str,
        *,
        args: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        retryable: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, category=ErrorCategory.COMMAND, retryable=retryable, **kwargs)
        self.command = list(args or [])
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(CommandError):
    """An external command exceeded its time bound and was killed."""

    def __init__(self, args: list[str], timeout: float) -> None:
        super().__init__(
            f"Command '{' '.join(args)}' timed out after {timeout}s",
            args=args,
            retryable=True,
        )
        self.timeout = timeout


class GitError(DeckError):
    """A git invocation failed after conversion from the raw process error."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "command_failed",
        retryable: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, category=ErrorCategory.GIT, retryable=retryable, **kwargs)
        self.code = code


class IsolationError(DeckError):
    """An isolation backend failed to create, exec or destroy a runtime."""

    def __init__(self, message: str, *, backend: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.ISOLATION, **kwargs)
        self.backend = backend


class IsolationUnavailableError(IsolationError):
    """The requested backend is not usable on this host."""

    def __init__(self, backend: str) -> None:
        super().__init__(f"Isolation backend not available: {backend}", backend=backend)


class TerminalError(DeckError):
    """A terminal-multiplexer operation failed."""

    def __init__(self, message: str, *, session: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.TERMINAL, **kwargs)
        self.session = session


class ConfigurationError(DeckError):
    """Invalid or missing configuration, or an undeterminable repository state."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False)


class NameInUseError(DeckError):
    """An agent name is already taken in the repository."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Agent name already in use: {name}", category=ErrorCategory.INTERNAL)
        self.name = name


__all__ = [
    "CommandError",
    "CommandTimeoutError",
    "ConfigurationError",
    "DeckError",
    "ErrorCategory",
    "GitError",
    "IsolationError",
    "IsolationUnavailableError",
    "NameInUseError",
    "TerminalError",
]
