"""Exception hierarchy for the tagging engine.

Exception Hierarchy:
    TaggingError (base)
    ├── InvalidResourceKind - unknown kind passed to registration or tag/untag
    │   └── InvalidResponseKind - unknown or unregistered response kind passed to a query
    ├── InvalidViaKind - scope/via value that is not a registered resource
    └── UnregisteredKind - strict lookup of a kind that was never registered

Store failures (redis connection errors, timeouts) are not wrapped; they
reach the caller as raised by the redis client.
"""

from typing import Any


class TaggingError(Exception):
    """Base exception for all tagging engine errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about the error (kinds, values)
    """

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class InvalidResourceKind(TaggingError):
    """A value could not be resolved to one of user, item or tag."""


class InvalidResponseKind(InvalidResourceKind):
    """A query asked for a response kind other than user, item or tag."""


class InvalidViaKind(TaggingError):
    """A scope or via condition is not a registered resource or kind."""


class UnregisteredKind(TaggingError):
    """Settings were requested for a kind that was never registered."""
