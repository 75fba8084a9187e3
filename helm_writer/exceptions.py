"""Exceptions related to helm-writer."""

__all__ = [
    "HelmWriterException",
    "InputException",
    "IncompleteValueMappingError",
    "NotesNotFoundError",
    "InvalidPathException",
    "OutputException",
    "CommandException",
    "HelmException",
]


class HelmWriterException(Exception):
    """Generic base exception used for this library."""


class InputException(HelmWriterException):
    """Raised when the input files or configuration are not formatted as expected."""


class IncompleteValueMappingError(InputException):
    """Raised when a value reference has neither a path nor a default value."""

    def __init__(self, property_name: str) -> None:
        super().__init__(
            f"The value mapping for {property_name} does not have either a path "
            "or a default value"
        )
        self.property_name = property_name


class NotesNotFoundError(InputException):
    """Raised when the configured notes template can't be found."""

    def __init__(self, notes: str) -> None:
        super().__init__(f"Could not find the notes template file at {notes}")
        self.notes = notes


class InvalidPathException(InputException):
    """Raised when a yaml path expression can't be parsed."""


class OutputException(HelmWriterException):
    """Raised when the chart files can't be read or written."""


class CommandException(HelmWriterException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""
