"""Exception types raised by the compliance and report layers."""


class FabrilogError(Exception):
    """Base class for errors surfaced to users of the production tracker."""


class ValidationError(FabrilogError):
    """Raised when user input fails validation."""


class CollaboratorError(FabrilogError):
    """Raised when a database call fails or returns rows of the wrong shape."""


class EmptyResultError(FabrilogError):
    """Raised when a query succeeds but yields no rows to report on."""

    default_message = "No records found in the selected date range."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
