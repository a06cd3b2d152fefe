"""
Exception taxonomy for the change-tracking engine.

All errors are programmer errors surfaced synchronously at the call that
violated the contract. Each one also derives from the closest builtin so
callers that already catch RuntimeError/AttributeError/TypeError keep working.
"""


class ChangeTrackingError(Exception):
    """Base class for every error raised by changetracking."""


class InvalidStateError(ChangeTrackingError, RuntimeError):
    """Operation not permitted in the wrapper's current state.

    Raised when mutating a Deleted object, accepting changes on a Deleted
    object, or tracking a value that is already a tracked wrapper.
    """


class UnknownPropertyError(ChangeTrackingError, AttributeError):
    """Lookup by a property name that does not exist on the tracked type."""

    def __init__(self, type_name: str, property_name):
        self.type_name = type_name
        self.property_name = property_name
        super().__init__(f"'{property_name}' is not a valid property name of type '{type_name}'")


class NotSupportedError(ChangeTrackingError, TypeError):
    """Value has a shape the engine cannot represent (bare arrays, scalars, builtin containers)."""
