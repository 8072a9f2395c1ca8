"""pinyx error hierarchy.

All pinyx-specific errors inherit from PinyxError for easy catching.
Errors raised by user code (state factories, actions, subscribers) are
never wrapped: they reach the caller unchanged.
"""


class PinyxError(Exception):
    """Base error for all pinyx operations."""


class DefinitionError(PinyxError):
    """Invalid store definition, raised by define()."""


class DuplicateStoreError(DefinitionError):
    """A store id was defined twice."""


class InstantiationError(PinyxError):
    """A store could not be built from its definition."""


class StateError(PinyxError):
    """Invalid access to a store's state tree."""


class UndeclaredStateError(StateError, AttributeError):
    """Write to a top-level state key the store never declared."""


class StoreError(PinyxError):
    """Invalid operation on a live store instance."""


class NoActiveContainerError(PinyxError):
    """A store was requested without a container and none is active."""


class PluginError(PinyxError):
    """A plugin contributed fields that clash with the store's own."""


class HydrationError(PinyxError):
    """A snapshot fragment could not be applied."""
