"""Exception types for Specky.

Per-change problems (rejected paths, merge fallbacks) are reported as
``SkipReason`` records and never raised; these exceptions cover failures
that end a whole operation.
"""


class SpeckyError(Exception):
    """Base class for Specky errors."""


class FeatureNotFoundError(SpeckyError, LookupError):
    """No feature directory with the requested id."""

    def __init__(self, feature_id: str):
        super().__init__(f"Feature '{feature_id}' not found")
        self.feature_id = feature_id


class TaskNotFoundError(SpeckyError, LookupError):
    """No task with the requested id or index."""

    def __init__(self, feature_id: str, task_ref: str):
        super().__init__(f"Task '{task_ref}' not found for feature '{feature_id}'")
        self.feature_id = feature_id
        self.task_ref = task_ref


class GenerationError(SpeckyError):
    """The oracle failed (timeout, upstream error). Nothing was committed."""

    def __init__(self, message: str, model: str = ""):
        super().__init__(message)
        self.model = model


class GenerationCancelled(SpeckyError):
    """Generation was cancelled before any change extraction."""


class TransactionError(SpeckyError):
    """A multi-file commit failed and was rolled back."""

    def __init__(self, message: str, paths: tuple = ()):
        super().__init__(message)
        self.paths = tuple(paths)
