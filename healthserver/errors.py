class PersistenceError(Exception):
    """The alert store could not complete an operation."""
    pass


class ValidationError(Exception):
    """A submitted snapshot is malformed and was rejected."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or []
