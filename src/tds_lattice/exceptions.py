class FatalInvariantBreachError(Exception):
    """Energy deviation above the hard ceiling, or lattice structure changed mid-step."""
    def __init__(self, message="Fatal invariant breach; step rolled back.", report=None):
        super().__init__(message)
        self.report = report


class InvalidParameterError(Exception):
    """Configuration value outside its physical domain."""
    def __init__(self, message="Invalid simulation parameter."):
        super().__init__(message)


class BookmarkNotFoundError(Exception):
    """No bookmark stored under the requested name."""
    def __init__(self, message="Bookmark not found."):
        super().__init__(message)


class HistoryEntryNotFoundError(Exception):
    """Requested step index is not held in the history buffer."""
    def __init__(self, message="Step index not found in history."):
        super().__init__(message)
