"""Rule engine errors."""


class RuleEngineError(Exception):
    """A medication entry (or the whole input) could not be assessed."""

    def __init__(self, message: str, entry_index: int | None = None):
        super().__init__(message)
        self.entry_index = entry_index
