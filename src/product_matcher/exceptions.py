"""Exception types raised by the product matcher."""


class ProductMatcherError(Exception):
    """Base class for all product matcher errors."""


class SchemaNotFoundError(ProductMatcherError, KeyError):
    """No category schema is registered under the requested key."""

    def __init__(self, key: str, available=None):
        self.key = key
        self.available = sorted(available or [])
        super().__init__(key)

    def __str__(self) -> str:
        if self.available:
            return f"Unknown category schema '{self.key}' (available: {', '.join(self.available)})"
        return f"Unknown category schema '{self.key}'"


class SchemaValidationError(ProductMatcherError, ValueError):
    """A category schema definition does not have the required shape."""


class ObservationParseError(ProductMatcherError, ValueError):
    """Extraction output is unusable as a whole (not a mapping at all)."""
