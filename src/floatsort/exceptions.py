"""Custom exceptions for floatsort."""


class FloatSortError(Exception):
    """Base exception for floatsort errors."""
    pass


class ConfigurationError(FloatSortError):
    """Raised when the watch configuration is unusable."""
    pass


class FileOperationError(FloatSortError):
    """Raised when a move, copy, rename or delete fails."""
    pass


class RuleResolutionError(FloatSortError):
    """Raised when a rule action cannot be resolved to a destination."""
    pass
