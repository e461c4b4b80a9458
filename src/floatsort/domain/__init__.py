"""Domain primitives shared across floatsort."""

from .result import Result, Success, Failure

__all__ = ["Result", "Success", "Failure"]
