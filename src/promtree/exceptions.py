# src/promtree/exceptions.py
"""
Custom exceptions for the promtree library.

This module defines the hierarchy of exception classes raised while
registering metrics, recording observations and collecting the exposition
text, so that instrumented applications and transports can handle each
failure class separately.
"""

from typing import List, Optional


class PromTreeError(Exception):
    """Base class for all promtree specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in promtree."):
        super().__init__(message)

class ConfigurationError(PromTreeError):
    """Raised at registration time for invalid names, labels, buckets or type clashes."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)

class ValidationError(PromTreeError):
    """Raised by a mutation call that would corrupt metric state (e.g. a negative counter delta)."""
    def __init__(self, message: str = "Invalid metric update."):
        super().__init__(message)

class ProducerError(PromTreeError):
    """Raised for a triggered metric whose producer failed or timed out during collection."""
    def __init__(self, family_name: str = "Unknown", message: str = "Producer failed.", cause: Optional[BaseException] = None):
        self.family_name = family_name
        self.cause = cause
        super().__init__(f"Producer for metric '{family_name}' failed: {message}")

class CollectionError(PromTreeError):
    """
    Aggregates the producer errors of a single collection pass.
    The exposition text of the pass is still valid; only the failed
    families are missing from it.
    """
    def __init__(self, errors: List[ProducerError], message: str = "Collection completed with errors."):
        self.errors = list(errors)
        names = ", ".join(e.family_name for e in self.errors)
        super().__init__(f"{message} Failed metrics: {names}")

class SerializationError(PromTreeError):
    """Raised when the collector tree cannot be rendered into exposition text."""
    def __init__(self, message: str = "Serialization error."):
        super().__init__(message)
