# tests/test_exceptions.py
"""Tests for the promtree exception hierarchy."""

import pytest

from promtree.exceptions import (
    CollectionError,
    ConfigurationError,
    ProducerError,
    PromTreeError,
    SerializationError,
    ValidationError,
)


@pytest.mark.parametrize(
    "exc_cls",
    [ConfigurationError, ValidationError, ProducerError, SerializationError],
)
def test_subclasses_base(exc_cls):
    assert issubclass(exc_cls, PromTreeError)
    assert str(exc_cls())


def test_default_message():
    assert str(PromTreeError()) == "An unspecified error occurred in promtree."


def test_producer_error():
    cause = RuntimeError("boom")
    error = ProducerError("app_queue_depth", "boom", cause=cause)
    assert error.family_name == "app_queue_depth"
    assert error.cause is cause
    assert str(error) == "Producer for metric 'app_queue_depth' failed: boom"


def test_collection_error_lists_failures():
    errors = [ProducerError("a", "x"), ProducerError("b", "y")]
    error = CollectionError(errors)
    assert error.errors == errors
    assert str(error) == "Collection completed with errors. Failed metrics: a, b"
