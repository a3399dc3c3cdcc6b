"""Shared fixtures for the node optimizer tests"""

import logging

import pytest

from fakes import FakeSleep


@pytest.fixture
def sleep():
    """Sleep that records delays and returns at once"""
    return FakeSleep()


@pytest.fixture
def test_logger():
    return logging.getLogger("node_optimizer.tests")
