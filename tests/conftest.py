"""Shared fixtures for the canvas test suite."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from mcp_plait_canvas.repository import ElementRepository  # noqa: E402


@pytest.fixture
def repository():
    """A fresh, isolated repository per test."""
    return ElementRepository()


@pytest.fixture
def geometry():
    return {
        "id": "g1",
        "type": "geometry",
        "shape": "rectangle",
        "points": [[0, 0], [10, 10]],
        "text": "A",
    }


@pytest.fixture
def arrow():
    return {
        "id": "a1",
        "type": "arrow-line",
        "shape": "straight",
        "points": [[10, 5], [50, 5]],
        "source": {"boundId": "g1", "connection": [1, 0.5], "marker": "none"},
        "target": {"marker": "arrow"},
    }
