"""Shared fixtures: helpers that lay out taglib trees on disk."""

import json
from pathlib import Path

import pytest

from tagres import TagresSettings, TaglibDiscoveryWalker, TaglibLoader


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


def write_text(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def make_renderer(path: Path, schema: dict | None = None) -> Path:
    """Write a renderer module, optionally embedding a `tag` schema literal."""
    source = "def render(input, out):\n    out.write('hi')\n"
    if schema is not None:
        source = f"tag = {schema!r}\n\n" + source
    return write_text(path, source)


@pytest.fixture
def settings(tmp_path):
    """Settings whose upward walk never leaves tmp_path."""
    return TagresSettings(boundary=tmp_path)


@pytest.fixture
def loader(settings):
    return TaglibLoader(settings)


@pytest.fixture
def walker(settings):
    return TaglibDiscoveryWalker(settings)
