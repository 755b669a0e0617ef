"""Tests for the tagres CLI."""

import pytest
from typer.testing import CliRunner

from conftest import make_renderer, write_json
from tagres import __version__
from tagres.cli import app

runner = CliRunner()


@pytest.fixture
def project(tmp_path):
    make_renderer(tmp_path / "hello.py")
    write_json(
        tmp_path / "marko-taglib.json",
        {
            "<my-hello>": {"renderer": "./hello.py", "@name": "string"},
            "<ui-list>": {"renderer": "./hello.py", "@items <item>[]": {}},
        },
    )
    return tmp_path


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_tags_lists_definitions(project):
    result = runner.invoke(
        app, ["tags", str(project / "page.marko"), "--boundary", str(project)]
    )
    assert result.exit_code == 0, result.output
    assert "my-hello" in result.output
    assert "ui-list.item" in result.output
    assert "nested" in result.output


def test_tags_empty(tmp_path):
    result = runner.invoke(app, ["tags", str(tmp_path / "page.marko"), "-b", str(tmp_path)])
    assert result.exit_code == 0
    assert "No tags found" in result.output


def test_check_ok(project):
    result = runner.invoke(
        app, ["check", str(project / "page.marko"), "my-hello", "name", "-b", str(project)]
    )
    assert result.exit_code == 0, result.output
    assert "OK" in result.output
    assert "name -> name" in result.output


def test_check_undeclared_attribute(project):
    result = runner.invoke(
        app, ["check", str(project / "page.marko"), "my-hello", "foo", "-b", str(project)]
    )
    assert result.exit_code == 4
    assert "ValidationError" in result.output
    assert "foo" in result.output


def test_malformed_taglib(tmp_path):
    write_json(tmp_path / "marko-taglib.json", {"<x-tag>": {}})
    result = runner.invoke(app, ["tags", str(tmp_path / "page.marko"), "-b", str(tmp_path)])
    assert result.exit_code == 3
    assert "Error:" in result.output


def test_undecodable_taglib(tmp_path):
    (tmp_path / "marko-taglib.json").write_bytes(b"\xff\xfe{}")
    result = runner.invoke(app, ["tags", str(tmp_path / "page.marko"), "-b", str(tmp_path)])
    assert result.exit_code == 3
    assert "ConfigError" in result.output
