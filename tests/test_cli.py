from __future__ import annotations

import json
import shutil

import pytest
from click.testing import CliRunner

from runway.cli import cli

needs_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")

CONFIG = """
jobs:
  lint:
    machine: true
    steps:
      - run: echo linting
  tests:
    machine: true
    steps:
      - run:
          name: Unit tests
          command: echo "tests on $RUNWAY_BRANCH"
      - store_artifacts:
          path: missing-report.xml
  broken:
    machine: true
    steps:
      - run: exit 7
workflows:
  version: 2
  check:
    jobs:
      - lint
      - tests:
          filters:
            branches:
              only:
                - master
                - /release-.*/
  red:
    jobs:
      - lint
      - broken
"""


@pytest.fixture
def project(tmp_path):
    config = tmp_path / "runway.yml"
    config.write_text(CONFIG)
    return tmp_path


def _invoke(project, *args):
    return CliRunner().invoke(cli, ["--config", str(project / "runway.yml"), *args])


def _run(project, *args):
    return _invoke(
        project,
        "run",
        *args,
        "--source", str(project),
        "--workspace-dir", str(project / "ws"),
        "--artifacts-dir", str(project / "artifacts"),
    )


def test_validate(project):
    result = _invoke(project, "validate")
    assert result.exit_code == 0
    assert "OK (3 job(s), 2 workflow(s))" in result.output


def test_invalid_definition_exits_3(project):
    (project / "runway.yml").write_text("jobs:\n  a:\n    machine: true\n    steps: []\n")
    result = _invoke(project, "validate")

    assert result.exit_code == 3
    assert "non-empty 'steps'" in result.output


def test_missing_file_exits_3(tmp_path):
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yml"), "validate"])
    assert result.exit_code == 3


def test_list(project):
    result = _invoke(project, "list")

    assert result.exit_code == 0
    assert "check" in result.output
    assert "tests (machine, 2 step(s)) [master, /release-.*/]" in result.output


def test_plan(project):
    result = _invoke(project, "plan", "check", "--branch", "develop")

    assert result.exit_code == 0
    assert "lint" in result.output
    assert "tests (skipped: only: master, /release-.*/)" in result.output


def test_unknown_workflow_exits_3(project):
    assert _invoke(project, "plan", "deploy", "--branch", "master").exit_code == 3
    assert _run(project, "deploy", "--branch", "master").exit_code == 3


@needs_bash
def test_successful_run_writes_report(project):
    report = project / "report.json"
    result = _run(project, "check", "--branch", "release-2.1", "--report", str(report))

    assert result.exit_code == 0, result.output
    assert "tests on release-2.1" in result.output

    data = json.loads(report.read_text())
    assert data["status"] == "success"
    assert data["jobs"]["tests"]["steps"][1]["status"] == "skipped"


@needs_bash
def test_filtered_job_is_skipped(project):
    report = project / "report.json"
    result = _run(project, "check", "--branch", "develop", "--report", str(report))

    assert result.exit_code == 0
    assert json.loads(report.read_text())["jobs"]["tests"]["status"] == "skipped"


@needs_bash
def test_failing_job_exits_1(project):
    report = project / "report.json"
    result = _run(project, "red", "--branch", "master", "--report", str(report))

    assert result.exit_code == 1
    data = json.loads(report.read_text())
    assert data["jobs"]["lint"]["status"] == "success"
    assert data["jobs"]["broken"]["status"] == "failed"
    assert data["jobs"]["broken"]["steps"][0]["exit_code"] == 7
