"""Shared fixtures: in-memory collaborators for the step executor and scheduler."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import pytest

from runway.artifacts import ArtifactCollector, LocalArtifactStore
from runway.environments import EnvironmentHandle
from runway.errors import JobEnvironmentError
from runway.executor import StepExecutor
from runway.model import ContainerEnv, JobDefinition
from runway.ui.console import Console, set_console

# A container deploy job, a machine job with a long silent step, and a branch-filtered job.
CIRCLE_CONFIG = """
version: 2
jobs:
  deploy:
    working_directory: /build
    docker:
      - image: rust:1.40-stretch
    steps:
      - checkout
      - run:
          command: |
            bash build-scripts/start-builds.sh
      - store_artifacts:
          path: /build/dist/
          destination: dist/
  unit_tests:
    machine: true
    working_directory: ~/blockstack
    steps:
      - checkout
      - run:
          name: Coverage via tarpaulin
          command: |
            cargo tarpaulin -v --workspace -t 1200 -o Xml
          no_output_timeout: 20m
      - run:
          name: Upload to codecov.io
          command: |
            bash <(curl -s https://codecov.io/bash)
  all_tests:
    docker:
      - image: rust:1.40-stretch
    working_directory: ~/blockstack
    steps:
      - checkout
      - run:
          no_output_timeout: 60m
          command: |
            cargo test && cargo test -- --ignored --test-threads 1
workflows:
  version: 2
  build-deploy:
    jobs:
      - unit_tests
      - deploy
      - all_tests:
          filters:
            branches:
              only:
                - master
                - /.*net.*/
                - /.*marf.*/
                - feature/ignore-slow-serial-tests
"""


@dataclass
class FakeScript:
    """Scripted command: (delay, chunk) pairs, then optional silence, then exit."""
    chunks: Sequence[Tuple[float, str]] = ()
    exit_code: int = 0
    silence_after: float = 0.0


class FakeCommand:
    def __init__(self, script: FakeScript):
        self.script = script
        self.killed = threading.Event()

    def output(self) -> Iterator[str]:
        for delay, chunk in self.script.chunks:
            if self.killed.wait(delay):
                return
            yield chunk
        self.killed.wait(self.script.silence_after)

    def wait(self) -> int:
        return -9 if self.killed.is_set() else self.script.exit_code

    def kill(self) -> None:
        self.killed.set()


@dataclass
class FakeRunner:
    scripts: Dict[str, FakeScript] = field(default_factory=dict)
    executed: List[Tuple[str, str]] = field(default_factory=list)
    crash_on: Set[str] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def exec(self, handle: EnvironmentHandle, command: str) -> FakeCommand:
        with self._lock:
            self.executed.append((handle.job_id, command))
        if command in self.crash_on:
            raise RuntimeError(f"runner exploded on {command!r}")
        return FakeCommand(self.scripts.get(command, FakeScript(chunks=[(0, f"ran {command}\n")])))

    def commands_for(self, job_id: str) -> List[str]:
        return [c for j, c in self.executed if j == job_id]


@dataclass
class FakeProvisioner:
    root: Path
    fail_for: Set[str] = field(default_factory=set)
    acquired: List[str] = field(default_factory=list)
    released: List[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def acquire(self, job: JobDefinition, branch: str) -> EnvironmentHandle:
        if job.id in self.fail_for:
            raise JobEnvironmentError("provisioner refused", job=job.id)
        workspace = self.root / job.id
        workspace.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self.acquired.append(job.id)
        return EnvironmentHandle(
            job_id=job.id,
            branch=branch,
            workspace=workspace,
            working_directory=job.working_directory,
            home="/home/ci",
            container_id=f"fake-{job.id}" if isinstance(job.environment, ContainerEnv) else None,
        )

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            self.released.append(handle.job_id)


@dataclass
class FakeCheckout:
    fail: bool = False
    refs: List[Optional[str]] = field(default_factory=list)

    def materialize(self, handle: EnvironmentHandle, ref: Optional[str]) -> None:
        self.refs.append(ref)
        if self.fail:
            raise JobEnvironmentError("clone failed", job=handle.job_id, step="checkout")
        (handle.workspace / "README").write_text(f"checked out {ref}\n")


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(stream_output=False))
    yield
    set_console(Console())


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def provisioner(tmp_path: Path) -> FakeProvisioner:
    return FakeProvisioner(root=tmp_path / "workspaces")


@pytest.fixture
def fake_checkout() -> FakeCheckout:
    return FakeCheckout()


@pytest.fixture
def artifacts_root(tmp_path: Path) -> Path:
    return tmp_path / "artifacts"


@pytest.fixture
def executor(provisioner, fake_checkout, runner, artifacts_root) -> StepExecutor:
    return StepExecutor(
        provisioner=provisioner,
        checkout=fake_checkout,
        runner=runner,
        collector=ArtifactCollector(LocalArtifactStore(artifacts_root)),
    )
