"""
Execution environments for jobs.

A job runs inside one environment for its whole lifetime:

  - HostProvisioner: a fresh workspace directory on this machine
  - DockerProvisioner: a long-lived container (via the docker CLI) with the
    workspace bind-mounted at the job's working directory

Commands are started through a CommandRunner, which returns a RunningCommand
whose output can be streamed chunk by chunk. The step executor owns the idle
watchdog; runners only need to support `kill()`.
"""

from __future__ import annotations

import codecs
import logging
import os
import shlex
import shutil
import signal
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, Optional, Protocol

from .errors import JobEnvironmentError
from .model import ContainerEnv, JobDefinition

logger = logging.getLogger(__name__)

CONTAINER_HOME = "/root"
READ_CHUNK = 4096

TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "bash": "Install bash or set RUNWAY_SHELL to another shell.",
}


@dataclass
class EnvironmentHandle:
    """
    An acquired job environment.

    `workspace` is the host directory backing the job's working directory.
    For container jobs it is mounted at `working_directory` inside the
    container; for host jobs commands run in it directly.
    """
    job_id: str
    branch: str
    workspace: Path
    working_directory: str
    home: str
    container_id: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def is_container(self) -> bool:
        return self.container_id is not None

    def expand(self, path: str) -> str:
        return _expand_home(path, self.home)

    def resolve(self, path: str) -> Optional[Path]:
        """
        Map a path as seen by the job's commands to a host path.

        Relative paths and paths under the working directory land in the
        workspace. Other absolute paths are real paths on a host job and
        unreachable (None) for a container job.
        """
        p = PurePosixPath(self.expand(path))
        if not p.is_absolute():
            return self.workspace / p
        try:
            return self.workspace / p.relative_to(PurePosixPath(self.expand(self.working_directory)))
        except ValueError:
            pass
        if self.is_container:
            return None
        return Path(p)


def _expand_home(path: str, home: str) -> str:
    if path == "~" or path.startswith("~/"):
        return home + path[1:]
    return path


class Provisioner(Protocol):
    def acquire(self, job: JobDefinition, branch: str) -> EnvironmentHandle:
        ...

    def release(self, handle: EnvironmentHandle) -> None:
        ...


def _make_workspace(root: Path, job_id: str) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"{job_id}-", dir=root))


def _job_env(job: JobDefinition, branch: str, working_directory: str) -> Dict[str, str]:
    return {
        "CI": "true",
        "RUNWAY_JOB": job.id,
        "RUNWAY_BRANCH": branch,
        "RUNWAY_WORKING_DIRECTORY": working_directory,
    }


# ----------------------------------------------------------------------
# Host
# ----------------------------------------------------------------------

class HostProvisioner:
    """
    Bare-host environment.

    Every job gets its own workspace under `workspace_root`, so two host jobs
    that declare the same working directory never share files.
    """

    def __init__(self, workspace_root: str | Path, *, keep: bool = False):
        self.workspace_root = Path(workspace_root)
        self.keep = keep

    def acquire(self, job: JobDefinition, branch: str) -> EnvironmentHandle:
        try:
            workspace = _make_workspace(self.workspace_root, job.id)
        except OSError as e:
            raise JobEnvironmentError(f"could not create workspace: {e}", job=job.id) from e

        logger.debug("[%s] host workspace %s", job.id, workspace)
        return EnvironmentHandle(
            job_id=job.id,
            branch=branch,
            workspace=workspace,
            working_directory=job.working_directory,
            home=str(Path.home()),
            env=_job_env(job, branch, str(workspace)),
        )

    def release(self, handle: EnvironmentHandle) -> None:
        if self.keep:
            logger.info("[%s] keeping workspace %s", handle.job_id, handle.workspace)
            return
        shutil.rmtree(handle.workspace, ignore_errors=True)


# ----------------------------------------------------------------------
# Docker
# ----------------------------------------------------------------------

class DockerProvisioner:
    """Start one container per job; steps are run in it with `docker exec`."""

    def __init__(self, workspace_root: str | Path, *, docker: str = "docker", keep: bool = False):
        self.workspace_root = Path(workspace_root)
        self.docker = docker
        self.keep = keep

    def acquire(self, job: JobDefinition, branch: str) -> EnvironmentHandle:
        if not isinstance(job.environment, ContainerEnv):
            raise JobEnvironmentError("job does not declare a container image", job=job.id)

        image = job.environment.image
        workdir = _expand_home(job.working_directory, CONTAINER_HOME)

        try:
            workspace = _make_workspace(self.workspace_root, job.id)
        except OSError as e:
            raise JobEnvironmentError(f"could not create workspace: {e}", job=job.id) from e

        cmd = [
            self.docker, "run", "--detach",
            "--volume", f"{workspace.resolve()}:{workdir}",
            "--workdir", workdir,
            "--entrypoint", "sleep",
            image, "infinity",
        ]
        try:
            proc = subprocess.run(cmd, text=True, capture_output=True)
        except FileNotFoundError as e:
            shutil.rmtree(workspace, ignore_errors=True)
            raise JobEnvironmentError(
                "Docker is not available", job=job.id, hint=TOOL_HINTS["docker"]
            ) from e

        if proc.returncode != 0:
            shutil.rmtree(workspace, ignore_errors=True)
            raise JobEnvironmentError(
                f"could not start container from {image}",
                job=job.id,
                stderr=proc.stderr.strip(),
            )

        container_id = proc.stdout.strip()
        logger.debug("[%s] container %s from %s", job.id, container_id[:12], image)
        return EnvironmentHandle(
            job_id=job.id,
            branch=branch,
            workspace=workspace,
            working_directory=job.working_directory,
            home=CONTAINER_HOME,
            container_id=container_id,
            env=_job_env(job, branch, workdir),
        )

    def release(self, handle: EnvironmentHandle) -> None:
        if handle.container_id:
            proc = subprocess.run(
                [self.docker, "rm", "--force", handle.container_id],
                text=True,
                capture_output=True,
            )
            if proc.returncode != 0:
                logger.warning("[%s] could not remove container %s: %s",
                               handle.job_id, handle.container_id[:12], proc.stderr.strip())
        if not self.keep:
            # files written by root inside the container may not be removable
            shutil.rmtree(handle.workspace, ignore_errors=True)


class DispatchingProvisioner:
    """Route each job to the container or host provisioner by its declared environment."""

    def __init__(self, host: Provisioner, container: Provisioner):
        self.host = host
        self.container = container

    def acquire(self, job: JobDefinition, branch: str) -> EnvironmentHandle:
        if isinstance(job.environment, ContainerEnv):
            return self.container.acquire(job, branch)
        return self.host.acquire(job, branch)

    def release(self, handle: EnvironmentHandle) -> None:
        if handle.is_container:
            self.container.release(handle)
        else:
            self.host.release(handle)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

class RunningCommand(Protocol):
    def output(self) -> Iterator[str]:
        """Yield output chunks as they arrive; ends when the stream closes."""
        ...

    def wait(self) -> int:
        ...

    def kill(self) -> None:
        ...


class CommandRunner(Protocol):
    def exec(self, handle: EnvironmentHandle, command: str) -> RunningCommand:
        ...


class PopenCommand:
    """A subprocess with stdout and stderr merged into one chunked stream."""

    def __init__(self, argv: list[str], *, cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None):
        self._proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    def output(self) -> Iterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = self._proc.stdout.fileno()
        while True:
            try:
                data = os.read(fd, READ_CHUNK)
            except OSError:
                break
            if not data:
                break
            text = decoder.decode(data)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    def wait(self) -> int:
        code = self._proc.wait()
        self._proc.stdout.close()
        return code

    def kill(self) -> None:
        # the shell may have spawned children that hold the pipe open
        try:
            os.killpg(self._proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


class ShellRunner:
    """
    Run step commands through a shell, on the host or via `docker exec`.

    `shell` is split with shlex; the command is appended as the last argument.
    """

    def __init__(self, shell: str = "/bin/bash -eo pipefail -c", docker: str = "docker"):
        self.shell = shlex.split(shell)
        self.docker = docker

    def exec(self, handle: EnvironmentHandle, command: str) -> RunningCommand:
        if handle.is_container:
            argv = [self.docker, "exec", "--workdir", handle.expand(handle.working_directory)]
            for key, value in handle.env.items():
                argv += ["--env", f"{key}={value}"]
            argv += [handle.container_id, *self.shell, command]
            cwd, env = None, None
        else:
            argv = [*self.shell, command]
            cwd = handle.workspace
            env = os.environ.copy()
            env.update(handle.env)

        try:
            return PopenCommand(argv, cwd=cwd, env=env)
        except OSError as e:
            tool = Path(argv[0]).name
            raise JobEnvironmentError(
                f"could not start {tool}: {e}",
                job=handle.job_id,
                hint=TOOL_HINTS.get(tool, "Check PATH."),
            ) from e
