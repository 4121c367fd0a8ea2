from __future__ import annotations

import shutil
import stat

import pytest

from runway.dsl import job, sh
from runway.environments import DispatchingProvisioner, DockerProvisioner, HostProvisioner, ShellRunner
from runway.errors import JobEnvironmentError

needs_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="sh not installed")

DEPLOY = job("deploy", sh("make dist"), image="rust:1.40-stretch", working_directory="/build")
UNIT = job("unit_tests", sh("make test"), machine=True, working_directory="~/blockstack")


@pytest.fixture
def calls(tmp_path):
    return tmp_path / "docker-calls.log"


@pytest.fixture
def fake_docker(tmp_path, calls):
    """A docker stand-in that records its arguments and echoes `exec` argv."""
    script = tmp_path / "docker"
    script.write_text(
        "#!/bin/sh\n"
        f'echo "$@" >> "{calls}"\n'
        'case "$1" in\n'
        "  run) echo c0ffee0123456789 ;;\n"
        '  exec) shift; for a in "$@"; do echo "$a"; done ;;\n'
        "esac\n"
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@needs_sh
class TestDockerProvisioner:
    def test_acquire_and_release(self, tmp_path, fake_docker, calls):
        provisioner = DockerProvisioner(tmp_path / "ws", docker=fake_docker)

        handle = provisioner.acquire(DEPLOY, "master")

        assert handle.container_id == "c0ffee0123456789"
        assert handle.home == "/root"
        assert handle.env["RUNWAY_WORKING_DIRECTORY"] == "/build"
        run_call = calls.read_text().splitlines()[0]
        assert f"--volume {handle.workspace.resolve()}:/build" in run_call
        assert run_call.endswith("rust:1.40-stretch infinity")

        provisioner.release(handle)

        assert calls.read_text().splitlines()[-1] == "rm --force c0ffee0123456789"
        assert not handle.workspace.exists()

    def test_home_relative_working_directory(self, tmp_path, fake_docker, calls):
        j = job("all_tests", sh("cargo test"), image="rust:1.40-stretch", working_directory="~/blockstack")
        handle = DockerProvisioner(tmp_path / "ws", docker=fake_docker).acquire(j, "master")

        assert "--workdir /root/blockstack" in calls.read_text()
        assert handle.resolve("~/blockstack/target") == handle.workspace / "target"

    def test_exec_goes_through_container(self, tmp_path, fake_docker):
        handle = DockerProvisioner(tmp_path / "ws", docker=fake_docker).acquire(DEPLOY, "master")
        proc = ShellRunner(docker=fake_docker).exec(handle, "make dist")

        argv = "".join(proc.output()).splitlines()
        assert proc.wait() == 0
        assert argv[:3] == ["--workdir", "/build", "--env"]
        assert "RUNWAY_BRANCH=master" in argv
        assert argv[-6:] == ["c0ffee0123456789", "/bin/bash", "-eo", "pipefail", "-c", "make dist"]

    def test_failed_start_is_environment_error(self, tmp_path):
        failing = tmp_path / "docker"
        failing.write_text("#!/bin/sh\necho 'Unable to find image' >&2\nexit 125\n")
        failing.chmod(failing.stat().st_mode | stat.S_IEXEC)

        with pytest.raises(JobEnvironmentError, match="could not start container") as exc:
            DockerProvisioner(tmp_path / "ws", docker=str(failing)).acquire(DEPLOY, "master")

        assert exc.value.details["stderr"] == "Unable to find image"
        assert list((tmp_path / "ws").iterdir()) == []

    def test_missing_docker_binary(self, tmp_path):
        with pytest.raises(JobEnvironmentError, match="Docker is not available") as exc:
            DockerProvisioner(tmp_path / "ws", docker=str(tmp_path / "nope")).acquire(DEPLOY, "master")
        assert "daemon" in exc.value.details["hint"]


class TestDispatchingProvisioner:
    def test_routes_by_environment(self, tmp_path, monkeypatch):
        host = HostProvisioner(tmp_path / "host")
        container = DockerProvisioner(tmp_path / "container")
        routed = []
        monkeypatch.setattr(container, "acquire", lambda j, b: routed.append(("container", j.id)))

        provisioner = DispatchingProvisioner(host=host, container=container)
        provisioner.acquire(DEPLOY, "master")
        handle = provisioner.acquire(UNIT, "master")

        assert routed == [("container", "deploy")]
        assert not handle.is_container
        assert handle.workspace.parent == tmp_path / "host"

        provisioner.release(handle)
        assert not handle.workspace.exists()

    def test_host_workspaces_are_distinct(self, tmp_path):
        host = HostProvisioner(tmp_path / "host")
        first = host.acquire(UNIT, "master")
        second = host.acquire(UNIT, "master")

        assert first.workspace != second.workspace
        assert first.resolve("~/blockstack/cobertura.xml") == first.workspace / "cobertura.xml"

    def test_keep_workspaces(self, tmp_path):
        host = HostProvisioner(tmp_path / "host", keep=True)
        handle = host.acquire(UNIT, "master")
        host.release(handle)
        assert handle.workspace.exists()
