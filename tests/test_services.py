"""Tests for sprintflow.workspace.services module."""

import subprocess

import pytest

from sprintflow.workspace.services import (
    ServiceError,
    ServiceHandle,
    ServiceManager,
    find_compose_file,
    port_for,
)


class FakeRun:
    """Records compose invocations instead of running docker."""

    def __init__(self, returncode=0, stderr=""):
        self.calls = []
        self.returncode = returncode
        self.stderr = stderr

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, self.returncode, "", self.stderr)


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "sprint-2"
    root.mkdir()
    (root / "compose.yaml").write_text("services: {}\n")
    return root


@pytest.fixture
def docker_available(monkeypatch):
    monkeypatch.setattr("sprintflow.workspace.services.shutil.which", lambda name: "/usr/bin/docker")


class TestProvision:
    """Tests for ServiceManager.provision()."""

    def test_disabled(self, workspace):
        run = FakeRun()
        assert ServiceManager(enabled=False, run=run).provision(2, workspace) is None
        assert run.calls == []

    def test_no_compose_file(self, tmp_path, docker_available):
        run = FakeRun()
        assert ServiceManager(enabled=True, run=run).provision(2, tmp_path) is None
        assert run.calls == []

    def test_docker_missing(self, workspace, monkeypatch):
        monkeypatch.setattr("sprintflow.workspace.services.shutil.which", lambda name: None)
        with pytest.raises(ServiceError, match="docker not found"):
            ServiceManager(enabled=True, run=FakeRun()).provision(2, workspace)

    def test_starts_isolated_project(self, workspace, docker_available):
        run = FakeRun()
        handle = ServiceManager(enabled=True, base_port=4000, run=run).provision(2, workspace)

        assert handle == ServiceHandle(project="sprint-2", port=4020, compose_file="compose.yaml")
        [(cmd, kwargs)] = run.calls
        assert cmd == ["docker", "compose", "-p", "sprint-2", "-f", "compose.yaml", "up", "-d"]
        assert kwargs["cwd"] == str(workspace)
        assert kwargs["env"]["PORT"] == "4020"

    def test_env_file_passed_when_present(self, workspace, tmp_path, docker_available):
        env_file = tmp_path / ".env"
        env_file.write_text("DB_USER=app\n")
        run = FakeRun()
        ServiceManager(enabled=True, env_file=env_file, run=run).provision(2, workspace)
        cmd = run.calls[0][0]
        assert cmd[cmd.index("--env-file") + 1] == str(env_file)

    def test_env_file_skipped_when_missing(self, workspace, tmp_path, docker_available):
        run = FakeRun()
        ServiceManager(enabled=True, env_file=tmp_path / ".env", run=run).provision(2, workspace)
        assert "--env-file" not in run.calls[0][0]

    def test_compose_failure(self, workspace, docker_available):
        run = FakeRun(returncode=1, stderr="port is already allocated\n")
        with pytest.raises(ServiceError, match="port is already allocated"):
            ServiceManager(enabled=True, run=run).provision(2, workspace)

    def test_compose_timeout(self, workspace, docker_available):
        def slow(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, 300)

        with pytest.raises(ServiceError, match="compose up failed"):
            ServiceManager(enabled=True, run=slow).provision(2, workspace)


class TestTeardown:
    """Tests for ServiceManager.teardown()."""

    HANDLE = ServiceHandle(project="sprint-2", port=3020, compose_file="compose.yaml")

    def test_nothing_started(self, workspace):
        run = FakeRun()
        assert ServiceManager(run=run).teardown(None, workspace) is True
        assert run.calls == []

    def test_down_removes_volumes(self, workspace):
        run = FakeRun()
        assert ServiceManager(run=run).teardown(self.HANDLE, workspace) is True
        assert run.calls[0][0][-2:] == ["down", "-v"]

    def test_workspace_gone(self, tmp_path, caplog):
        run = FakeRun()
        assert ServiceManager(run=run).teardown(self.HANDLE, tmp_path / "gone") is False
        assert run.calls == []
        assert "workspace gone" in caplog.text

    def test_down_failure_reported(self, workspace):
        run = FakeRun(returncode=1, stderr="no such project")
        assert ServiceManager(run=run).teardown(self.HANDLE, workspace) is False


class TestHelpers:
    """Tests for port_for(), find_compose_file() and ServiceHandle."""

    def test_ports_do_not_collide(self):
        ports = {port_for(i, 3000) for i in range(1, 20)}
        assert len(ports) == 19

    def test_compose_file_preference(self, tmp_path):
        (tmp_path / "compose.yml").write_text("")
        (tmp_path / "docker-compose.yml").write_text("")
        assert find_compose_file(tmp_path).name == "docker-compose.yml"

    def test_handle_round_trip(self):
        handle = ServiceHandle(project="sprint-1", port=3010, compose_file="compose.yml")
        assert ServiceHandle.from_dict(handle.to_dict()) == handle
        assert ServiceHandle.from_dict(None) is None

    def test_handle_for(self, workspace, tmp_path):
        handle = ServiceManager(enabled=True, base_port=4000).handle_for(2, workspace)
        assert handle.project == "sprint-2"
        assert handle.port == port_for(2, 4000)
        assert ServiceManager(enabled=False).handle_for(2, workspace) is None
        assert ServiceManager(enabled=True).handle_for(2, tmp_path / "empty") is None
