"""
Shared fixtures: a recording compose runner, a fake clock and a sample stack.
"""
import io
import logging
import os

import pytest

from stackup.exceptions import RuntimeCommandError
from stackup.MODELS.deployment_attempt import ServiceState
from stackup.MANAGERS.health_verifier import HealthVerifier
from stackup.MODELS.deployment_config import DeploymentConfig
from stackup.RUNNERS.compose_runner import ComposeRunner

COMPOSE_YAML = """
x-restart-policy: &restart_policy
  restart: unless-stopped

services:
  db:
    image: postgres:${POSTGRES_VERSION:-13-alpine}
    <<: *restart_policy
    environment:
      POSTGRES_USER: ${POSTGRES_USER}
    volumes:
      - ${DATA_ROOT}/postgres:/var/lib/postgresql/data
    healthcheck:
      test: ["CMD-SHELL", "pg_isready -U ${POSTGRES_USER}"]
      interval: 30s
      timeout: 10s
      retries: 3
      start_period: 60s
  redis:
    image: redis:7-alpine
    <<: *restart_policy
    volumes:
      - ${DATA_ROOT}/redis:/data
    healthcheck:
      test: ["CMD", "redis-cli", "-a", "${REDIS_PASSWORD}", "ping"]
      interval: 30s
      timeout: 5s
  web:
    image: openproject/openproject:16
    <<: *restart_policy
    volumes:
      - ${DATA_ROOT}/assets:/var/openproject/assets
    depends_on:
      db:
        condition: service_healthy
      redis:
        condition: service_healthy
    healthcheck:
      test: ["CMD", "curl", "-f", "http://localhost:8080/health_checks/default"]
      start_period: 2m
  worker:
    image: openproject/openproject:16
    command: "./docker/prod/worker"
    volumes:
      - ${DATA_ROOT}/assets:/var/openproject/assets
    depends_on:
      db:
        condition: service_healthy
      redis:
        condition: service_healthy
"""

REQUIRED_VALUES = {
    "OPENPROJECT_HOST__NAME": "pm.example.com",
    "POSTGRES_USER": "openproject",
    "POSTGRES_DB": "openproject",
    "POSTGRES_PASSWORD": "secret",
    "REDIS_PASSWORD": "redis-secret",
    "OPENPROJECT_SECRET_KEY_BASE": "base",
}

MUTATING = {"pull", "up", "down", "exec", "exec_stream", "remove_volume"}


def state(service, state="running", health="", exit_code=0):
    return ServiceState(service=service, state=state, health=health,
                        exit_code=exit_code, container=f"stack-{service}-1")


def healthy_stack():
    return [
        state("db", health="healthy"),
        state("redis", health="healthy"),
        state("web", health="healthy"),
        state("worker"),
    ]


class FakeProcess:
    """Stands in for the Popen returned by exec_stream."""

    def __init__(self, data=b"", returncode=0, stderr=None, error=b""):
        self.stdout = io.BytesIO(data)
        self.returncode = returncode
        if stderr is not None and error:
            stderr.write(error)

    def poll(self):
        return self.returncode

    def wait(self):
        return self.returncode

    def kill(self):
        pass


class RecordingRunner(ComposeRunner):
    """
    A ComposeRunner that records calls instead of running the runtime.

    ps_sequence: successive ps() results; the last one repeats.
    """

    def __init__(self, config, ps_sequence=None, initial=None, daemon=True, dump=b"-- dump\n",
                 dump_returncode=0, logs_text="web | boom\n", fail_on=None):
        super().__init__(config)
        # State before "up"; defaults to an already running stack
        self.initial = list(initial if initial is not None else healthy_stack())
        self.started = False
        self.calls = []
        self.ps_sequence = list(ps_sequence if ps_sequence is not None else [healthy_stack()])
        self.daemon = daemon
        self.dump = dump
        self.dump_returncode = dump_returncode
        self.logs_text = logs_text
        self.fail_on = fail_on or set()
        self.existing_volumes = set()

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise RuntimeCommandError([name], 1, f"{name} failed")

    @property
    def call_names(self):
        return [c[0] for c in self.calls]

    @property
    def mutating_calls(self):
        return [c for c in self.calls if c[0] in MUTATING]

    def daemon_available(self):
        self._record("info")
        return self.daemon

    def pull(self):
        self._record("pull")

    def up(self, remove_orphans=True):
        self._record("up", remove_orphans)
        self.started = True

    def down(self, remove_orphans=True):
        self._record("down", remove_orphans)
        self.initial = []
        self.started = False

    def running_services(self):
        self._record("ps")
        if self.started:
            states = self.ps_sequence[0]
        else:
            states = self.initial
        return {s.service for s in states if s.state in ("running", "restarting")}

    def ps(self):
        self._record("ps")
        if not self.started:
            return list(self.initial)
        if len(self.ps_sequence) > 1:
            return list(self.ps_sequence.pop(0))
        return list(self.ps_sequence[0])

    def logs(self, service=None, tail=100, follow=False, capture=True):
        self._record("logs", service, tail, follow)
        return self.logs_text if capture else ""

    def exec(self, service, command, user=None, check=True):
        self._record("exec", service, tuple(command), user)

    def exec_stream(self, service, command, stdout=None, stderr=None):
        self._record("exec_stream", service, tuple(command))
        return FakeProcess(self.dump, self.dump_returncode, stderr, b"pg_dump: error\n")

    def remove_volume(self, name):
        self._record("remove_volume", name)
        if name in self.existing_volumes:
            self.existing_volumes.discard(name)
            return True
        return False


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI detaches the package logger from the root; reattach it for caplog."""
    yield
    package_logger = logging.getLogger("stackup")
    package_logger.handlers.clear()
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def project(tmp_path):
    """A project directory with a compose file and a data root."""
    (tmp_path / "docker-compose.yml").write_text(COMPOSE_YAML)
    (tmp_path / "data").mkdir()
    return tmp_path


@pytest.fixture
def make_config(project):
    def factory(values=None, **fields):
        merged = dict(REQUIRED_VALUES)
        merged["DATA_ROOT"] = str(project / "data")
        if values is not None:
            merged = values
        fields.setdefault("project_dir", str(project))
        fields.setdefault("env_file", None)
        fields.setdefault("backup", {"min_free_mb": 0})
        fields.setdefault("readiness", {"grace_period": 90, "poll_interval": 5, "log_tail": 50})
        return DeploymentConfig(values=merged, **fields)
    return factory


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def owner():
    """Owner spec of the current user, so ownership changes need no privileges."""
    return f"{os.getuid()}:{os.getgid()}"


class _Response:
    def __init__(self, status):
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class SpyVerifier(HealthVerifier):
    """A HealthVerifier whose probe answers without a network and counts its runs."""

    def __init__(self, config, status=200, error=None):
        super().__init__(config, opener=self._open)
        self.status = status
        self.error = error
        self.calls = 0

    def _open(self, request, timeout=None):
        if self.error is not None:
            raise self.error
        return _Response(self.status)

    def verify(self):
        self.calls += 1
        return super().verify()
