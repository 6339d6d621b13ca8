"""
Unit tests for the readiness wait.
"""
import pytest

from stackup.exceptions import RuntimeCommandError
from stackup.MANAGERS.health_monitor import HealthMonitor
from stackup.MODELS.deployment_config import ReadinessSettings
from stackup.PARSERS.compose_parser import ComposeParser

from conftest import COMPOSE_YAML, REQUIRED_VALUES, RecordingRunner, healthy_stack, state

SETTINGS = ReadinessSettings(grace_period=90, poll_interval=5)


@pytest.fixture
def topology():
    return ComposeParser(context=dict(REQUIRED_VALUES, DATA_ROOT="/srv")).parse_from_string(COMPOSE_YAML)


def _monitor(config, topology, clock, *snapshots):
    runner = RecordingRunner(config, ps_sequence=list(snapshots))
    runner.started = True
    return HealthMonitor(runner, topology, SETTINGS, clock=clock, sleep=clock.sleep), runner


def test_ready_immediately(config, topology, clock):
    monitor, _ = _monitor(config, topology, clock, healthy_stack())
    result = monitor.wait_until_ready()
    assert result.ok
    assert result.failed == [] and result.pending == []
    assert [s.service for s in result.states] == ["db", "redis", "web", "worker"]
    assert clock.sleeps == []


def test_becomes_ready_after_polling(config, topology, clock):
    starting = [
        state("db", health="starting"),
        state("redis", health="starting"),
        state("web", health="starting"),
        state("worker"),
    ]
    monitor, _ = _monitor(config, topology, clock, starting, starting, healthy_stack())
    result = monitor.wait_until_ready()
    assert result.ok
    assert clock.sleeps == [5, 5]


def test_unhealthy_fails_fast(config, topology, clock):
    snapshot = [
        state("db", health="unhealthy"),
        state("redis", health="healthy"),
        state("web", health="starting"),
        state("worker"),
    ]
    monitor, _ = _monitor(config, topology, clock, snapshot)
    result = monitor.wait_until_ready()
    assert not result.ok
    assert result.failed == ["db"]
    assert result.blocked == ["web", "worker"]
    assert clock.sleeps == []
    assert monitor.describe_failures(result) == ["db: running (unhealthy)"]


def test_exited_service_fails(config, topology, clock):
    snapshot = healthy_stack()[:3] + [state("worker", state="exited", exit_code=1)]
    monitor, _ = _monitor(config, topology, clock, snapshot)
    result = monitor.wait_until_ready()
    assert result.failed == ["worker"]
    assert monitor.describe_failures(result) == ["worker: exited(1)"]


def test_still_starting_at_deadline_is_pending(config, topology, clock):
    snapshot = healthy_stack()
    snapshot[2] = state("web", health="starting")
    monitor, _ = _monitor(config, topology, clock, snapshot)
    result = monitor.wait_until_ready()
    assert result.ok
    assert result.pending == ["web"]
    assert clock.now >= 90
    assert clock.now <= 90 + SETTINGS.poll_interval


def test_missing_container_fails(config, topology, clock):
    monitor, _ = _monitor(config, topology, clock, healthy_stack()[:3])
    result = monitor.wait_until_ready()
    assert result.failed == ["worker"]
    assert monitor.describe_failures(result) == ["worker: not created"]


def test_restart_loop_fails(config, topology, clock):
    snapshot = healthy_stack()
    snapshot[1] = state("redis", state="restarting")
    monitor, _ = _monitor(config, topology, clock, snapshot)
    result = monitor.wait_until_ready()
    assert "redis" in result.failed
    assert clock.now >= 90


def test_one_shot_service_may_exit(config, clock):
    topology = ComposeParser(context={}).parse_from_string("""
services:
  migrate:
    image: app
  web:
    image: app
    depends_on:
      migrate:
        condition: service_completed_successfully
""")
    snapshot = [state("migrate", state="exited", exit_code=0), state("web")]
    monitor, _ = _monitor(config, topology, clock, snapshot)
    assert monitor.wait_until_ready().ok

    failed = [state("migrate", state="exited", exit_code=3), state("web")]
    monitor, _ = _monitor(config, topology, clock, failed)
    assert monitor.wait_until_ready().failed == ["migrate"]


def test_runtime_errors_are_retried(config, topology, clock):
    class FlakyRunner(RecordingRunner):
        failures = 1

        def ps(self):
            if self.failures:
                self.failures -= 1
                raise RuntimeCommandError(["ps"], 1, "daemon busy")
            return super().ps()

    runner = FlakyRunner(config, ps_sequence=[healthy_stack()])
    runner.started = True
    monitor = HealthMonitor(runner, topology, SETTINGS, clock=clock, sleep=clock.sleep)
    assert monitor.wait_until_ready().ok
    assert clock.sleeps == [5]


def test_unreported_health_is_pending(config, topology, clock):
    # web declares a health check, worker does not
    unreported = healthy_stack()
    unreported[2] = state("web")
    # db and redis settle on the first two polls, web needs one more
    monitor, _ = _monitor(config, topology, clock, unreported, unreported, unreported, healthy_stack())
    assert topology.services["web"].has_health_check
    assert not topology.services["worker"].has_health_check
    assert not monitor.is_ready(unreported[2])
    assert monitor.is_ready(unreported[3])

    result = monitor.wait_until_ready()
    assert result.ok and result.pending == []
    assert clock.sleeps == [5]


def test_unreported_health_at_deadline_is_pending(config, topology, clock):
    snapshot = healthy_stack()
    snapshot[2] = state("web")
    monitor, _ = _monitor(config, topology, clock, snapshot)
    result = monitor.wait_until_ready()
    assert result.ok
    assert result.pending == ["web"]
    assert clock.now >= 90


def test_disabled_health_check_needs_no_report(config, clock):
    topology = ComposeParser(context={}).parse_from_string("""
services:
  web:
    image: app
    healthcheck:
      disable: true
""")
    monitor, _ = _monitor(config, topology, clock, [state("web")])
    assert not topology.services["web"].has_health_check
    assert monitor.wait_until_ready().pending == []
