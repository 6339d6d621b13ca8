import pytest

from stackup.exceptions import ConfigError, PreconditionError
from stackup.MANAGERS.precondition_checker import PreconditionChecker
from stackup.MODELS.deployment_config import DEFAULT_REQUIRED_KEYS

from conftest import REQUIRED_VALUES, RecordingRunner


def test_all_satisfied(config):
    report = PreconditionChecker(config, RecordingRunner(config)).check()
    assert report.ok
    report.raise_for_failures()


@pytest.mark.parametrize("key", DEFAULT_REQUIRED_KEYS)
def test_each_missing_key_is_reported(make_config, key):
    values = dict(REQUIRED_VALUES)
    del values[key]
    report = PreconditionChecker(make_config(values=values)).check()
    assert report.missing_keys == [key]
    with pytest.raises(PreconditionError) as excinfo:
        report.raise_for_failures()
    assert key in str(excinfo.value)
    assert excinfo.value.missing_keys == [key]


def test_verification_host_is_optional(make_config):
    values = dict(REQUIRED_VALUES, OPENPROJECT_HOST__NAME="")
    config = make_config(values=values)
    assert config.verification.host_key not in config.required_keys
    assert PreconditionChecker(config).check().ok


def test_empty_value_counts_as_missing(make_config):
    values = dict(REQUIRED_VALUES, POSTGRES_PASSWORD="  ")
    checker = PreconditionChecker(make_config(values=values))
    assert checker.missing_keys() == ["POSTGRES_PASSWORD"]


def test_all_missing_keys_in_declaration_order(make_config):
    checker = PreconditionChecker(make_config(values={}))
    assert checker.missing_keys() == list(checker.config.required_keys)


def test_custom_required_keys(config):
    checker = PreconditionChecker(config)
    assert checker.missing_keys(["POSTGRES_USER", "SMTP_HOST"]) == ["SMTP_HOST"]


def test_precondition_error_is_a_config_error():
    assert issubclass(PreconditionError, ConfigError)


def test_missing_compose_file(make_config):
    config = make_config(compose_file="nope.yml")
    report = PreconditionChecker(config).check()
    assert not report.ok
    assert "compose file not found" in report.failed_checks[0]


def test_missing_env_file(make_config):
    config = make_config(env_file=".env")
    report = PreconditionChecker(config).check()
    assert any("env file not found" in check for check in report.failed_checks)


def test_daemon_unavailable(config):
    runner = RecordingRunner(config, daemon=False)
    report = PreconditionChecker(config, runner).check()
    assert report.failed_checks == ["container runtime is not running"]


def test_backup_space(make_config):
    config = make_config(backup={"min_free_mb": 10 ** 12, "directory": "backups/nested"})
    report = PreconditionChecker(config).check()
    assert "free for backups" in report.failed_checks[0]
    # Skipped when no backup will be taken
    assert PreconditionChecker(config).check(include_backup=False).ok


def test_check_changes_nothing(config):
    runner = RecordingRunner(config)
    PreconditionChecker(config, runner).check()
    assert runner.mutating_calls == []
