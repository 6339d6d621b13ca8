import pytest
import yaml
from stackup.exceptions import CircularDependencyError, ComposeFileError
from stackup.MODELS.service_definition import DependencyCondition
from stackup.PARSERS.compose_parser import ComposeParser

from conftest import COMPOSE_YAML, REQUIRED_VALUES

def test_parse(tmp_path):
    compose_content = {
        'version': '3.8',
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['80:80'],
                'restart': 'always',
                'depends_on': ['db'],
            },
            'db': {
                'image': 'postgres:13',
                'volumes': ['db_data:/var/lib/postgresql/data']
            }
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    parser = ComposeParser(context={})
    config = parser.parse(str(compose_file))

    assert 'web' in config.services
    assert 'db' in config.services
    assert config.services['web'].image == 'nginx:latest'
    assert config.services['web'].restart_policy.condition == 'always'
    assert config.services['web'].depends_on == {'db': DependencyCondition.SERVICE_STARTED}

    assert 'db_data' in config.volumes
    assert config.services['db'].volumes[0].source == 'db_data'
    assert config.services['db'].volumes[0].target == '/var/lib/postgresql/data'
    assert not config.services['db'].volumes[0].is_bind

def test_parse_full_stack():
    context = dict(REQUIRED_VALUES, DATA_ROOT='/opt/data')
    config = ComposeParser(context=context).parse_from_string(COMPOSE_YAML)

    db = config.services['db']
    assert db.image == 'postgres:13-alpine'
    assert db.restart_policy.condition == 'unless-stopped'
    assert db.health_check.test == ['CMD-SHELL', 'pg_isready -U openproject']
    assert db.health_check.interval == 30.0
    assert db.health_check.timeout == 10.0
    assert db.health_check.start_period == 60.0
    assert db.volumes[0].source == '/opt/data/postgres'

    web = config.services['web']
    assert web.health_check.start_period == 120.0
    assert web.depends_on == {
        'db': DependencyCondition.SERVICE_HEALTHY,
        'redis': DependencyCondition.SERVICE_HEALTHY,
    }

    worker = config.services['worker']
    assert worker.command == ['./docker/prod/worker']
    assert not worker.has_health_check
    # no restart key and no merged anchor
    assert worker.restart_policy.condition == 'no'

def test_services_mounting():
    context = dict(REQUIRED_VALUES, DATA_ROOT='/opt/data')
    config = ComposeParser(context=context).parse_from_string(COMPOSE_YAML)
    assert config.services_mounting('/opt/data/assets') == ['web', 'worker']
    assert config.services_mounting('/opt/data') == ['db', 'redis', 'web', 'worker']
    assert config.services_mounting('/opt/other') == []

def test_unset_variable_becomes_empty(caplog):
    content = """
services:
  app:
    image: "app:${TAG}"
"""
    config = ComposeParser(context={}).parse_from_string(content)
    assert config.services['app'].image == 'app:'
    assert 'TAG variable is not set' in caplog.text

def test_required_variable_missing():
    content = """
services:
  app:
    image: "app:${TAG:?TAG must be set}"
"""
    with pytest.raises(ComposeFileError, match='TAG must be set'):
        ComposeParser(context={}).parse_from_string(content)

def test_string_healthcheck_and_disable():
    content = """
services:
  a:
    image: a
    healthcheck:
      test: curl -f http://localhost/
      interval: 1m30s
  b:
    image: b
    healthcheck:
      disable: true
"""
    config = ComposeParser(context={}).parse_from_string(content)
    assert config.services['a'].health_check.test == ['CMD-SHELL', 'curl -f http://localhost/']
    assert config.services['a'].health_check.interval == 90.0
    assert not config.services['b'].has_health_check

def test_bare_no_restart_policy():
    content = """
services:
  a:
    image: a
    restart: no
"""
    config = ComposeParser(context={}).parse_from_string(content)
    assert config.services['a'].restart_policy.condition == 'no'

def test_unknown_dependency():
    content = """
services:
  web:
    image: web
    depends_on: [db]
"""
    with pytest.raises(ComposeFileError, match='undefined service'):
        ComposeParser(context={}).parse_from_string(content)

def test_unknown_condition():
    content = """
services:
  db:
    image: db
  web:
    image: web
    depends_on:
      db:
        condition: service_ready
"""
    with pytest.raises(ComposeFileError, match='service_ready'):
        ComposeParser(context={}).parse_from_string(content)

def test_cycle_rejected():
    content = """
services:
  a:
    image: a
    depends_on: [b]
  b:
    image: b
    depends_on: [a]
"""
    with pytest.raises(CircularDependencyError):
        ComposeParser(context={}).parse_from_string(content)

def test_invalid_yaml():
    with pytest.raises(ComposeFileError):
        ComposeParser(context={}).parse_from_string("services: [unclosed")

def test_missing_file(tmp_path):
    with pytest.raises(ComposeFileError, match='Cannot read'):
        ComposeParser(context={}).parse(str(tmp_path / 'nope.yml'))
