# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Parsers for Docker Compose YAML files.
"""
import logging
import os
import shlex
from typing import Dict, Any, List, Optional

import yaml

from ..exceptions import ComposeFileError
from ..MODELS.orchestration_config import OrchestrationConfig
from ..MODELS.service_definition import (
    DependencyCondition,
    HealthCheck,
    RestartPolicy,
    ServiceDescriptor,
    VolumeMount,
)
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..UTILS.durations import parse_duration
from ..UTILS.string_interpolation import EnvironmentInterpolator

logger = logging.getLogger(__name__)

class ComposeParser:
    """
    Parser for docker-compose.yml files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, compose_path: str) -> OrchestrationConfig:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed configuration.
        :raises ComposeFileError: If the file is missing or invalid.
        """
        try:
            with open(compose_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ComposeFileError(f"Cannot read compose file {compose_path}: {e}")
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> OrchestrationConfig:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed configuration with a validated dependency graph.
        """
        # Interpolate variables before parsing YAML
        missing: List[str] = []
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context, missing)
        except KeyError as e:
            raise ComposeFileError(f"Required variable not set: {e.args[0]}")
        for name in sorted(set(missing)):
            logger.warning("The %s variable is not set. Defaulting to a blank string.", name)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ComposeFileError(f"Invalid compose YAML: {e}")
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ComposeFileError("Compose file must be a mapping at the top level")

        services = {}
        for name, spec in (data.get('services') or {}).items():
            services[name] = self._parse_service(name, spec or {})

        config = OrchestrationConfig(
            services=services,
            networks=list(data.get('networks', {}).keys()) if data.get('networks') else [],
            volumes=list(data.get('volumes', {}).keys()) if data.get('volumes') else []
        )
        self._validate(config)
        return config

    def _parse_service(self, name: str, spec: Dict[str, Any]) -> ServiceDescriptor:
        """
        Parses a single service definition from a compose file.

        :param name: The name of the service.
        :param spec: The service specification dictionary.
        :return: A ServiceDescriptor instance.
        """
        if not isinstance(spec, dict):
            raise ComposeFileError(f"Service '{name}' must be a mapping")

        # Restart policy; YAML reads a bare 'no' as False
        restart = spec.get('restart', 'no')
        restart = 'no' if restart is False else str(restart)
        condition, _, retries = restart.partition(':')
        try:
            restart_policy = RestartPolicy(condition=condition,
                                           max_retries=int(retries) if retries else 0)
        except ValueError as e:
            raise ComposeFileError(f"Service '{name}' has an invalid restart policy '{restart}': {e}")

        # Volumes
        volumes = []
        for v in spec.get('volumes', []) or []:
            if isinstance(v, str):
                parts = v.split(':')
                if len(parts) == 1:
                    volumes.append(VolumeMount(source='', target=parts[0]))
                elif len(parts) == 2:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1]))
                else:
                    volumes.append(VolumeMount(source=parts[0], target=parts[1],
                                               read_only='ro' in parts[2].split(',')))
            elif isinstance(v, dict):
                volumes.append(VolumeMount(source=v.get('source', ''),
                                           target=v['target'],
                                           read_only=bool(v.get('read_only', False))))

        return ServiceDescriptor(
            name=name,
            image=spec.get('image', ''),
            command=self._to_list(spec.get('command', [])),
            restart_policy=restart_policy,
            health_check=self._parse_health_check(name, spec.get('healthcheck')),
            depends_on=self._parse_depends_on(name, spec.get('depends_on')),
            volumes=volumes,
        )

    def _parse_health_check(self, name: str, spec: Any) -> Optional[HealthCheck]:
        """
        Parses a healthcheck block. A string test is shorthand for CMD-SHELL.
        """
        if not spec:
            return None
        if spec.get('disable'):
            return HealthCheck(test=['NONE'])

        test = spec.get('test', [])
        if isinstance(test, str):
            test = ['CMD-SHELL', test]
        try:
            return HealthCheck(
                test=[str(t) for t in test],
                interval=parse_duration(spec.get('interval'), 30.0),
                timeout=parse_duration(spec.get('timeout'), 30.0),
                retries=int(spec.get('retries', 3)),
                start_period=parse_duration(spec.get('start_period'), 0.0),
            )
        except ValueError as e:
            raise ComposeFileError(f"Service '{name}' has an invalid healthcheck: {e}")

    def _parse_depends_on(self, name: str, spec: Any) -> Dict[str, DependencyCondition]:
        """
        Parses depends_on in list form (implies service_started) or mapping form.
        """
        if not spec:
            return {}
        if isinstance(spec, list):
            return {dep: DependencyCondition.SERVICE_STARTED for dep in spec}

        depends_on = {}
        for dep, options in spec.items():
            condition = (options or {}).get('condition', DependencyCondition.SERVICE_STARTED.value)
            try:
                depends_on[dep] = DependencyCondition(condition)
            except ValueError:
                raise ComposeFileError(
                    f"Service '{name}' uses unknown condition '{condition}' for '{dep}'")
        return depends_on

    def _validate(self, config: OrchestrationConfig) -> None:
        """
        Rejects references to undefined services and dependency cycles.
        """
        for name, svc in config.services.items():
            unknown = [dep for dep in svc.depends_on if dep not in config.services]
            if unknown:
                raise ComposeFileError(
                    f"Service '{name}' depends on undefined service(s): {', '.join(unknown)}")
        DependencyResolver().resolve_order(config)

    def _to_list(self, val: Any) -> List[str]:
        """
        Helper to ensure a value is a list of strings.

        :param val: The value to convert.
        :return: A list of strings.
        """
        if val is None:
            return []
        if isinstance(val, str):
            return shlex.split(val)
        return [str(v) for v in val]
