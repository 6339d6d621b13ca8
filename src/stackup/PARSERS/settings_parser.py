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
Loader for the stackup.yml settings file.

The settings file is optional: every field of DeploymentConfig has a default.
Key/value configuration comes from the .env file named by the settings,
overlaid by the process environment.
"""
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigError
from ..MODELS.deployment_config import DeploymentConfig
from .env_parser import EnvParser

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "stackup.yml"


class SettingsParser:
    """
    Builds the immutable DeploymentConfig.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        :param environ: Process environment overlay. Defaults to os.environ.
        """
        self.environ = environ

    def load(
        self,
        settings_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> DeploymentConfig:
        """
        Loads settings and the key/value configuration.

        :param settings_path: Explicit settings file. When None, 'stackup.yml' in
            the current directory is used if it exists.
        :param overrides: Top-level fields that replace file values (CLI options).
            None values are ignored.
        :return: The resolved configuration.
        :raises ConfigError: If the settings file is missing, unreadable or invalid.
        """
        data: Dict[str, Any] = {}
        if settings_path is not None:
            if not os.path.exists(settings_path):
                raise ConfigError(f"Settings file not found: {settings_path}")
            data = self._read(settings_path)
        elif os.path.exists(DEFAULT_SETTINGS_FILE):
            settings_path = DEFAULT_SETTINGS_FILE
            data = self._read(settings_path)

        if settings_path and 'project_dir' not in data:
            data['project_dir'] = os.path.dirname(os.path.abspath(settings_path))
        data.setdefault('project_dir', os.getcwd())

        for key, value in (overrides or {}).items():
            if value is not None:
                data[key] = value
        data['project_dir'] = os.path.abspath(os.path.expanduser(data['project_dir']))

        if 'values' in data:
            raise ConfigError("'values' cannot be set in the settings file; use the env file")

        try:
            config = DeploymentConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {settings_path or 'defaults'}: {e}")

        values = EnvParser.merge(config.env_path, self.environ)
        logger.debug("Loaded %d configuration values (env file: %s)", len(values), config.env_path)
        return config.model_copy(update={'values': values})

    def _read(self, path: str) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read settings file {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")
        logger.debug("Read settings from %s", path)
        return data
