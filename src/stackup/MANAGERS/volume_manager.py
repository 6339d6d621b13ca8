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
Host data directories: creation, ownership and mode, and removal of legacy named
volumes during a reset.
"""
import logging
import os
from typing import Iterable, List, Optional

from ..exceptions import DeploymentError
from ..MODELS.deployment_config import DataDirectory, DeploymentConfig
from ..MODELS.orchestration_config import OrchestrationConfig
from ..RUNNERS.compose_runner import ComposeRunner

logger = logging.getLogger(__name__)


class VolumeManager:
    """
    Prepares the persistent data directories bind-mounted into services.
    Never deletes data directories.
    """

    def __init__(self, config: DeploymentConfig, runner: ComposeRunner):
        """
        Initializes the volume manager.

        :param config: Deployment configuration listing the data directories.
        :param runner: Compose runner, used for legacy volume removal.
        """
        self.config = config
        self.runner = runner

    def prepare(self,
                topology: OrchestrationConfig,
                running: Iterable[str] = (),
                force: bool = False) -> List[str]:
        """
        Creates every data directory and applies its ownership and mode.

        Ownership is only changed while no service mounting the directory is
        running; live directories are skipped with a warning unless forced.

        :param topology: Parsed services, used to find who mounts what.
        :param running: Names of services currently running.
        :param force: Apply ownership even to directories in use.
        :return: Warnings for skipped directories.
        :raises DeploymentError: If a directory cannot be created or changed.
        """
        running = set(running)
        warnings = []
        for directory in self.config.data_directories:
            path = self.config.resolve(directory.path)
            self.ensure_directory(path)

            mounted_by = topology.services_mounting(path, os.path.dirname(self.config.compose_path))
            live = sorted(set(mounted_by) & running)
            if live and not force:
                message = (f"Skipped ownership of {path}: in use by running "
                           f"service(s) {', '.join(live)}; stop the stack to apply it")
                logger.warning("%s", message)
                warnings.append(message)
                continue
            self.apply_ownership(directory, path)
        return warnings

    def ensure_directory(self, path: str) -> None:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise DeploymentError(f"Cannot create data directory {path}: {e}")
        logger.debug("Ensured data directory %s", path)

    def apply_ownership(self, directory: DataDirectory, path: Optional[str] = None) -> int:
        """
        Recursively applies owner and mode, like 'chown -R' followed by 'chmod -R'.
        Symbolic links are left untouched.

        :param directory: The data directory settings.
        :param path: Resolved path; resolved from the settings when omitted.
        :return: Number of entries changed.
        """
        path = path or self.config.resolve(directory.path)
        logger.info("Setting ownership %s and mode %o on %s", directory.owner, directory.mode, path)
        count = 0
        try:
            for entry in self._walk(path):
                os.chown(entry, directory.uid, directory.gid, follow_symlinks=False)
                os.chmod(entry, directory.mode)
                count += 1
        except PermissionError as e:
            raise DeploymentError(
                f"Cannot set ownership on {path}: {e} (run as root or via sudo)")
        except OSError as e:
            raise DeploymentError(f"Cannot set ownership on {path}: {e}")
        return count

    @staticmethod
    def _walk(path: str) -> Iterable[str]:
        yield path
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                entry = os.path.join(root, name)
                if not os.path.islink(entry):
                    yield entry

    def describe(self) -> List[str]:
        """
        One line per data directory with its actual owner and mode, like 'ls -ld'.
        """
        lines = []
        for directory in self.config.data_directories:
            path = self.config.resolve(directory.path)
            try:
                st = os.stat(path)
            except FileNotFoundError:
                lines.append(f"{path}: missing")
                continue
            lines.append(f"{path}: owner {st.st_uid}:{st.st_gid} mode {st.st_mode & 0o7777:o} "
                         f"(expected {directory.owner} {directory.mode:o})")
        return lines

    def remove_legacy_volumes(self) -> List[str]:
        """
        Removes the configured legacy named volumes; missing ones are ignored.

        :return: Names of the volumes actually removed.
        """
        removed = []
        for name in self.config.legacy_volumes:
            if self.runner.remove_volume(name):
                logger.info("Removed legacy volume %s", name)
                removed.append(name)
        return removed
