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
Pre-deploy database backups: a dump streamed out of the database container and
gzip-compressed into a uniquely named file.
"""
import gzip
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..exceptions import BackupError, RuntimeCommandError
from ..MODELS.deployment_attempt import BackupArtifact
from ..MODELS.deployment_config import DeploymentConfig
from ..RUNNERS.compose_runner import ComposeRunner

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
SUFFIX = ".sql.gz"
_CHUNK_SIZE = 1024 * 1024


class BackupManager:
    """
    Produces BackupArtifacts. Artifacts are never overwritten or rotated.
    """

    def __init__(self,
                 config: DeploymentConfig,
                 runner: ComposeRunner,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initializes the backup manager.

        :param config: Deployment configuration.
        :param runner: Compose runner used to reach the database container.
        :param clock: Source of the artifact timestamp (local time by default).
        """
        self.config = config
        self.runner = runner
        self.clock = clock or datetime.now
        self.backup_dir = config.backup_dir

    def dump_command(self) -> List[str]:
        """
        The command run inside the database container.
        """
        settings = self.config.backup
        if settings.dump_command:
            return list(settings.dump_command)
        user = self.config.get(settings.user_key, "")
        database = self.config.get(settings.database_key, "")
        if not user or not database:
            raise BackupError(
                f"Cannot build dump command: {settings.user_key} and "
                f"{settings.database_key} must be set")
        return ["pg_dump", "-U", user, database]

    def reserve_path(self) -> str:
        """
        Creates an empty, uniquely named artifact file and returns its path.

        The name carries the current timestamp; when that name exists already a
        numeric suffix is appended. Creation is exclusive, so an existing file is
        never reused.

        :raises BackupError: If the backup directory cannot be created or written.
        """
        stem = f"{self.config.backup.prefix}-{self.clock().strftime(TIMESTAMP_FORMAT)}"
        try:
            os.makedirs(self.backup_dir, exist_ok=True)
            counter = 0
            while True:
                name = stem + (f"-{counter}" if counter else "") + SUFFIX
                path = os.path.join(self.backup_dir, name)
                try:
                    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
                except FileExistsError:
                    counter += 1
                    continue
                os.close(fd)
                return path
        except OSError as e:
            raise BackupError(f"Cannot create backup in {self.backup_dir}: {e}")

    def create(self) -> BackupArtifact:
        """
        Dumps the database into a new compressed artifact.

        :return: The written artifact.
        :raises BackupError: If the dump fails or produces nothing. The partial
            file is removed.
        """
        service = self.config.backup.service
        command = self.dump_command()
        path = self.reserve_path()
        logger.info("Creating database backup %s ...", path)

        try:
            raw_size = self._dump_to(path, service, command)
        except OSError as e:
            self._discard(path)
            raise BackupError(f"Cannot write backup {path}: {e}")
        except BaseException:
            self._discard(path)
            raise

        if raw_size == 0:
            self._discard(path)
            raise BackupError(f"Database dump from '{service}' was empty")

        artifact = BackupArtifact(
            path=path,
            size=os.path.getsize(path),
            created_at=datetime.now(timezone.utc),
        )
        logger.info("Database backup created: %s (%d bytes).", artifact.path, artifact.size)
        return artifact

    def _dump_to(self, path: str, service: str, command: List[str]) -> int:
        """
        Streams the dump into the gzip file and returns the uncompressed size.
        """
        with tempfile.TemporaryFile() as errors, open(path, "wb") as raw:
            try:
                process = self.runner.exec_stream(service, command, stderr=errors)
            except RuntimeCommandError as e:
                raise BackupError(f"Cannot start database dump: {e}")

            size = 0
            try:
                with gzip.GzipFile(filename="", mode="wb", fileobj=raw) as compressed:
                    while True:
                        chunk = process.stdout.read(_CHUNK_SIZE)
                        if not chunk:
                            break
                        compressed.write(chunk)
                        size += len(chunk)
            except BaseException:
                process.kill()
                raise
            finally:
                process.stdout.close()
                returncode = process.wait()

            if returncode != 0:
                errors.seek(0)
                detail = errors.read().decode("utf-8", "replace").strip()
                raise BackupError(
                    f"Database dump in '{service}' exited with code {returncode}"
                    + (f": {detail}" if detail else ""))
        return size

    def _discard(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        logger.debug("Removed incomplete backup %s", path)

    def list_artifacts(self) -> List[str]:
        """
        Existing artifacts in the backup directory, oldest first.
        """
        if not os.path.isdir(self.backup_dir):
            return []
        prefix = self.config.backup.prefix + "-"
        names = [n for n in os.listdir(self.backup_dir)
                 if n.startswith(prefix) and n.endswith(SUFFIX)]
        paths = [os.path.join(self.backup_dir, n) for n in names]
        return sorted(paths, key=lambda p: (os.path.getmtime(p), p))
