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
Thin wrapper around the docker compose command line.
"""
import json
import logging
import os
import subprocess
from typing import IO, Any, List, Optional, Sequence, Set, Union

from ..exceptions import RuntimeCommandError
from ..MODELS.deployment_attempt import ServiceState
from ..MODELS.deployment_config import DeploymentConfig

logger = logging.getLogger(__name__)


class ComposeRunner:
    """
    Issues compose commands against one manifest.

    Every method maps to a single runtime invocation; ordering between services is
    left to the runtime.
    """

    def __init__(self, config: DeploymentConfig):
        """
        Initializes the runner.

        Args:
            config (DeploymentConfig): Resolved deployment configuration.
        """
        self.config = config

    @property
    def base_command(self) -> List[str]:
        command = list(self.config.compose_command) + ["-f", self.config.compose_path]
        if self.config.project_name:
            command += ["-p", self.config.project_name]
        env_path = self.config.env_path
        if env_path and os.path.exists(env_path):
            command += ["--env-file", env_path]
        return command

    def _run(self,
             command: Sequence[str],
             check: bool = True,
             capture: bool = True,
             timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """
        Runs a command to completion.

        Args:
            command (Sequence[str]): Full argv.
            check (bool): Raise on a non-zero exit status.
            capture (bool): Capture stdout/stderr instead of inheriting the terminal.
            timeout (Optional[float]): Seconds before the command is killed.

        Returns:
            subprocess.CompletedProcess: The finished process.
        """
        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(
                list(command),
                capture_output=capture,
                text=True,
                timeout=timeout,
                cwd=self.config.project_dir,
            )
        except FileNotFoundError:
            raise RuntimeCommandError(command, 127, f"{command[0]}: command not found")
        except subprocess.TimeoutExpired:
            raise RuntimeCommandError(command, -1, f"timed out after {timeout}s")

        if check and result.returncode != 0:
            raise RuntimeCommandError(command, result.returncode, result.stderr or "")
        return result

    def compose(self, *args: str, **kwargs: Any) -> subprocess.CompletedProcess:
        return self._run(self.base_command + list(args), **kwargs)

    def daemon_available(self) -> bool:
        """
        Checks that the container runtime daemon answers.
        """
        try:
            self._run(list(self.config.docker_command) + ["info"], timeout=30)
        except RuntimeCommandError as e:
            logger.debug("Runtime daemon check failed: %s", e)
            return False
        return True

    def pull(self) -> None:
        self.compose("pull", capture=False)

    def up(self, remove_orphans: bool = True) -> None:
        args = ["up", "-d"]
        if remove_orphans:
            args.append("--remove-orphans")
        self.compose(*args, capture=False)

    def down(self, remove_orphans: bool = True) -> None:
        args = ["down"]
        if remove_orphans:
            args.append("--remove-orphans")
        self.compose(*args, capture=False)

    def ps(self) -> List[ServiceState]:
        """
        Lists every container of the project, including stopped ones.

        Returns:
            List[ServiceState]: One entry per container.
        """
        result = self.compose("ps", "--all", "--format", "json")
        return self.parse_ps_output(result.stdout)

    @staticmethod
    def parse_ps_output(output: str) -> List[ServiceState]:
        """
        Parses 'ps --format json' output. Older compose releases print one JSON
        array, newer ones print one object per line.
        """
        output = output.strip()
        if not output:
            return []
        try:
            if output.startswith("["):
                rows = json.loads(output)
            else:
                rows = [json.loads(line) for line in output.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise RuntimeCommandError(["ps"], 0, f"unexpected ps output: {e}")

        states = []
        for row in rows:
            states.append(ServiceState(
                service=row.get("Service", ""),
                state=(row.get("State") or "").lower(),
                health=(row.get("Health") or "").lower(),
                exit_code=int(row.get("ExitCode") or 0),
                container=row.get("Name", ""),
                status=row.get("Status", ""),
            ))
        return states

    def running_services(self) -> Set[str]:
        return {s.service for s in self.ps() if s.state in ("running", "restarting")}

    def logs(self,
             service: Optional[str] = None,
             tail: Optional[int] = 100,
             follow: bool = False,
             capture: bool = True) -> str:
        """
        Fetches service logs.

        Args:
            service (Optional[str]): Service name, or all services when None.
            tail (Optional[int]): Number of trailing lines per service; None for all.
            follow (bool): Keep streaming (only sensible with capture=False).
            capture (bool): Return the logs instead of printing them.

        Returns:
            str: Captured logs, or an empty string when printed.
        """
        args = ["logs", "--no-color"]
        if tail is not None:
            args.append(f"--tail={tail}")
        if follow:
            args.append("--follow")
        if service:
            args.append(service)
        result = self.compose(*args, capture=capture)
        return result.stdout if capture else ""

    def exec(self,
             service: str,
             command: Sequence[str],
             user: Optional[str] = None,
             check: bool = True) -> subprocess.CompletedProcess:
        """
        Runs a command inside a running service container.
        """
        return self.compose(*self._exec_args(service, command, user), check=check)

    def exec_stream(self,
                    service: str,
                    command: Sequence[str],
                    stdout: Union[int, IO[bytes]] = subprocess.PIPE,
                    stderr: Union[int, IO[bytes], None] = None) -> subprocess.Popen:
        """
        Starts a command inside a service container without waiting for it, for
        commands whose binary output is consumed as a stream.
        """
        command = self.base_command + self._exec_args(service, command, None)
        logger.debug("Streaming: %s", " ".join(command))
        try:
            return subprocess.Popen(command, stdout=stdout, stderr=stderr,
                                    cwd=self.config.project_dir)
        except FileNotFoundError:
            raise RuntimeCommandError(command, 127, f"{command[0]}: command not found")

    @staticmethod
    def _exec_args(service: str, command: Sequence[str], user: Optional[str]) -> List[str]:
        args = ["exec", "-T"]
        if user:
            args += ["-u", user]
        return args + [service] + list(command)

    def remove_volume(self, name: str) -> bool:
        """
        Removes a named volume. A missing volume is not an error.

        Returns:
            bool: True if the volume was removed.
        """
        result = self._run(list(self.config.docker_command) + ["volume", "rm", name], check=False)
        if result.returncode != 0:
            logger.debug("Volume %s not removed: %s", name, (result.stderr or "").strip())
            return False
        return True
