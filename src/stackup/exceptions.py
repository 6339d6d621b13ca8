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
Exception hierarchy for stackup.

Every fatal stage failure is a subclass of StackupError. VerificationWarning is
deliberately not one: it is never allowed to abort a deployment.
"""
from typing import List, Optional, Sequence


class StackupError(Exception):
    """Base exception for stackup."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class ConfigError(StackupError):
    """Invalid or incomplete configuration."""

    def __init__(self, message: str, error_code: str = "SU001"):
        super().__init__(message, error_code)


class PreconditionError(ConfigError):
    """One or more preconditions failed before any mutating action."""

    def __init__(self, missing_keys: Sequence[str], failed_checks: Sequence[str] = ()):
        self.missing_keys: List[str] = list(missing_keys)
        self.failed_checks: List[str] = list(failed_checks)
        parts = []
        if self.missing_keys:
            parts.append(f"missing required keys: {', '.join(self.missing_keys)}")
        parts.extend(self.failed_checks)
        super().__init__("Precondition check failed: " + "; ".join(parts), "SU002")


class ComposeFileError(StackupError):
    """The compose manifest is unreadable or describes an invalid service graph."""

    def __init__(self, message: str):
        super().__init__(message, "SU003")


class CircularDependencyError(ComposeFileError):
    """The services' depends_on relations contain a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")


class RuntimeCommandError(StackupError):
    """A container runtime command exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{' '.join(self.command)}' failed with exit code {returncode}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message, "SU004")


class BackupError(StackupError):
    """The pre-deploy database dump could not be produced."""

    def __init__(self, message: str):
        super().__init__(message, "SU005")


class DeploymentError(StackupError):
    """One or more services failed to come up."""

    def __init__(
        self,
        message: str,
        failed_services: Sequence[str] = (),
        log_tail: str = "",
    ):
        super().__init__(message, "SU006")
        self.failed_services = list(failed_services)
        self.log_tail = log_tail


class VerificationWarning(UserWarning):
    """The externally reachable endpoint did not answer the health probe."""

    def __init__(self, message: str, target: Optional[str] = None, hints: Sequence[str] = ()):
        super().__init__(message)
        self.message = message
        self.target = target
        self.hints = list(hints)

    def __str__(self) -> str:
        return self.message
