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
External reachability probe of the deployed application.

Failures here are advisory: the cause may lie outside the stack (DNS, proxy,
tunnel), so they are reported as VerificationWarning and never abort a deployment.
"""
import http.client
import logging
import socket
from dataclasses import dataclass, field
from typing import Callable, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..exceptions import VerificationWarning
from ..MODELS.deployment_config import DeploymentConfig

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Outcome of the external health probe."""

    url: Optional[str]
    status: Optional[int] = None
    warning: Optional[VerificationWarning] = None
    hints: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.warning is None


class HealthVerifier:
    """
    Probes '<scheme>://<host><path>' with a bounded timeout.
    """

    def __init__(self, config: DeploymentConfig, opener: Callable = urlopen):
        """
        Initialize the verifier.

        Args:
            config: Deployment configuration naming the host key and probe path.
            opener: Callable with urlopen's signature.
        """
        self.config = config
        self.settings = config.verification
        self.opener = opener

    @property
    def url(self) -> Optional[str]:
        host = self.config.target_host
        if not host:
            return None
        path = self.settings.path if self.settings.path.startswith("/") else "/" + self.settings.path
        return f"{self.settings.scheme}://{host.rstrip('/')}{path}"

    @property
    def access_url(self) -> Optional[str]:
        host = self.config.target_host
        return f"{self.settings.scheme}://{host}" if host else None

    def hints(self) -> List[str]:
        compose = " ".join(self.config.compose_command) + f" -f {self.config.compose_path}"
        return [
            "This could be due to DNS, the reverse proxy, or application issues.",
            f"Check proxy logs: {compose} logs {self.settings.proxy_service}",
            f"Check application logs: {compose} logs {self.settings.web_service}",
        ]

    def verify(self) -> VerificationResult:
        """
        Runs the probe. Never raises for probe failures.

        Returns:
            VerificationResult with a warning attached when the probe failed.
        """
        url = self.url
        if url is None:
            key = self.settings.host_key
            warning = VerificationWarning(
                f"{key} is not set; cannot perform the external health check. "
                f"Set {key} in the env file or environment.",
                target=key,
            )
            logger.warning("%s", warning)
            return VerificationResult(url=None, warning=warning)

        logger.info("Attempting to reach the application at %s", url)
        try:
            request = Request(url, method="GET", headers={"User-Agent": "stackup-verifier"})
            with self.opener(request, timeout=self.settings.timeout) as response:
                status = response.status
        except HTTPError as e:
            return self._failed(url, f"returned HTTP {e.code}", status=e.code)
        except (URLError, socket.timeout, ConnectionError) as e:
            reason = getattr(e, "reason", e)
            return self._failed(url, f"is unreachable: {reason}")
        except OSError as e:
            return self._failed(url, f"is unreachable: {e}")
        except http.client.InvalidURL as e:
            return self._failed(url, f"is not a valid address: {e}")
        except http.client.HTTPException as e:
            return self._failed(url, f"did not answer with HTTP: {e!r}")
        except ValueError as e:
            return self._failed(url, f"is not a valid address: {e}")

        if not 200 <= status < 400:
            return self._failed(url, f"returned HTTP {status}", status=status)

        logger.info("Application is responding at %s (HTTP %d).", url, status)
        return VerificationResult(url=url, status=status)

    def _failed(self, url: str, reason: str, status: Optional[int] = None) -> VerificationResult:
        hints = self.hints()
        warning = VerificationWarning(f"Health check at {url} {reason}", target=url, hints=hints)
        logger.warning("%s", warning)
        for hint in hints:
            logger.info("%s", hint)
        return VerificationResult(url=url, status=status, warning=warning, hints=hints)
