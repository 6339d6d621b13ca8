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
Rendering of the end-of-run deployment summary.
"""
from jinja2 import Template

from ..MODELS.deployment_attempt import DeploymentAttempt

SUMMARY_TEMPLATE = """
--- {{ action | capitalize }} {{ headline }} ---
Duration: {{ '%.1f' | format(duration) }}s
{% if artifact %}Backup: {{ artifact.path }} ({{ artifact.size }} bytes)
{% endif %}
{%- if services %}
{% for svc in services %}  {{ '%-15s' | format(svc.service) }} {{ svc.display_status }}
{% endfor %}
{%- endif %}
{%- for warning in warnings %}
WARNING: {{ warning }}
{%- endfor %}
{%- if error %}
ERROR [{{ failed_stage }}]: {{ error }}
{%- if log_tail %}
Recent logs:
{{ log_tail }}
{%- endif %}
{%- endif %}
{%- if access_url %}
Access the application at: {{ access_url }}
{%- endif %}
"""

_HEADLINES = {
    "success": "completed",
    "success_with_warning": "completed with warnings",
    "aborted": "failed",
}


class DeploymentReport:
    """
    Renders a finished DeploymentAttempt as plain text.
    """

    def __init__(self, attempt: DeploymentAttempt):
        """
        :param attempt: A finished attempt.
        """
        self.attempt = attempt
        self.template = Template(SUMMARY_TEMPLATE)

    def render(self) -> str:
        attempt = self.attempt
        outcome = attempt.outcome.value if attempt.outcome else "aborted"
        return self.template.render(
            action=attempt.action,
            headline=_HEADLINES[outcome],
            duration=attempt.duration,
            artifact=attempt.artifact,
            services=attempt.services,
            warnings=attempt.warnings,
            error=attempt.error,
            failed_stage=attempt.failed_stage.value if attempt.failed_stage else "",
            log_tail=attempt.log_tail.rstrip(),
            access_url=attempt.access_url if attempt.ok else None,
        ).strip()
