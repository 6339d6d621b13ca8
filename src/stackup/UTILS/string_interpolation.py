"""
Utilities for string interpolation using environment variables.
"""
import logging
import re
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings, following the
    compose file rules.
    Supports $VAR, ${VAR}, ${VAR:-default}, ${VAR-default}, ${VAR:+value},
    ${VAR+value}, ${VAR:?message}, ${VAR?message} and the $$ escape.
    """
    # Group 1: escaped '$$'
    # Group 2: braced name, group 3: operator, group 4: operand
    # Group 5: bare name
    PATTERN = re.compile(
        r'(\$\$)'
        r'|\$\{([A-Za-z_][A-Za-z0-9_]*)(?:(:?[-+?])([^}]*))?\}'
        r'|\$([A-Za-z_][A-Za-z0-9_]*)'
    )

    @classmethod
    def interpolate(cls,
                    template: str,
                    context: Dict[str, str],
                    missing: Optional[List[str]] = None) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        Unset plain variables resolve to an empty string. Their names are appended
        to ``missing`` when a list is passed, so callers can report them.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :param missing: Optional list collecting the names of unset variables.
        :return: The interpolated string.
        :raises KeyError: If a ${VAR:?message} variable is unset or empty.
        """
        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            if match.group(1):
                return '$'

            var_name = match.group(2) or match.group(5)
            operator = match.group(3)
            operand = match.group(4) or ''
            value = context.get(var_name)

            if operator is None:
                if value is None:
                    if missing is not None:
                        missing.append(var_name)
                    return ''
                return value

            # A leading ':' makes the empty string count as unset
            is_set = bool(value) if operator.startswith(':') else value is not None
            kind = operator[-1]

            if kind == '-':
                return value if is_set else operand
            if kind == '+':
                return operand if is_set else ''
            # '?'
            if not is_set:
                raise KeyError(operand or f"Variable {var_name} is required")
            return value

        return cls.PATTERN.sub(replace, template)
