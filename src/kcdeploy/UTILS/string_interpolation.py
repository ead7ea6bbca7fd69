"""
Utilities for string interpolation using configuration values.
"""
import re
from typing import Mapping

from ..errors import MissingConfigError

# ${VAR}, ${VAR:-default}, ${VAR:+alt} and the $$ escape
_PATTERN = re.compile(r'\$\$|\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Substitutes ${VAR} placeholders with configuration values.
    """
    @staticmethod
    def interpolate(template: str, context: Mapping[str, str]) -> str:
        """
        Interpolates placeholders in the template using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: Configuration values keyed by env name.
        :return: The interpolated string.
        :raises MissingConfigError: If a bare ${VAR} has no value in the context.
        """
        def replace(match):
            if match.group(0) == '$$':
                return '$'
            var_name, modifier, alt_value = match.group(1), match.group(2), match.group(3)
            value = context.get(var_name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if value is None:
                raise MissingConfigError(var_name)
            return value

        return _PATTERN.sub(replace, template)
