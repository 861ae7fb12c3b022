"""Injectable access to environment variables"""

import os
from collections.abc import Mapping

from ..utils.logger import get_logger

logger = get_logger(__name__)


class Environment:
    """Reads variables from a mapping (os.environ unless one is given)"""

    def __init__(self, variables: Mapping[str, str] | None = None):
        self._variables = variables if variables is not None else os.environ

    def get_env_variable(self, name: str) -> str | None:
        return self._variables.get(name)

    def get_bool_env_variable(self, name: str, default: bool) -> bool:
        """
        Parse a boolean variable.

        Only "true" and "false" (any case) are accepted; anything else logs a
        warning and returns the default.
        """
        value = self.get_env_variable(name)
        if value is None:
            return default

        normalized = str(value).strip().lower()
        if normalized == "true":
            return True
        if normalized == "false":
            return False

        logger.warning(
            f"Env variable {name} is not a boolean ({value!r}) - using default {default}"
        )
        return default

