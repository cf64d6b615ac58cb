from __future__ import annotations

import logging
import os
from typing import Mapping

from quotefeed.ports.secrets_provider import SecretsProvider

_LOGGER = logging.getLogger(__name__)

DEFAULT_PREFIX = "ITICK_"


class MissingSecretError(ValueError):
    """
    Raised when a logical secret has no non-empty value in the environment.
    """

    def __init__(self, secret_name: str, env_var: str | None = None) -> None:
        super().__init__(secret_name)
        self.secret_name = secret_name
        self.env_var = env_var

    def __str__(self) -> str:
        if self.env_var:
            return f"Secret '{self.secret_name}' is unavailable (set {self.env_var})"
        return f"Secret '{self.secret_name}' is not a known secret"


class EnvSecretsProvider(SecretsProvider):
    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        allowed: Mapping[str, str] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Resolve logical secret names from environment variables `<prefix><suffix>`.

        Only names in the allow-list are resolvable; `api_token` maps to
        `ITICK_TOKEN` by default. `environ` replaces `os.environ` (tests).
        """
        if not prefix:
            raise ValueError("Environment prefix must be a non-empty string")
        self._prefix = prefix
        self._suffixes: dict[str, str] = {"api_token": "TOKEN", **(allowed or {})}
        self._environ = environ if environ is not None else os.environ

    def env_var_for(self, secret_name: str) -> str:
        suffix = self._suffixes.get(secret_name)
        if suffix is None:
            raise MissingSecretError(secret_name)
        return f"{self._prefix}{suffix}"

    def get(self, secret_name: str) -> str:
        env_var = self.env_var_for(secret_name)
        value = self._environ.get(env_var, "").strip()
        if not value:
            raise MissingSecretError(secret_name, env_var)

        _LOGGER.debug(
            "secret_resolved",
            extra={"event": "secret_resolved", "secret_name": secret_name, "env_var": env_var},
        )
        return value
