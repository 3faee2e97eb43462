#!/usr/bin/env python3
"""
Apply-time secret resolution.

Supported directives:
- ASK_VAULT:<path>[#<key>]   Read from Vault KV v2 (hvac); VAULT_TOKEN from env
- ASK_EXTERNAL:<ENV_VAR>     Read from the process environment
- anything else              Literal value

Directives are never resolved while loading config; the stage that needs a
value resolves it right before use so secrets stay encrypted at rest.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Optional

from .config_constants import DIRECTIVE_EXTERNAL, DIRECTIVE_VAULT
from .errors import SecretResolutionError

logger = logging.getLogger(__name__)


def extract_vault_value(data: dict, vault_path: str, key: Optional[str] = None) -> str:
    """Extract a single secret value from a Vault KV payload."""
    if key:
        if key not in data:
            raise SecretResolutionError(
                f"{DIRECTIVE_VAULT}{vault_path}#{key}",
                f"key '{key}' not present (available: {', '.join(sorted(data)) or 'none'})"
            )
        return str(data[key])
    if 'value' in data:
        return str(data['value'])
    if 'password' in data and len(data) == 1:
        return str(data['password'])
    if len(data) == 1:
        return str(next(iter(data.values())))

    raise SecretResolutionError(
        f"{DIRECTIVE_VAULT}{vault_path}",
        "secret contains multiple keys; use ASK_VAULT:<path>#<key>"
    )


def build_vault_client(addr: str, token: str) -> Any:
    import hvac

    return hvac.Client(url=addr, token=token)


class SecretResolver:
    """Resolve secret directives lazily; results are cached for the run."""

    def __init__(
        self,
        vault_config: Optional[dict] = None,
        environ: Optional[dict] = None,
        client_factory: Callable[[str, str], Any] = build_vault_client,
    ) -> None:
        self.vault_config = vault_config or {}
        self.environ = os.environ if environ is None else environ
        self.client_factory = client_factory
        self._client: Any = None
        self._cache: dict[str, str] = {}

    def resolve(self, value: Any) -> str:
        if not isinstance(value, str):
            return "" if value is None else str(value)
        if value in self._cache:
            return self._cache[value]

        if value.startswith(DIRECTIVE_VAULT):
            resolved = self._resolve_vault(value[len(DIRECTIVE_VAULT):])
        elif value.startswith(DIRECTIVE_EXTERNAL):
            resolved = self._resolve_external(value[len(DIRECTIVE_EXTERNAL):])
        else:
            return value

        self._cache[value] = resolved
        return resolved

    def resolve_mapping(self, mapping: dict) -> dict[str, str]:
        return {key: self.resolve(value) for key, value in mapping.items()}

    def _resolve_external(self, var_name: str) -> str:
        value = self.environ.get(var_name)
        if not value:
            raise SecretResolutionError(
                f"{DIRECTIVE_EXTERNAL}{var_name}",
                f"environment variable {var_name} is not set"
            )
        return value

    def _vault_client(self) -> Any:
        if self._client is not None:
            return self._client

        addr = self.vault_config.get('addr') or self.environ.get('VAULT_ADDR')
        token = self.environ.get('VAULT_TOKEN')
        if not addr:
            raise SecretResolutionError(DIRECTIVE_VAULT, "vault.addr / VAULT_ADDR not set")
        if not token:
            raise SecretResolutionError(DIRECTIVE_VAULT, "VAULT_TOKEN not set; cannot resolve Vault secrets")

        logger.debug(f"Connecting to Vault at {addr}")
        self._client = self.client_factory(addr, token)
        return self._client

    def _resolve_vault(self, reference: str) -> str:
        path, _, key = reference.partition('#')
        path = path.strip('/')
        if not path:
            raise SecretResolutionError(DIRECTIVE_VAULT, "empty Vault path")

        client = self._vault_client()
        mount = self.vault_config.get('mount', 'secret')
        try:
            response = client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=mount,
                raise_on_deleted_version=True,
            )
        except Exception as e:
            raise SecretResolutionError(f"{DIRECTIVE_VAULT}{reference}", str(e)) from e

        data = (response or {}).get('data', {}).get('data')
        if not isinstance(data, dict):
            raise SecretResolutionError(f"{DIRECTIVE_VAULT}{reference}", "no data at path")

        logger.debug(f"Vault secret found: {mount}/{path}")
        return extract_vault_value(data, path, key or None)
