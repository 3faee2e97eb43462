"""
Apply-time secret resolution tests (Vault client mocked).
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from tierup.errors import ResourceApplyFailure, SecretResolutionError  # noqa: E402
from tierup.secret_resolver import SecretResolver, extract_vault_value  # noqa: E402


def _vault_client(data: dict) -> MagicMock:
    client = MagicMock()
    client.secrets.kv.v2.read_secret_version.return_value = {'data': {'data': data}}
    return client


class TestExtractVaultValue:
    def test_explicit_key(self):
        assert extract_vault_value({'user': 'root', 'password': 'pw'}, 'shop/mongo', 'user') == 'root'

    def test_single_value(self):
        assert extract_vault_value({'value': 'abc'}, 'shop/token') == 'abc'
        assert extract_vault_value({'anything': 'xyz'}, 'shop/token') == 'xyz'

    def test_ambiguous_payload(self):
        with pytest.raises(SecretResolutionError, match="multiple keys"):
            extract_vault_value({'a': '1', 'b': '2'}, 'shop/mongo')

    def test_missing_key(self):
        with pytest.raises(SecretResolutionError, match="key 'nope' not present"):
            extract_vault_value({'a': '1'}, 'shop/mongo', 'nope')


class TestSecretResolver:
    def test_literals_pass_through(self):
        resolver = SecretResolver(environ={})
        assert resolver.resolve('plain') == 'plain'
        assert resolver.resolve(5000) == '5000'
        assert resolver.resolve(None) == ''

    def test_external_directive(self):
        resolver = SecretResolver(environ={'MONGO_PASSWORD': 's3cret'})
        assert resolver.resolve('ASK_EXTERNAL:MONGO_PASSWORD') == 's3cret'

    def test_external_missing_is_apply_failure(self):
        resolver = SecretResolver(environ={})
        with pytest.raises(ResourceApplyFailure, match="MONGO_PASSWORD is not set"):
            resolver.resolve('ASK_EXTERNAL:MONGO_PASSWORD')

    def test_vault_directive_uses_mount_and_caches(self):
        client = _vault_client({'password': 'from-vault'})
        factory = MagicMock(return_value=client)
        resolver = SecretResolver(
            {'addr': 'https://vault.example:8200', 'mount': 'kv'},
            environ={'VAULT_TOKEN': 't0ken'},
            client_factory=factory,
        )

        assert resolver.resolve('ASK_VAULT:shop/mongo#password') == 'from-vault'
        assert resolver.resolve('ASK_VAULT:shop/mongo#password') == 'from-vault'

        factory.assert_called_once_with('https://vault.example:8200', 't0ken')
        client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path='shop/mongo', mount_point='kv', raise_on_deleted_version=True
        )

    def test_vault_addr_from_environment(self):
        factory = MagicMock(return_value=_vault_client({'value': 'x'}))
        resolver = SecretResolver(
            {}, environ={'VAULT_ADDR': 'http://127.0.0.1:8200', 'VAULT_TOKEN': 't'}, client_factory=factory
        )
        assert resolver.resolve('ASK_VAULT:shop/api') == 'x'
        factory.assert_called_once_with('http://127.0.0.1:8200', 't')

    def test_vault_without_token(self):
        resolver = SecretResolver({'addr': 'http://vault:8200'}, environ={})
        with pytest.raises(SecretResolutionError, match="VAULT_TOKEN not set"):
            resolver.resolve('ASK_VAULT:shop/mongo')

    def test_vault_read_error_wrapped(self):
        client = MagicMock()
        client.secrets.kv.v2.read_secret_version.side_effect = RuntimeError("permission denied")
        resolver = SecretResolver(
            {'addr': 'http://vault:8200'},
            environ={'VAULT_TOKEN': 't'},
            client_factory=lambda addr, token: client,
        )
        with pytest.raises(SecretResolutionError, match="permission denied"):
            resolver.resolve('ASK_VAULT:shop/mongo#password')

    def test_resolve_mapping(self):
        resolver = SecretResolver(environ={'JWT': 'abc'})
        env = resolver.resolve_mapping({'JWT_SECRET': 'ASK_EXTERNAL:JWT', 'NODE_ENV': 'production'})
        assert env == {'JWT_SECRET': 'abc', 'NODE_ENV': 'production'}
