"""
Resolution of the dispatch credentials (GitHub token, Azure DevOps PAT).

A credential is taken from its environment variable when set. Otherwise, if a
Key Vault secret URI is configured for it, the secret is read from Key Vault
with DefaultAzureCredential (managed identity when running in Azure):

  GITHUB_TOKEN  or GITHUB_TOKEN_SECRET_URI=https://<vault>.vault.azure.net/secrets/<name>[/<version>]
  ADO_PAT       or ADO_PAT_SECRET_URI=...

Values are never cached between requests and never logged.
"""

import logging
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from .errors import ConfigurationError
from .routing import DEFAULT_TIMEOUT_SECONDS, AzureDevOpsTarget, PlatformTarget


def _parse_secret_uri(uri: str) -> Tuple[str, str, Optional[str]]:
    """Split a Key Vault secret URI into (vault_url, name, version)."""
    parsed = urlparse(uri)
    path_parts = [p for p in parsed.path.split("/") if p]
    if not parsed.scheme or not parsed.netloc or len(path_parts) < 2 or path_parts[0].lower() != "secrets":
        raise ConfigurationError("Key Vault secret URI does not contain a valid secret path.")
    vault_url = f"{parsed.scheme}://{parsed.netloc}"
    secret_version = path_parts[2] if len(path_parts) >= 3 else None
    return vault_url, path_parts[1], secret_version


def _fetch_secret_from_keyvault(uri: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> str:
    vault_url, secret_name, secret_version = _parse_secret_uri(uri)
    try:
        # One bounded attempt, no retries
        client = SecretClient(
            vault_url=vault_url,
            credential=DefaultAzureCredential(),
            connection_timeout=min(timeout_seconds, 5.0),
            read_timeout=timeout_seconds,
            retry_total=0,
        )
        if secret_version:
            secret_bundle = client.get_secret(secret_name, secret_version)
        else:
            secret_bundle = client.get_secret(secret_name)
    except Exception as ex:
        logging.exception("Failed to fetch secret from Key Vault (vault=%s, secret=%s)", vault_url, secret_name)
        raise ConfigurationError(f"Could not read secret '{secret_name}' from Key Vault.") from ex
    logging.info("Fetched dispatch credential from Key Vault (vault=%s, secret=%s)", vault_url, secret_name)
    return secret_bundle.value or ""


def resolve_secret(environ: Mapping[str, str], name: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> str:
    """Return the credential stored in `name` or in Key Vault via `<name>_SECRET_URI`."""
    value = environ.get(name) or ""
    if value:
        return value

    uri = environ.get(f"{name}_SECRET_URI") or ""
    if uri:
        value = _fetch_secret_from_keyvault(uri, timeout_seconds)
        if value:
            return value

    raise ConfigurationError(f"{name} is not configured.")


def resolve_credentials(
    target: PlatformTarget, environ: Mapping[str, str], timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
) -> str:
    """Return the credential for the platform selected by routing."""
    if isinstance(target, AzureDevOpsTarget):
        return resolve_secret(environ, "ADO_PAT", timeout_seconds)
    return resolve_secret(environ, "GITHUB_TOKEN", timeout_seconds)
