"""Shared fixtures for the relay unit tests."""

import json

import azure.functions as func
import pytest

RELAY_URL = "http://localhost:7071/api/easypim-relay"


def make_request(method="POST", body=b"", params=None, headers=None):
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
    elif isinstance(body, str):
        body = body.encode("utf-8")
    return func.HttpRequest(
        method=method,
        url=RELAY_URL,
        headers=headers or {},
        params=params or {},
        body=body,
    )


def keyvault_event(secret_name, vault_name="kv1"):
    return [
        {
            "id": "6f1c8a4e-1d2b-4c1e-9f43-0a6c2b8f0e11",
            "eventType": "Microsoft.KeyVault.SecretNewVersionCreated",
            "subject": secret_name,
            "eventTime": "2026-10-18T09:00:00Z",
            "data": {
                "Id": f"https://{vault_name}.vault.azure.net/secrets/{secret_name}/abc",
                "VaultName": vault_name,
                "ObjectType": "Secret",
                "ObjectName": secret_name,
                "Version": "abc",
            },
            "dataVersion": "1",
        }
    ]


@pytest.fixture
def github_env():
    return {
        "GITHUB_TOKEN": "ghp-test-token",
        "GITHUB_REPOSITORY": "contoso/easypim-governance",
    }


@pytest.fixture
def ado_env():
    return {
        "ADO_ORGANIZATION": "contoso",
        "ADO_PROJECT": "Governance",
        "ADO_PIPELINE_ID": "42",
        "ADO_PAT": "ado-test-pat",
    }
