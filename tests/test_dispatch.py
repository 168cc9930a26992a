"""Tests for the GitHub and Azure DevOps dispatch clients."""

import base64
from unittest.mock import MagicMock, patch

import requests

from EasyPIMRelay.dispatch import (
    AzureDevOpsDispatcher,
    DispatchFailure,
    DispatchSuccess,
    GitHubDispatcher,
    dispatch,
)
from EasyPIMRelay.parameters import EnvironmentOverrides, derive
from EasyPIMRelay.routing import AzureDevOpsTarget, GitHubTarget

GITHUB_TARGET = GitHubTarget(repository="contoso/gov", workflowFile="02-orchestrator-test.yml", ref="main")
ADO_TARGET = AzureDevOpsTarget(organization="contoso", project="Governance", pipelineId="42")


def _response(status_code, text="", json_data=None):
    resp = MagicMock(status_code=status_code, text=text)
    if json_data is None:
        resp.json.side_effect = ValueError("No JSON")
    else:
        resp.json.return_value = json_data
    return resp


class TestGitHubDispatcher:
    def test_posts_workflow_dispatch(self):
        params = derive("test-config", EnvironmentOverrides(), vault_name="kv1")
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(204)
            result = GitHubDispatcher(timeout_seconds=10).dispatch(GITHUB_TARGET, params, "ghp-secret")

        assert result == DispatchSuccess(
            runId=None, url="https://github.com/contoso/gov/actions/workflows/02-orchestrator-test.yml"
        )
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.github.com/repos/contoso/gov/actions/workflows/02-orchestrator-test.yml/dispatches"
        assert kwargs["headers"]["Authorization"] == "token ghp-secret"
        assert kwargs["headers"]["Accept"] == "application/vnd.github.v3+json"
        assert kwargs["timeout"] == (5.0, 10)
        assert kwargs["json"] == {
            "ref": "main",
            "inputs": {
                "run_description": "Triggered by Key Vault secret change: test-config in kv1 (Test Mode - Preview Only)",
                "configSecretName": "test-config",
                "WhatIf": True,
                "Mode": "delta",
                "SkipPolicies": False,
                "SkipAssignments": False,
                "AllowProtectedRoles": False,
                "Verbose": False,
                "ExportWouldRemove": True,
            },
        }

    def test_empty_2xx_body_is_success(self):
        params = derive("prod-config", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(200, text="")
            result = GitHubDispatcher().dispatch(GITHUB_TARGET, params, "tok")
        assert isinstance(result, DispatchSuccess)

    def test_non_2xx_is_failure(self):
        params = derive("prod-config", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(404, text='{"message": "Not Found"}')
            result = GitHubDispatcher().dispatch(GITHUB_TARGET, params, "tok")
        assert result == DispatchFailure(reason='GitHub dispatch failed: 404 {"message": "Not Found"}', httpStatus=404)

    def test_failure_reason_truncates_body(self):
        params = derive("prod-config", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(500, text="x" * 5000)
            result = GitHubDispatcher().dispatch(GITHUB_TARGET, params, "tok")
        assert result.httpStatus == 500
        assert len(result.reason) < 600

    def test_transport_error_is_failure(self, caplog):
        params = derive("prod-config", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.side_effect = requests.Timeout("read timed out")
            result = GitHubDispatcher().dispatch(GITHUB_TARGET, params, "ghp-secret")
        assert isinstance(result, DispatchFailure)
        assert result.httpStatus is None
        assert "Timeout" in result.reason
        assert "ghp-secret" not in caplog.text


class TestAzureDevOpsDispatcher:
    def test_queues_pipeline_run(self):
        params = derive("ado-debug-secret", EnvironmentOverrides(), vault_name="kv1")
        run = {"id": 1234, "_links": {"web": {"href": "https://dev.azure.com/contoso/Governance/_build/results?buildId=1234"}}}
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(200, json_data=run)
            result = AzureDevOpsDispatcher(timeout_seconds=10).dispatch(ADO_TARGET, params, "my-pat")

        assert result == DispatchSuccess(
            runId="1234", url="https://dev.azure.com/contoso/Governance/_build/results?buildId=1234"
        )
        args, kwargs = mock_post.call_args
        assert args[0] == "https://dev.azure.com/contoso/Governance/_apis/pipelines/42/runs?api-version=7.0"
        expected_auth = "Basic " + base64.b64encode(b":my-pat").decode("ascii")
        assert kwargs["headers"]["Authorization"] == expected_auth
        assert kwargs["timeout"] == (5.0, 10)
        assert kwargs["json"] == {
            "resources": {"repositories": {"self": {"refName": "refs/heads/main"}}},
            "templateParameters": {
                "configSecretName": "ado-debug-secret",
                "whatIfMode": "true",
                "runMode": "delta",
                "skipPolicies": "false",
                "skipAssignments": "false",
                "allowProtectedRoles": "false",
                "verboseLogging": "false",
                "exportWouldRemove": "true",
                "runDescription": "Triggered by Key Vault secret change: ado-debug-secret in kv1 (Test Mode - Preview Only)",
            },
        }

    def test_success_without_links(self):
        params = derive("ado-prod", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(200, json_data={"id": 7, "_links": "unexpected"})
            result = AzureDevOpsDispatcher().dispatch(ADO_TARGET, params, "pat")
        assert result == DispatchSuccess(runId="7", url=None)

    def test_success_with_non_json_body(self):
        params = derive("ado-prod", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(200, text="<html/>")
            result = AzureDevOpsDispatcher().dispatch(ADO_TARGET, params, "pat")
        assert result == DispatchSuccess(runId=None, url=None)

    def test_unauthorized_is_failure(self):
        params = derive("ado-prod", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(401, text="Unauthorized")
            result = AzureDevOpsDispatcher().dispatch(ADO_TARGET, params, "pat")
        assert result == DispatchFailure(reason="Azure DevOps dispatch failed: 401 Unauthorized", httpStatus=401)

    def test_connection_error_is_failure(self, caplog):
        params = derive("ado-prod", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.side_effect = requests.ConnectionError("refused")
            result = AzureDevOpsDispatcher().dispatch(ADO_TARGET, params, "very-secret-pat")
        assert isinstance(result, DispatchFailure)
        assert "very-secret-pat" not in caplog.text


class TestDispatch:
    def test_selects_client_by_target(self):
        params = derive("prod", EnvironmentOverrides())
        with patch("EasyPIMRelay.dispatch.requests.post") as mock_post:
            mock_post.return_value = _response(204)
            dispatch(GITHUB_TARGET, params, "tok", timeout_seconds=3)
            assert "api.github.com" in mock_post.call_args.args[0]
            assert mock_post.call_args.kwargs["timeout"] == (3, 3)

            mock_post.return_value = _response(200, json_data={"id": 1})
            dispatch(ADO_TARGET, params, "pat")
            assert "dev.azure.com" in mock_post.call_args.args[0]
