"""
Dispatch clients that trigger the downstream governance pipeline.

GitHubDispatcher calls the Actions workflow_dispatch API; AzureDevOpsDispatcher
calls the Pipelines runs API. Each makes exactly one bounded HTTP call and
reports the outcome as a DispatchResult; neither raises.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import requests

from .parameters import DispatchParameters
from .routing import DEFAULT_TIMEOUT_SECONDS, AzureDevOpsTarget, GitHubTarget, PlatformTarget

GITHUB_API_URL = "https://api.github.com"
AZURE_DEVOPS_URL = "https://dev.azure.com"
AZURE_DEVOPS_API_VERSION = "7.0"

# Upper bound on response text copied into a failure reason
_BODY_SNIPPET_LIMIT = 500


@dataclass(frozen=True)
class DispatchSuccess:
    runId: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class DispatchFailure:
    reason: str
    httpStatus: Optional[int] = None


DispatchResult = Union[DispatchSuccess, DispatchFailure]


def _timeout(seconds: float) -> Tuple[float, float]:
    # (connect, read)
    return (min(seconds, 5.0), seconds)


def _failure_from_response(platform: str, resp: requests.Response) -> DispatchFailure:
    text = (resp.text or "")[:_BODY_SNIPPET_LIMIT]
    return DispatchFailure(reason=f"{platform} dispatch failed: {resp.status_code} {text}".rstrip(), httpStatus=resp.status_code)


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


class GitHubDispatcher:
    """Trigger a GitHub Actions workflow through workflow_dispatch."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, api_url: str = GITHUB_API_URL):
        self.timeout_seconds = timeout_seconds
        self.api_url = api_url.rstrip("/")

    @staticmethod
    def build_inputs(params: DispatchParameters) -> Dict[str, Any]:
        """Map parameters 1:1 onto the orchestrator workflow's dispatch inputs."""
        return {
            "run_description": params.runDescription,
            "configSecretName": params.configSecretName,
            "WhatIf": params.whatIf,
            "Mode": params.mode.value,
            "SkipPolicies": params.skipPolicies,
            "SkipAssignments": params.skipAssignments,
            "AllowProtectedRoles": params.allowProtectedRoles,
            "Verbose": params.verbose,
            "ExportWouldRemove": params.exportWouldRemove,
        }

    def dispatch(self, target: GitHubTarget, params: DispatchParameters, token: str) -> DispatchResult:
        url = f"{self.api_url}/repos/{target.repository}/actions/workflows/{target.workflowFile}/dispatches"
        headers = {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json",
            "Content-Type": "application/json",
        }
        body = {"ref": target.ref, "inputs": self.build_inputs(params)}

        logging.info(f"Dispatching GitHub workflow {target.workflowFile} in {target.repository} (ref={target.ref}).")
        try:
            resp = requests.post(url, json=body, headers=headers, timeout=_timeout(self.timeout_seconds))
        except requests.RequestException as ex:
            logging.error(f"GitHub dispatch request failed: {type(ex).__name__}: {ex}")
            return DispatchFailure(reason=f"GitHub dispatch request failed: {type(ex).__name__}")

        if not 200 <= resp.status_code < 300:
            return _failure_from_response("GitHub", resp)

        # workflow_dispatch answers 204 No Content; there is no run id to report
        runs_url = f"https://github.com/{target.repository}/actions/workflows/{target.workflowFile}"
        logging.info(f"GitHub workflow dispatched: {resp.status_code}")
        return DispatchSuccess(runId=None, url=runs_url)


class AzureDevOpsDispatcher:
    """Queue an Azure DevOps pipeline run."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, base_url: str = AZURE_DEVOPS_URL):
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def build_template_parameters(params: DispatchParameters) -> Dict[str, str]:
        """Translate parameters onto the pipeline's templateParameters names.

        Pipeline template parameters are passed as strings.
        """
        return {
            "configSecretName": params.configSecretName,
            "whatIfMode": _bool_str(params.whatIf),
            "runMode": params.mode.value,
            "skipPolicies": _bool_str(params.skipPolicies),
            "skipAssignments": _bool_str(params.skipAssignments),
            "allowProtectedRoles": _bool_str(params.allowProtectedRoles),
            "verboseLogging": _bool_str(params.verbose),
            "exportWouldRemove": _bool_str(params.exportWouldRemove),
            "runDescription": params.runDescription,
        }

    @staticmethod
    def _auth_header(pat: str) -> str:
        encoded = base64.b64encode(f":{pat}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"

    def dispatch(self, target: AzureDevOpsTarget, params: DispatchParameters, pat: str) -> DispatchResult:
        url = (
            f"{self.base_url}/{target.organization}/{target.project}"
            f"/_apis/pipelines/{target.pipelineId}/runs?api-version={AZURE_DEVOPS_API_VERSION}"
        )
        headers = {
            "Authorization": self._auth_header(pat),
            "Content-Type": "application/json",
        }
        body = {
            "resources": {"repositories": {"self": {"refName": target.refName}}},
            "templateParameters": self.build_template_parameters(params),
        }

        logging.info(f"Queuing Azure DevOps pipeline {target.pipelineId} in {target.organization}/{target.project}.")
        try:
            resp = requests.post(url, json=body, headers=headers, timeout=_timeout(self.timeout_seconds))
        except requests.RequestException as ex:
            logging.error(f"Azure DevOps dispatch request failed: {type(ex).__name__}: {ex}")
            return DispatchFailure(reason=f"Azure DevOps dispatch request failed: {type(ex).__name__}")

        if not 200 <= resp.status_code < 300:
            return _failure_from_response("Azure DevOps", resp)

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        run_id = payload.get("id")
        web_url = None
        links = payload.get("_links")
        if isinstance(links, dict) and isinstance(links.get("web"), dict):
            web_url = links["web"].get("href")
        logging.info(f"Azure DevOps pipeline run queued: id={run_id} url={web_url}")
        return DispatchSuccess(runId=str(run_id) if run_id is not None else None, url=web_url)


def dispatch(target: PlatformTarget, params: DispatchParameters, credential: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> DispatchResult:
    """Send the dispatch with the client matching the target platform."""
    if isinstance(target, AzureDevOpsTarget):
        return AzureDevOpsDispatcher(timeout_seconds).dispatch(target, params, credential)
    return GitHubDispatcher(timeout_seconds).dispatch(target, params, credential)
