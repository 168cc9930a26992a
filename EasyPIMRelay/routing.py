"""
Relay configuration and selection of the downstream CI/CD platform.
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from .errors import ConfigurationError

AZURE_DEVOPS_PATTERN = re.compile(r"ado|azdo|devops", re.IGNORECASE)

DEFAULT_WORKFLOW_FILE = "02-orchestrator-test.yml"
DEFAULT_GITHUB_REF = "main"
DEFAULT_ADO_REF = "refs/heads/main"
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class RelayConfig:
    """Settings snapshot taken once per request from the Function App settings.

    Credential values are not part of the snapshot; see credentials.py.
    """

    github_repository: Optional[str] = None
    github_workflow_file: str = DEFAULT_WORKFLOW_FILE
    github_ref: str = DEFAULT_GITHUB_REF
    ado_organization: Optional[str] = None
    ado_project: Optional[str] = None
    ado_pipeline_id: Optional[str] = None
    ado_ref: str = DEFAULT_ADO_REF
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "RelayConfig":
        raw_timeout = environ.get("DISPATCH_TIMEOUT_SECONDS") or ""
        timeout = DEFAULT_TIMEOUT_SECONDS
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                raise ConfigurationError(f"DISPATCH_TIMEOUT_SECONDS must be a number, got '{raw_timeout}'.")
            if timeout <= 0:
                raise ConfigurationError("DISPATCH_TIMEOUT_SECONDS must be greater than zero.")

        return cls(
            github_repository=environ.get("GITHUB_REPOSITORY") or None,
            github_workflow_file=environ.get("GITHUB_WORKFLOW_FILE") or DEFAULT_WORKFLOW_FILE,
            github_ref=environ.get("GITHUB_REF") or DEFAULT_GITHUB_REF,
            ado_organization=environ.get("ADO_ORGANIZATION") or None,
            ado_project=environ.get("ADO_PROJECT") or None,
            ado_pipeline_id=environ.get("ADO_PIPELINE_ID") or None,
            ado_ref=environ.get("ADO_REF") or DEFAULT_ADO_REF,
            timeout_seconds=timeout,
        )


@dataclass(frozen=True)
class GitHubTarget:
    repository: str
    workflowFile: str
    ref: str = DEFAULT_GITHUB_REF

    platform = "github"


@dataclass(frozen=True)
class AzureDevOpsTarget:
    organization: str
    project: str
    pipelineId: str
    refName: str = DEFAULT_ADO_REF

    platform = "azuredevops"


PlatformTarget = Union[GitHubTarget, AzureDevOpsTarget]


def is_azure_devops(secret_name: str) -> bool:
    return bool(AZURE_DEVOPS_PATTERN.search(secret_name))


def route(secret_name: str, config: RelayConfig) -> PlatformTarget:
    """Pick the dispatch target for a secret name.

    Raises ConfigurationError when the selected platform is not fully configured.
    """
    if is_azure_devops(secret_name):
        missing = [
            name
            for name, value in (
                ("ADO_ORGANIZATION", config.ado_organization),
                ("ADO_PROJECT", config.ado_project),
                ("ADO_PIPELINE_ID", config.ado_pipeline_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Azure DevOps dispatch selected but not configured; missing: {', '.join(missing)}."
            )
        return AzureDevOpsTarget(
            organization=config.ado_organization,
            project=config.ado_project,
            pipelineId=config.ado_pipeline_id,
            refName=config.ado_ref,
        )

    if not config.github_repository:
        raise ConfigurationError("GitHub dispatch selected but GITHUB_REPOSITORY is not configured.")
    return GitHubTarget(
        repository=config.github_repository,
        workflowFile=config.github_workflow_file,
        ref=config.github_ref,
    )
