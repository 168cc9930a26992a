"""
Derivation of the downstream pipeline parameters from a secret name.

Pattern rules on the secret name run first, then the EASYPIM_* overrides
snapshotted from the environment, which always win when set.
"""

import logging
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import OverrideError


class Mode(str, Enum):
    DELTA = "delta"
    INITIAL = "initial"


TEST_MODE_PATTERN = re.compile(r"test|debug", re.IGNORECASE)
INITIAL_MODE_PATTERN = re.compile(r"initial|setup|bootstrap", re.IGNORECASE)

TEST_MODE_SUFFIX = " (Test Mode - Preview Only)"
INITIAL_MODE_SUFFIX = " (Initial Setup Mode)"

_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


def parse_bool(name: str, value: str) -> bool:
    """Parse a boolean setting; unparseable values are an operator error."""
    val = value.strip().lower()
    if val in _TRUE_VALUES:
        return True
    if val in _FALSE_VALUES:
        return False
    raise OverrideError(f"{name} must be a boolean (true/false), got '{value}'.")


@dataclass(frozen=True)
class EnvironmentOverrides:
    """EASYPIM_* overrides captured once at request entry."""

    whatIf: Optional[bool] = None
    mode: Optional[Mode] = None
    verbose: Optional[bool] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvironmentOverrides":
        whatif_raw = environ.get("EASYPIM_WHATIF") or ""
        mode_raw = environ.get("EASYPIM_MODE") or ""
        verbose_raw = environ.get("EASYPIM_VERBOSE") or ""

        mode = None
        if mode_raw:
            # Exact match only; anything else keeps the derived mode
            if mode_raw in (Mode.DELTA.value, Mode.INITIAL.value):
                mode = Mode(mode_raw)
            else:
                logging.warning(f"Ignoring EASYPIM_MODE='{mode_raw}': expected 'delta' or 'initial'.")

        return cls(
            whatIf=parse_bool("EASYPIM_WHATIF", whatif_raw) if whatif_raw else None,
            mode=mode,
            verbose=parse_bool("EASYPIM_VERBOSE", verbose_raw) if verbose_raw else None,
        )


@dataclass(frozen=True)
class DispatchParameters:
    runDescription: str
    configSecretName: str
    whatIf: bool = False
    mode: Mode = Mode.DELTA
    skipPolicies: bool = False
    skipAssignments: bool = False
    allowProtectedRoles: bool = False
    verbose: bool = False
    exportWouldRemove: bool = True

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["mode"] = self.mode.value
        return out


def derive(secret_name: str, overrides: EnvironmentOverrides, vault_name: str = "Unknown") -> DispatchParameters:
    """Build the dispatch parameters for a secret change."""
    description = f"Triggered by Key Vault secret change: {secret_name} in {vault_name}"
    what_if = False
    mode = Mode.DELTA

    if TEST_MODE_PATTERN.search(secret_name):
        what_if = True
        description += TEST_MODE_SUFFIX

    if INITIAL_MODE_PATTERN.search(secret_name):
        mode = Mode.INITIAL
        description += INITIAL_MODE_SUFFIX

    verbose = False
    if overrides.whatIf is not None:
        what_if = overrides.whatIf
    if overrides.mode is not None:
        mode = overrides.mode
    if overrides.verbose is not None:
        verbose = overrides.verbose

    params = DispatchParameters(
        runDescription=description,
        configSecretName=secret_name,
        whatIf=what_if,
        mode=mode,
        verbose=verbose,
    )
    logging.info(
        "Derived parameters for secret %s: whatIf=%s mode=%s verbose=%s",
        secret_name, params.whatIf, params.mode.value, params.verbose,
    )
    return params
