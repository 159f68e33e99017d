"""Write policy read from ``sheetguard-policy.yaml``.

Example::

    protected_tabs: [Archive]
    allowed_actions: [readRange, fetchTabData, addRow]
    max_fields: {addRow: 6, default: 10}

``max_fields`` may also be a single number applying to every action.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sheetguard.contracts.actions import ActionIntent
from sheetguard.contracts.common import ConfigError
from sheetguard.io.fileops import read_config_text

POLICY_FILENAME = "sheetguard-policy.yaml"


class PolicyViolation(BaseModel):
    rule: str
    message: str
    severity: str = "error"


class Policy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    protected_tabs: list[str] = Field(default_factory=list)
    allowed_actions: list[str] = Field(default_factory=list)
    max_fields: int | dict[str, int] | None = None

    @classmethod
    def load(cls, path: str | Path) -> "Policy":
        try:
            data = yaml.safe_load(read_config_text(path)) or {}
            return cls.model_validate(data)
        except OSError as e:
            raise ConfigError(f"Cannot read policy file {path}: {e}") from e
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigError(f"Invalid policy file {path}: {e}") from e

    @classmethod
    def load_from_dir(cls, directory: str | Path) -> "Policy | None":
        """The policy file in *directory*, or None when there is none."""
        path = Path(directory) / POLICY_FILENAME
        return cls.load(path) if path.is_file() else None

    def field_limit(self, kind: str) -> int | None:
        if isinstance(self.max_fields, dict):
            return self.max_fields.get(kind, self.max_fields.get("default"))
        return self.max_fields


def check_action_policy(policy: Policy, action: ActionIntent) -> list[PolicyViolation]:
    """Every rule *action* breaks; an empty list means it may proceed."""
    kind = action.kind.value
    found: list[PolicyViolation] = []

    if policy.allowed_actions and kind not in policy.allowed_actions:
        found.append(PolicyViolation(
            rule="action_not_allowed",
            message=f"Action '{kind}' is not allowed by policy",
        ))

    # reads of a protected tab stay allowed
    if action.kind.is_mutating and action.target_tab in policy.protected_tabs:
        found.append(PolicyViolation(
            rule="protected_tab",
            message=f"Tab '{action.target_tab}' is protected; {kind} is not permitted",
        ))

    limit = policy.field_limit(kind)
    if limit is not None and len(action.data) > limit:
        found.append(PolicyViolation(
            rule="field_threshold",
            message=f"{kind} writes {len(action.data)} fields, exceeding threshold of {limit}",
        ))

    return found


def violation_details(violations: list[PolicyViolation]) -> dict[str, Any]:
    return {"violations": [v.model_dump() for v in violations]}
