"""
Filter policy model.

A policy decides which events are retained (allow-lists) and which are
vetoed regardless (exclusions). The policy is immutable for a process run.

Shape:
    allow_all: global admission override (true or false)
    allowed_kinds: ["log", "request", ...] or ["all"]
    allowed_tags: ["error", "audit", ...] or ["all"]
    exclusions:
        all: true                      # excludes everything
        request:
            all: true                  # excludes every "request" event
            method: ["options"]        # excludes on any nested "method" value
        response:
            status_code: [304]
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.exceptions import ConfigurationError

WILDCARD = "all"
NEVER_LOG = "__neverlog__"

_SCALAR_TYPES = (str, int, float, bool)


def normalize_name_list(value: Any) -> Optional[List[str]]:
    """Accept a single name or a list of names for an allow-list."""
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        names = list(value)
        for name in names:
            if not isinstance(name, str):
                raise ValueError(f"Allow-list entries must be strings, got {type(name).__name__}")
        return names
    raise ValueError("Allow-list must be a string or a list of strings")


def normalize_exclusions(value: Any) -> Optional[Dict[str, Any]]:
    """
    Validate and normalize the exclusions mapping.

    Every ``all`` flag must be a boolean and every field rule becomes a
    list of excluded values (a single scalar value is wrapped).

    Raises:
        ValueError: if any level has the wrong shape
    """
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValueError("exclusions must be a mapping of event kind to field rules")

    normalized: Dict[str, Any] = {}
    for kind, rules in value.items():
        if kind == WILDCARD:
            if not isinstance(rules, bool):
                raise ValueError("exclusions.all must be a boolean")
            normalized[kind] = rules
            continue

        if not isinstance(rules, Mapping):
            raise ValueError(f"exclusions.{kind} must be a mapping of field to excluded values")

        kind_rules: Dict[str, Any] = {}
        for field, banned in rules.items():
            if field == WILDCARD:
                if not isinstance(banned, bool):
                    raise ValueError(f"exclusions.{kind}.all must be a boolean")
                kind_rules[field] = banned
            elif isinstance(banned, (list, tuple, set, frozenset)):
                kind_rules[field] = list(banned)
            elif isinstance(banned, _SCALAR_TYPES):
                kind_rules[field] = [banned]
            else:
                raise ValueError(
                    f"exclusions.{kind}.{field} must be a value or a list of values"
                )
        normalized[kind] = kind_rules

    return normalized


class Policy(BaseModel):
    """
    Immutable admission and exclusion policy.

    ``allow_all`` left unset means "decide by the allow-lists"; set to
    true or false it answers every admission check on its own.
    """

    allow_all: Optional[bool] = Field(
        default=None,
        description="Global admission override, bypasses kind and tag allow-lists"
    )
    allowed_kinds: Optional[List[str]] = Field(
        default=None,
        description="Event kinds to retain, or ['all']"
    )
    allowed_tags: Optional[List[str]] = Field(
        default=None,
        description="Event tags to retain, or ['all']"
    )
    exclusions: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Per-kind field values that veto an event and its composite"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("allowed_kinds", "allowed_tags", mode="before")
    def validate_allow_list(cls, v: Any) -> Optional[List[str]]:
        return normalize_name_list(v)

    @field_validator("exclusions", mode="before")
    def validate_exclusions(cls, v: Any) -> Optional[Dict[str, Any]]:
        return normalize_exclusions(v)


def load_policy(data: Optional[Mapping[str, Any]]) -> Policy:
    """
    Build a policy from a plain mapping.

    Raises:
        ConfigurationError: if the mapping does not describe a valid policy
    """
    try:
        return Policy.model_validate(dict(data or {}))
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid filter policy",
            details={"errors": [error["msg"] for error in e.errors()]},
        ) from e
