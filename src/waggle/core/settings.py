"""Agent settings — the plan/review/execute model profiles."""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from waggle.core.node import Node, is_review_node

DEFAULT_MODEL = "claude-3-5-haiku-latest"
DEFAULT_LARGE_MODEL = "claude-sonnet-4-5-20250929"


@dataclass(frozen=True)
class AgentSettings:
    model: str = DEFAULT_MODEL
    temperature: float = 0.0
    max_tokens: int = 2000
    prompting_method: str | None = None
    max_concurrency: int | None = None


@dataclass(frozen=True)
class AgentSettingsMap:
    plan: AgentSettings = field(
        default_factory=lambda: AgentSettings(max_tokens=700, max_concurrency=2)
    )
    review: AgentSettings = field(
        default_factory=lambda: AgentSettings(
            max_tokens=350,
            prompting_method="zero-shot-react",
            max_concurrency=4,
        )
    )
    execute: AgentSettings = field(
        default_factory=lambda: AgentSettings(
            model=DEFAULT_LARGE_MODEL,
            max_tokens=2000,
            prompting_method="chat-conversational-react",
            max_concurrency=6,
        )
    )

    def for_node(self, node: Node) -> AgentSettings:
        """Review nodes run with the ``review`` profile, everything else with ``execute``."""
        return self.review if is_review_node(node) else self.execute


_PROFILES = ("plan", "review", "execute")
_SETTING_KEYS = {f.name for f in fields(AgentSettings)}


def settings_from_dict(data: dict[str, Any] | None) -> AgentSettingsMap:
    """Overlay partial profiles onto the defaults.

    Unknown profiles or keys raise ``ValueError``.
    """
    defaults = AgentSettingsMap()
    if not data:
        return defaults

    unknown = set(data) - set(_PROFILES)
    if unknown:
        raise ValueError(f"Unknown settings profiles: {sorted(unknown)}")

    profiles: dict[str, AgentSettings] = {}
    for name in _PROFILES:
        overrides = data.get(name) or {}
        if not isinstance(overrides, dict):
            raise ValueError(f"Settings profile {name!r} must be a mapping")
        bad = set(overrides) - _SETTING_KEYS
        if bad:
            raise ValueError(f"Unknown keys in settings profile {name!r}: {sorted(bad)}")
        profiles[name] = replace(getattr(defaults, name), **overrides)

    return AgentSettingsMap(**profiles)


def load_settings(path: str | Path) -> AgentSettingsMap:
    """Load settings from a YAML file with optional ``plan``/``review``/``execute`` sections."""
    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid settings file {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return settings_from_dict(data)
