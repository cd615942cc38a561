"""Immutable catalog of per-action sliding window limits."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping

from app.core.config import ActionLimitSettings
from app.core.errors import ConfigAppError


@dataclass(frozen=True)
class ActionConfig:
    """Limit for one action: at most ``limit`` events per ``window_seconds``."""

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000


class ActionCatalog:
    """Read-only mapping from action name to ActionConfig.

    Built once at startup and passed explicitly to the services that need
    it. Unknown actions are configuration errors and are never given a
    fallback limit.
    """

    def __init__(self, actions: Mapping[str, ActionConfig]) -> None:
        if not actions:
            raise ValueError("an action catalog needs at least one action")
        for name in actions:
            # Record keys are "{subject}:{action}" and the action must not split.
            if not name or ":" in name:
                raise ValueError(f"invalid action name {name!r}: must be non-empty without ':'")
        self._actions: Mapping[str, ActionConfig] = MappingProxyType(dict(actions))

    @classmethod
    def from_settings(cls, actions: Mapping[str, ActionLimitSettings]) -> "ActionCatalog":
        """Build a catalog from RateLimitSettings.actions."""
        return cls(
            {
                name: ActionConfig(limit=cfg.limit, window_seconds=cfg.window_seconds)
                for name, cfg in actions.items()
            }
        )

    def get(self, action: str) -> ActionConfig:
        """Return the config for ``action``.

        Raises:
            ConfigAppError: If the action is not in the catalog.
        """
        try:
            return self._actions[action]
        except KeyError:
            raise ConfigAppError(
                code="unknown_action",
                message=f"Unknown action type: {action}",
                details={"action": action, "known_actions": sorted(self._actions)},
            ) from None

    @property
    def actions(self) -> Mapping[str, ActionConfig]:
        return self._actions

    def __contains__(self, action: object) -> bool:
        return action in self._actions

    def __iter__(self) -> Iterator[str]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)
