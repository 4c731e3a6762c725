from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ChannelAccessPolicy:
    """Yes/no gate applied by the command boundary before a search runs."""

    allowed_channels: frozenset[str] = field(default_factory=frozenset)
    allow_all_public_channels: bool = False
    allow_private_channels: bool = True

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ChannelAccessPolicy":
        access = config.get("access", {})
        return cls(
            allowed_channels=frozenset(access.get("allowed_channels", []) or []),
            allow_all_public_channels=bool(access.get("allow_all_public_channels", False)),
            allow_private_channels=bool(access.get("allow_private_channels", True)),
        )

    def is_channel_allowed(self, channel_id: str, is_private: bool = False) -> bool:
        if is_private and not self.allow_private_channels:
            return False
        if channel_id in self.allowed_channels:
            return True
        return self.allow_all_public_channels and not is_private
