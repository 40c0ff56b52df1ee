"""Reference user directory implementations."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

from taskpilot.core.ports import UserProfile
from taskpilot.errors import ConfigurationError


def normalize_email(value: str) -> str:
    return value.strip().lower()


class InMemoryUserDirectory:
    """User directory held in memory, keyed by normalized email."""

    def __init__(self, profiles: Iterable[UserProfile] = ()) -> None:
        self._profiles: dict[str, UserProfile] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: UserProfile) -> None:
        self._profiles[normalize_email(profile.email)] = profile

    def get_profile(self, identity: str) -> UserProfile | None:
        return self._profiles.get(normalize_email(identity))

    def known_identities(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        return [profile.email for profile in self._profiles.values() if profile.email][:limit]

    def exists(self, identity: str) -> bool:
        return normalize_email(identity) in self._profiles


def load_user_directory(path: Path | None) -> InMemoryUserDirectory:
    """Load a JSON list of user objects; a missing path yields an empty directory."""

    if path is None:
        return InMemoryUserDirectory()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read users file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Users file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError(f"Users file {path} must contain a JSON list")

    profiles: list[UserProfile] = []
    for item in payload:
        if not isinstance(item, dict) or not isinstance(item.get("email"), str):
            logger.warning("directory.skip entry={}", item)
            continue
        profiles.append(
            UserProfile(
                email=item["email"],
                first_name=item.get("first_name"),
                last_name=item.get("last_name"),
                department=item.get("department"),
                role=item.get("role"),
            )
        )
    return InMemoryUserDirectory(profiles)
