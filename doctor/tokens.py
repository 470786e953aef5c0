"""
tokens.py
=========
SSO token inspection over the AWS CLI cache (~/.aws/sso/cache/*.json).

A cache entry is usable when it carries accessToken, expiresAt and startUrl.
Tokens within the warning threshold of expiry are reported as near-expiry.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from doctor.config import DoctorConfig
from doctor.errors import TokenError
from doctor.profiles import ProfileManager

logger = logging.getLogger(__name__)

TokenState = Literal["expired", "near-expiry", "valid"]


@dataclass
class TokenStatus:
    profile_name: str
    has_token: bool
    is_valid: bool
    is_near_expiry: bool
    expires_at: datetime | None = None
    time_until_expiry: float | None = None  # seconds
    start_url: str | None = None


@dataclass
class TokenExpiry:
    profile_name: str
    start_url: str
    status: TokenState
    expires_at: datetime
    time_until_expiry: float  # seconds
    cache_file: Path
    refreshable: bool = False


@dataclass
class _CachedToken:
    path: Path
    start_url: str
    expires_at: datetime
    refreshable: bool


def parse_expiry(value: str) -> datetime:
    """Parse the cache's expiresAt, e.g. 2024-05-01T12:00:00Z or 2019-11-14T04:04:00UTC."""
    text = value.strip()
    if text.endswith("UTC"):
        text = text[:-3] + "+00:00"
    elif text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenManager:
    def __init__(
        self,
        config: DoctorConfig,
        profile_manager: ProfileManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.profile_manager = profile_manager
        self._now = clock or (lambda: datetime.now(timezone.utc))

    # ── Public API ────────────────────────────────────────────────────────────

    def get_token_status(self, profile_name: str, start_url: str | None = None) -> TokenStatus:
        """Token status for a profile; the start URL is resolved from the profile when omitted."""
        start_url = start_url or self._resolve_start_url(profile_name)
        if not start_url:
            return TokenStatus(profile_name, has_token=False, is_valid=False, is_near_expiry=False)

        try:
            token = self._find_token(start_url)
        except OSError as e:
            logger.debug("Token lookup failed for %s: %s", profile_name, e)
            token = None

        if token is None:
            return TokenStatus(
                profile_name,
                has_token=False,
                is_valid=False,
                is_near_expiry=False,
                start_url=start_url,
            )

        remaining = (token.expires_at - self._now()).total_seconds()
        return TokenStatus(
            profile_name,
            has_token=True,
            is_valid=remaining > 0,
            is_near_expiry=0 < remaining <= self.config.token_expiry_warning,
            expires_at=token.expires_at,
            time_until_expiry=remaining,
            start_url=token.start_url,
        )

    def check_token_expiry(self) -> list[TokenExpiry]:
        """Every cached token that is expired or near expiry. Valid tokens are omitted."""
        try:
            tokens = self._load_tokens()
        except OSError as e:
            raise TokenError(f"Failed to check token expiry: {e}", operation="expiry-check") from e

        names = self._profile_names_by_start_url()
        issues = []
        for token in tokens:
            remaining = (token.expires_at - self._now()).total_seconds()
            if remaining <= 0:
                status: TokenState = "expired"
            elif remaining <= self.config.token_expiry_warning:
                status = "near-expiry"
            else:
                continue
            issues.append(
                TokenExpiry(
                    profile_name=names.get(token.start_url, token.start_url),
                    start_url=token.start_url,
                    status=status,
                    expires_at=token.expires_at,
                    time_until_expiry=remaining,
                    cache_file=token.path,
                    refreshable=token.refreshable,
                )
            )

        logger.debug("Token expiry check found %d issue(s)", len(issues))
        return issues

    def clear_expired_tokens(self, dry_run: bool = False) -> list[TokenExpiry]:
        """Delete expired cache entries that have no refresh token.

        Entries with a refresh token are left for the AWS CLI to renew.
        Returns the entries that were (or in dry-run, would be) removed.
        """
        cleared = []
        for token in self.check_token_expiry():
            if token.status != "expired" or token.refreshable:
                continue
            if not dry_run:
                try:
                    token.cache_file.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise TokenError(
                        f"Failed to remove {token.cache_file}: {e}", operation="token-cleanup"
                    ) from e
            cleared.append(token)
        return cleared

    def has_sso_cache(self) -> bool:
        return self.config.sso_cache_dir.is_dir()

    # ── Cache access ──────────────────────────────────────────────────────────

    def _find_token(self, start_url: str) -> _CachedToken | None:
        matches = [t for t in self._load_tokens() if t.start_url == start_url]
        # Several entries can exist for one start URL; the latest expiry wins.
        return max(matches, key=lambda t: t.expires_at, default=None)

    def _load_tokens(self) -> list[_CachedToken]:
        if not self.has_sso_cache():
            return []
        tokens = []
        for path in sorted(self.config.sso_cache_dir.glob("*.json")):
            token = self._read_cache_file(path)
            if token is not None:
                tokens.append(token)
        return tokens

    @staticmethod
    def _read_cache_file(path: Path) -> _CachedToken | None:
        try:
            with open(path, encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)
        except (OSError, ValueError) as e:
            logger.debug("Skipping unreadable cache file %s: %s", path, e)
            return None

        if not isinstance(data, dict) or not all(
            data.get(k) for k in ("accessToken", "expiresAt", "startUrl")
        ):
            logger.debug("Skipping cache file without token fields: %s", path)
            return None

        try:
            expires_at = parse_expiry(str(data["expiresAt"]))
        except ValueError:
            logger.debug("Skipping cache file with bad expiresAt: %s", path)
            return None

        return _CachedToken(
            path=path,
            start_url=data["startUrl"],
            expires_at=expires_at,
            refreshable=bool(data.get("refreshToken")),
        )

    # ── Profile lookups ───────────────────────────────────────────────────────

    def _resolve_start_url(self, profile_name: str) -> str | None:
        if self.profile_manager is None:
            return None
        profile = self.profile_manager.get_profile(profile_name)
        return profile.sso_start_url if profile else None

    def _profile_names_by_start_url(self) -> dict[str, str]:
        if self.profile_manager is None:
            return {}
        names: dict[str, str] = {}
        for profile in self.profile_manager.discover_profiles():
            if profile.sso_start_url:
                names.setdefault(profile.sso_start_url, profile.name)
        return names
