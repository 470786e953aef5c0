"""
profiles.py
===========
Discovery of AWS profiles from the shared config and credentials files.

The config file names profiles "[default]" and "[profile name]" and may define
"[sso-session name]" blocks referenced by profiles; the credentials file uses
bare "[name]" sections. Both files are merged into one AwsProfileConfig per
profile name.
"""

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path

from doctor.config import DoctorConfig
from doctor.errors import ProfileError

logger = logging.getLogger(__name__)

PROFILE_KEYS = (
    "region",
    "output",
    "sso_session",
    "sso_start_url",
    "sso_region",
    "sso_account_id",
    "sso_role_name",
    "aws_access_key_id",
    "aws_secret_access_key",
    "aws_session_token",
    "role_arn",
    "source_profile",
    "credential_source",
    "credential_process",
)


@dataclass
class AwsProfileConfig:
    name: str
    region: str | None = None
    output: str | None = None
    sso_session: str | None = None
    sso_start_url: str | None = None
    sso_region: str | None = None
    sso_account_id: str | None = None
    sso_role_name: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_session_token: str | None = None
    role_arn: str | None = None
    source_profile: str | None = None
    credential_source: str | None = None
    credential_process: str | None = None
    in_config: bool = False
    in_credentials: bool = False

    @property
    def is_sso(self) -> bool:
        return bool(self.sso_session or self.sso_start_url)


class ProfileManager:
    def __init__(self, config: DoctorConfig) -> None:
        self.config = config

    def discover_profiles(self) -> list[AwsProfileConfig]:
        """All profiles from both files; config-file order first, then credentials-only ones."""
        profiles: dict[str, AwsProfileConfig] = {}
        sessions: dict[str, dict[str, str]] = {}

        config_parser = self._read(self.config.config_file)
        for section in config_parser.sections():
            if section.startswith("sso-session "):
                sessions[section[len("sso-session ") :].strip()] = dict(config_parser[section])
                continue
            if section == "default":
                name = "default"
            elif section.startswith("profile "):
                name = section[len("profile ") :].strip()
            else:
                logger.debug("Ignoring config section [%s]", section)
                continue
            profile = profiles.setdefault(name, AwsProfileConfig(name=name))
            profile.in_config = True
            self._apply(profile, config_parser[section])

        credentials_parser = self._read(self.config.credentials_file)
        for section in credentials_parser.sections():
            name = section.strip()
            profile = profiles.setdefault(name, AwsProfileConfig(name=name))
            profile.in_credentials = True
            self._apply(profile, credentials_parser[section])

        for profile in profiles.values():
            session = sessions.get(profile.sso_session or "")
            if session:
                profile.sso_start_url = profile.sso_start_url or session.get("sso_start_url")
                profile.sso_region = profile.sso_region or session.get("sso_region")

        return list(profiles.values())

    def get_profile(self, name: str) -> AwsProfileConfig | None:
        return next((p for p in self.discover_profiles() if p.name == name), None)

    def profile_exists(self, name: str) -> bool:
        return self.get_profile(name) is not None

    @staticmethod
    def get_profile_type(profile: AwsProfileConfig) -> str:
        if profile.is_sso:
            return "sso"
        if profile.role_arn:
            return "assume-role"
        if profile.credential_process:
            return "credential-process"
        if profile.aws_access_key_id:
            return "iam"
        return "credentials"

    # ── File parsing ──────────────────────────────────────────────────────────

    @staticmethod
    def _read(path: Path) -> configparser.ConfigParser:
        # Repeated keys or sections are tolerated; the last value wins.
        parser = configparser.ConfigParser(interpolation=None, default_section="__none__", strict=False)
        if not path.exists():
            return parser
        try:
            with open(path, encoding="utf-8") as f:
                parser.read_file(f)
        except (OSError, configparser.Error) as e:
            raise ProfileError(f"Failed to parse {path}: {e}", path=str(path)) from e
        return parser

    @staticmethod
    def _apply(profile: AwsProfileConfig, section: configparser.SectionProxy) -> None:
        for key in PROFILE_KEYS:
            value = section.get(key)
            if value:
                setattr(profile, key, value.strip())
