"""
auth.py
=======
Authentication status across profiles, combining profile discovery, STS
credential validation and SSO token state.
"""

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime

from doctor.credentials import CredentialService
from doctor.errors import CredentialError, DoctorError, ProfileError
from doctor.profiles import AwsProfileConfig, ProfileManager
from doctor.tokens import TokenManager

logger = logging.getLogger(__name__)

AWS_CLI_TIMEOUT = 10


@dataclass
class ProfileInfo:
    name: str
    type: str
    active: bool
    credentials_valid: bool
    region: str | None = None
    sso_start_url: str | None = None
    token_expiry: datetime | None = None


@dataclass
class AuthStatusResponse:
    authenticated: bool
    active_profile: str | None
    profiles: list[ProfileInfo] = field(default_factory=list)
    aws_cli_installed: bool = False
    aws_cli_version: str | None = None


class AuthService:
    def __init__(
        self,
        profile_manager: ProfileManager,
        token_manager: TokenManager,
        credential_service: CredentialService,
    ) -> None:
        self.profile_manager = profile_manager
        self.token_manager = token_manager
        self.credential_service = credential_service

    def get_status(
        self,
        profile: str | None = None,
        detailed: bool = False,
        all_profiles: bool = False,
    ) -> AuthStatusResponse:
        """Authentication status for one profile, or for every discovered profile."""
        installed, version = self.check_aws_cli()
        active = self.credential_service.get_active_profile()

        if all_profiles:
            infos = [self._get_profile_status(p.name) for p in self._discover_profiles()]
            return AuthStatusResponse(
                authenticated=any(p.active and p.credentials_valid for p in infos),
                active_profile=active,
                profiles=infos,
                aws_cli_installed=installed,
                aws_cli_version=version,
            )

        name = profile or active
        info = self._get_profile_status(name)
        if detailed:
            logger.debug("Profile %s status: %s", name, info)
        return AuthStatusResponse(
            authenticated=info.credentials_valid,
            active_profile=name,
            profiles=[info],
            aws_cli_installed=installed,
            aws_cli_version=version,
        )

    def list_profiles(self) -> list[ProfileInfo]:
        """Every discovered profile without calling AWS."""
        active = self.credential_service.get_active_profile()
        return [
            ProfileInfo(
                name=p.name,
                type=ProfileManager.get_profile_type(p),
                active=p.name == active,
                credentials_valid=False,
                region=p.region,
                sso_start_url=p.sso_start_url,
            )
            for p in self._discover_profiles()
        ]

    def check_aws_cli(self) -> tuple[bool, str | None]:
        if shutil.which("aws") is None:
            return False, None
        try:
            proc = subprocess.run(
                ["aws", "--version"], capture_output=True, text=True, timeout=AWS_CLI_TIMEOUT
            )
        except (OSError, subprocess.TimeoutExpired):
            return False, None
        match = re.search(r"aws-cli/(\S+)", proc.stdout or proc.stderr)
        return proc.returncode == 0, match.group(1) if match else None

    def _discover_profiles(self) -> list[AwsProfileConfig]:
        try:
            return self.profile_manager.discover_profiles()
        except ProfileError as e:
            logger.debug("Profile discovery failed: %s", e)
            return []

    def _get_profile_status(self, name: str) -> ProfileInfo:
        active = name == self.credential_service.get_active_profile()
        try:
            profile = self.profile_manager.get_profile(name)
        except DoctorError as e:
            logger.debug("Could not load profile %s: %s", name, e)
            profile = None

        if profile is None:
            return ProfileInfo(name=name, type="credentials", active=active, credentials_valid=False)

        try:
            self.credential_service.validate_credentials(name)
            credentials_valid = True
        except CredentialError as e:
            logger.debug("Credentials invalid for %s: %s", name, e)
            credentials_valid = False

        token_expiry = None
        if profile.is_sso and profile.sso_start_url:
            status = self.token_manager.get_token_status(name, profile.sso_start_url)
            token_expiry = status.expires_at

        return ProfileInfo(
            name=name,
            type=ProfileManager.get_profile_type(profile),
            active=active,
            credentials_valid=credentials_valid,
            region=profile.region,
            sso_start_url=profile.sso_start_url,
            token_expiry=token_expiry,
        )
