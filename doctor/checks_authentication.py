"""
checks_authentication.py
========================
Authentication stage: credential validity for the target profile, SSO token
expiry and whether profiles can be switched between.
"""

from datetime import datetime

from doctor.auth import AuthService, ProfileInfo
from doctor.errors import CheckExecutionError, DoctorError
from doctor.models import CheckResult, CheckStage, CheckStatus, DoctorContext
from doctor.tokens import TokenManager


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _login_remediation(profile: ProfileInfo, name: str, verb: str = "authenticate") -> str:
    if profile.type == "sso":
        return f"Run 'aws sso login --profile {name}' to {verb}"
    return f"Verify credentials for profile '{name}' using 'aws configure'"


class CredentialValidationCheck:
    id = "credential-validation"
    name = "Credential Validation"
    description = "Validates AWS credential configuration and authentication status"
    stage = CheckStage.AUTHENTICATION

    def __init__(self, auth_service: AuthService) -> None:
        self.auth_service = auth_service

    def execute(self, context: DoctorContext) -> CheckResult:
        status = self.auth_service.get_status(profile=context.profile, detailed=context.detailed)
        target = context.profile or status.active_profile or "default"
        info = next((p for p in status.profiles if p.name == target), None)

        if status.authenticated:
            return CheckResult(
                CheckStatus.PASS,
                f"Credentials are valid for profile '{target}'",
                details={
                    "activeProfile": target,
                    "profileType": info.type if info else None,
                    "credentialsValid": info.credentials_valid if info else False,
                    "region": info.region if info else None,
                    "tokenExpiry": _iso(info.token_expiry) if info else None,
                    "totalProfiles": len(status.profiles),
                },
            )

        if info is None:
            return CheckResult(
                CheckStatus.FAIL,
                f"Profile '{target}' not found",
                details={
                    "targetProfile": target,
                    "availableProfiles": [p.name for p in status.profiles],
                    "authenticated": False,
                },
                remediation=f"Configure profile '{target}' using 'aws configure' or 'aws configure sso'",
            )

        if not info.credentials_valid:
            return CheckResult(
                CheckStatus.FAIL,
                f"Credentials are invalid for profile '{target}'",
                details={
                    "targetProfile": target,
                    "profileType": info.type,
                    "credentialsValid": False,
                    "tokenExpiry": _iso(info.token_expiry),
                    "authenticated": False,
                },
                remediation=_login_remediation(info, target),
            )

        return CheckResult(
            CheckStatus.FAIL,
            f"Authentication failed for profile '{target}'",
            details={
                "targetProfile": target,
                "profileType": info.type,
                "credentialsValid": info.credentials_valid,
                "authenticated": False,
                "awsCliInstalled": status.aws_cli_installed,
            },
            remediation="Check AWS service connectivity and verify profile configuration",
        )


class SsoTokenExpiryCheck:
    id = "sso-token-expiry"
    name = "SSO Token Expiry"
    description = "Checks SSO token expiry status and warns of approaching expiration"
    stage = CheckStage.AUTHENTICATION

    def __init__(self, token_manager: TokenManager) -> None:
        self.token_manager = token_manager

    def execute(self, context: DoctorContext) -> CheckResult:
        try:
            if context.profile:
                return self._check_profile(context.profile)
            return self._check_all()
        except DoctorError as e:
            raise CheckExecutionError(
                f"Failed to validate SSO token expiry status: {e}",
                check_id=self.id,
                stage=self.stage.value,
                target_profile=context.profile,
            ) from e

    def _check_profile(self, profile: str) -> CheckResult:
        token = self.token_manager.get_token_status(profile)
        details = {"profileName": token.profile_name, "hasToken": token.has_token, "isValid": token.is_valid}

        if not token.has_token:
            return CheckResult(
                CheckStatus.WARN,
                f"No SSO token found for profile '{profile}'",
                details=details,
                remediation=f"Run 'aws sso login --profile {profile}' to authenticate",
            )

        if not token.is_valid:
            return CheckResult(
                CheckStatus.FAIL,
                f"SSO token has expired for profile '{profile}'",
                details={**details, "expiresAt": _iso(token.expires_at), "startUrl": token.start_url},
                remediation=f"Run 'aws sso login --profile {profile}' to refresh the token",
            )

        details.update(
            isNearExpiry=token.is_near_expiry,
            expiresAt=_iso(token.expires_at),
            timeUntilExpiry=token.time_until_expiry,
        )
        if token.is_near_expiry:
            hours = round((token.time_until_expiry or 0) / 3600)
            return CheckResult(
                CheckStatus.WARN,
                f"SSO token for profile '{profile}' expires in {hours} hours",
                details=details,
                remediation=f"Consider refreshing the token with 'aws sso login --profile {profile}'",
            )

        return CheckResult(
            CheckStatus.PASS, f"SSO token for profile '{profile}' is valid", details=details
        )

    def _check_all(self) -> CheckResult:
        issues = self.token_manager.check_token_expiry()
        if not issues:
            return CheckResult(
                CheckStatus.PASS,
                "No expired SSO tokens found",
                details={"expiredTokensCount": 0},
            )

        expired = [t.profile_name for t in issues if t.status == "expired"]
        near = [t.profile_name for t in issues if t.status == "near-expiry"]

        if expired:
            return CheckResult(
                CheckStatus.FAIL,
                f"{len(expired)} SSO tokens have expired",
                details={
                    "expiredTokensCount": len(expired),
                    "nearExpiryCount": len(near),
                    "expiredProfiles": expired,
                    "nearExpiryProfiles": near,
                },
                remediation="Run 'aws sso login' for each expired profile to refresh tokens",
            )

        return CheckResult(
            CheckStatus.WARN,
            f"{len(near)} SSO tokens are approaching expiration",
            details={"expiredTokensCount": 0, "nearExpiryCount": len(near), "nearExpiryProfiles": near},
            remediation="Consider refreshing tokens that are approaching expiration",
        )


class ProfileSwitchCheck:
    id = "profile-switch"
    name = "Profile Switching"
    description = "Validates profile switching capability and configuration consistency"
    stage = CheckStage.AUTHENTICATION

    def __init__(self, auth_service: AuthService) -> None:
        self.auth_service = auth_service

    def execute(self, context: DoctorContext) -> CheckResult:
        status = self.auth_service.get_status(all_profiles=True)
        profiles = status.profiles
        active = status.active_profile

        if not profiles:
            return CheckResult(
                CheckStatus.FAIL,
                "No profiles available for switching",
                details={"availableProfiles": 0, "currentActiveProfile": active},
                remediation="Configure at least one AWS profile using 'aws configure' or 'aws configure sso'",
            )

        names = [p.name for p in profiles]
        valid = [p for p in profiles if p.credentials_valid]
        invalid = [p for p in profiles if not p.credentials_valid]

        if context.profile:
            target = next((p for p in profiles if p.name == context.profile), None)
            if target is None:
                remediation = (
                    f"Use the available profile: {names[0]}"
                    if len(profiles) == 1
                    else f"Use one of the available profiles: {', '.join(names)}"
                )
                return CheckResult(
                    CheckStatus.FAIL,
                    f"Target profile '{context.profile}' not found",
                    details={
                        "targetProfile": context.profile,
                        "availableProfiles": len(profiles),
                        "profileNames": names,
                    },
                    remediation=remediation,
                )
            return self._validate_target(target, active, len(profiles), len(valid))

        if len(profiles) == 1:
            only = profiles[0]
            return CheckResult(
                CheckStatus.PASS,
                f"Single profile '{only.name}' is configured and accessible",
                details={
                    "availableProfiles": 1,
                    "currentActiveProfile": active,
                    "profileName": only.name,
                    "profileType": only.type,
                    "credentialsValid": only.credentials_valid,
                },
            )

        if not invalid:
            return CheckResult(
                CheckStatus.PASS,
                f"All {len(profiles)} profiles are configured and accessible for switching",
                details={
                    "availableProfiles": len(profiles),
                    "validProfiles": len(valid),
                    "invalidProfiles": 0,
                    "currentActiveProfile": active,
                    "profileNames": names,
                },
            )

        if not valid:
            return CheckResult(
                CheckStatus.FAIL,
                "No profiles have valid credentials for switching",
                details={
                    "availableProfiles": len(profiles),
                    "validProfiles": 0,
                    "invalidProfiles": len(invalid),
                    "invalidProfileNames": [p.name for p in invalid],
                },
                remediation="Authenticate profiles using 'aws sso login' or verify credential configuration",
            )

        return CheckResult(
            CheckStatus.WARN,
            f"{len(invalid)} of {len(profiles)} profiles have credential issues",
            details={
                "availableProfiles": len(profiles),
                "validProfiles": len(valid),
                "invalidProfiles": len(invalid),
                "validProfileNames": [p.name for p in valid],
                "invalidProfileNames": [p.name for p in invalid],
                "currentActiveProfile": active,
            },
            remediation="Fix credential issues for invalid profiles to enable full switching capability",
        )

    @staticmethod
    def _validate_target(
        target: ProfileInfo, active: str | None, available: int, valid_count: int
    ) -> CheckResult:
        if not target.credentials_valid:
            return CheckResult(
                CheckStatus.FAIL,
                f"Target profile '{target.name}' has invalid credentials",
                details={
                    "targetProfile": target.name,
                    "profileType": target.type,
                    "credentialsValid": False,
                    "currentActiveProfile": active,
                },
                remediation=_login_remediation(target, target.name),
            )

        details = {
            "targetProfile": target.name,
            "profileType": target.type,
            "credentialsValid": True,
            "currentActiveProfile": active,
            "availableProfiles": available,
        }
        if available > 1:
            details["validProfiles"] = valid_count
        return CheckResult(
            CheckStatus.PASS,
            f"Profile switching to '{target.name}' is available",
            details=details,
        )
