"""
checks_connectivity.py
======================
Connectivity stage: live calls against AWS using the target profile.

  sts-credential        STS GetCallerIdentity, with failures classified
  service-endpoint      S3 ListBuckets; an AWS error response still proves the
                        endpoint is reachable
  region-accessibility  STS in the resolved region plus a region-name sanity check
"""

import logging
import re
import time

from botocore.exceptions import BotoCoreError, ClientError

from doctor.config import DoctorConfig
from doctor.credentials import DEFAULT_REGION, CredentialService
from doctor.errors import CredentialError, ProfileError
from doctor.models import CheckResult, CheckStage, CheckStatus, DoctorContext
from doctor.profiles import ProfileManager

logger = logging.getLogger(__name__)

REGIONS_DOCS_URL = "https://docs.aws.amazon.com/general/latest/gr/rande.html"

ACCESS_DENIED_CODES = {"AccessDenied", "AccessDeniedException", "UnauthorizedOperation"}
EXPIRED_TOKEN_CODES = {"ExpiredToken", "ExpiredTokenException", "TokenRefreshRequired"}
INVALID_REGION_CODES = {"InvalidRegionError", "UnrecognizedClientException"}


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


class StsCredentialCheck:
    id = "sts-credential"
    name = "STS Credential Connectivity"
    description = "Validates AWS credential connectivity using STS GetCallerIdentity"
    stage = CheckStage.CONNECTIVITY

    def __init__(self, credential_service: CredentialService) -> None:
        self.credential_service = credential_service
        self.timeout = credential_service.config.network_timeout

    def execute(self, context: DoctorContext) -> CheckResult:
        start = time.perf_counter()
        try:
            identity = self.credential_service.validate_credentials(context.profile)
        except CredentialError as e:
            return self.classify_error(e, context)

        return CheckResult(
            CheckStatus.PASS,
            f"STS connectivity successful for account {identity.account}",
            details={
                "account": identity.account,
                "userId": identity.user_id,
                "arn": identity.arn,
                "profile": identity.profile or context.profile,
                "responseTime": _elapsed_ms(start),
                "timeoutSeconds": self.timeout,
            },
        )

    def classify_error(self, error: CredentialError, context: DoctorContext) -> CheckResult:
        code = error.error_code or ""
        profile = context.profile

        if code == "Timeout":
            return CheckResult(
                CheckStatus.FAIL,
                f"STS call timed out after {self.timeout:g}s",
                details={"error": "Timeout", "timeoutSeconds": self.timeout, "profile": profile},
                remediation="Check network connectivity and AWS service status. Consider using a different region.",
            )
        if code in ACCESS_DENIED_CODES:
            return CheckResult(
                CheckStatus.FAIL,
                "STS access denied - insufficient permissions",
                details={"error": "Access denied", "profile": profile},
                remediation="Verify credential permissions and IAM policies allow STS:GetCallerIdentity",
            )
        if code in EXPIRED_TOKEN_CODES:
            return CheckResult(
                CheckStatus.FAIL,
                "STS authentication failed - expired credentials",
                details={"error": "Expired credentials", "profile": profile},
                remediation=(
                    f"Run 'aws sso login --profile {profile}' to refresh credentials"
                    if profile
                    else "Refresh your AWS credentials"
                ),
            )
        if code == "NetworkingError":
            return CheckResult(
                CheckStatus.FAIL,
                "STS network connectivity failed",
                details={"error": "Network error", "profile": profile},
                remediation="Check internet connectivity and DNS resolution for AWS endpoints",
            )
        if code == "NoCredentials":
            return CheckResult(
                CheckStatus.FAIL,
                "No AWS credentials available for STS call",
                details={"error": "No credentials", "profile": profile},
                remediation="Configure credentials with 'aws configure' or 'aws sso login'",
            )

        return CheckResult(
            CheckStatus.FAIL,
            f"STS connectivity failed: {error}",
            details={"error": str(error), "errorCode": code or None, "profile": profile},
            remediation="Check credential configuration and network connectivity",
        )


class ServiceEndpointCheck:
    id = "service-endpoint"
    name = "Service Endpoint Connectivity"
    description = "Tests AWS service endpoint connectivity and responsiveness"
    stage = CheckStage.CONNECTIVITY

    def __init__(self, credential_service: CredentialService) -> None:
        self.credential_service = credential_service

    def execute(self, context: DoctorContext) -> CheckResult:
        endpoint_tests = [("S3", self._test_s3)]

        results = []
        for service, test in endpoint_tests:
            start = time.perf_counter()
            try:
                test(context)
            except (BotoCoreError, CredentialError) as e:
                logger.debug("%s endpoint unreachable: %s", service, e)
                results.append(
                    {"service": service, "status": "failed", "responseTime": _elapsed_ms(start), "error": str(e)}
                )
            else:
                results.append({"service": service, "status": "success", "responseTime": _elapsed_ms(start)})

        succeeded = [r for r in results if r["status"] == "success"]
        failed = [r for r in results if r["status"] == "failed"]

        if not failed:
            average = round(sum(r["responseTime"] for r in succeeded) / len(succeeded))
            return CheckResult(
                CheckStatus.PASS,
                f"All {len(results)} service endpoints are accessible",
                details={
                    "successfulServices": len(succeeded),
                    "failedServices": 0,
                    "averageResponseTime": average,
                    "serviceResults": results,
                },
            )

        if not succeeded:
            return CheckResult(
                CheckStatus.FAIL,
                "No service endpoints are accessible",
                details={"successfulServices": 0, "failedServices": len(failed), "serviceResults": results},
                remediation="Check network connectivity, firewall settings, and AWS service status",
            )

        return CheckResult(
            CheckStatus.WARN,
            f"{len(failed)} of {len(results)} service endpoints are not accessible",
            details={
                "successfulServices": len(succeeded),
                "failedServices": len(failed),
                "serviceResults": results,
            },
            remediation="Check network connectivity for failed services and verify service-specific configurations",
        )

    def _test_s3(self, context: DoctorContext) -> None:
        s3 = self.credential_service.client("s3", context.profile, DEFAULT_REGION)
        try:
            s3.list_buckets()
        except ClientError as e:
            # AccessDenied and friends come back from a live endpoint.
            logger.debug("S3 answered with %s", e.response.get("Error", {}).get("Code"))


class RegionAccessibilityCheck:
    id = "region-accessibility"
    name = "Region Accessibility"
    description = "Validates AWS region accessibility and configuration"
    stage = CheckStage.CONNECTIVITY

    def __init__(
        self,
        credential_service: CredentialService,
        config: DoctorConfig,
        profile_manager: ProfileManager | None = None,
    ) -> None:
        self.credential_service = credential_service
        self.config = config
        self.profile_manager = profile_manager

    def determine_region(self, context: DoctorContext) -> str:
        if self.profile_manager is not None:
            try:
                profile = self.profile_manager.get_profile(context.profile or self.config.active_profile)
            except ProfileError as e:
                logger.debug("Falling back from profile region: %s", e)
                profile = None
            if profile is not None and profile.region:
                return profile.region
        return self.config.region or DEFAULT_REGION

    @staticmethod
    def validate_region_format(region: str) -> list[str]:
        issues = []
        if not re.fullmatch(r"[a-z0-9-]+", region):
            issues.append(
                "Region contains invalid characters (only lowercase letters, numbers, and hyphens allowed)"
            )
        if not re.fullmatch(r"[a-z]+(-[a-z]+)+-\d+", region):
            issues.append("Region does not match typical AWS format (e.g., us-east-1, eu-west-2)")
        if not 5 <= len(region) <= 20:
            issues.append("Region length is outside typical range (5-20 characters)")
        return issues

    def execute(self, context: DoctorContext) -> CheckResult:
        region = self.determine_region(context)
        start = time.perf_counter()
        try:
            self.credential_service.validate_credentials(context.profile, region)
        except CredentialError as e:
            return self._failure(region, e)
        response_time = _elapsed_ms(start)

        issues = self.validate_region_format(region)
        if issues:
            return CheckResult(
                CheckStatus.WARN,
                f"Region '{region}' has non-standard format",
                details={"configuredRegion": region, "responseTime": response_time, "formatIssues": issues},
                remediation="Verify region name matches AWS region format (e.g., us-east-1, eu-west-1)",
            )

        return CheckResult(
            CheckStatus.PASS,
            f"Region '{region}' is accessible and responsive",
            details={
                "configuredRegion": region,
                "responseTime": response_time,
                "timeoutSeconds": self.config.network_timeout,
                "profile": context.profile,
            },
        )

    def _failure(self, region: str, error: CredentialError) -> CheckResult:
        code = error.error_code or ""
        if code == "Timeout":
            return CheckResult(
                CheckStatus.FAIL,
                f"Region '{region}' accessibility test timed out",
                details={"configuredRegion": region, "error": "Timeout", "timeoutSeconds": self.config.network_timeout},
                remediation="Check network connectivity to AWS region endpoints or try a different region",
            )
        if code in INVALID_REGION_CODES:
            return CheckResult(
                CheckStatus.FAIL,
                f"Region '{region}' is not recognized or unavailable",
                details={"configuredRegion": region, "error": "Invalid region"},
                remediation=f"Configure a valid AWS region. See {REGIONS_DOCS_URL} for available regions",
            )
        if code == "NetworkingError":
            return CheckResult(
                CheckStatus.FAIL,
                f"Network connectivity failed for region '{region}'",
                details={"configuredRegion": region, "error": "Network error"},
                remediation="Check internet connectivity and DNS resolution for AWS regional endpoints",
            )
        return CheckResult(
            CheckStatus.FAIL,
            f"Region '{region}' accessibility failed: {error}",
            details={"configuredRegion": region, "error": str(error)},
            remediation="Verify region configuration and network connectivity",
        )
