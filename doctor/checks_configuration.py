"""
checks_configuration.py
=======================
Configuration stage: the shared config file, profile completeness and the
credentials file. The two files are scanned line by line so that a malformed
line is reported with its number instead of aborting the parse.
"""

from dataclasses import dataclass, field
from pathlib import Path

from doctor.config import DoctorConfig
from doctor.errors import CheckExecutionError, ProfileError
from doctor.models import CheckResult, CheckStage, CheckStatus, DoctorContext
from doctor.profiles import AwsProfileConfig, ProfileManager

CONFIG_DOCS_URL = "https://docs.aws.amazon.com/cli/latest/userguide/cli-configure-files.html"


@dataclass
class SyntaxReport:
    sections: int = 0
    issues: list[str] = field(default_factory=list)
    keys_by_section: dict[str, set[str]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.issues


def _is_section(line: str) -> bool:
    return line.startswith("[") and line.endswith("]")


def _is_comment(line: str) -> bool:
    return not line or line.startswith(("#", ";"))


def _split_pair(line: str) -> tuple[str, str]:
    key, _, value = line.partition("=")
    return key.strip(), value.strip()


def _opens_nested_block(lines: list[str], index: int) -> bool:
    """True when the line after `index` is indented, as in "s3 =" sub-sections."""
    following = next((l for l in lines[index + 1 :] if l.strip()), "")
    return following[:1] in (" ", "\t")


def validate_config_syntax(content: str) -> SyntaxReport:
    report = SyntaxReport()
    has_profile_section = False
    current: str | None = None
    lines = content.splitlines()

    for index, raw in enumerate(lines):
        number = index + 1
        line = raw.strip()
        if _is_comment(line):
            continue
        if _is_section(line):
            report.sections += 1
            current = line[1:-1].strip()
            if current in report.keys_by_section:
                report.issues.append(f"Line {number}: Duplicate section [{current}]")
            report.keys_by_section.setdefault(current, set())
            if line == "[default]" or line.startswith("[profile "):
                has_profile_section = True
            continue
        if "=" in line:
            key, value = _split_pair(line)
            if not key or (not value and not _opens_nested_block(lines, index)):
                report.issues.append(f"Line {number}: Invalid key-value pair format")
            elif current is None:
                report.issues.append(f"Line {number}: Key-value pair outside of a section")
            elif raw[:1] not in (" ", "\t"):
                # indented keys belong to a nested block such as "s3 ="
                keys = report.keys_by_section[current]
                if key in keys:
                    report.issues.append(f"Line {number}: Duplicate key '{key}' in [{current}]")
                keys.add(key)
            continue
        report.issues.append(f"Line {number}: Unrecognized line format")

    if report.sections > 0 and not has_profile_section:
        report.issues.append("No valid profile sections found")
    return report


def validate_credentials_structure(content: str) -> SyntaxReport:
    report = SyntaxReport()
    current = ""

    for number, raw in enumerate(content.splitlines(), start=1):
        line = raw.strip()
        if _is_comment(line):
            continue
        if _is_section(line):
            report.sections += 1
            current = line[1:-1].strip()
            report.keys_by_section[current] = set()
            continue
        if "=" in line:
            key, value = _split_pair(line)
            if not key or not value:
                report.issues.append(f"Line {number}: Invalid credential format")
            elif not current:
                report.issues.append(f"Line {number}: Credential outside of profile section")
            else:
                report.keys_by_section[current].add(key)
            continue
        report.issues.append(f"Line {number}: Unrecognized line format")

    for name, keys in report.keys_by_section.items():
        if "aws_access_key_id" in keys and "aws_secret_access_key" not in keys:
            report.issues.append(f"Profile '{name}': Missing aws_secret_access_key")
        if "aws_secret_access_key" in keys and "aws_access_key_id" not in keys:
            report.issues.append(f"Profile '{name}': Missing aws_access_key_id")
    return report


def _read_text(path: Path, check_id: str, stage: CheckStage) -> str:
    """Read a file, letting FileNotFoundError/PermissionError through for the caller to map."""
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, PermissionError):
        raise
    except (OSError, UnicodeDecodeError) as e:
        raise CheckExecutionError(
            f"Failed to read {path}: {e}", check_id=check_id, stage=stage.value
        ) from e


# ── Checks ────────────────────────────────────────────────────────────────────


class ConfigFileExistsCheck:
    id = "config-file-exists"
    name = "AWS Config File"
    description = "Verifies AWS config file exists and is accessible"
    stage = CheckStage.CONFIGURATION

    def __init__(self, config: DoctorConfig) -> None:
        self.config = config

    def execute(self, context: DoctorContext) -> CheckResult:
        path = self.config.config_file
        try:
            content = _read_text(path, self.id, self.stage)
        except FileNotFoundError:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS config file not found",
                details={"configFilePath": str(path)},
                remediation=f"Run 'aws configure' or create the AWS config file manually. See {CONFIG_DOCS_URL}",
            )
        except PermissionError:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS config file exists but is not accessible",
                details={"configFilePath": str(path), "error": "Permission denied"},
                remediation="Check file permissions. Expected readable by current user.",
            )

        report = validate_config_syntax(content)
        if report.is_valid:
            return CheckResult(
                CheckStatus.PASS,
                "AWS config file is accessible and properly formatted",
                details={
                    "configFilePath": str(path),
                    "fileSize": len(content),
                    "sectionsCount": report.sections,
                },
            )

        return CheckResult(
            CheckStatus.WARN,
            "AWS config file has potential syntax issues",
            details={"configFilePath": str(path), "fileSize": len(content), "syntaxIssues": report.issues},
            remediation="Review AWS config file syntax. Use 'aws configure' to recreate if needed.",
        )


class ProfileValidationCheck:
    id = "profile-validation"
    name = "Profile Validation"
    description = "Validates AWS profile completeness and configuration"
    stage = CheckStage.CONFIGURATION

    def __init__(self, config: DoctorConfig, profile_manager: ProfileManager) -> None:
        self.threshold = config.incomplete_profile_threshold
        self.profile_manager = profile_manager

    def execute(self, context: DoctorContext) -> CheckResult:
        try:
            profiles = self.profile_manager.discover_profiles()
        except ProfileError as e:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS profile files could not be parsed",
                details={"filePath": e.metadata.get("path"), "parseError": str(e)},
                remediation=(
                    "Fix the reported line in the AWS config or credentials file "
                    f"(each key once per section, every key inside a [section]). See {CONFIG_DOCS_URL}"
                ),
            )

        if not profiles:
            return CheckResult(
                CheckStatus.FAIL,
                "No AWS profiles found",
                details={"profilesFound": 0, "configuredProfiles": []},
                remediation="Configure AWS profiles using 'aws configure' or 'aws configure sso'",
            )

        names = [p.name for p in profiles]
        if context.profile and context.profile not in names:
            return CheckResult(
                CheckStatus.FAIL,
                f"Target profile '{context.profile}' not found",
                details={
                    "targetProfile": context.profile,
                    "availableProfiles": names,
                    "profilesFound": len(profiles),
                },
                remediation=f"Configure profile '{context.profile}' or use an existing profile",
            )

        issues = {p.name: self.profile_issues(p) for p in profiles}
        incomplete = [name for name, found in issues.items() if found]

        if not incomplete:
            return CheckResult(
                CheckStatus.PASS,
                f"{len(profiles)} AWS profiles found and properly configured",
                details={
                    "profilesFound": len(profiles),
                    "configuredProfiles": names,
                    "targetProfile": context.profile,
                },
            )

        status = (
            CheckStatus.FAIL
            if len(incomplete) / len(profiles) > self.threshold
            else CheckStatus.WARN
        )
        return CheckResult(
            status,
            f"{len(incomplete)} profiles have configuration issues",
            details={
                "profilesFound": len(profiles),
                "incompleteProfiles": incomplete,
                "profileIssues": [{"profile": n, "issues": issues[n]} for n in incomplete],
            },
            remediation="Review profile configurations and use 'aws configure' to fix incomplete profiles",
        )

    @staticmethod
    def profile_issues(profile: AwsProfileConfig) -> list[str]:
        issues = []
        if not profile.region:
            issues.append("Missing region configuration")

        if profile.is_sso:
            if not profile.sso_start_url:
                issues.append("Incomplete SSO configuration - missing start URL")
            if not profile.sso_account_id:
                issues.append("SSO profile missing account ID")
            if not profile.sso_role_name:
                issues.append("SSO profile missing role name")
        elif not (
            profile.aws_access_key_id
            or profile.source_profile
            or profile.credential_source
            or profile.credential_process
        ):
            issues.append("Missing credentials - no access key or source profile")
        return issues


class CredentialsFileCheck:
    id = "credentials-file"
    name = "AWS Credentials File"
    description = "Verifies AWS credentials file structure and accessibility"
    stage = CheckStage.CONFIGURATION

    def __init__(self, config: DoctorConfig) -> None:
        self.config = config

    def execute(self, context: DoctorContext) -> CheckResult:
        path = self.config.credentials_file
        try:
            content = _read_text(path, self.id, self.stage)
        except FileNotFoundError:
            # Optional for SSO-only setups.
            return CheckResult(
                CheckStatus.WARN,
                "AWS credentials file not found (may be acceptable for SSO-only configuration)",
                details={"credentialsFilePath": str(path)},
                remediation="For SSO profiles, credentials file is optional. For access key profiles, run 'aws configure'.",
            )
        except PermissionError:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS credentials file exists but is not accessible",
                details={"credentialsFilePath": str(path), "error": "Permission denied"},
                remediation="Check file permissions. Credentials file should be readable by current user only.",
            )

        report = validate_credentials_structure(content)
        details = {
            "credentialsFilePath": str(path),
            "fileSize": len(content),
            "profilesFound": report.sections,
        }
        if report.is_valid:
            return CheckResult(
                CheckStatus.PASS,
                "AWS credentials file is accessible and properly structured",
                details=details,
            )

        return CheckResult(
            CheckStatus.WARN,
            "AWS credentials file has structural issues",
            details={**details, "structureIssues": report.issues},
            remediation="Review credentials file format. Consider using 'aws configure' to recreate profiles.",
        )
