"""
checks_environment.py
=====================
Environment stage: interpreter version, AWS CLI v2 availability and the
Python packages the toolkit imports. A failure here stops the pipeline.
"""

import importlib.util
import re
import subprocess
import sys

from doctor.config import DoctorConfig
from doctor.models import CheckResult, CheckStage, CheckStatus, DoctorContext

AWS_CLI_INSTALL_URL = (
    "https://docs.aws.amazon.com/cli/latest/userguide/getting-started-install.html"
)
CORE_DEPENDENCIES = ("boto3", "botocore", "typer", "rich")


class PythonVersionCheck:
    id = "python-version"
    name = "Python Version"
    description = "Validates the Python interpreter meets the minimum supported version"
    stage = CheckStage.ENVIRONMENT

    def __init__(self, config: DoctorConfig, version_info: tuple[int, ...] | None = None) -> None:
        self.minimum = config.min_python_version
        self.version_info = tuple(version_info or sys.version_info[:3])

    def execute(self, context: DoctorContext) -> CheckResult:
        current = ".".join(str(p) for p in self.version_info)
        required = ".".join(str(p) for p in self.minimum)
        details = {"currentVersion": current, "minimumRequired": required}

        if self.version_info[: len(self.minimum)] >= self.minimum:
            return CheckResult(
                CheckStatus.PASS, f"Python {current} meets requirements", details=details
            )

        return CheckResult(
            CheckStatus.FAIL,
            f"Python {current} is below minimum required {required}",
            details=details,
            remediation=f"Upgrade Python to {required} or newer. See https://www.python.org/downloads/",
        )


class AwsCliInstallationCheck:
    id = "aws-cli-installation"
    name = "AWS CLI Installation"
    description = "Verifies AWS CLI v2 installation and accessibility"
    stage = CheckStage.ENVIRONMENT

    timeout = 10

    def execute(self, context: DoctorContext) -> CheckResult:
        command = "aws --version"
        try:
            proc = subprocess.run(
                ["aws", "--version"], capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS CLI command timed out - installation may be corrupted",
                remediation="Reinstall AWS CLI v2 or check system performance",
            )
        except FileNotFoundError:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS CLI is not installed or not accessible in PATH",
                details={"command": command},
                remediation=f"Install AWS CLI v2 from {AWS_CLI_INSTALL_URL}",
            )

        output = proc.stdout or proc.stderr
        if proc.returncode != 0 or not output:
            return CheckResult(
                CheckStatus.FAIL,
                "AWS CLI is not installed or not accessible in PATH",
                details={"exitCode": proc.returncode, "stderr": proc.stderr, "command": command},
                remediation=f"Install AWS CLI v2 from {AWS_CLI_INSTALL_URL}",
            )

        # aws-cli/2.15.0 Python/3.11.6 Linux/6.5.0 exe/x86_64
        match = re.search(r"aws-cli/(\d+)\.(\d+)\.(\d+)", output)
        if not match:
            raise ValueError(f"Unable to parse AWS CLI version from: {output.strip()}")

        version = ".".join(match.groups())
        major = int(match.group(1))
        if major >= 2:
            return CheckResult(
                CheckStatus.PASS,
                f"AWS CLI {version} is installed and accessible",
                details={"version": version, "majorVersion": major, "command": command},
            )

        return CheckResult(
            CheckStatus.FAIL,
            f"AWS CLI {version} detected, but version 2.x is required",
            details={"version": version, "majorVersion": major, "requiredMajorVersion": 2},
            remediation=f"Install AWS CLI v2 from {AWS_CLI_INSTALL_URL}",
        )


class PythonDependenciesCheck:
    id = "python-dependencies"
    name = "Python Dependencies"
    description = "Verifies the core Python packages are installed and importable"
    stage = CheckStage.ENVIRONMENT

    def __init__(self, dependencies: tuple[str, ...] = CORE_DEPENDENCIES) -> None:
        self.dependencies = dependencies

    def execute(self, context: DoctorContext) -> CheckResult:
        missing = [dep for dep in self.dependencies if importlib.util.find_spec(dep) is None]

        if not missing:
            return CheckResult(
                CheckStatus.PASS,
                "Python dependencies are properly installed",
                details={"interpreter": sys.executable, "dependenciesChecked": len(self.dependencies)},
            )

        status = CheckStatus.FAIL if len(missing) > len(self.dependencies) / 2 else CheckStatus.WARN
        return CheckResult(
            status,
            f"{len(missing)} core dependencies are missing",
            details={
                "interpreter": sys.executable,
                "missingDependencies": missing,
                "totalCoreDependencies": len(self.dependencies),
            },
            remediation="Run 'pip install -e .' to install all dependencies",
        )
