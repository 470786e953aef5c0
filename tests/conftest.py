"""
conftest.py
===========
Shared fixtures: an isolated ~/.aws under tmp_path and stub checks for the
registry and orchestrator tests.
"""

import pytest

from doctor.config import DoctorConfig
from doctor.models import CheckResult, CheckStage, CheckStatus

AWS_ENV_VARS = (
    "AWS_PROFILE",
    "AWS_DEFAULT_PROFILE",
    "AWS_CONFIG_FILE",
    "AWS_SHARED_CREDENTIALS_FILE",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
)


@pytest.fixture(autouse=True)
def clean_aws_env(monkeypatch):
    for var in AWS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def aws_home(tmp_path):
    (tmp_path / ".aws").mkdir()
    return tmp_path


@pytest.fixture
def config(aws_home):
    return DoctorConfig.from_env(environ={}, home=aws_home, show_progress=False)


class StubCheck:
    def __init__(self, check_id, stage, status=CheckStatus.PASS, error=None, log=None):
        self.id = check_id
        self.name = f"Stub {check_id}"
        self.description = f"Stub check {check_id}"
        self.stage = stage
        self.status = status
        self.error = error
        self.log = log if log is not None else []
        self.calls = 0

    def execute(self, context):
        self.calls += 1
        self.log.append(self.id)
        if self.error is not None:
            raise self.error
        return CheckResult(self.status, f"{self.id} {self.status.value}")


@pytest.fixture
def make_check():
    def factory(check_id, stage=CheckStage.ENVIRONMENT, status=CheckStatus.PASS, **kwargs):
        return StubCheck(check_id, CheckStage(stage), status, **kwargs)

    return factory
