"""
test_auto_repair.py
===================
Unit tests for AutoRepairService against a throwaway ~/.aws under tmp_path.
Prompts are driven by a scripted prompter; AWS CLI invocations are mocked.
"""

import io
import json
import os
import stat
import subprocess
import time
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from doctor.auth import ProfileInfo
from doctor.auto_repair import AutoRepairService
from doctor.models import CheckResult, CheckStatus, DoctorContext
from doctor.profiles import ProfileManager
from doctor.tokens import TokenManager

OLD = time.time() - 60 * 24 * 60 * 60


class ScriptedPrompter:
    def __init__(self, answers=(), selection=None):
        self.answers = list(answers)
        self.selection = selection
        self.confirmations = []
        self.selections = []

    def confirm(self, message):
        self.confirmations.append(message)
        return self.answers.pop(0) if self.answers else False

    def select(self, message, choices):
        self.selections.append((message, list(choices)))
        return self.selection or choices[0]


@pytest.fixture
def token_manager(config):
    return TokenManager(config, ProfileManager(config))


@pytest.fixture
def auth_service():
    service = MagicMock()
    service.list_profiles.return_value = [
        ProfileInfo(name="sso-dev", type="sso", active=False, credentials_valid=False),
        ProfileInfo(name="static", type="iam", active=True, credentials_valid=True),
    ]
    return service


def make_service(config, token_manager, auth_service, prompter=None, dry_run=False):
    return AutoRepairService(
        config,
        token_manager,
        auth_service,
        prompter=prompter or ScriptedPrompter(),
        dry_run=dry_run,
        console=Console(file=io.StringIO()),
    )


def write_token(directory, name, start_url, expires_at, refresh_token=None):
    directory.mkdir(parents=True, exist_ok=True)
    data = {"startUrl": start_url, "accessToken": "token", "expiresAt": expires_at, "region": "us-east-1"}
    if refresh_token:
        data["refreshToken"] = refresh_token
    path = directory / name
    path.write_text(json.dumps(data))
    return path


def messy_home(config):
    """Expired token, stale tmp file and loose permissions; backup dir missing."""
    os.chmod(config.aws_dir, 0o755)
    token = write_token(config.sso_cache_dir, "abc.json", "https://example.awsapps.com/start", "2020-01-01T00:00:00Z")
    config.cli_cache_dir.mkdir(parents=True)
    stale = config.cli_cache_dir / "tmp-old"
    stale.write_text("x")
    os.utime(stale, (OLD, OLD))
    fresh = config.cli_cache_dir / "tmp-new"
    fresh.write_text("x")
    return token, stale, fresh


# ── Safe repairs ──────────────────────────────────────────────────────────────

def test_safe_repairs_fix_everything(config, token_manager, auth_service):
    token, stale, fresh = messy_home(config)
    service = make_service(config, token_manager, auth_service)

    results = service.execute_safe_repairs(DoctorContext(), {})

    messages = [r.message for r in results]
    assert "Cleared 1 expired SSO tokens" in messages
    assert not token.exists()
    assert not stale.exists()
    assert fresh.exists()
    assert config.backup_dir.is_dir()
    assert stat.S_IMODE(config.aws_dir.stat().st_mode) == 0o700


def test_safe_repairs_survive_a_failing_operation(config, token_manager, auth_service):
    messy_home(config)
    service = make_service(config, token_manager, auth_service)

    with patch.object(service, "fix_cache_permissions", side_effect=OSError("chmod denied")):
        results = service.execute_safe_repairs(DoctorContext(), {})

    messages = " ".join(r.message for r in results)
    assert "expired SSO tokens" in messages
    assert "missing directories" in messages
    assert "permissions" not in messages


def test_safe_repairs_survive_token_errors(config, auth_service):
    broken = MagicMock()
    broken.check_token_expiry.side_effect = RuntimeError("cache unreadable")
    service = make_service(config, broken, auth_service)

    results = service.execute_safe_repairs(DoctorContext(), {})

    assert len(results) == 3
    assert all(r.success for r in results)


def test_dry_run_touches_nothing(config, token_manager, auth_service):
    token, stale, _ = messy_home(config)
    service = make_service(config, token_manager, auth_service, dry_run=True)

    with patch("doctor.auto_repair.os.chmod") as chmod, patch("doctor.auto_repair.shutil.copyfileobj") as copy:
        results = service.execute_safe_repairs(DoctorContext(), {})

    chmod.assert_not_called()
    copy.assert_not_called()
    assert token.exists()
    assert stale.exists()
    assert not config.backup_dir.exists()
    assert stat.S_IMODE(config.aws_dir.stat().st_mode) == 0o755

    operations = [op for r in results for op in r.operations]
    assert operations
    assert all(op.startswith("Would ") for op in operations)


def test_refreshable_expired_tokens_are_kept(config, token_manager, auth_service):
    token = write_token(
        config.sso_cache_dir, "r.json", "https://x.awsapps.com/start", "2020-01-01T00:00:00Z", refresh_token="r"
    )
    service = make_service(config, token_manager, auth_service)

    result = service.clear_expired_tokens()

    assert token.exists()
    assert result.operations == []
    assert result.details["keptRefreshable"]


def test_clean_home_reports_nothing_to_do(config, token_manager, auth_service):
    for directory in (config.aws_dir / "cli", config.sso_cache_dir, config.backup_dir):
        directory.mkdir(parents=True, exist_ok=True)
    for directory in (config.aws_dir, config.aws_dir / "cli", config.aws_dir / "sso"):
        os.chmod(directory, 0o700)
    service = make_service(config, token_manager, auth_service)

    assert service.create_missing_directories().message == "All required directories exist"
    assert service.fix_cache_permissions().operations == []
    assert service.clean_orphaned_temp_files().message == "No orphaned temporary files found"
    assert service.clear_expired_tokens().message == "No expired tokens found"


# ── Interactive repairs ───────────────────────────────────────────────────────

def test_only_known_failing_checks_become_opportunities(config, token_manager, auth_service):
    service = make_service(config, token_manager, auth_service)
    results = {
        "sso-token-expiry": CheckResult(CheckStatus.FAIL, "expired"),
        "unrelated-check": CheckResult(CheckStatus.PASS, "fine"),
    }

    opportunities = service.identify_repair_opportunities(results)

    assert [o.id for o in opportunities] == ["refresh-sso-tokens"]
    assert opportunities[0].check_id == "sso-token-expiry"


def test_passing_or_unmapped_checks_offer_nothing(config, token_manager, auth_service):
    service = make_service(config, token_manager, auth_service)
    results = {
        "sso-token-expiry": CheckResult(CheckStatus.PASS, "valid"),
        "sts-credential": CheckResult(CheckStatus.FAIL, "denied"),
    }

    assert service.identify_repair_opportunities(results) == []
    repairs = service.execute_interactive_repairs(DoctorContext(), results)
    assert len(repairs) == 1
    assert repairs[0].message == "No repair opportunities identified"
    assert repairs[0].success


def test_declined_repair_produces_no_result(config, token_manager, auth_service):
    prompter = ScriptedPrompter(answers=[False])
    service = make_service(config, token_manager, auth_service, prompter=prompter)

    with patch("doctor.auto_repair.subprocess.run") as run:
        repairs = service.execute_interactive_repairs(
            DoctorContext(), {"sso-token-expiry": CheckResult(CheckStatus.WARN, "soon")}
        )

    assert repairs == []
    run.assert_not_called()
    assert "Refresh expired SSO tokens" in prompter.confirmations[0]


@patch("doctor.auto_repair.subprocess.run")
def test_accepted_refresh_runs_sso_login(mock_run, config, token_manager, auth_service):
    prompter = ScriptedPrompter(answers=[True], selection="sso-dev")
    service = make_service(config, token_manager, auth_service, prompter=prompter)

    repairs = service.execute_interactive_repairs(
        DoctorContext(), {"sso-token-expiry": CheckResult(CheckStatus.FAIL, "expired")}
    )

    mock_run.assert_called_once_with(["aws", "sso", "login", "--profile", "sso-dev"], check=True)
    assert repairs[0].success
    assert prompter.selections[0][1] == ["sso-dev"]


@patch("doctor.auto_repair.subprocess.run")
def test_failed_repair_is_captured(mock_run, config, token_manager, auth_service):
    mock_run.side_effect = subprocess.CalledProcessError(1, ["aws", "sso", "login"])
    service = make_service(config, token_manager, auth_service, prompter=ScriptedPrompter(answers=[True, True]))

    repairs = service.execute_interactive_repairs(
        DoctorContext(),
        {
            "sso-token-expiry": CheckResult(CheckStatus.FAIL, "expired"),
            "config-file-exists": CheckResult(CheckStatus.FAIL, "missing"),
        },
    )

    assert len(repairs) == 2
    assert not repairs[0].success
    assert repairs[0].message.startswith("Failed to execute repair:")
    assert repairs[0].details == {"operation": "refresh-sso-tokens"}


def test_refresh_without_sso_profiles(config, token_manager):
    auth = MagicMock()
    auth.list_profiles.return_value = [ProfileInfo(name="static", type="iam", active=True, credentials_valid=True)]
    service = make_service(config, token_manager, auth)

    result = service.refresh_sso_tokens()

    assert not result.success
    assert result.message == "No SSO profiles found to refresh"


@patch("doctor.auto_repair.subprocess.run")
def test_create_config_backs_up_existing_file(mock_run, config, token_manager, auth_service):
    config.config_file.write_text("[default]\nregion = us-east-1\n")
    service = make_service(config, token_manager, auth_service, prompter=ScriptedPrompter(answers=[True]))

    result = service.create_config_file()

    assert result.success
    assert result.backup_path is not None
    backup = config.backup_dir / os.path.basename(result.backup_path)
    assert backup.name.startswith("config.backup.")
    assert backup.name.rsplit(".", 1)[1].isdigit()
    assert backup.read_text() == "[default]\nregion = us-east-1\n"
    mock_run.assert_called_once_with(["aws", "configure"], check=True)


@patch("doctor.auto_repair.subprocess.run")
def test_create_config_cancelled_keeps_backup(mock_run, config, token_manager, auth_service):
    config.config_file.write_text("[default]\n")
    service = make_service(config, token_manager, auth_service, prompter=ScriptedPrompter(answers=[False]))

    result = service.create_config_file()

    assert not result.success
    assert result.message == "Configuration setup cancelled by user"
    assert os.path.exists(result.backup_path)
    mock_run.assert_not_called()


@patch("doctor.auto_repair.subprocess.run")
def test_create_config_dry_run(mock_run, config, token_manager, auth_service):
    config.config_file.write_text("[default]\n")
    service = make_service(config, token_manager, auth_service, dry_run=True)

    result = service.create_config_file()

    assert result.backup_path is None
    assert not config.backup_dir.exists()
    assert all(op.startswith("Would ") for op in result.operations)
    mock_run.assert_not_called()


@patch("doctor.auto_repair.time.time", return_value=1767268800.0)
@patch("doctor.auto_repair.subprocess.run")
def test_backups_in_same_millisecond_do_not_overwrite(mock_run, mock_time, config, token_manager, auth_service):
    service = make_service(config, token_manager, auth_service, prompter=ScriptedPrompter(answers=[False, False]))

    config.config_file.write_text("[default]\nregion = us-east-1\n")
    first = service.create_config_file()
    config.config_file.write_text("[default]\nregion = eu-west-1\n")
    second = service.create_config_file()

    assert first.backup_path != second.backup_path
    assert second.backup_path == first.backup_path + ".1"
    with open(first.backup_path) as f:
        assert f.read() == "[default]\nregion = us-east-1\n"
    with open(second.backup_path) as f:
        assert f.read() == "[default]\nregion = eu-west-1\n"
