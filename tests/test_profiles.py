"""
test_profiles.py
================
Unit tests for profile discovery, DoctorConfig.from_env and the auth/credential
services built on top of them.
"""

from unittest.mock import MagicMock, patch

import pytest
from moto import mock_aws

from doctor.auth import AuthService
from doctor.config import DoctorConfig
from doctor.credentials import CredentialService
from doctor.errors import CredentialError, ProfileError
from doctor.profiles import AwsProfileConfig, ProfileManager

CONFIG = """\
[default]
region = us-east-1

[profile dev]
sso_session = corp
sso_account_id = 111122223333
sso_role_name = Developer

[profile admin]
role_arn = arn:aws:iam::123456789012:role/Admin
source_profile = default

[sso-session corp]
sso_start_url = https://corp.awsapps.com/start
sso_region = eu-west-1

[plugins]
cli_legacy_plugin_path = /opt/plugins
"""

CREDENTIALS = """\
[default]
aws_access_key_id = AKIADEFAULT
aws_secret_access_key = secret

[ci]
aws_access_key_id = AKIACI
aws_secret_access_key = secret
"""


@pytest.fixture
def profiles(config):
    config.config_file.write_text(CONFIG)
    config.credentials_file.write_text(CREDENTIALS)
    return ProfileManager(config)


# ── DoctorConfig ──────────────────────────────────────────────────────────────

def test_from_env_defaults(tmp_path):
    config = DoctorConfig.from_env(environ={}, home=tmp_path)

    assert config.config_file == tmp_path / ".aws" / "config"
    assert config.credentials_file == tmp_path / ".aws" / "credentials"
    assert config.sso_cache_dir == tmp_path / ".aws" / "sso" / "cache"
    assert config.backup_dir == tmp_path / ".aws" / "backups"
    assert config.active_profile == "default"
    assert config.region is None
    assert config.show_progress


def test_from_env_reads_aws_variables(tmp_path):
    config = DoctorConfig.from_env(
        environ={
            "AWS_CONFIG_FILE": str(tmp_path / "alt-config"),
            "AWS_SHARED_CREDENTIALS_FILE": str(tmp_path / "alt-creds"),
            "AWS_DEFAULT_REGION": "eu-west-1",
            "AWS_PROFILE": "prod",
            "CI": "true",
        },
        home=tmp_path,
    )

    assert config.config_file == tmp_path / "alt-config"
    assert config.credentials_file == tmp_path / "alt-creds"
    assert config.region == "eu-west-1"
    assert config.active_profile == "prod"
    assert not config.show_progress


def test_from_env_overrides(tmp_path):
    config = DoctorConfig.from_env(environ={"AWS_REGION": "us-west-2"}, home=tmp_path, max_concurrency=2)
    assert config.region == "us-west-2"
    assert config.max_concurrency == 2


# ── Discovery ─────────────────────────────────────────────────────────────────

def test_discovers_profiles_from_both_files(profiles):
    names = [p.name for p in profiles.discover_profiles()]
    assert names == ["default", "dev", "admin", "ci"]


def test_default_profile_merges_config_and_credentials(profiles):
    default = profiles.get_profile("default")

    assert default.region == "us-east-1"
    assert default.aws_access_key_id == "AKIADEFAULT"
    assert default.in_config and default.in_credentials


def test_sso_session_is_resolved(profiles):
    dev = profiles.get_profile("dev")

    assert dev.is_sso
    assert dev.sso_start_url == "https://corp.awsapps.com/start"
    assert dev.sso_region == "eu-west-1"


def test_missing_files_yield_no_profiles(config):
    assert ProfileManager(config).discover_profiles() == []


def test_malformed_file_raises_profile_error(config):
    config.config_file.write_text("region = us-east-1\n[default]\n")
    with pytest.raises(ProfileError):
        ProfileManager(config).discover_profiles()


def test_profile_exists(profiles):
    assert profiles.profile_exists("ci")
    assert not profiles.profile_exists("plugins")


@pytest.mark.parametrize(
    "profile,expected",
    [
        (AwsProfileConfig("a", sso_start_url="https://x"), "sso"),
        (AwsProfileConfig("b", role_arn="arn:aws:iam::1:role/r"), "assume-role"),
        (AwsProfileConfig("c", credential_process="/bin/creds"), "credential-process"),
        (AwsProfileConfig("d", aws_access_key_id="AKIA"), "iam"),
        (AwsProfileConfig("e"), "credentials"),
    ],
)
def test_profile_type(profile, expected):
    assert ProfileManager.get_profile_type(profile) == expected


# ── Credentials and auth status ───────────────────────────────────────────────

def validate_only(*valid):
    def validate(name, region=None):
        if name not in valid:
            raise CredentialError(f"invalid credentials for {name}", error_code="InvalidClientTokenId")

    return validate


@mock_aws
def test_validate_credentials_against_moto(config):
    identity = CredentialService(config).validate_credentials()
    assert identity.account == "123456789012"


@mock_aws
def test_validate_credentials_unknown_profile(config):
    with pytest.raises(CredentialError) as exc:
        CredentialService(config).validate_credentials("ghost")
    assert exc.value.error_code == "ProfileNotFound"


@patch("doctor.auth.shutil.which", return_value=None)
def test_auth_status_for_all_profiles(mock_which, profiles, config):
    credentials = MagicMock(spec=CredentialService)
    credentials.get_active_profile.return_value = "default"
    credentials.validate_credentials.side_effect = validate_only("default", "ci")
    tokens = MagicMock()
    tokens.get_token_status.return_value = MagicMock(expires_at=None)

    status = AuthService(profiles, tokens, credentials).get_status(all_profiles=True)

    assert status.authenticated
    assert not status.aws_cli_installed
    by_name = {p.name: p for p in status.profiles}
    assert by_name["default"].credentials_valid and by_name["default"].active
    assert not by_name["dev"].credentials_valid
    assert by_name["dev"].type == "sso"
    assert by_name["admin"].type == "assume-role"
    tokens.get_token_status.assert_called_once_with("dev", "https://corp.awsapps.com/start")


def test_list_profiles_makes_no_aws_calls(profiles):
    credentials = MagicMock(spec=CredentialService)
    credentials.get_active_profile.return_value = "ci"

    listed = AuthService(profiles, MagicMock(), credentials).list_profiles()

    assert [p.name for p in listed if p.active] == ["ci"]
    assert [p.name for p in listed if p.type == "sso"] == ["dev"]
    credentials.validate_credentials.assert_not_called()


@patch("doctor.auth.shutil.which", return_value=None)
def test_auth_status_with_unparseable_config_has_no_profiles(mock_which, config):
    config.config_file.write_text("region = us-east-1\n[default]\n")
    credentials = MagicMock(spec=CredentialService)
    credentials.get_active_profile.return_value = "default"

    status = AuthService(ProfileManager(config), MagicMock(), credentials).get_status(all_profiles=True)

    assert status.profiles == []
    assert not status.authenticated
    credentials.validate_credentials.assert_not_called()
