"""
config.py
=========
Explicit configuration for a doctor run. The process environment is read once,
in DoctorConfig.from_env, and the resulting value is passed to every service
and check that needs a path, region or threshold.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_NETWORK_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_TOKEN_EXPIRY_WARNING = 15 * 60
DEFAULT_TEMP_FILE_MAX_AGE_DAYS = 30


@dataclass(frozen=True)
class DoctorConfig:
    home: Path
    config_file: Path
    credentials_file: Path
    sso_cache_dir: Path
    cli_cache_dir: Path
    backup_dir: Path
    region: str | None = None
    active_profile: str = "default"
    network_timeout: float = DEFAULT_NETWORK_TIMEOUT  # seconds
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    show_progress: bool = True
    incomplete_profile_threshold: float = 0.5
    token_expiry_warning: float = DEFAULT_TOKEN_EXPIRY_WARNING  # seconds
    temp_file_max_age_days: int = DEFAULT_TEMP_FILE_MAX_AGE_DAYS
    min_python_version: tuple[int, int] = field(default=(3, 10))

    @property
    def aws_dir(self) -> Path:
        return self.home / ".aws"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        home: Path | None = None,
        **overrides,
    ) -> "DoctorConfig":
        """Build a config from AWS_* environment variables and the home directory."""
        env = os.environ if environ is None else environ
        home = Path(home) if home is not None else Path.home()
        aws_dir = home / ".aws"

        values = dict(
            home=home,
            config_file=Path(env.get("AWS_CONFIG_FILE") or aws_dir / "config").expanduser(),
            credentials_file=Path(
                env.get("AWS_SHARED_CREDENTIALS_FILE") or aws_dir / "credentials"
            ).expanduser(),
            sso_cache_dir=aws_dir / "sso" / "cache",
            cli_cache_dir=aws_dir / "cli" / "cache",
            backup_dir=aws_dir / "backups",
            region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or None,
            active_profile=env.get("AWS_PROFILE") or env.get("AWS_DEFAULT_PROFILE") or "default",
            show_progress=not env.get("CI"),
        )
        values.update(overrides)
        return cls(**values)
