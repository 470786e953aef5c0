"""
credentials.py
==============
boto3 sessions bound to the configured config/credentials files, plus STS
GetCallerIdentity as the end-to-end credential test.
"""

import logging
from dataclasses import dataclass
from typing import Any

import boto3
import botocore.session
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
    TokenRetrievalError,
    UnauthorizedSSOTokenError,
)

from doctor.config import DoctorConfig
from doctor.errors import CredentialError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


@dataclass
class CallerIdentity:
    account: str
    user_id: str
    arn: str
    profile: str | None = None


class CredentialService:
    def __init__(self, config: DoctorConfig) -> None:
        self.config = config
        self._client_config = Config(
            connect_timeout=config.network_timeout,
            read_timeout=config.network_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        )

    def get_active_profile(self) -> str:
        return self.config.active_profile

    def session(self, profile: str | None = None, region: str | None = None) -> boto3.Session:
        core = botocore.session.get_session()
        core.set_config_variable("config_file", str(self.config.config_file))
        core.set_config_variable("credentials_file", str(self.config.credentials_file))
        try:
            return boto3.Session(
                botocore_session=core,
                profile_name=profile,
                region_name=region or self.config.region,
            )
        except ProfileNotFound as e:
            raise CredentialError(str(e), error_code="ProfileNotFound", profile=profile) from e

    def client(self, service: str, profile: str | None = None, region: str | None = None) -> Any:
        session = self.session(profile, region)
        return session.client(
            service,
            region_name=region or session.region_name or DEFAULT_REGION,
            config=self._client_config,
        )

    def validate_credentials(
        self, profile: str | None = None, region: str | None = None
    ) -> CallerIdentity:
        """Call STS GetCallerIdentity; any failure is raised as CredentialError with an error code."""
        try:
            identity = self.client("sts", profile, region).get_caller_identity()
        except CredentialError:
            raise
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "ClientError")
            raise CredentialError(
                e.response.get("Error", {}).get("Message", str(e)), error_code=code, profile=profile
            ) from e
        except (ConnectTimeoutError, ReadTimeoutError) as e:
            raise CredentialError(str(e), error_code="Timeout", profile=profile) from e
        except EndpointConnectionError as e:
            raise CredentialError(str(e), error_code="NetworkingError", profile=profile) from e
        except NoCredentialsError as e:
            raise CredentialError(str(e), error_code="NoCredentials", profile=profile) from e
        except (TokenRetrievalError, UnauthorizedSSOTokenError) as e:
            raise CredentialError(str(e), error_code="ExpiredToken", profile=profile) from e
        except BotoCoreError as e:
            raise CredentialError(str(e), error_code=type(e).__name__, profile=profile) from e

        logger.debug("Caller identity for %s: %s", profile or "default chain", identity.get("Arn"))
        return CallerIdentity(
            account=identity["Account"],
            user_id=identity["UserId"],
            arn=identity["Arn"],
            profile=profile,
        )

    def has_valid_credentials(self, profile: str | None = None) -> bool:
        try:
            self.validate_credentials(profile)
        except CredentialError:
            return False
        return True
