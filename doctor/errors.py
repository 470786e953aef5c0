"""
errors.py
=========
Exception hierarchy for the doctor subsystem. Expected validation problems are
reported as CheckResult data, never raised; these types cover wiring mistakes,
unexpected execution failures and failed repair operations.
"""

from typing import Any


class DoctorError(Exception):
    code = "DOCTOR_ERROR"

    def __init__(self, message: str, **metadata: Any) -> None:
        super().__init__(message)
        self.message = message
        self.metadata = {k: v for k, v in metadata.items() if v is not None}

    def __str__(self) -> str:
        return self.message


class CheckRegistryError(DoctorError, ValueError):
    code = "CHECK_REGISTRY_ERROR"


class CheckExecutionError(DoctorError):
    code = "CHECK_EXECUTION_ERROR"

    def __init__(self, message: str, check_id: str, stage: str, **metadata: Any) -> None:
        super().__init__(message, check_id=check_id, stage=stage, **metadata)
        self.check_id = check_id
        self.stage = stage


class AutoRepairError(DoctorError):
    code = "AUTO_REPAIR_ERROR"

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        check_id: str | None = None,
        backup_path: str | None = None,
        **metadata: Any,
    ) -> None:
        super().__init__(
            message, operation=operation, check_id=check_id, backup_path=backup_path, **metadata
        )
        self.operation = operation
        self.check_id = check_id
        self.backup_path = backup_path


class ProfileError(DoctorError):
    code = "PROFILE_ERROR"


class TokenError(DoctorError):
    code = "TOKEN_ERROR"


class CredentialError(DoctorError):
    code = "CREDENTIAL_ERROR"

    def __init__(self, message: str, error_code: str | None = None, **metadata: Any) -> None:
        super().__init__(message, error_code=error_code, **metadata)
        self.error_code = error_code
