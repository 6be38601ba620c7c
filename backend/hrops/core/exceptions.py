from enum import Enum

from fastapi import HTTPException, status


class ErrorKind(str, Enum):
    MISSING_INPUT = "MissingInput"
    INVALID_DATE = "InvalidDate"
    INCOMPLETE_DATA = "IncompleteData"
    ALREADY_RESIGNED = "AlreadyResigned"
    INELIGIBLE_ID_PATTERN = "IneligibleIdPattern"
    EXCLUDED_ENTITY = "ExcludedEntity"
    INVALID_BIRTH_DATE = "InvalidBirthDate"
    WRONG_BIRTH_MONTH = "WrongBirthMonth"
    INVALID_HIRE_DATE = "InvalidHireDate"
    INSUFFICIENT_SENIORITY = "InsufficientSeniority"
    UNCLASSIFIED_ENTITY = "UnclassifiedEntity"
    MISSING_COLUMN = "MissingColumn"
    MISSING_CONFIGURATION = "MissingConfiguration"
    EXTERNAL_CALL_FAILURE = "ExternalCallFailure"
    EXPIRED_OR_INVALID_TOKEN = "ExpiredOrInvalidToken"


class HROpsError(Exception):
    kind: ErrorKind = ErrorKind.EXTERNAL_CALL_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidDateError(HROpsError):
    kind = ErrorKind.INVALID_DATE

    def __init__(self, value: object):
        super().__init__(f"Invalid date value: {value!r}")
        self.value = value


class MissingColumnError(HROpsError):
    kind = ErrorKind.MISSING_COLUMN

    def __init__(self, missing: list[str], sheet_name: str = ""):
        where = f" in sheet '{sheet_name}'" if sheet_name else ""
        super().__init__(
            f"Missing required column(s){where}: " + ", ".join(f'"{m}"' for m in missing)
        )
        self.missing = list(missing)
        self.sheet_name = sheet_name


class ConfigurationError(HROpsError):
    kind = ErrorKind.MISSING_CONFIGURATION

    def __init__(self, key: str, detail: str = "missing or invalid"):
        super().__init__(f"Setting '{key}' is {detail}")
        self.key = key


class ExternalCallFailure(HROpsError):
    kind = ErrorKind.EXTERNAL_CALL_FAILURE

    def __init__(self, service: str, detail: str):
        super().__init__(f"{service} call failed: {detail}")
        self.service = service


class MissingSerialRuleError(HROpsError):
    kind = ErrorKind.MISSING_CONFIGURATION

    def __init__(self, rule_name: str, detail: str = "has no serial counter"):
        super().__init__(f"Employee ID rule '{rule_name}' {detail}")
        self.rule_name = rule_name


class InvalidRequestError(HROpsError):
    kind = ErrorKind.INCOMPLETE_DATA


class ExpiredOrInvalidTokenError(HROpsError):
    kind = ErrorKind.EXPIRED_OR_INVALID_TOKEN

    def __init__(self):
        super().__init__("Approval token is expired, already used or unknown")


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class JobFailedError(HTTPException):
    def __init__(self, error: HROpsError):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"kind": error.kind.value, "message": error.message},
        )
