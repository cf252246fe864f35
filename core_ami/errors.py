"""Exceptions raised by the AMI manager.

Every error raised by the library derives from :class:`AmiError` so a caller can
decide per region whether to retry, report, or abort.  The command line treats
all of them as fatal.
"""

from typing import Any

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
)

NOT_FOUND_CODES = {
    "InvalidAMIID.NotFound",
    "InvalidAMIID.Unavailable",
    "InvalidSnapshot.NotFound",
}

TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "ServiceUnavailable",
    "InternalError",
    "Unavailable",
}

ACCESS_DENIED_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "AuthFailure",
    "InvalidClientTokenId",
    "ExpiredToken",
}

VALIDATION_CODES = {
    "InvalidAMIID.Malformed",
    "InvalidSnapshotID.Malformed",
    "InvalidParameterValue",
}


class AmiError(Exception):
    """Base class for all AMI manager errors."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code


class NotFoundError(AmiError):
    """The source or target image (or snapshot) does not exist."""


class TransientError(AmiError):
    """Throttling or network failure reported by the image service."""


class ImageValidationError(AmiError):
    """Invalid input or data, e.g. an unparseable creation timestamp or a missing filter."""


class AccessDeniedError(AmiError):
    """Credential or role assumption failure."""


class PollTimeoutError(AmiError):
    """An image did not become available within the maximum wait."""


class CopyFailedError(AmiError):
    """A copied image reached a terminal state other than ``available``."""


class ReplicationError(AmiError):
    """One or more regions failed during replication.

    :param report: The aggregated per-region results
    :type report: ReplicationReport
    """

    def __init__(self, message: str, report: Any):
        super().__init__(message)
        self.report = report


class ReapError(AmiError):
    """Snapshot deletion failed for one or more mappings of a deregistered image.

    :param result: The partial result of the removal
    :type result: ReapResult
    :param cause: The first error encountered
    :type cause: AmiError
    """

    def __init__(self, message: str, result: Any, cause: AmiError):
        super().__init__(message, cause.code)
        self.result = result
        self.cause = cause


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def classify_client_error(e: ClientError, message: str) -> AmiError:
    """
    Convert a botocore ClientError into the matching :class:`AmiError` subclass.

    :param e: The error returned by boto3
    :type e: ClientError
    :param message: Context to prefix the AWS error message with
    :type message: str
    :return: The typed error (not raised)
    :rtype: AmiError
    """
    code = error_code(e)
    aws_message = e.response.get("Error", {}).get("Message", str(e))
    text = f"{message}: {code} - {aws_message}" if code else f"{message}: {aws_message}"

    if code in NOT_FOUND_CODES:
        return NotFoundError(text, code)
    if code in TRANSIENT_CODES:
        return TransientError(text, code)
    if code in ACCESS_DENIED_CODES:
        return AccessDeniedError(text, code)
    if code in VALIDATION_CODES:
        return ImageValidationError(text, code)
    return AmiError(text, code)


def classify_boto_error(e: BotoCoreError, message: str) -> AmiError:
    """
    Convert a botocore error raised before a response was received.

    Connection failures and timeouts are transient.  Missing credentials are an
    access failure and a rejected request shape is invalid input.

    :param e: The error raised by botocore
    :type e: BotoCoreError
    :param message: Context to prefix the error text with
    :type message: str
    :return: The typed error (not raised)
    :rtype: AmiError
    """
    text = f"{message}: {e}"

    if isinstance(e, (NoCredentialsError, PartialCredentialsError)):
        return AccessDeniedError(text)
    if isinstance(e, ParamValidationError):
        return ImageValidationError(text)
    return TransientError(text)


def classify_aws_error(e: ClientError | BotoCoreError, message: str) -> AmiError:
    """Classify either kind of botocore failure into the :class:`AmiError` taxonomy."""
    if isinstance(e, ClientError):
        return classify_client_error(e, message)
    return classify_boto_error(e, message)
