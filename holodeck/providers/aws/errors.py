"""Classification of AWS API errors."""

from __future__ import annotations

from typing import Final

from botocore.exceptions import ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from holodeck.retry import is_retryable_error

NOT_FOUND_CODES: Final = frozenset({
    "NotFound",
    "Gateway.NotAttached",
    "LoadBalancerNotFound",
    "TargetGroupNotFound",
    "ListenerNotFound",
})

DEPENDENCY_CODES: Final = frozenset({
    "DependencyViolation",
    "InvalidGroup.InUse",
    "ResourceInUse",
})


def error_code(e: BaseException) -> str:
    if isinstance(e, ClientError):
        return e.response.get("Error", {}).get("Code", "") or ""
    return ""


def is_not_found(e: BaseException) -> bool:
    """True for "already gone" errors: ``*.NotFound``, ``*NotFound`` and ``Gateway.NotAttached``."""
    code = error_code(e)
    return code in NOT_FOUND_CODES or code.endswith("NotFound")


def is_dependency_violation(e: BaseException) -> bool:
    return error_code(e) in DEPENDENCY_CODES


def is_transient(e: BaseException) -> bool:
    return isinstance(e, ClientError) and is_retryable_error(e)


# Read-only lookups ride out throttling without surfacing it to the caller
transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception(is_transient),
    reraise=True,
)
