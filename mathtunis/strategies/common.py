"""Shared HTTP utilities for strategies that talk to remote services."""

import threading
from typing import Any, Optional

import requests

from ..errors import Malformed, StrategyTimeout, Unavailable
from ..logger import get_logger
from ..retry import Deadline, RetryError, retry_call, should_retry_http_status

logger = get_logger()

# Upper bound for a single HTTP call, whatever the remaining budget
MAX_REQUEST_TIMEOUT = 15.0


class RetryableStatus(Exception):
    """A response whose status code is worth retrying (429, 5xx...)."""

    def __init__(self, response: requests.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def _send(method: str, url: str, strategy: str, deadline: Deadline, **kwargs) -> requests.Response:
    timeout = min(deadline.remaining(), MAX_REQUEST_TIMEOUT)
    if timeout <= 0:
        raise StrategyTimeout(f"{strategy} has no time left for {url}", strategy=strategy)
    resp = requests.request(method, url, timeout=timeout, **kwargs)
    if should_retry_http_status(resp.status_code):
        raise RetryableStatus(resp)
    return resp


def request_with_error_handling(
    method: str,
    url: str,
    strategy: str,
    deadline: Deadline,
    cancel: Optional[threading.Event] = None,
    max_retries: int = 2,
    base_delay: float = 0.5,
    **kwargs,
) -> requests.Response:
    """Send an HTTP request with retries, translating failures into strategy errors.

    Args:
        method: HTTP method
        url: The URL to call
        strategy: Strategy name for logging and error attribution
        deadline: Budget shared by all attempts
        cancel: Optional event that stops backoff early
        max_retries: Retries on timeouts, connection errors and retryable statuses
        base_delay: First backoff delay in seconds

    Returns:
        Response object with a non-error status

    Raises:
        StrategyTimeout: The budget ran out
        Unavailable: The service is unreachable or refused the request
    """
    try:
        resp = retry_call(
            _send,
            method,
            url,
            strategy,
            deadline,
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, RetryableStatus),
            on_retry=lambda attempt, exc, delay: logger.debug(
                "Retrying request", strategy=strategy, attempt=attempt, error=str(exc), delay=delay
            ),
            deadline=deadline,
            cancel=cancel,
            **kwargs,
        )
        resp.raise_for_status()
        return resp
    except RetryError as e:
        cause = e.__cause__
        if isinstance(cause, requests.exceptions.Timeout) or deadline.expired():
            logger.warning("Request timed out", strategy=strategy, url=url)
            raise StrategyTimeout(f"{strategy} request timed out: {url}", strategy=strategy) from e
        if isinstance(cause, RetryableStatus):
            status = cause.response.status_code
            logger.warning("Service kept failing", strategy=strategy, url=url, status=status)
            raise Unavailable(f"{strategy} request failed ({status}): {url}", strategy=strategy) from e
        logger.warning("Service unreachable", strategy=strategy, url=url, error=str(cause))
        raise Unavailable(f"{strategy} request error: {cause}", strategy=strategy) from e
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else "HTTPError"
        if status == 404:
            logger.warning("Resource not found", strategy=strategy, url=url, status=404)
            raise Unavailable(f"{strategy} URL not found (404): {url}", strategy=strategy) from e
        logger.error("Request failed", strategy=strategy, url=url, status=status)
        raise Unavailable(f"{strategy} request failed ({status}): {url}", strategy=strategy) from e
    except requests.exceptions.RequestException as e:
        logger.error("Request error", strategy=strategy, url=url, error=str(e))
        raise Unavailable(f"{strategy} request error: {e}", strategy=strategy) from e


def decode_json(resp: requests.Response, strategy: str) -> Any:
    """Parse a JSON body or raise Malformed."""
    try:
        return resp.json()
    except ValueError as e:
        raise Malformed(f"{strategy} returned a non-JSON body", strategy=strategy) from e
