"""
Resilient HTTP request layer.

Every outbound call (Lichess and Zulip) goes through `perform`, which:
- Injects a bearer token or basic email/key credential
- Retries transport failures and non-2xx statuses with capped exponential backoff
- Optionally bounds the whole call with a time budget
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "sandbag-watch/0.1"

# Bytes read between two deadline checks of a timed call
READ_CHUNK_SIZE = 1024


# =============================================================================
# Credentials
# =============================================================================

@dataclass(frozen=True)
class BearerToken:
    """OAuth token sent as `Authorization: Bearer <token>`."""
    token: str

    def __repr__(self) -> str:
        return "BearerToken(***)"


@dataclass(frozen=True)
class BasicAuth:
    """Email + API key pair sent as HTTP basic auth (Zulip bots)."""
    email: str
    key: str

    def __repr__(self) -> str:
        return f"BasicAuth({self.email!r}, ***)"


Credential = Union[BearerToken, BasicAuth]


# =============================================================================
# Errors
# =============================================================================

class RetriesExhausted(Exception):
    """Raised when a bounded retry policy runs out of attempts."""

    def __init__(self, request_name: str, attempts: int, last_error: Exception):
        super().__init__(f"{request_name} failed after {attempts} attempts: {last_error}")
        self.request_name = request_name
        self.attempts = attempts
        self.last_error = last_error


class RequestTimeout(Exception):
    """Raised when a call with a time budget cannot complete within it."""

    def __init__(self, request_name: str, timeout: float, last_error: Optional[Exception] = None):
        reason = last_error if last_error is not None else "body still downloading"
        super().__init__(f"{request_name} did not succeed within {timeout}s: {reason}")
        self.request_name = request_name
        self.timeout = timeout
        self.last_error = last_error


# =============================================================================
# Backoff
# =============================================================================

@dataclass(frozen=True)
class BackoffPolicy:
    """
    Retry schedule for `perform`.

    Delays start at `initial` seconds and are multiplied by `factor` after each
    consecutive failure, never exceeding `maximum`. `max_attempts=None` retries
    forever.
    """
    initial: float = 60.0
    factor: float = 10.0
    maximum: float = 3600.0
    max_attempts: Optional[int] = None

    def next_delay(self, delay: float) -> float:
        return min(delay * self.factor, self.maximum)


DEFAULT_BACKOFF = BackoffPolicy()


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    """Create the shared session used for the whole process lifetime."""
    session = requests.Session()
    session.headers["User-Agent"] = user_agent
    return session


def _prepare(body, credential: Optional[Credential]) -> dict:
    kwargs: dict = {"headers": {}}
    if body is not None:
        kwargs["data"] = body
    if isinstance(credential, BearerToken):
        kwargs["headers"]["Authorization"] = f"Bearer {credential.token}"
    elif isinstance(credential, BasicAuth):
        kwargs["auth"] = (credential.email, credential.key)
    return kwargs


def _read_body(response: requests.Response, deadline: float, clock: Callable[[], float]) -> bool:
    """
    Download a streamed body chunk by chunk, stopping at the deadline.

    Returns False if the deadline passed before the body was complete;
    otherwise the body is stored so `response.content`/`.text` work as usual.
    """
    chunks = []
    for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
        chunks.append(chunk)
        if clock() >= deadline:
            return False
    response._content = b"".join(chunks)
    return True


def perform(
    session: requests.Session,
    method: str,
    url: str,
    body=None,
    credential: Optional[Credential] = None,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    stream: bool = False,
    timeout: Optional[float] = None,
    policy: BackoffPolicy = DEFAULT_BACKOFF,
    should_retry: Optional[Callable[[int, Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> requests.Response:
    """
    Perform an HTTP request, retrying until it succeeds.

    Args:
        session: Shared requests session.
        method: HTTP method ("GET", "POST").
        url: Absolute URL.
        body: Optional request body (str, bytes or form dict).
        credential: BearerToken, BasicAuth or None for unauthenticated calls.
        params: Optional query parameters.
        headers: Extra request headers.
        stream: Leave the body unread so the caller can iterate over it.
        timeout: Optional budget in seconds for the whole call, retries and
            body download included. Unless `stream` is set, the body is read
            in chunks and abandoned once the budget runs out.
        policy: Backoff schedule.
        should_retry: Optional hook `(attempt, error) -> bool`; returning False
            re-raises the error instead of retrying.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        The successful (2xx) response.

    Raises:
        RetriesExhausted: If `policy.max_attempts` failed attempts were made.
        RequestTimeout: If `timeout` was given and ran out.
    """
    name = f"{method} {url}"
    kwargs = _prepare(body, credential)
    if headers:
        kwargs["headers"].update(headers)
    if params:
        kwargs["params"] = params

    deadline = clock() + timeout if timeout is not None else None
    delay = policy.initial
    attempt = 0

    while True:
        attempt += 1
        error = None
        if deadline is not None:
            kwargs["timeout"] = max(deadline - clock(), 0.001)
        try:
            response = session.request(method, url, stream=stream or deadline is not None, **kwargs)
        except requests.RequestException as e:
            error = e
        else:
            try:
                response.raise_for_status()
                if stream or deadline is None or _read_body(response, deadline, clock):
                    return response
            except requests.RequestException as e:
                error = e
            # release the pooled connection before sleeping
            response.close()
            if error is None:
                raise RequestTimeout(name, timeout)

        if should_retry is not None and not should_retry(attempt, error):
            raise error
        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            raise RetriesExhausted(name, attempt, error)
        if deadline is not None and clock() + delay >= deadline:
            raise RequestTimeout(name, timeout, error)

        logger.warning("Error: %s, on request %s, retrying after %ss", error, name, delay)
        sleep(delay)
        delay = policy.next_delay(delay)
