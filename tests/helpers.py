"""
HTTP fakes shared by the tests.

FakeSession stands in for requests.Session and returns canned
requests.Response objects (or raises) per request.
"""

import requests

def make_response(status: int = 200, body: str | bytes = b"", url: str = "https://lichess.org/") -> requests.Response:
    """A fully-read requests.Response with the given status and body."""
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8") if isinstance(body, str) else body
    response._content_consumed = True
    response.encoding = "utf-8"
    response.url = url
    response.reason = "OK" if status < 400 else "Error"
    return response


class BrokenStreamResponse:
    """Streamed response whose body fails after some lines."""

    def __init__(self, lines: list[str], error: Exception):
        self.status_code = 200
        self.lines = lines
        self.error = error
        self.closed = False

    def raise_for_status(self):
        pass

    def iter_lines(self, decode_unicode: bool = False):
        yield from self.lines
        raise self.error

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class FakeSession:
    """
    Stand-in for requests.Session.

    `handler(method, url, kwargs)` returns a response or raises; every call is
    recorded in `calls` as (method, url, kwargs).
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.headers = {}

    def request(self, method, url, stream=False, **kwargs):
        kwargs["stream"] = stream
        self.calls.append((method, url, kwargs))
        result = self.handler(method, url, kwargs)
        if isinstance(result, Exception):
            raise result
        return result


def queued(*results):
    """Handler returning the given results (or raising the given errors) in order."""
    pending = list(results)

    def handler(method, url, kwargs):
        return pending.pop(0)

    return handler


def routed(routes: dict):
    """Handler picking the response whose key is a substring of the URL."""
    def handler(method, url, kwargs):
        for fragment, result in routes.items():
            if fragment in url:
                return result(method, url, kwargs) if callable(result) else result
        return make_response(404, b"not found", url)

    return handler


class RecordingSleep:
    """Sleep replacement remembering requested delays."""

    def __init__(self):
        self.delays = []

    def __call__(self, seconds: float):
        self.delays.append(seconds)




class StreamedResponse:
    """
    Unread response whose body arrives in chunks.

    `on_chunk` is called before each chunk is handed out, e.g. to advance a
    FakeClock the way a slow download would.
    """

    def __init__(self, chunks: list[bytes], status: int = 200, on_chunk=None):
        self.status_code = status
        self.chunks = chunks
        self.on_chunk = on_chunk
        self.closed = False
        self._content = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            if self.on_chunk is not None:
                self.on_chunk()
            yield chunk

    @property
    def text(self) -> str:
        return self._content.decode("utf-8")

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds
