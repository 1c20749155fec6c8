import io
import json
import os
import sys
from typing import Dict, List, Optional, Tuple, Union

import pytest
from PIL import Image
from requests.structures import CaseInsensitiveDict

# Ensure the repository's src/ is importable
sys.path.insert(0, os.path.abspath("src"))

from flyer_extraction.web.fetch import HttpFetcher


def png_bytes(width: int, height: int, color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeResponse:
    def __init__(self, url: str, status_code: int = 200, content: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.status_code = status_code
        self.reason = "OK" if status_code < 400 else "Not Found"
        self.content = content
        self.headers = CaseInsensitiveDict(headers or {})
        self.closed = False

    def iter_content(self, chunk_size: int = 1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; unknown URLs answer 404."""

    def __init__(self) -> None:
        self.routes: Dict[str, Union[FakeResponse, Exception]] = {}
        self.sizes: Dict[str, int] = {}
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    def add(self, url: str, content: Union[bytes, str], content_type: str = "text/html", *, status: int = 200) -> None:
        body = content.encode("utf-8") if isinstance(content, str) else content
        self.routes[url] = FakeResponse(url, status, body, {"content-type": content_type})

    def redirect(self, url: str, location: str, status: int = 302) -> None:
        self.routes[url] = FakeResponse(url, status, b"", {"location": location})

    def add_json(self, url: str, payload) -> None:
        self.add(url, json.dumps(payload), "application/json")

    def fail(self, url: str, exc: Exception) -> None:
        self.routes[url] = exc

    def get(self, url, headers=None, timeout=None, stream=False, allow_redirects=True):
        self.calls.append(("GET", url))
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(url, 404)
        if headers and "Range" in headers and "location" not in route.headers:
            size = self.sizes.get(url)
            extra = {"content-range": f"bytes 0-0/{size}"} if size else {}
            return FakeResponse(route.url, 206, route.content[:1], {**dict(route.headers), **extra})
        return FakeResponse(route.url, route.status_code, route.content, dict(route.headers))

    def head(self, url, headers=None, timeout=None, allow_redirects=True):
        self.calls.append(("HEAD", url))
        route = self.routes.get(url)
        if isinstance(route, FakeResponse) and "location" in route.headers:
            return FakeResponse(url, route.status_code, b"", dict(route.headers))
        size = self.sizes.get(url)
        return FakeResponse(url, 200, b"", {"content-length": str(size)} if size else {})

    def close(self) -> None:
        self.closed = True

    def urls(self, method: str = "GET") -> List[str]:
        return [u for m, u in self.calls if m == method]


class ScriptedVision:
    """Returns queued responses in order; an Exception entry is raised instead."""

    def __init__(self, responses=None, default: str = '{"items": []}') -> None:
        self.responses = list(responses or [])
        self.default = default
        self.prompts: List[str] = []
        self.closed = False

    def extract(self, png, prompt, *, temperature=None, max_output_tokens=None, json_only=True):
        self.prompts.append(prompt)
        if self.responses:
            nxt = self.responses.pop(0)
        else:
            nxt = self.default
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def close(self) -> None:
        self.closed = True


def items_json(*items) -> str:
    return json.dumps({"items": list(items)}, ensure_ascii=False)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fetcher(session: FakeSession) -> HttpFetcher:
    return HttpFetcher(session=session)
