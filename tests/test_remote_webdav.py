from typing import Dict, List, Optional, Tuple

import pytest

from feed_deploy import remote_webdav
from feed_deploy.artifacts import DeployItem, DeployRequest
from feed_deploy.destination_config import parse_config


BASE_URL = "https://dav.example.com/remote.php/dav"


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"", reason: str = "") -> None:
        self.status_code = status_code
        self.content = content
        self.reason = reason


class FakeDavSession:
    """URL -> bytes 로 동작하는 최소한의 WebDAV 서버 흉내."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.calls: List[Tuple[str, str]] = []
        self.put_status = 201
        self.closed = False
        self.auth = None

    def get(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append(("GET", url))
        if url not in self.files:
            return FakeResponse(404)
        return FakeResponse(200, self.files[url])

    def put(self, url: str, data: bytes = b"", headers=None, timeout: Optional[float] = None) -> FakeResponse:  # noqa: ANN001
        self.calls.append(("PUT", url))
        if self.put_status < 400:
            self.files[url] = data
        return FakeResponse(self.put_status, reason="Forbidden" if self.put_status == 403 else "")

    def delete(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append(("DELETE", url))
        self.files.pop(url, None)
        return FakeResponse(204)

    def request(self, method: str, url: str, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append((method, url))
        return FakeResponse(405)

    def close(self) -> None:
        self.closed = True

    def puts(self) -> List[str]:
        return [url for method, url in self.calls if method == "PUT"]


@pytest.fixture
def dav(monkeypatch: pytest.MonkeyPatch) -> FakeDavSession:
    session = FakeDavSession()
    monkeypatch.setattr(remote_webdav, "create_session", lambda cfg: session)
    return session


def _cfg(path: str = "shows/demo"):  # noqa: ANN202
    return parse_config("WebDAV", {"url": BASE_URL + "/", "username": "u", "password": "p", "path": path})


def _request(tmp_path) -> DeployRequest:  # noqa: ANN001
    audio = tmp_path / "ep1.mp3"
    audio.write_bytes(b"\xff\xfb" * 500)
    return DeployRequest(feed=b"<" + b"x" * 198 + b">", items=[DeployItem(id="ep1", audio_path=str(audio))])


def test_deploy_uploads_artifacts_with_sidecars(dav: FakeDavSession, tmp_path) -> None:  # noqa: ANN001
    result = remote_webdav.deploy(_cfg(), _request(tmp_path))

    assert result.errors == []
    assert result.uploaded == 2
    assert result.skipped == 0
    assert dav.puts() == [
        f"{BASE_URL}/shows/demo/feed.xml",
        f"{BASE_URL}/shows/demo/feed.xml.md5",
        f"{BASE_URL}/shows/demo/items/ep1.mp3",
        f"{BASE_URL}/shows/demo/items/ep1.mp3.md5",
    ]
    assert dav.closed


def test_redeploy_unchanged_skips_feed_and_item(dav: FakeDavSession, tmp_path) -> None:  # noqa: ANN001
    request = _request(tmp_path)
    remote_webdav.deploy(_cfg(), request)
    dav.calls.clear()

    result = remote_webdav.deploy(_cfg(), request)

    assert result.uploaded == 0
    assert result.skipped == 2
    assert dav.puts() == []


def test_put_rejection_is_reported_per_artifact(dav: FakeDavSession, tmp_path) -> None:  # noqa: ANN001
    dav.put_status = 403

    result = remote_webdav.deploy(_cfg(), _request(tmp_path))

    assert result.uploaded == 0
    assert result.total_failure
    assert len(result.errors) == 2
    assert result.errors[0].startswith("Feed: WebDAV PUT shows/demo/feed.xml 실패: HTTP 403")


def test_access_check_writes_and_removes_probe_file(dav: FakeDavSession) -> None:
    result = remote_webdav.test_access(_cfg())

    assert result.ok
    probe = f"{BASE_URL}/shows/demo/{remote_webdav.TEST_FILE}"
    assert ("PUT", probe) in dav.calls
    assert ("DELETE", probe) in dav.calls
    assert probe not in dav.files


def test_access_check_failure_carries_reason(dav: FakeDavSession) -> None:
    dav.put_status = 403

    result = remote_webdav.test_access(_cfg())

    assert not result.ok
    assert "HTTP 403" in (result.error or "")


def test_paths_are_url_quoted(dav: FakeDavSession, tmp_path) -> None:  # noqa: ANN001
    remote_webdav.deploy(_cfg("My Shows"), DeployRequest(feed=b"<rss/>"))

    assert dav.puts()[0] == f"{BASE_URL}/My%20Shows/feed.xml"
