import hashlib
from typing import Dict, List, Optional

import pytest

from feed_deploy import remote_ipfs
from feed_deploy.artifacts import DeployItem, DeployRequest
from feed_deploy.config import EngineConfig
from feed_deploy.destination_config import parse_config


class FakeMfs:
    """
    MFS 를 경로 -> bytes 로 흉내낸다.
    stat_cid 는 디렉토리 아래 파일 경로/내용의 해시라서 내용이 같으면 cid 도 같다.
    """

    instances: List["FakeMfs"] = []

    def __init__(self, cfg, timeout: float) -> None:  # noqa: ANN001
        self.base_url = remote_ipfs.normalize_api_url(cfg.api_url)
        self.files: Dict[str, bytes] = FakeMfs.shared_files
        self.pins: List[str] = []
        self.closed = False
        FakeMfs.instances.append(self)

    shared_files: Dict[str, bytes] = {}

    def close(self) -> None:
        self.closed = True

    def node_id(self) -> str:
        return "12D3KooTest"

    def read(self, path: str) -> Optional[bytes]:
        return self.files.get(path)

    def write(self, path: str, data: bytes) -> None:
        self.files[path] = data

    def mkdir(self, path: str) -> None:
        return None

    def stat_cid(self, path: str) -> str:
        h = hashlib.sha256()
        for p in sorted(k for k in self.files if k.startswith(path + "/")):
            h.update(p[len(path):].encode())
            h.update(self.files[p])
        return "bafy" + h.hexdigest()[:16]

    def copy(self, src: str, dst: str) -> None:
        for p in [k for k in self.files if k.startswith(src + "/")]:
            self.files[dst + p[len(src):]] = self.files[p]

    def remove(self, path: str, missing_ok: bool = True) -> None:
        for p in [k for k in self.files if k == path or k.startswith(path + "/")]:
            del self.files[p]

    def pin(self, cid: str) -> None:
        self.pins.append(cid)


@pytest.fixture
def mfs(monkeypatch: pytest.MonkeyPatch) -> Dict[str, bytes]:
    FakeMfs.shared_files = {}
    FakeMfs.instances = []
    monkeypatch.setattr(remote_ipfs, "IpfsClient", FakeMfs)
    return FakeMfs.shared_files


def _cfg(**extra):  # noqa: ANN003, ANN202
    return parse_config("IPFS", {"api_url": "http://127.0.0.1:5001/", "api_key": "tok", **extra})


def _request(tmp_path, rendered: List[str]) -> DeployRequest:  # noqa: ANN001
    audio = tmp_path / "ep1.mp3"
    audio.write_bytes(b"audio-bytes")

    def render(base_url: str) -> bytes:
        rendered.append(base_url)
        return f'<rss><enclosure url="{base_url}items/ep1.mp3"/></rss>'.encode()

    return DeployRequest(
        feed=b"<rss>placeholder</rss>",
        items=[DeployItem(id="ep1", audio_path=str(audio))],
        render_feed=render,
    )


def test_normalize_api_url() -> None:
    assert remote_ipfs.normalize_api_url("http://h:5001") == "http://h:5001/api/v0"
    assert remote_ipfs.normalize_api_url("http://h:5001/api/v0/") == "http://h:5001/api/v0"


def test_mfs_root_defaults_to_deploy() -> None:
    assert remote_ipfs.mfs_root(_cfg()) == "/deploy"
    assert remote_ipfs.mfs_root(_cfg(path="podcasts/demo")) == "/podcasts/demo"


def test_deploy_renders_feed_with_content_address(mfs: Dict[str, bytes], tmp_path) -> None:  # noqa: ANN001
    rendered: List[str] = []
    engine = EngineConfig(default_gateway_url="https://gw.example/ipfs/")

    result = remote_ipfs.deploy(_cfg(), _request(tmp_path, rendered), engine)

    assert result.errors == []
    assert result.uploaded == 2
    assert len(rendered) == 1
    assert rendered[0].startswith("https://gw.example/ipfs/bafy")
    assert rendered[0].endswith("/")
    assert f"{rendered[0]}items/ep1.mp3".encode() in mfs["/deploy/feed.xml"]
    assert "/deploy/feed.xml.md5" in mfs
    assert not any(p.startswith("/deploy" + remote_ipfs._ADDRESS_SCRATCH_SUFFIX) for p in mfs)
    client = FakeMfs.instances[-1]
    assert len(client.pins) == 2
    root_cid = client.stat_cid("/deploy")
    assert result.public_url == f"https://gw.example/ipfs/{root_cid}/"
    assert result.public_url != rendered[0]
    assert client.pins[0] == root_cid
    assert client.closed


def test_redeploy_unchanged_is_idempotent(mfs: Dict[str, bytes], tmp_path) -> None:  # noqa: ANN001
    rendered: List[str] = []
    request = _request(tmp_path, rendered)
    remote_ipfs.deploy(_cfg(), request)

    result = remote_ipfs.deploy(_cfg(), request)

    assert result.uploaded == 0
    assert result.skipped == 2
    assert rendered[0] == rendered[1]


def test_gateway_from_destination_overrides_default(mfs: Dict[str, bytes], tmp_path) -> None:  # noqa: ANN001
    rendered: List[str] = []

    result = remote_ipfs.deploy(_cfg(gateway_url="https://dweb.example/ipfs"), _request(tmp_path, rendered))

    assert (result.public_url or "").startswith("https://dweb.example/ipfs/bafy")


def test_without_renderer_feed_is_written_as_given(mfs: Dict[str, bytes], tmp_path) -> None:  # noqa: ANN001
    request = _request(tmp_path, [])
    request.render_feed = None

    result = remote_ipfs.deploy(_cfg(), request)

    assert result.uploaded == 2
    assert mfs["/deploy/feed.xml"] == b"<rss>placeholder</rss>"
    assert FakeMfs.instances[-1].pins == [result.public_url.rstrip("/").rsplit("/", 1)[-1]]


class RecordingSession:
    def __init__(self, status_code: int = 200, body=None) -> None:  # noqa: ANN001
        self.status_code = status_code
        self.body = body or {"ID": "peer"}
        self.posts: List[dict] = []
        self.headers: Dict[str, str] = {}
        self.auth = None

    def post(self, url: str, params=None, files=None, timeout=None):  # noqa: ANN001, ANN201
        self.posts.append({"url": url, "params": params, "files": files})
        session = self

        class Resp:
            status_code = session.status_code
            content = b""
            text = "error"

            def json(self):  # noqa: ANN201
                return session.body

        return Resp()

    def close(self) -> None:
        return None


def test_client_sends_repeated_args_and_lowercase_flags() -> None:
    client = remote_ipfs.IpfsClient(_cfg(), timeout=5)
    client.session = RecordingSession()

    client.copy("/deploy", "/deploy.tmp")
    client.write("/deploy/feed.xml", b"x")

    cp, write = client.session.posts
    assert cp["url"] == "http://127.0.0.1:5001/api/v0/files/cp"
    assert cp["params"] == [("arg", "/deploy"), ("arg", "/deploy.tmp")]
    assert ("create", "true") in write["params"]
    assert ("parents", "true") in write["params"]


def test_client_uses_bearer_token() -> None:
    client = remote_ipfs.IpfsClient(_cfg(), timeout=5)

    assert client.session.headers["Authorization"] == "Bearer tok"


def test_client_maps_missing_file_to_none() -> None:
    client = remote_ipfs.IpfsClient(_cfg(), timeout=5)
    client.session = RecordingSession(500, {"Message": "file does not exist", "Code": 0})

    assert client.read("/deploy/feed.xml.md5") is None


def test_access_failure_reports_reason(monkeypatch: pytest.MonkeyPatch) -> None:
    original = remote_ipfs.IpfsClient.__init__

    def init(self, cfg, timeout):  # noqa: ANN001, ANN202
        original(self, cfg, timeout)
        self.session = RecordingSession(403, {"Message": "forbidden"})

    monkeypatch.setattr(remote_ipfs.IpfsClient, "__init__", init)
    result = remote_ipfs.test_access(_cfg())

    assert not result.ok
    assert "HTTP 403 forbidden" in (result.error or "")
