from typing import Dict, List, Optional

import pytest

from feed_deploy.artifacts import Artifact, DeployItem, DeployRequest, build_artifacts
from feed_deploy.sync import DeployResult, SyncSession, md5_hex


class MemoryStore:
    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.writes: List[str] = []
        self.dirs: List[str] = []
        self.fail_reads = False

    def read_bytes(self, path: str) -> Optional[bytes]:
        if self.fail_reads:
            raise ConnectionError("read timeout")
        return self.files.get(path)

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.files[path] = data
        self.writes.append(path)

    def ensure_dir(self, path: str) -> None:
        self.dirs.append(path)


def _request(tmp_path) -> DeployRequest:  # noqa: ANN001
    audio = tmp_path / "ep1.mp3"
    audio.write_bytes(b"ID3 audio")
    art = tmp_path / "ep1.PNG"
    art.write_bytes(b"\x89PNG art")
    cover = tmp_path / "cover.jpeg"
    cover.write_bytes(b"cover")
    return DeployRequest(
        feed=b"<rss/>",
        cover_path=str(cover),
        items=[DeployItem(id="ep1", audio_path=str(audio), artwork_path=str(art))],
    )


def test_artifact_order_and_remote_layout(tmp_path) -> None:  # noqa: ANN001
    artifacts = build_artifacts(_request(tmp_path))

    assert [a.remote_path for a in artifacts] == [
        "feed.xml",
        "cover.jpg",
        "items/ep1.mp3",
        "items/ep1.png",
    ]
    assert [a.label for a in artifacts] == ["Feed", "Cover image", "Item ep1 audio", "Item ep1 artwork"]
    assert artifacts[2].content_type == "audio/mpeg"


def test_transcript_artifact_follows_artwork(tmp_path) -> None:  # noqa: ANN001
    srt = tmp_path / "ep1.srt"
    srt.write_text("1\n00:00:00,000 --> 00:00:01,000\nhi\n")
    request = _request(tmp_path)
    request.items[0].transcript_path = str(srt)

    artifacts = build_artifacts(request)

    assert artifacts[-1].remote_path == "items/ep1.srt"
    assert artifacts[-1].label == "Item ep1 transcript"


def test_first_deploy_writes_artifact_then_sidecar(tmp_path) -> None:  # noqa: ANN001
    store = MemoryStore()
    session = SyncSession(store, base_path="shows/demo/")

    result = session.push_all(build_artifacts(_request(tmp_path)))

    assert result.uploaded == 4
    assert result.skipped == 0
    assert store.writes[:2] == ["shows/demo/feed.xml", "shows/demo/feed.xml.md5"]
    assert store.files["shows/demo/feed.xml.md5"] == md5_hex(b"<rss/>").encode()
    assert len(store.writes) == 8


def test_redeploy_with_same_inputs_skips_everything(tmp_path) -> None:  # noqa: ANN001
    store = MemoryStore()
    request = _request(tmp_path)
    SyncSession(store).push_all(build_artifacts(request))
    store.writes.clear()

    result = SyncSession(store).push_all(build_artifacts(request))

    assert result.uploaded == 0
    assert result.skipped == 4
    assert store.writes == []
    assert result.summary() == "Uploaded 0 file(s), skipped 4 unchanged."


def test_changed_artifact_is_uploaded_again(tmp_path) -> None:  # noqa: ANN001
    store = MemoryStore()
    request = _request(tmp_path)
    SyncSession(store).push_all(build_artifacts(request))

    request.feed = b"<rss><item/></rss>"
    result = SyncSession(store).push_all(build_artifacts(request))

    assert result.uploaded == 1
    assert result.skipped == 3
    assert store.files["feed.xml"] == b"<rss><item/></rss>"


def test_sidecar_with_whitespace_still_matches() -> None:
    store = MemoryStore()
    store.files["feed.xml.md5"] = (md5_hex(b"x") + "\n").encode()

    result = SyncSession(store).push_all([Artifact("Feed", "feed.xml", lambda: b"x")])

    assert result.skipped == 1


def test_sidecar_read_failure_means_upload() -> None:
    store = MemoryStore()
    store.files["feed.xml.md5"] = md5_hex(b"x").encode()
    store.fail_reads = True

    result = SyncSession(store).push_all([Artifact("Feed", "feed.xml", lambda: b"x")])

    assert result.uploaded == 1
    assert result.errors == []


def test_one_failing_artifact_does_not_stop_the_rest(tmp_path) -> None:  # noqa: ANN001
    store = MemoryStore()
    request = _request(tmp_path)
    request.items.append(DeployItem(id="ep2", audio_path=str(tmp_path / "missing.mp3")))

    result = SyncSession(store).push_all(build_artifacts(request))

    assert result.uploaded == 4
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Item ep2 audio: ")
    assert not result.ok
    assert not result.total_failure
    assert result.summary().startswith("Uploaded 4, skipped 0. Errors: Item ep2 audio:")


def test_directories_are_ensured_once_per_deploy(tmp_path) -> None:  # noqa: ANN001
    store = MemoryStore()
    request = _request(tmp_path)
    request.items.append(DeployItem(id="ep2", audio_path=request.items[0].audio_path))

    SyncSession(store, base_path="a/b").push_all(build_artifacts(request))

    assert store.dirs.count("a/b/items") == 1
    assert store.dirs.count("a/b") == 1


@pytest.mark.parametrize(
    "result,expected",
    [
        (DeployResult(uploaded=0, errors=["x"]), True),
        (DeployResult(uploaded=1, errors=["x"]), False),
        (DeployResult(uploaded=0, skipped=3), False),
    ],
)
def test_total_failure(result: DeployResult, expected: bool) -> None:
    assert result.total_failure is expected
