"""
artifacts
---------

호출자가 넘겨준 입력(피드 XML, 커버 이미지, 아이템별 오디오/아트워크)을
배포 단위(Artifact) 목록으로 변환하는 모듈.

Artifact 는 배포마다 새로 계산되며 저장되지 않는다.
파일 내용은 push 직전에 읽으므로, 읽기 실패는 해당 artifact 하나의 오류로만 기록된다.
경로가 허용된 루트 아래에 있는지는 호출자가 이미 검증했다고 가정한다.
"""

from __future__ import annotations

import mimetypes
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence


FEED_FILENAME = "feed.xml"
ITEMS_DIR = "items"
DEFAULT_AUDIO_EXT = ".mp3"
DEFAULT_IMAGE_EXT = "jpg"

# 확장자(점 포함) -> 원격 파일명에 쓰는 이미지 확장자
IMAGE_EXT_MAP = {
    ".jpg": "jpg",
    ".jpeg": "jpg",
    ".png": "png",
    ".webp": "webp",
}

IMAGE_MIMETYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


@dataclass
class DeployItem:
    id: str
    audio_path: Optional[str] = None
    artwork_path: Optional[str] = None
    transcript_path: Optional[str] = None
    audio_mime: Optional[str] = None


@dataclass
class DeployRequest:
    feed: bytes
    items: Sequence[DeployItem] = field(default_factory=list)
    cover_path: Optional[str] = None
    public_base_url: Optional[str] = None
    # IPFS 처럼 공개 주소가 업로드 후에야 정해지는 백엔드에서 피드를 다시 렌더링할 때 사용
    render_feed: Optional[Callable[[str], bytes]] = None


@dataclass
class Artifact:
    label: str
    remote_path: str
    loader: Callable[[], bytes]
    content_type: Optional[str] = None

    def read(self) -> bytes:
        return self.loader()


def join_remote(base: str, *parts: str) -> str:
    """base 와 parts 를 / 로 잇고, 중복 / 와 앞쪽 / 를 제거한다."""
    segments = [base.rstrip("/"), *parts]
    joined = "/".join(s for s in segments if s)
    while "//" in joined:
        joined = joined.replace("//", "/")
    return joined.lstrip("/")


def parent_dir(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _file_loader(path: str) -> Callable[[], bytes]:
    def load() -> bytes:
        with open(path, "rb") as f:
            return f.read()
    return load


def image_ext(path: str) -> str:
    return IMAGE_EXT_MAP.get(os.path.splitext(path)[1].lower(), DEFAULT_IMAGE_EXT)


def audio_ext(path: str) -> str:
    return os.path.splitext(path)[1] or DEFAULT_AUDIO_EXT


def feed_artifact(feed: bytes) -> Artifact:
    return Artifact(
        label="Feed",
        remote_path=FEED_FILENAME,
        loader=lambda: feed,
        content_type="application/xml",
    )


def build_artifacts(request: DeployRequest, include_feed: bool = True) -> List[Artifact]:
    """
    고정된 순서로 artifact 목록을 만든다:
    feed.xml → cover.<ext> → 아이템 순서대로 (오디오 → 아트워크 → 자막)
    """
    artifacts: List[Artifact] = []

    if include_feed:
        artifacts.append(feed_artifact(request.feed))

    if request.cover_path:
        ext = image_ext(request.cover_path)
        artifacts.append(
            Artifact(
                label="Cover image",
                remote_path=f"cover.{ext}",
                loader=_file_loader(request.cover_path),
                content_type=IMAGE_MIMETYPES[ext],
            )
        )

    for item in request.items:
        if item.audio_path:
            ext = audio_ext(item.audio_path)
            artifacts.append(
                Artifact(
                    label=f"Item {item.id} audio",
                    remote_path=f"{ITEMS_DIR}/{item.id}{ext}",
                    loader=_file_loader(item.audio_path),
                    content_type=item.audio_mime
                    or mimetypes.guess_type(f"x{ext}")[0]
                    or "audio/mpeg",
                )
            )
        if item.artwork_path:
            ext = image_ext(item.artwork_path)
            artifacts.append(
                Artifact(
                    label=f"Item {item.id} artwork",
                    remote_path=f"{ITEMS_DIR}/{item.id}.{ext}",
                    loader=_file_loader(item.artwork_path),
                    content_type=IMAGE_MIMETYPES[ext],
                )
            )
        if item.transcript_path:
            artifacts.append(
                Artifact(
                    label=f"Item {item.id} transcript",
                    remote_path=f"{ITEMS_DIR}/{item.id}.srt",
                    loader=_file_loader(item.transcript_path),
                    content_type="application/x-subrip",
                )
            )

    return artifacts
