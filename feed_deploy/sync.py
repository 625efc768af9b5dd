"""
sync
----

모든 백엔드가 공유하는 content-address 증분 동기화 알고리즘.

원격 경로 P 에 업로드할 때마다 P + ".md5" sidecar 에 내용의 md5(hex)를 같이 기록하고,
다음 배포에서 sidecar 값이 현재 내용의 md5 와 같으면 업로드를 건너뛴다.
동기화 상태는 원격에만 존재하므로 여러 워커/호스트가 로컬 기록 없이 같은 상태로 수렴한다.

백엔드는 RemoteStore 의 세 가지 primitive 만 구현하면 된다:
    read_bytes(path) -> bytes | None
    write_bytes(path, data, content_type)
    ensure_dir(path)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Set

from .artifacts import Artifact, join_remote, parent_dir
from .logging_utils import get_logger


logger = get_logger(__name__)


SIDECAR_SUFFIX = ".md5"

UPLOADED = "uploaded"
SKIPPED = "skipped"


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def describe_error(exc: BaseException) -> str:
    msg = str(exc).strip()
    return msg or exc.__class__.__name__


class RemoteStore(Protocol):
    def read_bytes(self, path: str) -> Optional[bytes]:
        ...

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        ...

    def ensure_dir(self, path: str) -> None:
        ...


@dataclass
class AccessResult:
    ok: bool
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "AccessResult":
        return cls(ok=False, error=error)


@dataclass
class DeployResult:
    uploaded: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    # IPFS 처럼 배포 후에야 정해지는 공개 URL
    public_url: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "DeployResult":
        return cls(errors=[message])

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def total_failure(self) -> bool:
        return self.uploaded == 0 and bool(self.errors)

    @property
    def status(self) -> str:
        return "success" if self.ok else "failed"

    def summary(self) -> str:
        """호출자가 실행 기록(run log)에 남길 한 줄 요약."""
        if self.errors:
            return (
                f"Uploaded {self.uploaded}, skipped {self.skipped}. "
                f"Errors: {'; '.join(self.errors)}"
            )
        return f"Uploaded {self.uploaded} file(s), skipped {self.skipped} unchanged."


class SyncSession:
    """
    배포 1회 동안 유지되는 동기화 상태.
    이미 만든 디렉토리를 기억해서 같은 디렉토리 생성 호출을 반복하지 않는다.
    """

    def __init__(self, store: RemoteStore, base_path: str = "",
                 result: Optional[DeployResult] = None) -> None:
        self.store = store
        self.base_path = base_path
        self.result = result if result is not None else DeployResult()
        self._ensured_dirs: Set[str] = set()

    def remote_path(self, path: str) -> str:
        return join_remote(self.base_path, path)

    def ensure_dir(self, path: str) -> None:
        if not path or path in self._ensured_dirs:
            return
        self.store.ensure_dir(path)
        self._ensured_dirs.add(path)

    def remote_digest(self, full_path: str) -> Optional[str]:
        # 어떤 이유로든 읽기에 실패하면 sidecar 가 없는 것으로 본다. (최악의 경우 중복 업로드 1회)
        try:
            raw = self.store.read_bytes(full_path + SIDECAR_SUFFIX)
        except Exception as e:  # noqa: BLE001
            logger.debug("sidecar 읽기 실패, 업로드 대상으로 처리: %s (%s)", full_path, describe_error(e))
            return None
        if raw is None:
            return None
        return raw.decode("utf-8", errors="replace").strip()

    def write(self, full_path: str, data: bytes, digest: str,
              content_type: Optional[str] = None) -> None:
        self.ensure_dir(parent_dir(full_path))
        self.store.write_bytes(full_path, data, content_type)
        self.store.write_bytes(full_path + SIDECAR_SUFFIX, digest.encode("utf-8"), "text/plain")

    def push(self, artifact: Artifact) -> str:
        data = artifact.read()
        digest = md5_hex(data)
        full_path = self.remote_path(artifact.remote_path)

        if self.remote_digest(full_path) == digest:
            logger.debug("변경 없음, 건너뜀: %s", full_path)
            self.result.skipped += 1
            return SKIPPED

        self.write(full_path, data, digest, artifact.content_type)
        logger.info("업로드 완료: %s (%d bytes)", full_path, len(data))
        self.result.uploaded += 1
        return UPLOADED

    def push_all(self, artifacts: Iterable[Artifact]) -> DeployResult:
        """
        artifact 를 순서대로 하나씩 동기화한다.
        하나가 실패해도 나머지는 계속 진행하고, 실패는 "<label>: <message>" 로 기록한다.
        """
        for artifact in artifacts:
            try:
                self.push(artifact)
            except Exception as e:  # noqa: BLE001
                message = f"{artifact.label}: {describe_error(e)}"
                logger.warning("artifact 동기화 실패: %s", message)
                self.result.errors.append(message)
        return self.result
