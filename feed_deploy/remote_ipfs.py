"""
remote_ipfs
-----------

IPFS(Kubo RPC API) 배포 모듈.

artifact 는 MFS(Mutable File System) 루트 아래에 기록하고, 마지막에 루트를 재귀 pin 한다.
공개 URL 은 <gateway>/<root-cid>/ 형태이며, cid 는 업로드가 끝난 뒤에야 알 수 있다.

피드 렌더러(request.render_feed)가 주어진 경우:
    1) 커버/아이템을 먼저 기록
    2) 피드 파일을 제외한 루트의 cid(content address)를 계산
    3) 그 주소를 public base URL 로 피드를 다시 렌더링해서 기록
    4) 최종 루트와 content address 를 모두 pin
결과의 public_url 은 피드가 들어 있는 최종 루트를 가리킨다.
(enclosure URL 은 content address 기준이며, 같은 파일이 두 cid 아래 모두 있다)
피드를 제외하고 주소를 계산하므로 내용이 바뀌지 않으면 주소와 피드도 바뀌지 않는다.
(재배포 시 업로드 0건으로 수렴)

두 단계 사이에 실패하면 이전 피드가 남은 루트가 될 수 있다.
별도의 재시도는 하지 않으며 다음 배포에서 수렴한다.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from .artifacts import FEED_FILENAME, DeployRequest, build_artifacts, feed_artifact, join_remote
from .config import EngineConfig
from .destination_config import IpfsConfig
from .logging_utils import get_logger
from .sync import SIDECAR_SUFFIX, AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)

DEFAULT_MFS_ROOT = "/deploy"
_ADDRESS_SCRATCH_SUFFIX = ".address-tmp"


def normalize_api_url(url: str) -> str:
    u = url.strip().rstrip("/")
    return u if u.endswith("/api/v0") else f"{u}/api/v0"


def mfs_root(cfg: IpfsConfig) -> str:
    p = join_remote(cfg.path).rstrip("/")
    return f"/{p}" if p else DEFAULT_MFS_ROOT


def gateway_url(cfg: IpfsConfig, engine: EngineConfig) -> str:
    return (cfg.gateway_url or engine.default_gateway_url).strip().rstrip("/")


class IpfsApiError(RuntimeError):
    pass


class IpfsClient:
    """Kubo RPC API 의 필요한 부분만 감싼 얇은 클라이언트. (모든 호출은 POST)"""

    def __init__(self, cfg: IpfsConfig, timeout: float) -> None:
        self.base_url = normalize_api_url(cfg.api_url)
        self.timeout = timeout
        self.session = requests.Session()
        if cfg.api_key.strip():
            self.session.headers["Authorization"] = f"Bearer {cfg.api_key.strip()}"
        elif cfg.username:
            self.session.auth = (cfg.username, cfg.password)

    def close(self) -> None:
        self.session.close()

    def call(self, endpoint: str, args: Sequence[str] = (), files: Optional[Dict[str, Any]] = None,
             **flags: Any) -> requests.Response:
        params: List[Tuple[str, str]] = [("arg", a) for a in args]
        for key, value in flags.items():
            params.append((key, str(value).lower() if isinstance(value, bool) else str(value)))
        resp = self.session.post(f"{self.base_url}/{endpoint}", params=params, files=files,
                                 timeout=self.timeout)
        if resp.status_code >= 400:
            raise IpfsApiError(f"IPFS {endpoint} 실패: HTTP {resp.status_code} {_error_message(resp)}".rstrip())
        return resp

    def node_id(self) -> str:
        return self.call("id").json().get("ID", "")

    def read(self, path: str) -> Optional[bytes]:
        try:
            return self.call("files/read", [path]).content
        except IpfsApiError as e:
            if "does not exist" in str(e):
                return None
            raise

    def write(self, path: str, data: bytes) -> None:
        self.call("files/write", [path], files={"file": ("data", data)},
                  create=True, truncate=True, parents=True)

    def mkdir(self, path: str) -> None:
        self.call("files/mkdir", [path], parents=True)

    def stat_cid(self, path: str) -> str:
        return self.call("files/stat", [path]).json()["Hash"]

    def copy(self, src: str, dst: str) -> None:
        self.call("files/cp", [src, dst])

    def remove(self, path: str, missing_ok: bool = True) -> None:
        try:
            self.call("files/rm", [path], recursive=True)
        except IpfsApiError as e:
            if not (missing_ok and "does not exist" in str(e)):
                raise

    def pin(self, cid: str) -> None:
        self.call("pin/add", [cid], recursive=True)


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict):
        return str(body.get("Message", ""))
    return str(body)[:500]


class IpfsStore:
    def __init__(self, client: IpfsClient, root: str) -> None:
        self.client = client
        self.root = root

    def absolute(self, path: str) -> str:
        rel = join_remote(path)
        return f"{self.root}/{rel}" if rel else self.root

    def read_bytes(self, path: str) -> Optional[bytes]:
        return self.client.read(self.absolute(path))

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.client.write(self.absolute(path), data)

    def ensure_dir(self, path: str) -> None:
        self.client.mkdir(self.absolute(path))


def content_address(client: IpfsClient, root: str) -> str:
    """
    피드 파일을 뺀 루트의 cid 를 계산한다.
    MFS 복사는 참조 복사라서 데이터가 다시 기록되지 않는다.
    """
    scratch = root + _ADDRESS_SCRATCH_SUFFIX
    client.remove(scratch)
    client.copy(root, scratch)
    try:
        client.remove(f"{scratch}/{FEED_FILENAME}")
        client.remove(f"{scratch}/{FEED_FILENAME}{SIDECAR_SUFFIX}")
        return client.stat_cid(scratch)
    finally:
        client.remove(scratch)


def test_access(cfg: IpfsConfig, engine: Optional[EngineConfig] = None) -> AccessResult:
    engine = engine or EngineConfig()
    client = IpfsClient(cfg, engine.http_timeout)
    try:
        node = client.node_id()
        logger.debug("IPFS 노드 확인: %s", node)
        return AccessResult(ok=True)
    except (requests.RequestException, IpfsApiError, ValueError) as e:
        message = describe_error(e)
        logger.warning(
            "IPFS 접근 확인 실패: api_url=%s api_key=%s basic_auth=%s error=%s",
            client.base_url,
            bool(cfg.api_key.strip()),
            bool(cfg.username),
            message,
        )
        return AccessResult.failure(message)
    finally:
        client.close()


def deploy(cfg: IpfsConfig, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    engine = engine or EngineConfig()
    result = DeployResult()
    client = IpfsClient(cfg, engine.http_timeout)
    root = mfs_root(cfg)
    gateway = gateway_url(cfg, engine)
    logger.info("IPFS 배포 시작: api=%s mfs_root=%s", client.base_url, root)
    try:
        client.mkdir(root)
        sync = SyncSession(IpfsStore(client, root), result=result)

        address_cid: Optional[str] = None
        if request.render_feed is None:
            logger.warning("피드 렌더러가 없어 호출자가 준 피드를 그대로 기록합니다. (enclosure URL 이 cid 기반이 아님)")
            sync.push_all(build_artifacts(request))
        else:
            sync.push_all(build_artifacts(request, include_feed=False))
            address_cid = content_address(client, root)
            public_url = f"{gateway}/{address_cid}/"
            logger.info("content address 로 피드를 다시 렌더링합니다: %s", public_url)
            sync.push_all([feed_artifact(request.render_feed(public_url))])

        root_cid = client.stat_cid(root)
        client.pin(root_cid)
        if address_cid and address_cid != root_cid:
            client.pin(address_cid)
        result.public_url = f"{gateway}/{root_cid}/"
        logger.info("IPFS pin 완료: root=%s public_url=%s", root_cid, result.public_url)
    except Exception as e:  # noqa: BLE001
        logger.exception("IPFS 배포 중 오류 발생")
        result.errors.append(describe_error(e))
    finally:
        client.close()
    return result
