from __future__ import annotations

from dataclasses import replace
from types import ModuleType
from typing import Any, Dict, List, Mapping, Optional, Union

from .artifacts import DeployRequest, build_artifacts, join_remote
from .config import EngineConfig
from .destination_config import (
    DestinationConfig,
    DestinationMode,
    IpfsConfig,
    S3Config,
    redacted_view,
    validate_config,
)
from .destination_store import Destination, DestinationStore
from .exceptions import ConfigurationError, FeedDeployError, SecretDecryptionError
from .logging_utils import get_logger
from .sync import SIDECAR_SUFFIX, AccessResult, DeployResult, describe_error
from . import (
    remote_ftp,
    remote_ipfs,
    remote_s3,
    remote_sftp,
    remote_smb,
    remote_webdav,
)


logger = get_logger(__name__)

# 모드 -> 백엔드 모듈. 각 모듈은 test_access(cfg, engine) / deploy(cfg, request, engine) 를 제공한다.
ADAPTERS: Dict[DestinationMode, ModuleType] = {
    DestinationMode.S3: remote_s3,
    DestinationMode.FTP: remote_ftp,
    DestinationMode.SFTP: remote_sftp,
    DestinationMode.WEBDAV: remote_webdav,
    DestinationMode.IPFS: remote_ipfs,
    DestinationMode.SMB: remote_smb,
}

NO_DESTINATION_ERROR = "No deploy destination configured for this collection"

# 저장소 조회 시 결과로 바꿔 돌려줄 오류
STORE_ERRORS = (FeedDeployError, OSError, ValueError)


def _load_config(destination: Destination) -> DestinationConfig:
    """복호화 + 필수 값 검증. 네트워크 호출 전에 설정 오류를 드러낸다."""
    cfg = destination.decode()
    validate_config(cfg)
    return cfg


def _config_failure(destination: Destination, err: Exception) -> str:
    if isinstance(err, SecretDecryptionError):
        logger.error("배포 대상 설정 복호화 실패: id=%s (%s)", destination.id, err)
        return f"Failed to decrypt destination config: {err}"
    logger.error("배포 대상 설정 오류: id=%s (%s)", destination.id, err)
    return str(err)


def run_deploy(
    destination: Optional[Destination],
    request: DeployRequest,
    engine: Optional[EngineConfig] = None,
) -> DeployResult:
    """
    destination 의 모드에 맞는 백엔드로 배포한다.

    어떤 경우에도 예외를 던지지 않고 DeployResult 를 돌려준다.
    (설정/복호화 오류는 최상위 오류 하나, artifact 오류는 artifact 마다 하나)
    """
    if destination is None:
        return DeployResult.failure(NO_DESTINATION_ERROR)

    try:
        cfg = _load_config(destination)
    except (SecretDecryptionError, ConfigurationError) as e:
        return DeployResult.failure(_config_failure(destination, e))

    adapter = ADAPTERS[cfg.mode]
    logger.info("배포 시작: id=%s mode=%s", destination.id, cfg.mode.value)

    try:
        if not request.public_base_url and destination.public_base_url:
            base_url = destination.public_base_url
            feed = request.render_feed(base_url) if request.render_feed else request.feed
            request = replace(request, public_base_url=base_url, feed=feed)
        result = adapter.deploy(cfg, request, engine)
    except Exception as e:  # noqa: BLE001
        logger.exception("배포 중 예외 발생: id=%s", destination.id)
        return DeployResult.failure(describe_error(e))

    if result.public_url is None:
        result.public_url = request.public_base_url
    logger.info("배포 종료: id=%s status=%s %s", destination.id, result.status, result.summary())
    return result


def test_destination(
    destination: Optional[Destination],
    engine: Optional[EngineConfig] = None,
) -> AccessResult:
    if destination is None:
        return AccessResult.failure(NO_DESTINATION_ERROR)

    try:
        cfg = _load_config(destination)
    except (SecretDecryptionError, ConfigurationError) as e:
        return AccessResult.failure(_config_failure(destination, e))

    try:
        result = ADAPTERS[cfg.mode].test_access(cfg, engine)
    except Exception as e:  # noqa: BLE001
        logger.exception("접근 확인 중 예외 발생: id=%s", destination.id)
        return AccessResult.failure(describe_error(e))

    logger.info("접근 확인: id=%s mode=%s ok=%s", destination.id, cfg.mode.value, result.ok)
    return result


# -----------------------------
# 저장소 연동
# -----------------------------
def create_destination(
    store: DestinationStore,
    collection_id: str,
    mode: Union[str, DestinationMode],
    fields: Mapping[str, Any],
    name: Optional[str] = None,
    public_base_url: Optional[str] = None,
) -> Destination:
    return store.create(collection_id, mode, fields, name=name, public_base_url=public_base_url)


def update_destination(
    store: DestinationStore,
    destination_id: str,
    fields: Optional[Mapping[str, Any]] = None,
    mode: Union[str, DestinationMode, None] = None,
    public_base_url: Optional[str] = None,
) -> Destination:
    return store.update(destination_id, fields, mode=mode, public_base_url=public_base_url)


def test_destination_by_id(
    store: DestinationStore,
    destination_id: str,
    engine: Optional[EngineConfig] = None,
) -> AccessResult:
    try:
        destination = store.get(destination_id)
    except STORE_ERRORS as e:
        logger.error("배포 대상 조회 실패: id=%s (%s)", destination_id, e)
        return AccessResult.failure(describe_error(e))
    return test_destination(destination, engine)


def deploy_destination(
    store: DestinationStore,
    destination_id: str,
    request: DeployRequest,
    engine: Optional[EngineConfig] = None,
) -> DeployResult:
    try:
        destination = store.get(destination_id)
    except STORE_ERRORS as e:
        logger.error("배포 대상 조회 실패: id=%s (%s)", destination_id, e)
        return DeployResult.failure(describe_error(e))
    return run_deploy(destination, request, engine)


def deploy_collection(
    store: DestinationStore,
    collection_id: str,
    request: DeployRequest,
    engine: Optional[EngineConfig] = None,
) -> DeployResult:
    """
    컬렉션에 연결된 destination 으로 배포한다. 없으면 오류 하나가 담긴 결과.
    저장소 조회 오류(손상된 파일, 이전할 수 없는 레거시 레코드)도 결과로 돌려준다.
    """
    try:
        destination = store.get_for_collection(collection_id)
    except STORE_ERRORS as e:
        logger.error("배포 대상 조회 실패: collection=%s (%s)", collection_id, e)
        return DeployResult.failure(describe_error(e))
    return run_deploy(destination, request, engine)


# -----------------------------
# 요약 출력
# -----------------------------
def _remote_root(cfg: DestinationConfig) -> str:
    if isinstance(cfg, S3Config):
        return f"s3://{cfg.bucket}/{cfg.prefix}"
    if isinstance(cfg, IpfsConfig):
        return f"ipfs mfs:{remote_ipfs.mfs_root(cfg)}/"
    return f"{cfg.mode.value}:/{cfg.base_path}"


def plan_deploy(destination: Destination, request: DeployRequest) -> str:
    """
    배포 시 동기화 대상이 될 원격 경로 목록을 요약한다. 네트워크 호출은 하지 않는다.
    """
    cfg = _load_config(destination)

    lines: List[str] = []
    lines.append("# Deploy plan")
    lines.append(f"- destination: {destination.id}")
    lines.append(f"- collection: {destination.collection_id}")
    lines.append(f"- mode: {cfg.mode.value}")
    lines.append(f"- remote root: {_remote_root(cfg)}")
    lines.append(f"- public base url: {request.public_base_url or destination.public_base_url or '(not set)'}")
    lines.append("")

    lines.append("## Config")
    for key, value in redacted_view(cfg).items():
        lines.append(f"- {key}: {value if value not in (None, '') else '(not set)'}")
    lines.append("")

    lines.append("## Artifacts")
    artifacts = build_artifacts(request)
    if artifacts:
        for a in artifacts:
            path = join_remote(cfg.base_path, a.remote_path)
            lines.append(f"- {a.label}: {path} (+{SIDECAR_SUFFIX})")
    else:
        lines.append("- (none)")

    return "\n".join(lines)


def format_summary(destination: Destination, result: DeployResult) -> str:
    lines: List[str] = []
    lines.append("# Deploy summary")
    lines.append(f"- destination: {destination.id}")
    lines.append(f"- mode: {destination.mode}")
    lines.append(f"- status: {result.status}")
    lines.append(f"- uploaded: {result.uploaded}")
    lines.append(f"- skipped: {result.skipped}")
    if result.public_url:
        lines.append(f"- public url: {result.public_url}")
    lines.append("")

    lines.append("## Errors")
    if result.errors:
        for e in result.errors:
            lines.append(f"- {e}")
    else:
        lines.append("- (none)")

    lines.append("")
    lines.append(result.summary())
    return "\n".join(lines)
