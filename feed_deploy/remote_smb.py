"""
remote_smb
----------

SMB(Windows 공유 폴더 / NAS) 배포 모듈 (smbprotocol 의 smbclient API).

경로는 \\\\host\\share\\path 형태의 UNC 경로로 만든다.
smbclient 는 프로세스 전역 세션 캐시를 쓰므로 배포/테스트가 끝나면 세션을 반드시 정리한다.
"""

from __future__ import annotations

import errno
from typing import Any, Dict, Optional

import smbclient
from smbprotocol.exceptions import SMBException

from .artifacts import DeployRequest, build_artifacts, join_remote
from .config import EngineConfig
from .destination_config import SmbConfig
from .logging_utils import get_logger
from .sync import AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)

DEFAULT_SMB_PORT = 445


def smb_username(cfg: SmbConfig) -> str:
    domain = cfg.domain.strip()
    return f"{domain}\\{cfg.username}" if domain else cfg.username


def unc_path(cfg: SmbConfig, path: str = "") -> str:
    share = cfg.share.strip().strip("/\\")
    rel = join_remote(path).replace("/", "\\")
    base = f"\\\\{cfg.host}\\{share}"
    return f"{base}\\{rel}" if rel else base


class SmbSession:
    def __init__(self, cfg: SmbConfig, engine: Optional[EngineConfig] = None) -> None:
        self.cfg = cfg
        self.engine = engine or EngineConfig()
        self.port = cfg.port or DEFAULT_SMB_PORT
        self._registered = False

    def open(self) -> None:
        smbclient.register_session(
            self.cfg.host,
            username=smb_username(self.cfg),
            password=self.cfg.password,
            port=self.port,
            connection_timeout=int(self.engine.http_timeout),
        )
        self._registered = True

    def connection_kwargs(self) -> Dict[str, Any]:
        """smbclient 파일 API 에 넘길 세션 인자. (포트가 빠지면 445 로 새 세션을 연다)"""
        return {
            "username": smb_username(self.cfg),
            "password": self.cfg.password,
            "port": self.port,
            "connection_timeout": int(self.engine.http_timeout),
        }

    def close(self) -> None:
        if not self._registered:
            return
        try:
            smbclient.delete_session(self.cfg.host, port=self.port)
        except (SMBException, OSError) as e:
            logger.debug("SMB 세션 정리 실패(무시): %s", describe_error(e))
        self._registered = False


class SmbStore:
    def __init__(self, cfg: SmbConfig, session: SmbSession) -> None:
        self.cfg = cfg
        self.kwargs = session.connection_kwargs()

    def read_bytes(self, path: str) -> Optional[bytes]:
        try:
            with smbclient.open_file(unc_path(self.cfg, path), mode="rb", **self.kwargs) as f:
                return f.read()
        except OSError as e:
            if e.errno == errno.ENOENT:
                return None
            raise

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        with smbclient.open_file(unc_path(self.cfg, path), mode="wb", **self.kwargs) as f:
            f.write(data)

    def ensure_dir(self, path: str) -> None:
        smbclient.makedirs(unc_path(self.cfg, path), exist_ok=True, **self.kwargs)


def test_access(cfg: SmbConfig, engine: Optional[EngineConfig] = None) -> AccessResult:
    """
    세션을 열고 배포 경로(없으면 생성)의 목록을 조회한다.
    """
    session = SmbSession(cfg, engine)
    try:
        session.open()
        store = SmbStore(cfg, session)
        if cfg.path:
            store.ensure_dir(cfg.path)
        smbclient.listdir(unc_path(cfg, cfg.path), **store.kwargs)
        return AccessResult(ok=True)
    except (SMBException, OSError, ValueError) as e:
        message = describe_error(e)
        logger.warning("SMB 접근 확인 실패: host=%s share=%s error=%s", cfg.host, cfg.share, message)
        return AccessResult.failure(message)
    finally:
        session.close()


def deploy(cfg: SmbConfig, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    result = DeployResult()
    session = SmbSession(cfg, engine)
    logger.info("SMB 배포 시작: %s", unc_path(cfg, cfg.path))
    try:
        session.open()
        sync = SyncSession(SmbStore(cfg, session), base_path=cfg.path, result=result)
        if cfg.path:
            sync.ensure_dir(join_remote(cfg.path))
        sync.push_all(build_artifacts(request))
    except Exception as e:  # noqa: BLE001
        logger.exception("SMB 배포 중 오류 발생")
        result.errors.append(describe_error(e))
    finally:
        session.close()
    return result
