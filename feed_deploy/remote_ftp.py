"""
remote_ftp
----------

FTP / FTPS(explicit TLS) 배포 모듈.

- 모든 원격 경로는 "/" 로 시작하는 절대 경로로 만든다. (CWD 에 따라 경로가 중복되는 문제 방지)
- passive 모드에서 서버가 알려주는 데이터 채널 IP 대신 컨트롤 연결의 호스트를 사용한다.
  NAT 뒤의 가정용 NAS 가 내부 IP 를 돌려주는 경우가 많기 때문.
"""

from __future__ import annotations

import ftplib
import io
from typing import Optional

from .artifacts import DeployRequest, build_artifacts, join_remote
from .config import EngineConfig
from .destination_config import FtpConfig
from .logging_utils import get_logger
from .sync import AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)


def absolute_path(path: str) -> str:
    p = join_remote(path)
    return f"/{p}" if p else "/"


def connect(cfg: FtpConfig, engine: Optional[EngineConfig] = None) -> ftplib.FTP:
    engine = engine or EngineConfig()
    client: ftplib.FTP = ftplib.FTP_TLS(timeout=engine.ftp_timeout) if cfg.secure else ftplib.FTP(
        timeout=engine.ftp_timeout
    )
    client.connect(cfg.host, cfg.port)
    client.login(cfg.username, cfg.password)
    if isinstance(client, ftplib.FTP_TLS):
        client.prot_p()
    client.set_pasv(True)
    client.trust_server_pasv_ipv4_address = False
    return client


def _close(client: Optional[ftplib.FTP]) -> None:
    if client is None:
        return
    try:
        client.quit()
    except (ftplib.Error, OSError, EOFError):
        client.close()


class FtpStore:
    def __init__(self, client: ftplib.FTP) -> None:
        self.client = client

    def read_bytes(self, path: str) -> Optional[bytes]:
        buf = io.BytesIO()
        try:
            self.client.retrbinary(f"RETR {absolute_path(path)}", buf.write)
        except ftplib.error_perm:
            # 550: 파일 없음
            return None
        return buf.getvalue()

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.client.storbinary(f"STOR {absolute_path(path)}", io.BytesIO(data))

    def ensure_dir(self, path: str) -> None:
        acc = ""
        for part in [p for p in path.split("/") if p]:
            acc = f"{acc}/{part}"
            try:
                self.client.mkd(acc)
            except ftplib.error_perm as e:
                # 이미 존재하는 경우 550 이 온다. 실제 권한 문제는 이어지는 STOR 에서 드러난다.
                logger.debug("FTP mkd 무시: %s (%s)", acc, e)


def test_access(cfg: FtpConfig, engine: Optional[EngineConfig] = None) -> AccessResult:
    """
    로그인 후 배포 경로를 만들고(없으면) 목록 조회까지 되는지 확인한다.
    """
    client = None
    try:
        client = connect(cfg, engine)
        if cfg.path:
            FtpStore(client).ensure_dir(cfg.path)
        client.nlst(absolute_path(cfg.path))
        return AccessResult(ok=True)
    except (ftplib.Error, OSError, EOFError) as e:
        message = describe_error(e)
        logger.warning("FTP 접근 확인 실패: host=%s error=%s", cfg.host, message)
        return AccessResult.failure(message)
    finally:
        _close(client)


def deploy(cfg: FtpConfig, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    result = DeployResult()
    client = None
    logger.info("FTP 배포 시작: host=%s path=%s", cfg.host, cfg.path or "/")
    try:
        client = connect(cfg, engine)
        session = SyncSession(FtpStore(client), base_path=cfg.path, result=result)
        session.push_all(build_artifacts(request))
    except Exception as e:  # noqa: BLE001
        logger.exception("FTP 배포 중 오류 발생")
        result.errors.append(describe_error(e))
    finally:
        _close(client)
    return result
