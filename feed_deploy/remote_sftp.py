"""
remote_sftp
-----------

SFTP 배포 모듈 (paramiko).

인증은 private_key 가 있으면 키 인증, 없으면 password 인증을 사용한다.
둘 다 없으면 네트워크 호출 전에 ConfigurationError 로 실패한다.
설정 경로가 상대 경로이면 로그인 디렉토리 기준의 절대 경로로 바꿔서 사용한다.
"""

from __future__ import annotations

import errno
import io
import posixpath
import socket
import stat
from typing import Optional

import paramiko

from .artifacts import DeployRequest, build_artifacts, join_remote
from .config import EngineConfig
from .destination_config import SftpConfig
from .exceptions import ConfigurationError
from .logging_utils import get_logger
from .sync import AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)

_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def load_private_key(text: str) -> paramiko.PKey:
    """OpenSSH/PEM 형식의 private key 문자열을 해석한다."""
    last_error: Optional[Exception] = None
    for key_cls in _KEY_TYPES:
        try:
            return key_cls.from_private_key(io.StringIO(text.strip() + "\n"))
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise ConfigurationError(
        f"SFTP private_key 를 해석할 수 없습니다 (지원: ed25519, ecdsa, rsa): {last_error}"
    )


def _auth_kwargs(cfg: SftpConfig) -> dict:
    if cfg.private_key.strip():
        return {"pkey": load_private_key(cfg.private_key)}
    if cfg.password:
        return {"password": cfg.password}
    raise ConfigurationError("Provide either password or private_key")


class SftpSession:
    """Transport + SFTPClient 를 한 번의 배포/테스트 동안만 유지한다."""

    def __init__(self, cfg: SftpConfig, engine: Optional[EngineConfig] = None) -> None:
        self.cfg = cfg
        self.engine = engine or EngineConfig()
        self.transport: Optional[paramiko.Transport] = None
        self.sftp: Optional[paramiko.SFTPClient] = None

    def open(self) -> paramiko.SFTPClient:
        auth = _auth_kwargs(self.cfg)
        timeout = self.engine.sftp_timeout
        # 접속 단계부터 timeout 을 건 소켓을 넘긴다
        sock = socket.create_connection((self.cfg.host, self.cfg.port), timeout=timeout)
        try:
            transport = paramiko.Transport(sock)
        except Exception:
            sock.close()
            raise
        self.transport = transport
        transport.banner_timeout = timeout
        transport.auth_timeout = timeout
        transport.connect(username=self.cfg.username, **auth)
        sftp = paramiko.SFTPClient.from_transport(transport)
        if sftp is None:
            raise RuntimeError("SFTP 채널을 열 수 없습니다.")
        sftp.get_channel().settimeout(timeout)
        self.sftp = sftp
        return sftp

    def close(self) -> None:
        if self.sftp is not None:
            self.sftp.close()
        if self.transport is not None:
            self.transport.close()


class SftpStore:
    def __init__(self, sftp: paramiko.SFTPClient, root: str) -> None:
        self.sftp = sftp
        self.root = root

    @classmethod
    def for_session(cls, sftp: paramiko.SFTPClient, path: str) -> "SftpStore":
        if path.startswith("/"):
            return cls(sftp, "/")
        return cls(sftp, sftp.normalize(".") or "/")

    def absolute(self, path: str) -> str:
        return posixpath.join(self.root, join_remote(path)) if path else self.root

    def read_bytes(self, path: str) -> Optional[bytes]:
        try:
            with self.sftp.open(self.absolute(path), "rb") as f:
                return f.read()
        except IOError as e:
            if getattr(e, "errno", None) == errno.ENOENT:
                return None
            raise

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.sftp.putfo(io.BytesIO(data), self.absolute(path), file_size=len(data), confirm=True)

    def ensure_dir(self, path: str) -> None:
        """mkdir -p 와 같이 상위 디렉토리부터 차례로 만든다."""
        current = self.root.rstrip("/")
        for part in [p for p in join_remote(path).split("/") if p]:
            current = f"{current}/{part}"
            try:
                if stat.S_ISDIR(self.sftp.stat(current).st_mode or 0):
                    continue
                raise RuntimeError(f"디렉토리 위치에 파일이 존재합니다: {current}")
            except IOError:
                self.sftp.mkdir(current)


def test_access(cfg: SftpConfig, engine: Optional[EngineConfig] = None) -> AccessResult:
    """
    접속 후 배포 경로를 만들 수 있는지(없으면 생성) 확인한다.
    """
    session = SftpSession(cfg, engine)
    try:
        sftp = session.open()
        store = SftpStore.for_session(sftp, cfg.path)
        if cfg.path:
            store.ensure_dir(cfg.path)
        sftp.listdir(store.absolute(cfg.path))
        return AccessResult(ok=True)
    except ConfigurationError as e:
        return AccessResult.failure(str(e))
    except (paramiko.SSHException, OSError, RuntimeError) as e:
        message = describe_error(e)
        logger.warning("SFTP 접근 확인 실패: host=%s error=%s", cfg.host, message)
        return AccessResult.failure(message)
    finally:
        session.close()


def deploy(cfg: SftpConfig, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    result = DeployResult()
    session = SftpSession(cfg, engine)
    logger.info("SFTP 배포 시작: host=%s path=%s", cfg.host, cfg.path or "(home)")
    try:
        sftp = session.open()
        store = SftpStore.for_session(sftp, cfg.path)
        sync = SyncSession(store, base_path=cfg.path, result=result)
        if cfg.path:
            sync.ensure_dir(join_remote(cfg.path))
        sync.push_all(build_artifacts(request))
    except ConfigurationError as e:
        result.errors.append(str(e))
    except Exception as e:  # noqa: BLE001
        logger.exception("SFTP 배포 중 오류 발생")
        result.errors.append(describe_error(e))
    finally:
        session.close()
    return result
