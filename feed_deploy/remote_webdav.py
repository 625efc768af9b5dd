"""
remote_webdav
-------------

WebDAV 배포 모듈 (requests).

일부 서버는 MKCOL 에 405 를 돌려주지만 PUT 은 허용한다.
그래서 접근 확인은 MKCOL 없이 PUT + DELETE 로 하고,
배포 중 디렉토리 생성(MKCOL) 실패는 "이미 있음"으로 보고 PUT 결과로 판단한다.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

import requests

from .artifacts import DeployRequest, build_artifacts, join_remote
from .config import EngineConfig
from .destination_config import WebdavConfig
from .logging_utils import get_logger
from .sync import AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)

TEST_FILE = ".feed-deploy-test"

# MKCOL: 405 = 이미 존재(또는 미지원), 301 = 컬렉션으로 리다이렉트
_MKCOL_OK = {200, 201, 204, 301, 405}


def create_session(cfg: WebdavConfig) -> requests.Session:
    session = requests.Session()
    session.auth = (cfg.username, cfg.password)
    return session


def _raise_for_status(resp: requests.Response, method: str, path: str) -> None:
    if resp.status_code >= 400:
        raise RuntimeError(f"WebDAV {method} {path} 실패: HTTP {resp.status_code} {resp.reason or ''}".rstrip())


class WebdavStore:
    def __init__(self, session: requests.Session, base_url: str, timeout: float) -> None:
        self.session = session
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        return f"{self.base_url}/{quote(join_remote(path))}"

    def read_bytes(self, path: str) -> Optional[bytes]:
        resp = self.session.get(self.url(path), timeout=self.timeout)
        if resp.status_code == 404:
            return None
        _raise_for_status(resp, "GET", path)
        return resp.content

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        headers = {"Content-Type": content_type} if content_type else None
        resp = self.session.put(self.url(path), data=data, headers=headers, timeout=self.timeout)
        _raise_for_status(resp, "PUT", path)

    def delete(self, path: str) -> None:
        resp = self.session.delete(self.url(path), timeout=self.timeout)
        _raise_for_status(resp, "DELETE", path)

    def ensure_dir(self, path: str) -> None:
        acc = ""
        for part in [p for p in path.split("/") if p]:
            acc = f"{acc}/{part}" if acc else part
            resp = self.session.request("MKCOL", self.url(acc) + "/", timeout=self.timeout)
            if resp.status_code not in _MKCOL_OK:
                logger.debug("WebDAV MKCOL 무시: %s (HTTP %s)", acc, resp.status_code)


def test_access(cfg: WebdavConfig, engine: Optional[EngineConfig] = None) -> AccessResult:
    """
    배포와 같은 방식(PUT)으로 빈 테스트 파일을 쓰고 지운다.
    """
    engine = engine or EngineConfig()
    session = create_session(cfg)
    try:
        store = WebdavStore(session, cfg.url, engine.http_timeout)
        test_path = join_remote(cfg.path, TEST_FILE)
        store.write_bytes(test_path, b"")
        store.delete(test_path)
        return AccessResult(ok=True)
    except (requests.RequestException, RuntimeError) as e:
        message = describe_error(e)
        logger.warning("WebDAV 접근 확인 실패: url=%s error=%s", cfg.url, message)
        return AccessResult.failure(message)
    finally:
        session.close()


def deploy(cfg: WebdavConfig, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    engine = engine or EngineConfig()
    result = DeployResult()
    session = create_session(cfg)
    logger.info("WebDAV 배포 시작: url=%s path=%s", cfg.url, cfg.path or "/")
    try:
        store = WebdavStore(session, cfg.url, engine.http_timeout)
        sync = SyncSession(store, base_path=cfg.path, result=result)
        if cfg.path:
            sync.ensure_dir(join_remote(cfg.path))
        sync.push_all(build_artifacts(request))
    except Exception as e:  # noqa: BLE001
        logger.exception("WebDAV 배포 중 오류 발생")
        result.errors.append(describe_error(e))
    finally:
        session.close()
    return result
