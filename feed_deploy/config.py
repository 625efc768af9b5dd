from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, List

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.deploy", ".env.secrets"]

DEFAULT_SECRETS_DIR = os.path.join("data", "secrets")
DEFAULT_STORE_PATH = os.path.join("data", "destinations.json")
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_float(name: str, default: float, invalid: List[str]) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        invalid.append(name)
        return default
    if value <= 0:
        invalid.append(name)
        return default
    return value


@dataclass
class EngineConfig:
    # master key (base64/base64url, 32 bytes). 없으면 secrets_dir 의 키 파일을 사용
    secrets_key: Optional[str] = None
    secrets_dir: str = DEFAULT_SECRETS_DIR

    # 로컬 destination 저장소
    store_path: str = DEFAULT_STORE_PATH

    # IPFS 공개 URL 기본 게이트웨이
    default_gateway_url: str = DEFAULT_IPFS_GATEWAY

    # 프로토콜 클라이언트 타임아웃(초)
    ftp_timeout: float = 120.0
    sftp_timeout: float = 120.0
    http_timeout: float = 120.0

    # 키 파일 사용 시 경고 로그 출력 여부
    warn_on_file_key: bool = True

    @classmethod
    def from_env(cls) -> "EngineConfig":
        invalid: List[str] = []

        cfg = cls(
            secrets_key=(os.getenv("FEED_DEPLOY_SECRETS_KEY") or "").strip() or None,
            secrets_dir=os.getenv("FEED_DEPLOY_SECRETS_DIR") or DEFAULT_SECRETS_DIR,
            store_path=os.getenv("FEED_DEPLOY_STORE_PATH") or DEFAULT_STORE_PATH,
            default_gateway_url=os.getenv("FEED_DEPLOY_IPFS_GATEWAY") or DEFAULT_IPFS_GATEWAY,
            ftp_timeout=_get_float("FEED_DEPLOY_FTP_TIMEOUT", 120.0, invalid),
            sftp_timeout=_get_float("FEED_DEPLOY_SFTP_TIMEOUT", 120.0, invalid),
            http_timeout=_get_float("FEED_DEPLOY_HTTP_TIMEOUT", 120.0, invalid),
            warn_on_file_key=_get_bool("FEED_DEPLOY_WARN_ON_FILE_KEY", True),
        )

        if invalid:
            raise ValueError(
                "숫자(양수) 형식이 아닌 환경변수가 있습니다: " + ", ".join(sorted(set(invalid)))
            )

        return cfg
