"""
destination_config
------------------

배포 대상(destination)의 모드별 설정을 타입으로 정의하고,
암호화된 설정 blob(config_enc) 을 만들고/풀고/부분 갱신하는 모듈.

- 모드마다 허용된 필드 목록(FIELDS)이 있고, 그 밖의 키는 조용히 버린다.
  모드를 바꾸는 갱신에서 이전 모드의 필드가 blob 에 남지 않게 하기 위함.
- path/prefix 정규화는 normalize_path 한 곳에서만 한다.
- SFTP: private_key 가 비어있지 않으면 password 는 항상 빈 값으로 저장된다.
- public_base_url 은 destination 행의 평문 컬럼이며 blob 에 저장하지 않는다.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type, Union

from .exceptions import ConfigurationError, SecretDecryptionError
from .logging_utils import get_logger
from .secrets_cipher import decrypt_secret, encrypt_secret, is_encrypted_secret, redact


logger = get_logger(__name__)

EXPORTS_PURPOSE = "feed-deploy:exports"


class DestinationMode(str, Enum):
    S3 = "S3"
    FTP = "FTP"
    SFTP = "SFTP"
    WEBDAV = "WebDAV"
    IPFS = "IPFS"
    SMB = "SMB"


_MODE_ALIASES = {m.value.upper(): m for m in DestinationMode}


def parse_mode(value: Union[str, DestinationMode, None]) -> DestinationMode:
    """대소문자 구분 없이 모드 이름을 해석한다. (예: 'webdav' -> WebDAV)"""
    if isinstance(value, DestinationMode):
        return value
    key = str(value or "").strip().upper()
    if key not in _MODE_ALIASES:
        raise ConfigurationError(
            f"지원하지 않는 배포 모드입니다: {value!r} "
            f"({' | '.join(m.value for m in DestinationMode)} 중 하나)"
        )
    return _MODE_ALIASES[key]


def normalize_path(value: Optional[str]) -> str:
    """trim 후 끝의 / 를 제거하고, 값이 남아있으면 / 를 정확히 하나 붙인다."""
    s = str(value or "").strip().rstrip("/")
    return f"{s}/" if s else ""


def _text(raw: Mapping[str, Any], key: str, default: str = "") -> str:
    value = raw.get(key)
    return default if value is None else str(value)


def _optional_text(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _port(value: Any, default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        port = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"port 값이 숫자가 아닙니다: {value!r}") from e
    if port <= 0:
        return default
    if port > 65535:
        raise ConfigurationError(f"port 값이 범위를 벗어났습니다: {port}")
    return port


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


@dataclass
class S3Config:
    mode: ClassVar[DestinationMode] = DestinationMode.S3
    FIELDS: ClassVar[Tuple[str, ...]] = (
        "bucket", "prefix", "region", "endpoint_url", "access_key_id", "secret_access_key",
    )
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("access_key_id", "secret_access_key")

    bucket: str = ""
    prefix: str = ""
    region: str = ""
    endpoint_url: Optional[str] = None
    access_key_id: str = ""
    secret_access_key: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "S3Config":
        return cls(
            bucket=_text(raw, "bucket").strip(),
            prefix=normalize_path(raw.get("prefix")),
            region=_text(raw, "region").strip(),
            endpoint_url=_optional_text(raw, "endpoint_url"),
            access_key_id=_text(raw, "access_key_id"),
            secret_access_key=_text(raw, "secret_access_key"),
        )

    def missing_fields(self) -> List[str]:
        return [
            name for name in ("bucket", "region", "access_key_id", "secret_access_key")
            if not getattr(self, name)
        ]

    @property
    def base_path(self) -> str:
        return self.prefix


@dataclass
class FtpConfig:
    mode: ClassVar[DestinationMode] = DestinationMode.FTP
    FIELDS: ClassVar[Tuple[str, ...]] = ("host", "port", "username", "password", "path", "secure")
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("password",)

    host: str = ""
    port: int = 21
    username: str = ""
    password: str = ""
    path: str = ""
    secure: bool = False

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "FtpConfig":
        return cls(
            host=_text(raw, "host").strip(),
            port=_port(raw.get("port"), 21),
            username=_text(raw, "username"),
            password=_text(raw, "password"),
            path=normalize_path(raw.get("path")),
            secure=_flag(raw.get("secure", False)),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in ("host", "username", "password") if not getattr(self, name)]

    @property
    def base_path(self) -> str:
        return self.path


@dataclass
class SftpConfig:
    mode: ClassVar[DestinationMode] = DestinationMode.SFTP
    FIELDS: ClassVar[Tuple[str, ...]] = ("host", "port", "username", "password", "private_key", "path")
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("password", "private_key")

    host: str = ""
    port: int = 22
    username: str = ""
    password: str = ""
    private_key: str = ""
    path: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "SftpConfig":
        return cls(
            host=_text(raw, "host").strip(),
            port=_port(raw.get("port"), 22),
            username=_text(raw, "username"),
            password=_text(raw, "password"),
            private_key=_text(raw, "private_key"),
            path=normalize_path(raw.get("path")),
        )

    def missing_fields(self) -> List[str]:
        missing = [name for name in ("host", "username") if not getattr(self, name)]
        if not self.private_key.strip() and not self.password:
            missing.append("password|private_key")
        return missing

    @property
    def base_path(self) -> str:
        return self.path


@dataclass
class WebdavConfig:
    mode: ClassVar[DestinationMode] = DestinationMode.WEBDAV
    FIELDS: ClassVar[Tuple[str, ...]] = ("url", "username", "password", "path")
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("password",)

    url: str = ""
    username: str = ""
    password: str = ""
    path: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "WebdavConfig":
        return cls(
            url=_text(raw, "url").strip(),
            username=_text(raw, "username"),
            password=_text(raw, "password"),
            path=normalize_path(raw.get("path")),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in ("url", "username", "password") if not getattr(self, name)]

    @property
    def base_path(self) -> str:
        return self.path


@dataclass
class IpfsConfig:
    mode: ClassVar[DestinationMode] = DestinationMode.IPFS
    FIELDS: ClassVar[Tuple[str, ...]] = (
        "api_url", "api_key", "username", "password", "path", "gateway_url",
    )
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("api_key", "password")

    api_url: str = ""
    api_key: str = ""
    # api_key 가 없을 때 사용하는 basic auth (Kubo 앞단 reverse proxy 등)
    username: str = ""
    password: str = ""
    path: str = ""
    gateway_url: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "IpfsConfig":
        return cls(
            api_url=_text(raw, "api_url").strip(),
            api_key=_text(raw, "api_key"),
            username=_text(raw, "username"),
            password=_text(raw, "password"),
            path=normalize_path(raw.get("path")),
            gateway_url=_optional_text(raw, "gateway_url"),
        )

    def missing_fields(self) -> List[str]:
        return [] if self.api_url else ["api_url"]

    @property
    def base_path(self) -> str:
        return self.path


@dataclass
class SmbConfig:
    mode: ClassVar[DestinationMode] = DestinationMode.SMB
    FIELDS: ClassVar[Tuple[str, ...]] = ("host", "port", "share", "username", "password", "domain", "path")
    SECRET_FIELDS: ClassVar[Tuple[str, ...]] = ("password",)

    host: str = ""
    port: Optional[int] = None
    share: str = ""
    username: str = ""
    password: str = ""
    domain: str = ""
    path: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "SmbConfig":
        return cls(
            host=_text(raw, "host").strip(),
            port=_port(raw.get("port"), None),
            share=_text(raw, "share").strip(),
            username=_text(raw, "username"),
            password=_text(raw, "password"),
            domain=_text(raw, "domain"),
            path=normalize_path(raw.get("path")),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in ("host", "share", "username", "password") if not getattr(self, name)]

    @property
    def base_path(self) -> str:
        return self.path


DestinationConfig = Union[S3Config, FtpConfig, SftpConfig, WebdavConfig, IpfsConfig, SmbConfig]

CONFIG_TYPES: Dict[DestinationMode, Type[Any]] = {
    DestinationMode.S3: S3Config,
    DestinationMode.FTP: FtpConfig,
    DestinationMode.SFTP: SftpConfig,
    DestinationMode.WEBDAV: WebdavConfig,
    DestinationMode.IPFS: IpfsConfig,
    DestinationMode.SMB: SmbConfig,
}


def config_to_raw(cfg: DestinationConfig) -> Dict[str, Any]:
    return asdict(cfg)


def _apply_mode_rules(cfg: DestinationConfig) -> DestinationConfig:
    if isinstance(cfg, SftpConfig) and cfg.private_key.strip():
        return replace(cfg, password="")
    return cfg


def _filter_fields(mode: DestinationMode, fields: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = CONFIG_TYPES[mode].FIELDS
    dropped = sorted(k for k in fields if k not in allowed)
    if dropped:
        logger.debug("%s 모드에서 허용되지 않는 필드를 제외합니다: %s", mode.value, dropped)
    return {k: v for k, v in fields.items() if k in allowed}


def _seal(cfg: DestinationConfig) -> str:
    return encrypt_secret(json.dumps(config_to_raw(cfg), sort_keys=True), EXPORTS_PURPOSE)


def parse_config(mode: Union[str, DestinationMode], fields: Mapping[str, Any]) -> DestinationConfig:
    """허용 필드만 남기고 정규화/모드 규칙을 적용한 타입 설정을 만든다."""
    m = parse_mode(mode)
    cfg = CONFIG_TYPES[m].from_raw(_filter_fields(m, fields))
    return _apply_mode_rules(cfg)


def build_encoded(mode: Union[str, DestinationMode], fields: Mapping[str, Any]) -> str:
    """새 destination 용 config_enc 토큰을 만든다."""
    return _seal(parse_config(mode, fields))


def _decrypt_raw(row: Mapping[str, Any]) -> Dict[str, Any]:
    token = row.get("config_enc")
    if not token or not is_encrypted_secret(token):
        raise ConfigurationError("배포 대상 설정(config_enc)이 없거나 형식이 올바르지 않습니다.")
    plaintext = decrypt_secret(token, EXPORTS_PURPOSE)
    try:
        raw = json.loads(plaintext)
    except ValueError as e:
        raise SecretDecryptionError("복호화된 설정이 JSON 형식이 아닙니다.") from e
    if not isinstance(raw, dict):
        raise SecretDecryptionError("복호화된 설정이 객체(JSON object)가 아닙니다.")
    return raw


def decode_for(mode: Union[str, DestinationMode], row: Mapping[str, Any]) -> DestinationConfig:
    """destination 행의 config_enc 를 복호화하여 해당 모드의 타입 설정으로 돌려준다."""
    m = parse_mode(mode)
    raw = _decrypt_raw(row)
    return CONFIG_TYPES[m].from_raw(raw)


def merge_and_encode(
    row: Mapping[str, Any],
    update: Mapping[str, Any],
    mode: Union[str, DestinationMode, None] = None,
) -> str:
    """
    기존 설정에 부분 갱신을 병합하고 다시 암호화한다.

    - update 의 None 값은 "변경 없음"으로 본다.
    - 대상 모드(mode 가 주어지면 새 모드)의 허용 필드 밖의 키는 버린다.
    """
    target = parse_mode(mode or row.get("mode"))
    merged = dict(_decrypt_raw(row))
    for key, value in update.items():
        if value is not None:
            merged[key] = value
    cfg = CONFIG_TYPES[target].from_raw(_filter_fields(target, merged))
    return _seal(_apply_mode_rules(cfg))


def validate_config(cfg: DestinationConfig) -> None:
    missing = cfg.missing_fields()
    if missing:
        raise ConfigurationError(
            f"{cfg.mode.value} 설정에 필수 값이 누락되었습니다: " + ", ".join(missing)
        )


def redacted_view(cfg: DestinationConfig) -> Dict[str, Any]:
    view = config_to_raw(cfg)
    for name in cfg.SECRET_FIELDS:
        view[name] = redact(view.get(name))
    return view


def path_prefix(cfg: DestinationConfig) -> Optional[str]:
    """공개 URL(피드, enclosure)에 쓰이는 path/prefix. S3 는 prefix, 나머지는 path."""
    p = cfg.base_path.strip().strip("/")
    return p or None
