"""
secrets_cipher
--------------

배포 대상 자격증명(비밀번호, private key, API 토큰)을 저장 시점에 암호화하는 모듈.

- AES-256-GCM, 호출마다 12 bytes 랜덤 nonce, 16 bytes 인증 태그
- 토큰 형식: v1:<nonce>:<tag>:<ciphertext> (각 부분 base64url, padding 없음)
- purpose tag 는 AAD 로 바인딩된다. "exports" 용으로 암호화한 토큰은
  같은 키라도 "dns" 용 복호화에서 실패한다.

master key 결정 순서:
    1) FEED_DEPLOY_SECRETS_KEY (decode 후 정확히 32 bytes)
    2) <secrets_dir>/secrets-key.txt (없으면 최초 1회 생성, 권한 0600)

주의: 키 파일을 백업/내보내기 하지 않은 상태로 잃어버리면
기존에 암호화된 모든 자격증명은 영구히 복구할 수 없다.
운영 환경에서는 FEED_DEPLOY_SECRETS_KEY 로 키를 명시적으로 관리할 것.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets as secrets_module
import threading
from enum import Enum
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import DEFAULT_SECRETS_DIR, EngineConfig
from .exceptions import ConfigurationError, SecretDecryptionError
from .logging_utils import get_logger


logger = get_logger(__name__)


TOKEN_VERSION = "v1"
KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
SECRETS_KEY_ENV = "FEED_DEPLOY_SECRETS_KEY"
SECRETS_KEY_FILENAME = "secrets-key.txt"


class KeySource(str, Enum):
    ENV = "env"
    FILE = "file"
    STATIC = "static"


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64_decode_any(value: str) -> bytes:
    """base64 / base64url 모두 허용, padding 유무 무관."""
    s = value.strip().replace("+", "-").replace("/", "_")
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s.encode("ascii"))


def generate_key() -> str:
    """FEED_DEPLOY_SECRETS_KEY 로 사용할 수 있는 새 키(base64url)를 만든다."""
    return _b64url_encode(secrets_module.token_bytes(KEY_BYTES))


class KeyProvider:
    """
    환경변수 키 → 키 파일 순서로 master key 를 결정한다.
    """

    def __init__(
        self,
        secrets_key: Optional[str] = None,
        secrets_dir: str = DEFAULT_SECRETS_DIR,
        warn_on_file_key: bool = True,
    ) -> None:
        self.secrets_key = secrets_key
        self.secrets_dir = secrets_dir
        self.warn_on_file_key = warn_on_file_key

    @classmethod
    def from_config(cls, cfg: EngineConfig) -> "KeyProvider":
        return cls(
            secrets_key=cfg.secrets_key,
            secrets_dir=cfg.secrets_dir,
            warn_on_file_key=cfg.warn_on_file_key,
        )

    @property
    def source(self) -> KeySource:
        return KeySource.ENV if self.secrets_key else KeySource.FILE

    @property
    def key_path(self) -> str:
        return os.path.join(self.secrets_dir, SECRETS_KEY_FILENAME)

    def load(self) -> bytes:
        if self.secrets_key:
            try:
                raw = _b64_decode_any(self.secrets_key)
            except (binascii.Error, ValueError) as e:
                raise ConfigurationError(
                    f"{SECRETS_KEY_ENV} 값이 base64/base64url 형식이 아닙니다."
                ) from e
            if len(raw) != KEY_BYTES:
                raise ConfigurationError(
                    f"{SECRETS_KEY_ENV} 는 decode 후 정확히 {KEY_BYTES} bytes 여야 합니다 (현재 {len(raw)} bytes)."
                )
            return raw
        return self._load_or_create_file_key()

    def _load_or_create_file_key(self) -> bytes:
        path = self.key_path
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                existing = f.read().strip()
            try:
                raw = _b64_decode_any(existing)
            except (binascii.Error, ValueError):
                raw = b""
            if len(raw) != KEY_BYTES:
                # 기존 파일을 덮어쓰면 이전 토큰이 모두 복구 불가가 되므로 생성하지 않는다.
                raise ConfigurationError(
                    f"secrets 키 파일이 손상되었습니다: {path} "
                    f"(decode 후 {KEY_BYTES} bytes 여야 함). 백업에서 복원하거나 {SECRETS_KEY_ENV} 를 설정하세요."
                )
            if self.warn_on_file_key:
                logger.warning(
                    "%s 가 설정되지 않아 저장된 secrets 키 파일을 사용합니다: %s "
                    "(키 관리를 명시적으로 하려면 환경변수로 설정하세요)",
                    SECRETS_KEY_ENV,
                    path,
                )
            return raw

        os.makedirs(self.secrets_dir, mode=0o700, exist_ok=True)
        raw = secrets_module.token_bytes(KEY_BYTES)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(_b64url_encode(raw) + "\n")
        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.debug("키 파일 권한 변경 실패 (파일시스템 제약): %s", path)
        logger.warning(
            "%s 가 설정되지 않아 새 secrets 키를 생성했습니다: %s "
            "(이 파일을 잃으면 암호화된 자격증명을 복구할 수 없습니다. 반드시 백업하세요)",
            SECRETS_KEY_ENV,
            path,
        )
        return raw


class StaticKeyProvider:
    """테스트나 외부 KMS 연동처럼 키를 직접 주입할 때 사용한다."""

    source = KeySource.STATIC

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise ConfigurationError(f"master key 는 {KEY_BYTES} bytes 여야 합니다.")
        self._key = key

    def load(self) -> bytes:
        return self._key


# -----------------------------
# 프로세스 전역 key provider
# -----------------------------
_key_lock = threading.Lock()
_key_provider = None  # type: ignore[var-annotated]
_cached_key: Optional[bytes] = None
_cached_source: Optional[KeySource] = None


def configure_key_provider(provider) -> None:  # noqa: ANN001
    """
    전역 key provider 를 교체하고 캐시를 비운다.
    provider 는 load() -> bytes 와 source 속성을 가져야 한다.
    """
    global _key_provider, _cached_key, _cached_source
    with _key_lock:
        _key_provider = provider
        _cached_key = None
        _cached_source = None


def reset_key_cache() -> None:
    global _key_provider, _cached_key, _cached_source
    with _key_lock:
        _key_provider = None
        _cached_key = None
        _cached_source = None


def get_secrets_key() -> bytes:
    """최초 호출 시 lazy 하게 키를 결정하고 이후에는 캐시를 반환한다."""
    global _key_provider, _cached_key, _cached_source
    with _key_lock:
        if _cached_key is not None:
            return _cached_key
        if _key_provider is None:
            _key_provider = KeyProvider.from_config(EngineConfig.from_env())
        key = _key_provider.load()
        _cached_key = key
        _cached_source = _key_provider.source
        logger.debug("secrets 키 소스: %s", _cached_source.value)
        return key


def get_key_source() -> Optional[KeySource]:
    with _key_lock:
        return _cached_source


def encrypt_secret(plaintext: str, purpose: str) -> str:
    key = get_secrets_key()
    nonce = secrets_module.token_bytes(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), purpose.encode("utf-8"))
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return ":".join(
        [TOKEN_VERSION, _b64url_encode(nonce), _b64url_encode(tag), _b64url_encode(ciphertext)]
    )


def decrypt_secret(token: str, purpose: str) -> str:
    parts = token.split(":") if isinstance(token, str) else []
    if len(parts) != 4 or parts[0] != TOKEN_VERSION:
        raise SecretDecryptionError("암호화된 값의 형식이 올바르지 않습니다.")
    try:
        nonce = _b64_decode_any(parts[1])
        tag = _b64_decode_any(parts[2])
        ciphertext = _b64_decode_any(parts[3])
    except (binascii.Error, ValueError) as e:
        raise SecretDecryptionError("암호화된 값의 base64url 디코딩에 실패했습니다.") from e
    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise SecretDecryptionError("암호화된 값의 nonce/tag 길이가 올바르지 않습니다.")

    key = get_secrets_key()
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, purpose.encode("utf-8"))
    except InvalidTag as e:
        raise SecretDecryptionError(
            "복호화 실패: 키가 다르거나, 다른 용도(purpose)로 암호화되었거나, 값이 변조되었습니다."
        ) from e
    return plaintext.decode("utf-8")


def is_encrypted_secret(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(TOKEN_VERSION + ":")


def redact(value: Optional[str]) -> str:
    s = str(value or "").strip()
    if not s:
        return ""
    return f"****{s[-4:]}"
