"""
destination_store
-----------------

배포 대상(destination) 로컬 저장소.

- JSON 파일 하나에 {"destinations": [...]} 형태로 저장한다.
- 쓰기는 임시 파일 + os.replace 로 원자적으로 교체하며 파일 권한은 0600.
- 컬렉션당 destination 은 최대 하나.
- 자격증명은 config_enc(암호화된 설정 blob) 안에만 존재한다.

통합 blob 이전의 레코드(S3 전용 평문/필드별 암호화 컬럼)는 그 레코드를 처음 읽을 때
config_enc 로 옮기고 평문 컬럼을 가린 뒤 저장한다. (이미 옮긴 레코드는 변경 없음)
이전할 수 없는 레코드는 다른 레코드의 조회를 막지 않는다.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from dataclasses import asdict, dataclass, fields as dataclass_fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .destination_config import (
    EXPORTS_PURPOSE,
    DestinationConfig,
    DestinationMode,
    build_encoded,
    decode_for,
    merge_and_encode,
    parse_config,
    parse_mode,
    validate_config,
)
from .exceptions import (
    ConfigurationError,
    DestinationExistsError,
    DestinationNotFoundError,
    FeedDeployError,
)
from .logging_utils import get_logger
from .secrets_cipher import decrypt_secret, is_encrypted_secret, redact


logger = get_logger(__name__)

LEGACY_S3_COLUMNS = ("bucket", "prefix", "region", "endpoint_url")
LEGACY_CREDENTIAL_COLUMNS = ("access_key_id", "secret_access_key")
LEGACY_REDACTED_SECRET = "(encrypted)"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class Destination:
    id: str
    collection_id: str
    mode: str
    config_enc: str
    name: Optional[str] = None
    public_base_url: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Destination":
        known = {f.name for f in dataclass_fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in known})

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def destination_mode(self) -> DestinationMode:
        return parse_mode(self.mode)

    def decode(self) -> DestinationConfig:
        return decode_for(self.mode, self.to_row())


def _legacy_credential(row: Mapping[str, Any], column: str) -> str:
    enc = row.get(f"{column}_enc")
    if enc and is_encrypted_secret(enc):
        return decrypt_secret(enc, EXPORTS_PURPOSE)
    value = row.get(column)
    if not value or value == LEGACY_REDACTED_SECRET or str(value).startswith("****"):
        raise ConfigurationError("Missing export credentials")
    return str(value)


def migrate_legacy_record(row: Mapping[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """
    통합 설정 blob 이전의 S3 레코드를 config_enc 형태로 옮긴다.

    Returns:
        (row, changed) - changed 가 False 이면 row 는 입력과 같은 내용이다.
    """
    if row.get("config_enc"):
        return dict(row), False

    access_key_id = _legacy_credential(row, "access_key_id")
    secret_access_key = _legacy_credential(row, "secret_access_key")
    mode = parse_mode(row.get("mode") or row.get("provider") or DestinationMode.S3.value)
    fields = {name: row.get(name) for name in LEGACY_S3_COLUMNS}
    fields.update(access_key_id=access_key_id, secret_access_key=secret_access_key)

    migrated = {
        k: v for k, v in row.items()
        if k not in LEGACY_S3_COLUMNS
        and k not in ("provider", "podcast_id")
        and not k.endswith("_enc")
    }
    migrated.update(
        collection_id=row.get("collection_id") or row.get("podcast_id"),
        mode=mode.value,
        config_enc=build_encoded(mode, fields),
        access_key_id=redact(access_key_id),
        secret_access_key=LEGACY_REDACTED_SECRET,
        updated_at=_now(),
    )
    logger.info("레거시 배포 대상을 암호화된 설정 형식으로 이전했습니다: id=%s", row.get("id"))
    return migrated, True


class DestinationStore:
    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    # -----------------------------
    # 파일 입출력
    # -----------------------------
    def _read_rows(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        rows = data.get("destinations", []) if isinstance(data, dict) else []
        return [dict(r) for r in rows if isinstance(r, dict)]

    def _write_rows(self, rows: List[Dict[str, Any]]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".destinations-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"destinations": rows}, f, ensure_ascii=False, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def _migrate_at(self, rows: List[Dict[str, Any]], idx: int) -> Dict[str, Any]:
        """rows[idx] 하나만 이전한다. 바뀌었으면 파일에 바로 반영한다."""
        row, changed = migrate_legacy_record(rows[idx])
        if changed:
            rows[idx] = row
            self._write_rows(rows)
        return row

    @staticmethod
    def _find(rows: List[Dict[str, Any]], destination_id: str) -> int:
        for i, row in enumerate(rows):
            if row.get("id") == destination_id:
                return i
        raise DestinationNotFoundError(f"배포 대상을 찾을 수 없습니다: {destination_id}")

    @staticmethod
    def _collection_of(row: Mapping[str, Any]) -> Optional[str]:
        # 이전 전 레코드는 podcast_id 에 컬렉션을 담고 있다.
        return row.get("collection_id") or row.get("podcast_id")

    # -----------------------------
    # 조회
    # -----------------------------
    def list(self) -> List[Destination]:
        """
        모든 배포 대상. 이전할 수 없는 레거시 레코드(자격증명 누락 등)는
        경고만 남기고 목록에서 뺀다.
        """
        with self._lock:
            rows = self._read_rows()
            result: List[Destination] = []
            changed_any = False
            for i, row in enumerate(rows):
                try:
                    rows[i], changed = migrate_legacy_record(row)
                except (FeedDeployError, ValueError) as e:
                    logger.warning("레거시 배포 대상을 이전하지 못해 건너뜁니다: id=%s (%s)", row.get("id"), e)
                    continue
                changed_any = changed_any or changed
                result.append(Destination.from_row(rows[i]))
            if changed_any:
                self._write_rows(rows)
            return result

    def get(self, destination_id: str) -> Destination:
        with self._lock:
            rows = self._read_rows()
            return Destination.from_row(self._migrate_at(rows, self._find(rows, destination_id)))

    def get_for_collection(self, collection_id: str) -> Optional[Destination]:
        with self._lock:
            rows = self._read_rows()
            for i, row in enumerate(rows):
                if self._collection_of(row) == collection_id:
                    return Destination.from_row(self._migrate_at(rows, i))
        return None

    # -----------------------------
    # 변경
    # -----------------------------
    def create(
        self,
        collection_id: str,
        mode: Union[str, DestinationMode],
        fields: Mapping[str, Any],
        name: Optional[str] = None,
        public_base_url: Optional[str] = None,
    ) -> Destination:
        m = parse_mode(mode)
        validate_config(parse_config(m, fields))

        with self._lock:
            rows = self._read_rows()
            if any(self._collection_of(r) == collection_id for r in rows):
                raise DestinationExistsError(
                    f"컬렉션에 이미 배포 대상이 있습니다: {collection_id}"
                )
            now = _now()
            dest = Destination(
                id=uuid.uuid4().hex,
                collection_id=collection_id,
                mode=m.value,
                config_enc=build_encoded(m, fields),
                name=name,
                public_base_url=(public_base_url or "").strip() or None,
                created_at=now,
                updated_at=now,
            )
            rows.append(dest.to_row())
            self._write_rows(rows)

        logger.info("배포 대상 생성: id=%s collection=%s mode=%s", dest.id, collection_id, m.value)
        return dest

    def update(
        self,
        destination_id: str,
        fields: Optional[Mapping[str, Any]] = None,
        mode: Union[str, DestinationMode, None] = None,
        public_base_url: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Destination:
        """
        부분 갱신. fields 의 None 값과 생략된 키는 기존 값을 유지한다.
        public_base_url 은 평문 컬럼이므로 blob 과 별도로 갱신한다. (빈 문자열이면 제거)
        """
        fields = dict(fields or {})
        fields.pop("public_base_url", None)
        if not fields and mode is None and public_base_url is None and name is None:
            raise ValueError("변경할 값이 없습니다.")

        with self._lock:
            rows = self._read_rows()
            idx = self._find(rows, destination_id)
            row, _ = migrate_legacy_record(rows[idx])

            if fields or mode is not None:
                target = parse_mode(mode or row["mode"])
                row["config_enc"] = merge_and_encode(row, fields, target)
                row["mode"] = target.value
                validate_config(decode_for(target, row))
            if public_base_url is not None:
                row["public_base_url"] = public_base_url.strip() or None
            if name is not None:
                row["name"] = name
            row["updated_at"] = _now()

            rows[idx] = row
            self._write_rows(rows)

        logger.info("배포 대상 갱신: id=%s mode=%s", destination_id, row["mode"])
        return Destination.from_row(row)

    def delete(self, destination_id: str) -> None:
        with self._lock:
            rows = self._read_rows()
            del rows[self._find(rows, destination_id)]
            self._write_rows(rows)
        logger.info("배포 대상 삭제: id=%s", destination_id)
