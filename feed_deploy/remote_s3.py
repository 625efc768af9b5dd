"""
remote_s3
---------

S3 호환 오브젝트 스토리지 배포 모듈.

오브젝트 스토리지에는 디렉토리 개념이 없으므로 ensure_dir 는 아무것도 하지 않는다.
ETag 의미가 서비스마다 달라(멀티파트, SSE-KMS 등) 변경 감지는 다른 백엔드와 같은
.md5 sidecar 방식을 사용한다.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .artifacts import DeployRequest, build_artifacts
from .config import EngineConfig
from .destination_config import S3Config
from .logging_utils import get_logger
from .sync import AccessResult, DeployResult, SyncSession, describe_error


logger = get_logger(__name__)

_MISSING_CODES = {"NoSuchKey", "NotFound", "404"}


def create_client(cfg: S3Config, engine: Optional[EngineConfig] = None):  # noqa: ANN201
    engine = engine or EngineConfig()
    kwargs = {
        "region_name": cfg.region,
        "aws_access_key_id": cfg.access_key_id,
        "aws_secret_access_key": cfg.secret_access_key,
        "config": BotoConfig(
            connect_timeout=engine.http_timeout,
            read_timeout=engine.http_timeout,
            retries={"max_attempts": 1},
        ),
    }
    if cfg.endpoint_url:
        kwargs["endpoint_url"] = cfg.endpoint_url
    return boto3.client("s3", **kwargs)


def s3_error_message(err: BaseException) -> str:
    if isinstance(err, ClientError):
        error = err.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message") or ""
        status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        detail = f"{code}: {message}" if message else code
        return f"HTTP {status}: {detail}" if status else detail
    return describe_error(err)


class S3Store:
    def __init__(self, client, bucket: str) -> None:  # noqa: ANN001
        self.client = client
        self.bucket = bucket

    def read_bytes(self, path: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise
        return obj["Body"].read()

    def write_bytes(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        kwargs = {"Bucket": self.bucket, "Key": path, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except ClientError as e:
            raise RuntimeError(s3_error_message(e)) from e

    def ensure_dir(self, path: str) -> None:
        return None


def test_access(cfg: S3Config, engine: Optional[EngineConfig] = None) -> AccessResult:
    """
    head_bucket 으로 버킷 접근 가능 여부를 확인한다.
    """
    client = None
    try:
        client = create_client(cfg, engine)
        client.head_bucket(Bucket=cfg.bucket)
        return AccessResult(ok=True)
    except (ClientError, BotoCoreError) as e:
        message = s3_error_message(e)
        logger.warning("S3 접근 확인 실패: bucket=%s error=%s", cfg.bucket, message)
        return AccessResult.failure(message)
    finally:
        if client is not None:
            client.close()


def deploy(cfg: S3Config, request: DeployRequest,
           engine: Optional[EngineConfig] = None) -> DeployResult:
    result = DeployResult()
    client = None
    logger.info("S3 배포 시작: bucket=%s prefix=%s", cfg.bucket, cfg.prefix or "(none)")
    try:
        client = create_client(cfg, engine)
        session = SyncSession(S3Store(client, cfg.bucket), base_path=cfg.prefix, result=result)
        session.push_all(build_artifacts(request))
    except Exception as e:  # noqa: BLE001
        logger.exception("S3 배포 중 오류 발생")
        result.errors.append(s3_error_message(e))
    finally:
        if client is not None:
            client.close()
    return result
