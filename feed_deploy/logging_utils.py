import logging
import sys


# 프로토콜 클라이언트 라이브러리는 INFO 에서도 너무 많은 로그를 남긴다.
_NOISY_LOGGERS = ("paramiko", "botocore", "boto3", "urllib3", "smbprotocol", "spnego")


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )

    library_level = logging.DEBUG if verbosity >= 2 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
