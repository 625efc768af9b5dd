"""
exceptions
----------

배포 엔진에서 사용하는 예외 정의.

연결/전송 오류는 예외로 호출자에게 전달되지 않고
AccessResult.error / DeployResult.errors 로 인코딩된다.
여기 정의된 예외는 네트워크 호출 이전 단계(설정, 복호화, 저장소)에서만 발생한다.
"""


class FeedDeployError(Exception):
    """배포 엔진 공통 예외."""


class ConfigurationError(FeedDeployError, ValueError):
    """
    복호화된 설정값이 누락되었거나 잘못된 경우.

    Examples:
        - SFTP 에 password / private_key 둘 다 없음
        - S3 bucket 누락
        - 환경변수의 master key 길이가 32 bytes 가 아님
    """


class SecretDecryptionError(FeedDeployError):
    """
    토큰 형식 오류, purpose tag 불일치, 잘못된 키로 인해 복호화에 실패한 경우.

    배포 전체를 진행할 수 없으므로 artifact 단위가 아닌
    최상위 오류 하나로 보고된다.
    """


class DestinationNotFoundError(FeedDeployError, LookupError):
    pass


class DestinationExistsError(FeedDeployError):
    """컬렉션당 배포 대상은 하나만 허용된다."""
