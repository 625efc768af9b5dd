"""
feed_deploy
-----------

피드(RSS)와 미디어 파일을 사용자 소유의 원격 저장소로 배포하는 패키지.
S3, FTP/FTPS, SFTP, WebDAV, IPFS, SMB 를 지원하며,
.md5 sidecar 를 이용해 변경된 파일만 업로드한다.
"""

__all__ = [
    "config",
    "destination_store",
    "orchestrator",
]
