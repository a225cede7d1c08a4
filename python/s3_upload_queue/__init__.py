"""S3 Upload Queue パッケージ

遅延作成した1つのS3クライアントを同時実行のアップロード間で共有し、
マルチパートアップロードを回数制限付きで自動リトライする。
"""
from .models.config import Config, LoggingConfig, UploadOptions
from .utils.logger import LoggerManager
from .core.uploader import S3Uploader
from .exceptions import (
    ConfigResolutionError,
    ConfigurationError,
    InitializationError,
    UploadCancelledError,
    UploadError,
    UploadQueueError,
)


__all__ = [
    'S3Uploader',
    'Config',
    'LoggingConfig',
    'UploadOptions',
    'LoggerManager',
    'UploadQueueError',
    'ConfigurationError',
    'ConfigResolutionError',
    'InitializationError',
    'UploadError',
    'UploadCancelledError',
]
