"""S3 Upload Queue コアモジュール"""
from .s3_client import S3Backend
from .initializer import ConfigResolver, ClientInitializer
from .coordinator import PendingTask, RequestCoordinator
from .retry import RetryRegistry
from .uploader import S3Uploader

__all__ = [
    'S3Backend',
    'ConfigResolver',
    'ClientInitializer',
    'PendingTask',
    'RequestCoordinator',
    'RetryRegistry',
    'S3Uploader',
]
