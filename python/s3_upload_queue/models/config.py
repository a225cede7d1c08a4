"""設定管理用のデータクラス"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional
import json
import os

from ..exceptions import ConfigurationError


MIN_PART_SIZE = 5 * 1024 * 1024  # S3の最小パートサイズ（最終パート以外）

DEFAULT_OPTIONS: Dict[str, Any] = {
    "async": False,
    "root_path": "",
    "rename": True,
    "enable_cdn": False,
    "cdn_url": "",
    "retry_count": 5,
    "refresh_sts_token_interval": 300000,  # ミリ秒
    "part_size": MIN_PART_SIZE,
    "parallel": 5,
    "config": {
        "headers": {
            "Cache-Control": "public",
        },
    },
}

# バックエンドクライアントに渡さないキー
HOOK_KEYS = ("async", "get_options")


@dataclass
class LoggingConfig:
    """ロギング設定"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class UploadOptions:
    """アップローダーのオプション

    ファイルから読める値のみを持つ。コールバック（get_options / refresh_sts_token）は
    S3Uploader のコンストラクタに直接渡す。
    """
    # バックエンド接続情報（コーディネーターからは不透明）
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    access_key_secret: Optional[str] = None
    sts_token: Optional[str] = None
    profile: Optional[str] = None
    secure: bool = True
    timeout: Optional[int] = None  # 秒

    # アップロード動作
    root_path: str = ""
    rename: bool = True
    enable_cdn: bool = False
    cdn_url: str = ""
    retry_count: int = 5
    use_async: bool = False
    refresh_sts_token_interval: int = 300000
    part_size: int = MIN_PART_SIZE
    parallel: int = 5
    config: Dict[str, Any] = field(
        default_factory=lambda: {"headers": {"Cache-Control": "public"}}
    )

    def __post_init__(self):
        """オプションのバリデーション"""
        if self.retry_count < 0:
            raise ConfigurationError(
                f"Invalid retry_count: {self.retry_count}. Must be 0 or greater"
            )

        if self.enable_cdn and not self.cdn_url:
            raise ConfigurationError("cdn_url is required when enable_cdn is true")

        if self.part_size <= 0:
            raise ConfigurationError(
                f"Invalid part_size: {self.part_size}. Must be greater than 0"
            )

        if self.parallel < 1:
            raise ConfigurationError(
                f"Invalid parallel: {self.parallel}. Must be 1 or greater"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UploadOptions':
        """オプション辞書（"async" キーを含む）から作成"""
        data = dict(data)
        if "async" in data:
            data["use_async"] = data.pop("async")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown option(s): {', '.join(unknown)}")

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """S3Uploader に渡すオプション辞書に変換"""
        options: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            key = "async" if f.name == "use_async" else f.name
            options[key] = value
        return options


@dataclass
class Config:
    """メイン設定クラス"""
    logging: LoggingConfig
    options: UploadOptions

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """辞書から作成"""
        return cls(
            logging=LoggingConfig(**data.get("logging", {})),
            options=UploadOptions.from_dict(data.get("options", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """設定ファイルから読み込み"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file {config_path} not found.")

        try:
            with open(config_path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError as e:
            raise ValueError(f"Error decoding JSON from {config_path}: {e}")

        try:
            return cls.from_dict(data)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Error loading configuration: {e}")
