"""S3バックエンドクライアント"""
import asyncio
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Dict, Mapping, Optional
from urllib.parse import quote

import boto3
import botocore.session
from botocore.config import Config as BotoConfig
from botocore.credentials import CredentialProvider, RefreshableCredentials
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..exceptions import UploadCancelledError, UploadError
from ..models.config import MIN_PART_SIZE
from ..utils.logger import LoggerManager
from ..utils.payload import describe_payload, open_payload, read_range
from ..utils.progress import ProgressTracker


# ヘッダー名 -> boto3 のパラメータ名
HEADER_PARAMS = {
    "Cache-Control": "CacheControl",
    "Content-Type": "ContentType",
    "Content-Disposition": "ContentDisposition",
    "Content-Encoding": "ContentEncoding",
    "Content-Language": "ContentLanguage",
    "Expires": "Expires",
}


class S3Backend:
    """boto3 の S3 クライアントをラップしたアップロード用クライアント

    ブロッキングする boto3 呼び出しは asyncio.to_thread で実行する。
    """

    def __init__(
        self,
        client,
        bucket: str,
        region: Optional[str] = None,
        endpoint: Optional[str] = None,
        part_size: int = MIN_PART_SIZE,
        parallel: int = 5,
    ):
        self.client = client
        self.bucket = bucket
        self.region = region
        self.endpoint = endpoint
        self.part_size = part_size
        self.parallel = parallel
        self.logger = LoggerManager.get_logger()
        self._cancelled = threading.Event()

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> 'S3Backend':
        """オプション辞書から S3 クライアントを作成"""
        bucket = options.get("bucket")
        if not bucket:
            raise ValueError("bucket is required")

        region = options.get("region")
        endpoint = _endpoint_url(options.get("endpoint"), options.get("secure", True))
        timeout = options.get("timeout")

        boto_config = BotoConfig(
            connect_timeout=timeout or 60,
            read_timeout=timeout or 60,
        )

        try:
            session = _create_session(options, region)
            client = session.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint,
                use_ssl=options.get("secure", True),
                config=boto_config,
            )
        except NoCredentialsError:
            LoggerManager.get_logger().error("AWS credentials not available.")
            raise

        LoggerManager.get_logger().info(
            f"S3 client created for bucket '{bucket}'"
            + (f" at {endpoint}" if endpoint else "")
        )
        return cls(
            client,
            bucket,
            region=region,
            endpoint=endpoint,
            part_size=options.get("part_size") or MIN_PART_SIZE,
            parallel=options.get("parallel") or 5,
        )

    def object_url(self, key: str) -> str:
        """オブジェクトのURL"""
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{quote(key)}"
        return f"https://{self.bucket}.s3.{self.region or 'us-east-1'}.amazonaws.com/{quote(key)}"

    # キャンセル

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    # 公開操作

    async def put(self, path: str, data: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """単一リクエストでアップロード"""
        return await asyncio.to_thread(self._put, path, data, config or {})

    async def multipart_upload(self, path: str, data: Any, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """マルチパートアップロード（config["checkpoint"] があれば再開）"""
        self._cancelled.clear()
        return await asyncio.to_thread(self._multipart_upload, path, data, config or {})

    async def abort_multipart_upload(self, path: str, upload_id: str) -> Dict[str, Any]:
        """マルチパートアップロードを中止"""
        return await asyncio.to_thread(self._abort_multipart_upload, path, upload_id)

    # 実処理（ワーカースレッドで実行）

    def _put(self, path: str, data: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        info = describe_payload(data)
        params = self._object_params(config)

        with open_payload(data) as body:
            try:
                response = self.client.put_object(Bucket=self.bucket, Key=path, Body=body, **params)
            except (BotoCoreError, ClientError) as e:
                self.logger.error(f"Error uploading {path}: {e}")
                raise _upload_error(path, e) from e

        self.logger.info(f"Successfully uploaded {path} ({info.size} bytes)")
        return self._result(path, response, info.size)

    def _multipart_upload(self, path: str, data: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        info = describe_payload(data)
        checkpoint = config.get("checkpoint")

        try:
            if checkpoint:
                checkpoint = dict(
                    checkpoint, name=path, done_parts=list(checkpoint.get("done_parts", []))
                )
                self.logger.info(
                    f"Resuming multipart upload {checkpoint['upload_id']} for {path}: "
                    f"{len(checkpoint['done_parts'])} parts already uploaded"
                )
            else:
                part_size = max(int(config.get("part_size") or self.part_size), MIN_PART_SIZE)
                response = self.client.create_multipart_upload(
                    Bucket=self.bucket, Key=path, **self._object_params(config)
                )
                checkpoint = {
                    "upload_id": response["UploadId"],
                    "name": path,
                    "part_size": part_size,
                    "file_size": info.size,
                    "done_parts": [],
                }
                self.logger.info(f"Initiated multipart upload: UploadId={checkpoint['upload_id']} ({path})")
        except (BotoCoreError, ClientError) as e:
            raise _upload_error(path, e) from e

        part_size = checkpoint["part_size"]
        total_parts = max(1, math.ceil(info.size / part_size))
        tracker = ProgressTracker(checkpoint, total_parts, config.get("progress"))
        read_lock = threading.Lock()
        parallel = int(config.get("parallel") or self.parallel)

        with open_payload(data) as stream, ThreadPoolExecutor(max_workers=parallel) as pool:
            futures = [
                pool.submit(
                    self._upload_part, stream, read_lock, tracker, part_number,
                    (part_number - 1) * part_size,
                    min(part_size, info.size - (part_number - 1) * part_size),
                )
                for part_number in range(1, total_parts + 1)
                if not tracker.is_done(part_number)
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                self.logger.warning(
                    f"UploadId {checkpoint['upload_id']} left open for resumption. "
                    f"Progress: {len(tracker.done_parts)}/{total_parts} parts uploaded"
                )
                raise

        try:
            response = self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=path,
                UploadId=checkpoint["upload_id"],
                MultipartUpload={"Parts": tracker.parts()},
            )
        except (BotoCoreError, ClientError) as e:
            raise _upload_error(path, e) from e

        self.logger.info(f"Completed multipart upload of {path} ({total_parts} parts)")
        result = self._result(path, response, info.size)
        result["upload_id"] = checkpoint["upload_id"]
        return result

    def _upload_part(
        self,
        stream: BinaryIO,
        read_lock: threading.Lock,
        tracker: ProgressTracker,
        part_number: int,
        offset: int,
        length: int,
    ) -> None:
        """1パートをアップロード"""
        path = tracker.checkpoint["name"]
        if self.is_cancelled():
            raise UploadCancelledError(path)

        # ストリームは全スレッドで共有
        with read_lock:
            body = read_range(stream, offset, max(length, 0))

        try:
            response = self.client.upload_part(
                Bucket=self.bucket,
                Key=path,
                PartNumber=part_number,
                UploadId=tracker.checkpoint["upload_id"],
                Body=body,
            )
        except (BotoCoreError, ClientError) as e:
            self.logger.warning(f"Part {part_number} of {path} failed: {e}")
            raise _upload_error(path, e) from e

        tracker.part_done(part_number, response["ETag"])

    def _abort_multipart_upload(self, path: str, upload_id: str) -> Dict[str, Any]:
        try:
            response = self.client.abort_multipart_upload(
                Bucket=self.bucket, Key=path, UploadId=upload_id
            )
        except (BotoCoreError, ClientError) as e:
            raise _upload_error(path, e) from e

        self.logger.info(f"Aborted multipart upload {upload_id} ({path})")
        return {"res": {"status": _status(response)}}

    def _object_params(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        """ヘッダー・MIME・メタデータを boto3 のパラメータに変換"""
        params: Dict[str, Any] = {}
        for header, value in (config.get("headers") or {}).items():
            param = HEADER_PARAMS.get(header)
            if param:
                params[param] = value
            else:
                self.logger.debug(f"Ignoring unsupported header: {header}")

        if config.get("mime"):
            params["ContentType"] = config["mime"]
        if config.get("meta"):
            params["Metadata"] = {k: str(v) for k, v in config["meta"].items()}
        return params

    def _result(self, path: str, response: Mapping[str, Any], size: int) -> Dict[str, Any]:
        return {
            "name": path,
            "url": self.object_url(path),
            "etag": response.get("ETag"),
            "res": {"status": _status(response), "size": size},
        }


def _status(response: Mapping[str, Any]) -> int:
    return response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200)


def _upload_error(path: str, error: Exception) -> UploadError:
    status_code = None
    if isinstance(error, ClientError):
        status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return UploadError(f"Upload of {path} failed: {error}", key=path, status_code=status_code)


def _endpoint_url(endpoint: Optional[str], secure: bool) -> Optional[str]:
    if not endpoint:
        return None
    if "://" in endpoint:
        return endpoint
    return f"{'https' if secure else 'http'}://{endpoint}"


class StsHookProvider(CredentialProvider):
    """refresh_sts_token フックから期限付きの認証情報を取得するプロバイダー"""

    METHOD = "refresh_sts_token"
    CANONICAL_NAME = "custom-refresh-sts-token"

    def __init__(self, fetch: Callable[[], Dict[str, str]]):
        super().__init__()
        self._fetch = fetch

    def load(self) -> RefreshableCredentials:
        return RefreshableCredentials.create_from_metadata(
            metadata=self._fetch(),
            refresh_using=self._fetch,
            method=self.METHOD,
        )


def _create_session(options: Mapping[str, Any], region: Optional[str]) -> boto3.Session:
    """認証情報から boto3 セッションを作成"""
    refresh_sts_token = options.get("refresh_sts_token")
    if refresh_sts_token:
        fetch = _sts_fetcher(refresh_sts_token, options.get("refresh_sts_token_interval", 300000))
        botocore_session = botocore.session.get_session()
        # 環境変数などより先にフックの認証情報を使う
        botocore_session.get_component("credential_provider").insert_before(
            "env", StsHookProvider(fetch)
        )
        return boto3.Session(botocore_session=botocore_session, region_name=region)

    if options.get("profile"):
        return boto3.Session(profile_name=options["profile"], region_name=region)

    return boto3.Session(
        aws_access_key_id=options.get("access_key_id") or None,
        aws_secret_access_key=options.get("access_key_secret") or None,
        aws_session_token=options.get("sts_token") or None,
        region_name=region,
    )


def _sts_fetcher(hook: Callable[[], Mapping[str, Any]], interval_ms: int) -> Callable[[], Dict[str, str]]:
    """refresh_sts_token フックを botocore のメタデータ形式に変換"""
    def fetch() -> Dict[str, str]:
        token = hook()
        expiration = token.get("expiration")
        if expiration is None:
            expiration = datetime.now(timezone.utc) + timedelta(milliseconds=interval_ms)
        if isinstance(expiration, datetime):
            expiration = expiration.isoformat()
        return {
            "access_key": token["access_key_id"],
            "secret_key": token["access_key_secret"],
            "token": token.get("sts_token"),
            "expiry_time": expiration,
        }
    return fetch
