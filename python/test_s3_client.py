#!/usr/bin/env python3
"""S3クライアント（S3Backend）のテスト"""
import asyncio

import boto3
import pytest
from moto import mock_aws

from s3_upload_queue import InitializationError, S3Uploader, UploadCancelledError, UploadError
from s3_upload_queue.core.s3_client import S3Backend, _create_session
from s3_upload_queue.models.config import MIN_PART_SIZE


@pytest.fixture
def s3():
    """moto の S3（bucket 作成済み）"""
    with mock_aws():
        client = boto3.client(
            "s3",
            region_name="us-east-1",
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        client.create_bucket(Bucket="bucket")
        yield client


def test_put_object(s3):
    """put はヘッダー付きで保存し、整形前の結果を返す"""
    backend = S3Backend(s3, "bucket", region="us-east-1")

    result = asyncio.run(backend.put(
        "media/a.jpg", b"jpeg", {"headers": {"Cache-Control": "public"}, "mime": "image/jpeg"}
    ))

    head = s3.head_object(Bucket="bucket", Key="media/a.jpg")
    assert head["CacheControl"] == "public"
    assert head["ContentType"] == "image/jpeg"
    assert head["ContentLength"] == 4

    assert result["name"] == "media/a.jpg"
    assert result["url"] == "https://bucket.s3.us-east-1.amazonaws.com/media/a.jpg"
    assert result["etag"] == head["ETag"]
    assert result["res"] == {"status": 200, "size": 4}


def test_put_error_is_wrapped(s3):
    """boto3 のエラーは UploadError として送出される"""
    backend = S3Backend(s3, "missing-bucket", region="us-east-1")

    with pytest.raises(UploadError) as excinfo:
        asyncio.run(backend.put("a.txt", b"x", {}))

    assert excinfo.value.key == "a.txt"
    assert excinfo.value.status_code == 404


def test_multipart_upload_in_parts(s3):
    """パートに分けてアップロードし、進捗とチェックポイントを通知する"""
    data = b"x" * MIN_PART_SIZE + b"y" * 10
    progress = []
    backend = S3Backend(s3, "bucket", region="us-east-1", parallel=1)

    result = asyncio.run(backend.multipart_upload(
        "big.bin", data, {"progress": lambda fraction, checkpoint: progress.append((fraction, checkpoint))}
    ))

    assert s3.get_object(Bucket="bucket", Key="big.bin")["Body"].read() == data
    assert result["res"] == {"status": 200, "size": len(data)}
    assert [fraction for fraction, _ in progress] == [0.5, 1.0]
    assert progress[-1][1]["upload_id"] == result["upload_id"]
    assert len(progress[-1][1]["done_parts"]) == 2


def test_multipart_upload_resumes_from_checkpoint(s3):
    """checkpoint のアップロード済みパートは送らずに完了する"""
    data = b"a" * MIN_PART_SIZE + b"b"
    upload_id = s3.create_multipart_upload(Bucket="bucket", Key="big.bin")["UploadId"]
    etag = s3.upload_part(
        Bucket="bucket", Key="big.bin", PartNumber=1, UploadId=upload_id, Body=data[:MIN_PART_SIZE]
    )["ETag"]
    checkpoint = {
        "upload_id": upload_id,
        "name": "big.bin",
        "part_size": MIN_PART_SIZE,
        "file_size": len(data),
        "done_parts": [{"number": 1, "etag": etag}],
    }
    backend = S3Backend(s3, "bucket", region="us-east-1")

    result = asyncio.run(backend.multipart_upload("big.bin", data, {"checkpoint": checkpoint}))

    assert result["upload_id"] == upload_id
    assert s3.get_object(Bucket="bucket", Key="big.bin")["Body"].read() == data
    # 渡した checkpoint は変更しない
    assert len(checkpoint["done_parts"]) == 1


def test_multipart_upload_stops_when_cancelled(s3):
    """キャンセル後のパートは送らず、アップロードは再開用に残す"""
    data = b"z" * (MIN_PART_SIZE * 2 + 1)
    backend = S3Backend(s3, "bucket", region="us-east-1", parallel=1)

    with pytest.raises(UploadCancelledError):
        asyncio.run(backend.multipart_upload(
            "big.bin", data, {"progress": lambda fraction, checkpoint: backend.cancel()}
        ))

    assert backend.is_cancelled()
    uploads = s3.list_multipart_uploads(Bucket="bucket")["Uploads"]
    assert len(uploads) == 1
    parts = s3.list_parts(Bucket="bucket", Key="big.bin", UploadId=uploads[0]["UploadId"])
    assert [p["PartNumber"] for p in parts["Parts"]] == [1]


def test_abort_multipart_upload(s3):
    """abort_multipart_upload は未完了のアップロードを破棄する"""
    upload_id = s3.create_multipart_upload(Bucket="bucket", Key="big.bin")["UploadId"]
    backend = S3Backend(s3, "bucket", region="us-east-1")

    result = asyncio.run(backend.abort_multipart_upload("big.bin", upload_id))

    assert "status" in result["res"]
    assert not s3.list_multipart_uploads(Bucket="bucket").get("Uploads")


def test_from_options_with_custom_endpoint():
    """エンドポイント指定時は path-style の URL を返す"""
    backend = S3Backend.from_options({
        "bucket": "bucket",
        "region": "us-east-1",
        "endpoint": "minio.local:9000",
        "secure": False,
        "access_key_id": "testing",
        "access_key_secret": "testing",
    })

    assert backend.endpoint == "http://minio.local:9000"
    assert backend.object_url("media/a b.jpg") == "http://minio.local:9000/bucket/media/a%20b.jpg"


def test_from_options_requires_bucket():
    """bucket がなければ作成できない"""
    with pytest.raises(ValueError):
        S3Backend.from_options({"region": "us-east-1"})


def test_from_options_uses_refresh_sts_token():
    """refresh_sts_token フックから一時認証情報を取得する"""
    calls = []

    def refresh_sts_token():
        calls.append(1)
        return {"access_key_id": "AKIA", "access_key_secret": "secret", "sts_token": "token"}

    backend = S3Backend.from_options({
        "bucket": "bucket",
        "region": "us-east-1",
        "refresh_sts_token": refresh_sts_token,
        "refresh_sts_token_interval": 300000,
    })

    assert calls == [1]
    assert backend.bucket == "bucket"


def test_uploader_with_default_factory(s3):
    """既定のファクトリーで作成したクライアントでアップロードする"""
    async def scenario():
        uploader = S3Uploader({
            "bucket": "bucket",
            "region": "us-east-1",
            "access_key_id": "testing",
            "access_key_secret": "testing",
            "root_path": "media",
        })
        return await asyncio.gather(
            uploader.put("photo.jpg", b"jpeg"),
            uploader.multipart_upload("doc.pdf", b"pdf"),
        )

    photo, doc = asyncio.run(scenario())

    assert photo["code"] == "200"
    assert photo["data"]["suffix"] == ".jpg"
    assert doc["data"]["name"].startswith("media/")
    body = s3.get_object(Bucket="bucket", Key=doc["data"]["name"])["Body"].read()
    assert body == b"pdf"


def test_uploader_initialization_error_for_missing_bucket():
    """既定のファクトリーでの作成失敗は InitializationError になる"""
    async def scenario():
        uploader = S3Uploader({"region": "us-east-1"})
        with pytest.raises(InitializationError):
            await uploader.put("a.txt", b"x")
        return uploader

    uploader = asyncio.run(scenario())
    assert uploader.client is None


def test_refresh_sts_token_is_registered_as_credential_provider():
    """フックの認証情報は他の認証情報より優先される"""
    def refresh_sts_token():
        return {"access_key_id": "AKIA-HOOK", "access_key_secret": "secret", "sts_token": "token"}

    session = _create_session(
        {"refresh_sts_token": refresh_sts_token, "refresh_sts_token_interval": 3600000},
        "us-east-1",
    )
    credentials = session.get_credentials()

    assert credentials.method == "refresh_sts_token"
    frozen = credentials.get_frozen_credentials()
    assert frozen.access_key == "AKIA-HOOK"
    assert frozen.token == "token"
