"""アップロードデータ関連のユーティリティ"""
import io
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterator, Optional


@dataclass
class PayloadInfo:
    """アップロードデータの情報"""
    size: int
    path: Optional[str] = None


def describe_payload(data: Any) -> PayloadInfo:
    """データのサイズを取得

    bytes / bytearray / memoryview、ファイルパス（str / PathLike）、
    シーク可能なバイナリファイルオブジェクトに対応。ファイルオブジェクトは
    先頭からの全体をアップロード対象とする。
    """
    if isinstance(data, (bytes, bytearray)):
        return PayloadInfo(size=len(data))
    if isinstance(data, memoryview):
        return PayloadInfo(size=data.nbytes)
    if isinstance(data, (str, os.PathLike)):
        path = os.fspath(data)
        if not os.path.isfile(path):
            raise ValueError(f"Not a file: {path}")
        return PayloadInfo(size=os.path.getsize(path), path=path)
    if hasattr(data, "read") and hasattr(data, "seek"):
        position = data.tell()
        size = data.seek(0, io.SEEK_END)
        data.seek(position)
        name = getattr(data, "name", None)
        return PayloadInfo(size=size, path=name if isinstance(name, str) else None)

    raise TypeError(f"Unsupported upload data type: {type(data).__name__}")


@contextmanager
def open_payload(data: Any) -> Iterator[BinaryIO]:
    """データをバイナリストリームとして開く

    ファイルパスの場合のみ自分で開いて閉じる。渡されたファイルオブジェクトは閉じない。
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        yield io.BytesIO(bytes(data))
    elif isinstance(data, (str, os.PathLike)):
        with open(os.fspath(data), "rb") as file:
            yield file
    elif hasattr(data, "read"):
        yield data
    else:
        raise TypeError(f"Unsupported upload data type: {type(data).__name__}")


def read_range(stream: BinaryIO, offset: int, length: int) -> bytes:
    """ストリームの offset から length バイトを読む"""
    stream.seek(offset)
    return stream.read(length)
