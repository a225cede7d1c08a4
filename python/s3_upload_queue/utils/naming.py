"""オブジェクトキー（保存パス）の生成"""
import re
import uuid
from typing import Callable


def guid() -> str:
    """ハイフンなしのユニークID"""
    return uuid.uuid4().hex


def generate_filename(
    filename: str,
    rename: bool = True,
    root_path: str = "",
    id_factory: Callable[[], str] = guid,
) -> str:
    """アップロード先のキーを生成

    rename=True の場合は "{root_path}/{id}.{拡張子}"、False の場合は
    "{root_path}/{filename}"。先頭と重複したスラッシュは取り除く。
    """
    if not filename:
        return ""

    if rename:
        basename = filename.rsplit("/", 1)[-1]
        name = id_factory()
        if "." in basename:
            name = f"{name}.{basename.rsplit('.', 1)[-1]}"
    else:
        name = filename

    path = f"{root_path or ''}/{name}"
    return re.sub(r"/{2,}", "/", path).lstrip("/")
