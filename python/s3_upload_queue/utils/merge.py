"""オプション辞書のマージ"""
from typing import Any, Dict, Mapping, Optional


def deep_merge(base: Optional[Mapping[str, Any]], override: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """override を優先して再帰的にマージした新しい辞書を返す

    ネストした Mapping 同士のみ再帰する。リストなどその他の値は置き換える。
    引数はどちらも変更しない。
    """
    merged: Dict[str, Any] = {}
    for key, value in (base or {}).items():
        merged[key] = deep_merge(value, {}) if isinstance(value, Mapping) else value

    for key, value in (override or {}).items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        elif isinstance(value, Mapping):
            merged[key] = deep_merge(value, {})
        else:
            merged[key] = value

    return merged
