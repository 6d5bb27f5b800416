"""
Serialization helpers for release artifacts.

JSON encoding that understands exact rationals, dyadic numbers and objects
exposing ``to_dict``, with optional masking of fields that carry private
values and a simple version envelope.
"""
# 说明：发布结果的序列化辅助工具，统一 JSON 编码行为。
# 职责：
# - mask_sensitive_data：对给定字典中的敏感字段进行掩码处理
# - serialize_to_json / deserialize_from_json：带可选掩码与版本包装的 JSON 编解码
# - 内部 _prepare：支持 dataclass、to_dict 对象、Fraction 与 numpy 标量的统一前处理

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from fractions import Fraction
from typing import Any, Dict, Optional, Sequence

import numpy as np

SensitiveFields = Sequence[str]


def mask_sensitive_data(payload: Dict[str, Any], sensitive_fields: SensitiveFields, mask: str = "***") -> Dict[str, Any]:
    # 返回浅拷贝后的新字典，原字典保持不变
    masked = dict(payload)
    for field in sensitive_fields:
        if field in masked:
            masked[field] = mask
    return masked


def _prepare(obj: Any) -> Any:
    # 有理数以字符串保存，避免经浮点往返丢失精度
    if isinstance(obj, Fraction):
        return str(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, (tuple, set, frozenset)):
        return list(obj)
    return obj


def serialize_to_json(
    obj: Any,
    *,
    sensitive_fields: Optional[SensitiveFields] = None,
    version: Optional[str] = None,
) -> str:
    payload = _prepare(obj)
    if isinstance(payload, dict) and sensitive_fields:
        payload = mask_sensitive_data(payload, sensitive_fields)
    if version is not None:
        payload = {"version": version, "payload": payload}
    return json.dumps(payload, default=_prepare, ensure_ascii=False)


def deserialize_from_json(text: str, *, expect_version: Optional[str] = None) -> Any:
    """Decode JSON; when `expect_version` is given, unwrap and check the envelope."""
    data = json.loads(text)
    if expect_version is None:
        return data
    if not isinstance(data, dict) or "version" not in data or "payload" not in data:
        raise ValueError("serialized payload missing version or payload fields")
    if data["version"] != expect_version:
        raise ValueError(f"unsupported payload version {data['version']!r}")
    return data["payload"]
