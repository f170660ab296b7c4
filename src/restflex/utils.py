"""工具函数模块

日志输出前的脱敏，以及请求 ID 生成。
OAuth 请求的密钥材料分散在 Authorization 头、查询字符串和表单参数中，三处都需要处理。
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# 脱敏后保留认证方案名称的请求头，例如 "OAuth ***"、"Bearer ***"
SCHEME_PRESERVING_HEADERS = {"authorization", "proxy-authorization"}

DEFAULT_SENSITIVE_HEADERS = {
    "Authorization",
    "Proxy-Authorization",
    "Cookie",
    "Set-Cookie",
    "X-API-Key",
    "X-Auth-Token",
    "X-Access-Token",
}

DEFAULT_SENSITIVE_PARAMS = {
    "token",
    "password",
    "secret",
    "key",
    "api_key",
    "access_token",
    "oauth_token",
    "oauth_token_secret",
    "oauth_verifier",
    "oauth_signature",
    "oauth_callback",
}


def _lowered(names: Iterable[str]) -> frozenset[str]:
    return frozenset(name.lower() for name in names)


def _mask_header_value(name: str, value: str, mask: str) -> str:
    if name.lower() in SCHEME_PRESERVING_HEADERS:
        scheme, _, credentials = value.partition(" ")
        if credentials:
            return f"{scheme} {mask}"
    return mask


def sanitize_headers(
    headers: Mapping[str, str],
    sensitive_keys: set[str] | None = None,
    mask: str = "***",
) -> dict[str, str]:
    """
    脱敏请求头

    Authorization 类请求头保留认证方案，只替换凭证部分，便于从日志判断使用了哪种签名方式

    参数:
        headers: 原始请求头
        sensitive_keys: 敏感头名称集合（不区分大小写），None 时使用 DEFAULT_SENSITIVE_HEADERS
        mask: 替换字符串

    返回:
        新字典，原字典不变

    示例:
        >>> sanitize_headers({"Authorization": 'OAuth oauth_token="abc"', "Accept": "*/*"})
        {"Authorization": "OAuth ***", "Accept": "*/*"}
    """
    lowered = _lowered(DEFAULT_SENSITIVE_HEADERS if sensitive_keys is None else sensitive_keys)
    return {
        name: _mask_header_value(name, value, mask) if name.lower() in lowered else value
        for name, value in headers.items()
    }


def sanitize_url(
    url: str,
    sensitive_params: set[str] | None = None,
    mask: str = "***",
) -> str:
    """
    脱敏 URL 查询字符串中的敏感参数

    示例:
        >>> sanitize_url("https://api.example.com/oauth/authorize?oauth_token=abc&force_login=true")
        "https://api.example.com/oauth/authorize?oauth_token=%2A%2A%2A&force_login=true"
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    lowered = _lowered(DEFAULT_SENSITIVE_PARAMS if sensitive_params is None else sensitive_params)
    query = urlencode(
        [(name, mask if name.lower() in lowered else value) for name, value in parse_qsl(parts.query, keep_blank_values=True)]
    )
    return urlunsplit(parts._replace(query=query))


def sanitize_dict(
    data: Mapping[str, Any],
    sensitive_keys: set[str] | None = None,
    mask: str = "***",
    recursive: bool = True,
) -> dict[str, Any]:
    """
    脱敏参数或响应数据中的敏感字段

    参数:
        data: 原始数据
        sensitive_keys: 敏感键名集合（不区分大小写），None 时同时使用请求头和参数的默认集合
        mask: 替换字符串
        recursive: 是否进入嵌套的字典和列表

    返回:
        新字典，原数据不变
    """
    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_HEADERS | DEFAULT_SENSITIVE_PARAMS
    lowered = _lowered(sensitive_keys)

    def scrub(value: Any) -> Any:
        if not recursive:
            return value
        if isinstance(value, Mapping):
            return sanitize_dict(value, sensitive_keys, mask, recursive)
        if isinstance(value, list):
            return [scrub(item) for item in value]
        return value

    return {key: mask if key.lower() in lowered else scrub(value) for key, value in data.items()}


def generate_request_id(suffix=None) -> str:
    """生成全局唯一的请求 ID，格式 REQ-<毫秒时间戳>-<8 位 uuid>[-<suffix>]"""
    timestamp = int(time.time() * 1000)
    short_uuid = uuid.uuid4().hex[:8]
    if suffix is None:
        return f"REQ-{timestamp}-{short_uuid}"
    return f"REQ-{timestamp}-{short_uuid}-{suffix}"
