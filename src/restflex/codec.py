"""
参数编解码模块

根据参数字典和二进制附件构造查询字符串、urlencoded 请求体、multipart 请求体，
并负责编码方式的选择。

以 oauth_ 开头的参数由签名器放置在 Authorization 头中，这里一律跳过，避免重复编码。
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from urllib.parse import quote, unquote_plus

from restflex.constants import (
    CONTENT_TYPE_MULTIPART,
    DEFAULT_ENCODING,
    MULTIPART_BOUNDARY_PREFIX,
    OAUTH_PARAM_PREFIX,
    QUERY_STRING_METHODS,
    URL_ESCAPE_EXTRA_CHARACTERS,
    URL_LEAVE_UNESCAPED_CHARACTERS,
)
from restflex.models import EncodingMode, ParamValue, RequestSpec, UploadPart

# quote() 默认只保留字母数字和 "_.-~"，额外转义字符集因此全部被转义
_SAFE_CHARACTERS = "".join(c for c in URL_LEAVE_UNESCAPED_CHARACTERS if c not in URL_ESCAPE_EXTRA_CHARACTERS)


def stringify_value(value: ParamValue) -> str:
    """将参数值转换为线上字符串，布尔值为 true/false"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def non_oauth_params(params: Mapping[str, ParamValue]) -> dict[str, ParamValue]:
    """过滤掉以 oauth_ 开头的参数，保持插入顺序"""
    return {k: v for k, v in params.items() if not k.startswith(OAUTH_PARAM_PREFIX)}


def url_encode(value: str, encoding: str = DEFAULT_ENCODING) -> str:
    """
    百分号转义字符串

    在默认不安全字符集之外额外转义 :/?&=;+!@#$()',*，保留 [ ] . 不转义
    """
    return quote(value, safe=_SAFE_CHARACTERS, encoding=encoding)


def encode_query_string(params: Mapping[str, ParamValue], encoding: str = DEFAULT_ENCODING) -> str:
    """
    构造 k=v&k=v 形式的查询字符串（保持插入顺序，键和值均转义）

    参数:
        params: 参数字典
        encoding: 字符集

    返回:
        查询字符串，oauth_ 参数不包含在内
    """
    return "&".join(
        f"{url_encode(key, encoding)}={url_encode(stringify_value(value), encoding)}"
        for key, value in non_oauth_params(params).items()
    )


def build_raw_query_string(params: Mapping[str, ParamValue]) -> str:
    """构造未转义的 k=v&k=v 字符串，用于 raw-body 模式"""
    return "&".join(f"{key}={stringify_value(value)}" for key, value in non_oauth_params(params).items())


def decode_query_string(query: str) -> dict[str, str]:
    """
    解析查询字符串

    先按 & 再按 = 拆分；缺少 = 或值为空的片段直接跳过，不视为错误

    示例:
        >>> decode_query_string("oauth_token=abc&oauth_token_secret=xyz&broken")
        {"oauth_token": "abc", "oauth_token_secret": "xyz"}
    """
    result: dict[str, str] = {}
    if not query:
        return result

    for pair in query.split("&"):
        key, sep, value = pair.partition("=")
        if not sep or not key or not value:
            continue
        result[unquote_plus(key)] = unquote_plus(value)
    return result


def append_query_string(url: str, query: str) -> str:
    """将查询字符串追加到 URL"""
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


def generate_boundary() -> str:
    """为每个请求生成随机边界，避免与负载内容冲突"""
    return f"{MULTIPART_BOUNDARY_PREFIX}{uuid.uuid4().hex}"


def multipart_content_type(boundary: str) -> str:
    return f"{CONTENT_TYPE_MULTIPART}; boundary={boundary}"


def encode_multipart(
    boundary: str,
    parts: Iterable[UploadPart],
    scalar_params: Mapping[str, ParamValue] | None = None,
    encoding: str = DEFAULT_ENCODING,
) -> bytes:
    """
    构造 multipart/form-data 请求体

    参数:
        boundary: 分隔边界
        parts: 二进制附件
        scalar_params: 普通参数，每个参数作为独立字段输出（oauth_ 参数跳过）
        encoding: 字符集

    返回:
        完整请求体字节串，以 --boundary--\\r\\n 结尾

    执行步骤:
        1. 逐个输出附件：边界、Content-Disposition（含可选 filename）、Content-Type、内容
        2. 逐个输出普通参数字段
        3. 输出结束边界
    """
    body = bytearray()

    for part in parts:
        disposition = f'Content-Disposition: form-data; name="{part.name}"'
        if part.filename is not None:
            disposition += f'; filename="{part.filename}"'
        body += f"--{boundary}\r\n".encode(encoding)
        body += f"{disposition}\r\n".encode(encoding)
        body += f"Content-Type: {part.content_type}\r\n\r\n".encode(encoding)
        body += part.data
        body += b"\r\n"

    for key, value in non_oauth_params(scalar_params or {}).items():
        body += f"--{boundary}\r\n".encode(encoding)
        body += f'Content-Disposition: form-data; name="{key}"\r\n\r\n'.encode(encoding)
        body += stringify_value(value).encode(encoding)
        body += b"\r\n"

    body += f"--{boundary}--\r\n".encode(encoding)
    return bytes(body)


def resolve_encoding_mode(spec: RequestSpec) -> EncodingMode | None:
    """
    选择请求的编码方式

    返回:
        EncodingMode，或 None（没有需要编码的内容）

    选择规则:
        1. 显式指定的 encoding_mode 优先
        2. 有附件 -> multipart
        3. 没有非 oauth_ 参数 -> None
        4. GET/HEAD/DELETE -> query-append
        5. 设置了 encode_parameters -> urlencoded-body
        6. 否则 -> raw-body（未转义的参数表示）
    """
    if spec.encoding_mode is not None:
        return spec.encoding_mode
    if spec.uploads:
        return EncodingMode.MULTIPART
    if not non_oauth_params(spec.params):
        return None
    if spec.method in QUERY_STRING_METHODS:
        return EncodingMode.QUERY_APPEND
    if spec.encode_parameters:
        return EncodingMode.URLENCODED_BODY
    return EncodingMode.RAW_BODY
