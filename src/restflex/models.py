"""
数据模型模块

定义一次 HTTP 交换涉及的数据结构：请求描述、上传分片、执行状态、响应信封
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias

from restflex.constants import DEFAULT_ENCODING, DEFAULT_MIME_TYPE, DEFAULT_TIMEOUT, HTTP_METHOD_GET
from restflex.exceptions import APIClientValidationError

# 参数值类型
ParamValue: TypeAlias = str | int | float | bool


class EncodingMode(str, Enum):
    """请求参数的线上编码方式"""

    QUERY_APPEND = "query-append"
    URLENCODED_BODY = "urlencoded-body"
    RAW_BODY = "raw-body"
    MULTIPART = "multipart"


class ExecutionState(str, Enum):
    """单次请求执行的状态"""

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    RECEIVING_BODY = "receiving_body"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionState.COMPLETED, ExecutionState.FAILED, ExecutionState.CANCELLED)


@dataclass(frozen=True)
class UploadPart:
    """
    multipart 请求体中的一个二进制附件，附加后不可修改

    参数:
        data: 二进制内容
        name: 表单字段名
        mime_type: MIME 类型，默认 application/octet-stream
        filename: 文件名（可选）
    """

    data: bytes
    name: str
    mime_type: str | None = None
    filename: str | None = None

    @property
    def content_type(self) -> str:
        return self.mime_type or DEFAULT_MIME_TYPE


@dataclass
class RequestSpec:
    """
    一次出站 HTTP 交换在发送前的完整描述

    参数:
        url: 目标 URL
        method: HTTP 方法
        params: 参数字典（键为字符串，值为字符串/数字/布尔）
        headers: 请求头字典
        encoding_mode: 显式指定的编码方式，None 时按方法/参数自动选择
        encode_parameters: POST 参数是否编码为 urlencoded 请求体
        uploads: 二进制附件列表
        timeout: 超时时间（秒）
        handle_cookies: 是否处理 Cookie
        streaming: 是否将收到的字节流逐段解码为 JSON 文档
        charset: 参数编码使用的字符集

    注意:
        以 oauth_ 开头的参数由签名器负责放置，编解码器不会处理它们
    """

    url: str
    method: str = HTTP_METHOD_GET
    params: dict[str, ParamValue] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    encoding_mode: EncodingMode | None = None
    encode_parameters: bool = False
    uploads: list[UploadPart] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    handle_cookies: bool = False
    streaming: bool = False
    charset: str = DEFAULT_ENCODING

    def __post_init__(self):
        self.method = self.method.upper()
        if not self.url:
            raise APIClientValidationError("RequestSpec.url must not be empty")
        for key, value in self.params.items():
            if not isinstance(key, str):
                raise APIClientValidationError(f"Parameter keys must be strings, got {type(key).__name__}")
            if not isinstance(value, (str, int, float, bool)):
                raise APIClientValidationError(
                    f"Parameter '{key}' must be a string, number or boolean, got {type(value).__name__}"
                )
        if self.timeout is not None and self.timeout <= 0:
            raise APIClientValidationError(f"timeout must be positive, got {self.timeout}")

    def add_upload(self, data: bytes, name: str, mime_type: str | None = None, filename: str | None = None):
        """附加一个二进制分片"""
        self.uploads.append(UploadPart(data=data, name=name, mime_type=mime_type, filename=filename))


@dataclass
class ResponseEnvelope:
    """
    响应信封，由执行器在一次交换期间独占

    参数:
        status_code: HTTP 状态码
        reason: 状态短语
        headers: 响应头
        body: 已累计接收的响应体
        expected_length: Content-Length 提示，未知时为 None（区别于 0）
        url: 最终 URL
    """

    status_code: int = 0
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytearray = field(default_factory=bytearray)
    expected_length: int | None = None
    url: str = ""

    @property
    def total_received(self) -> int:
        return len(self.body)

    @property
    def content(self) -> bytes:
        return bytes(self.body)

    def text(self, encoding: str = DEFAULT_ENCODING) -> str:
        return self.body.decode(encoding, errors="replace")

    @staticmethod
    def parse_content_length(value: Any) -> int | None:
        """解析 Content-Length 头，缺失或非法时返回 None"""
        try:
            length = int(value)
        except (TypeError, ValueError):
            return None
        return length if length >= 0 else None
