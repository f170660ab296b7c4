"""
客户端异常模块

定义所有 API 客户端相关的异常类，提供统一的错误处理机制。
所有失败最终都以这些异常之一的形式送达失败回调。
"""

from __future__ import annotations

from restflex.constants import ERROR_DOMAIN_CLIENT, ERROR_DOMAIN_HTTP


class APIClientError(Exception):
    """
    API 客户端异常基类

    所有自定义异常的基类，用于统一捕获和处理客户端相关错误

    属性:
        domain: 错误域
    """

    domain: str = ERROR_DOMAIN_CLIENT


class APIClientHTTPError(APIClientError):
    """
    HTTP 错误响应异常

    当服务器返回 4xx 或 5xx 状态码时抛出此异常

    参数:
        message: 错误描述信息（状态描述 + 原始响应文本）
        status_code: HTTP 状态码
        headers: 响应头（可选）
        body: 原始响应体（可选）
        api_error_code: 响应体 errors[0].code 中携带的 API 错误代码（可选）
    """

    domain = ERROR_DOMAIN_HTTP

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        api_error_code: int | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers = headers or {}
        self.body = body
        self.api_error_code = api_error_code


class APIClientNetworkError(APIClientError):
    """
    网络传输异常

    当连接失败、DNS 解析失败、TLS 握手失败等传输层问题时抛出此异常，不做内部重试
    """


class APIClientTimeoutError(APIClientNetworkError):
    """
    请求超时异常

    当请求执行时间超过设定的超时时间时抛出此异常
    """


class APIClientDecodeError(APIClientError):
    """
    响应解码异常

    当预期为 JSON（或 urlencoded）的响应体无法解析时抛出此异常

    参数:
        message: 错误描述信息
        payload: 无法解析的原始数据（可选）
    """

    def __init__(self, message: str, payload: bytes | str | None = None):
        super().__init__(message)
        self.payload = payload


class APIClientHandshakeError(APIClientError):
    """
    OAuth 握手异常

    参数:
        message: 错误描述信息
        reason: 失败原因标识，取值见 constants.HANDSHAKE_REASON_*
        code: 服务器返回的错误代码（可选）
    """

    def __init__(self, message: str, reason: str | None = None, code: int | None = None):
        super().__init__(message)
        self.reason = reason
        self.code = code


class APIClientValidationError(APIClientError):
    """
    输入验证异常

    当请求参数、配置等输入数据验证失败，或执行器被误用时抛出此异常
    """
