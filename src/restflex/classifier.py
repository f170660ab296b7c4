"""
响应分类模块

根据 HTTP 状态码和响应体把一次完成的交换划分为成功或失败
"""

from __future__ import annotations

import logging

from restflex.constants import DEFAULT_ENCODING
from restflex.exceptions import APIClientDecodeError, APIClientHTTPError
from restflex.json_value import JSONValue
from restflex.models import ResponseEnvelope

logger = logging.getLogger(__name__)


# http://www.iana.org/assignments/http-status-codes/http-status-codes.xhtml
HTTP_STATUS_DESCRIPTIONS: dict[int, str] = {
    100: "Continue",
    101: "Switching Protocols",
    102: "Processing",
    103: "Early Hints",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    207: "Multi-Status",
    208: "Already Reported",
    226: "IM Used",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    305: "Use Proxy",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Payload Too Large",
    414: "URI Too Long",
    415: "Unsupported Media Type",
    416: "Requested Range Not Satisfiable",
    417: "Expectation Failed",
    422: "Unprocessable Entity",
    423: "Locked",
    424: "Failed Dependency",
    425: "Unassigned",
    426: "Upgrade Required",
    427: "Unassigned",
    428: "Precondition Required",
    429: "Too Many Requests",
    430: "Unassigned",
    431: "Request Header Fields Too Large",
    432: "Unassigned",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
    506: "Variant Also Negotiates",
    507: "Insufficient Storage",
    508: "Loop Detected",
    509: "Unassigned",
    510: "Not Extended",
    511: "Network Authentication Required",
}


def describe_http_status(status_code: int, response_text: str) -> str:
    """
    生成 HTTP 状态描述

    示例:
        >>> describe_http_status(404, '{"errors": []}')
        'HTTP Status 404: Not Found, Response: {"errors": []}'
        >>> describe_http_status(999, "oops")
        'HTTP Status 999, Response: oops'
    """
    description = HTTP_STATUS_DESCRIPTIONS.get(status_code)
    prefix = f"HTTP Status {status_code}"
    if description is not None:
        prefix = f"{prefix}: {description}"
    return f"{prefix}, Response: {response_text}"


def extract_api_error_code(body: bytes | bytearray) -> int | None:
    """从 {"errors": [{"code": N, ...}]} 形式的响应体中提取 API 错误代码"""
    try:
        payload = JSONValue.parse(body)
    except APIClientDecodeError:
        return None
    errors = payload["errors"].array
    if not errors:
        return None
    return errors[0]["code"].integer


class ResponseClassifier:
    """
    响应分类器

    状态码小于 400 视为成功，原样返回响应信封；
    大于等于 400 视为失败，抛出 APIClientHTTPError
    """

    error_status_threshold: int = 400

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.encoding = encoding

    def is_success(self, envelope: ResponseEnvelope) -> bool:
        return envelope.status_code < self.error_status_threshold

    def classify(self, envelope: ResponseEnvelope) -> ResponseEnvelope:
        """
        分类响应

        返回:
            成功时返回原响应信封

        异常:
            APIClientHTTPError: 状态码 >= 400 时抛出，携带可选的 API 错误代码
        """
        if self.is_success(envelope):
            return envelope

        body = envelope.content
        message = describe_http_status(envelope.status_code, envelope.text(self.encoding))
        api_error_code = extract_api_error_code(body)
        logger.debug(f"Classified HTTP {envelope.status_code} as failure (api_error_code={api_error_code})")
        raise APIClientHTTPError(
            message,
            status_code=envelope.status_code,
            headers=dict(envelope.headers),
            body=body,
            api_error_code=api_error_code,
        )
