"""
restflex 异步 REST/流式 API 客户端

基于 requests 的 OAuth 签名 REST 与流式 JSON 客户端引擎

主要组件:
    - APIClient: 客户端入口
    - RequestExecutor: 单次 HTTP 交换的执行器
    - 参数编解码: encode_query_string, encode_multipart 等
    - 解析器: JSONResponseParser, StreamingJSONDecoder 等
    - 签名器: OAuth1Signer, AppOnlySigner
    - 握手: AuthHandshake
    - 执行器: ThreadPoolAsyncExecutor, SerialAsyncExecutor, QueueAsyncExecutor

使用示例:
    >>> from restflex import APIClient
    >>>
    >>> client = APIClient("consumer-key", "consumer-secret", "token", "token-secret")
    >>> client.get_json(
    ...     "statuses/user_timeline.json",
    ...     params={"screen_name": "example"},
    ...     on_success=lambda timeline, envelope: print(timeline),
    ... )
"""

# 核心客户端
from restflex.client import APIClient

# 请求执行
from restflex.executor import ProgressReader, RequestExecutor

# 数据模型
from restflex.models import (
    EncodingMode,
    ExecutionState,
    RequestSpec,
    ResponseEnvelope,
    UploadPart,
)

# 异常类
from restflex.exceptions import (
    APIClientDecodeError,
    APIClientError,
    APIClientHandshakeError,
    APIClientHTTPError,
    APIClientNetworkError,
    APIClientTimeoutError,
    APIClientValidationError,
)

# 参数编解码
from restflex.codec import (
    decode_query_string,
    encode_multipart,
    encode_query_string,
    resolve_encoding_mode,
)

# 响应解析与分类
from restflex.classifier import ResponseClassifier, describe_http_status
from restflex.json_value import JSONValue
from restflex.parser import (
    BaseResponseParser,
    JSONResponseParser,
    QueryStringResponseParser,
    RawResponseParser,
    StreamingJSONDecoder,
)

# 认证
from restflex.auth import AuthHandshake, HandshakeSession, HandshakeState
from restflex.credentials import Credential, CredentialKind, CredentialStore, OAuthAccessToken
from restflex.signer import AppOnlySigner, BaseSigner, OAuth1Signer

# 异步执行器
from restflex.async_executor import (
    BaseAsyncExecutor,
    QueueAsyncExecutor,
    SerialAsyncExecutor,
    ThreadPoolAsyncExecutor,
)

# 工具函数
from restflex.utils import (
    sanitize_dict,
    sanitize_headers,
    sanitize_url,
)

# 常量配置
from restflex.constants import (
    API_URL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_WORKERS,
    DEFAULT_TIMEOUT,
    HTTP_METHOD_DELETE,
    HTTP_METHOD_GET,
    HTTP_METHOD_HEAD,
    HTTP_METHOD_POST,
    STREAM_URL,
    UPLOAD_URL,
)

__all__ = [
    # 核心客户端
    "APIClient",
    # 请求执行
    "ProgressReader",
    "RequestExecutor",
    # 数据模型
    "EncodingMode",
    "ExecutionState",
    "RequestSpec",
    "ResponseEnvelope",
    "UploadPart",
    # 异常类
    "APIClientDecodeError",
    "APIClientError",
    "APIClientHandshakeError",
    "APIClientHTTPError",
    "APIClientNetworkError",
    "APIClientTimeoutError",
    "APIClientValidationError",
    # 参数编解码
    "decode_query_string",
    "encode_multipart",
    "encode_query_string",
    "resolve_encoding_mode",
    # 响应解析与分类
    "ResponseClassifier",
    "describe_http_status",
    "JSONValue",
    "BaseResponseParser",
    "JSONResponseParser",
    "QueryStringResponseParser",
    "RawResponseParser",
    "StreamingJSONDecoder",
    # 认证
    "AuthHandshake",
    "HandshakeSession",
    "HandshakeState",
    "Credential",
    "CredentialKind",
    "CredentialStore",
    "OAuthAccessToken",
    "AppOnlySigner",
    "BaseSigner",
    "OAuth1Signer",
    # 异步执行器
    "BaseAsyncExecutor",
    "QueueAsyncExecutor",
    "SerialAsyncExecutor",
    "ThreadPoolAsyncExecutor",
    # 工具函数
    "sanitize_dict",
    "sanitize_headers",
    "sanitize_url",
    # 常量
    "API_URL",
    "STREAM_URL",
    "UPLOAD_URL",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_TIMEOUT",
    "HTTP_METHOD_DELETE",
    "HTTP_METHOD_GET",
    "HTTP_METHOD_HEAD",
    "HTTP_METHOD_POST",
]

__version__ = "0.1.0"
