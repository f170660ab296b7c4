"""
API 客户端模块

APIClient 把参数编解码、签名、请求执行与 OAuth 握手组合成一个可配置的客户端。
所有调用都是异步的：返回已启动的 RequestExecutor，结果通过回调送达。
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from urllib.parse import urlsplit

from restflex.async_executor import BaseAsyncExecutor, SerialAsyncExecutor, ThreadPoolAsyncExecutor
from restflex.auth import AuthHandshake, FailureCallback, HandshakeSession, TokenCallback
from restflex.classifier import ResponseClassifier
from restflex.constants import (
    API_URL,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DECODE_WORKERS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_TIMEOUT,
    HTTP_METHOD_GET,
    HTTP_METHOD_POST,
    SITE_STREAM_URL,
    STREAM_URL,
    UPLOAD_URL,
    USER_STREAM_URL,
)
from restflex.credentials import Credential, CredentialKind, CredentialStore, OAuthAccessToken
from restflex.exceptions import APIClientValidationError
from restflex.executor import DocumentCallback, ProgressCallback, RequestExecutor, SuccessCallback
from restflex.models import ParamValue, RequestSpec, UploadPart
from restflex.parser import BaseResponseParser, JSONResponseParser, RawResponseParser
from restflex.signer import AppOnlySigner, BaseSigner, OAuth1Signer
from restflex.utils import DEFAULT_SENSITIVE_HEADERS, DEFAULT_SENSITIVE_PARAMS, generate_request_id

logger = logging.getLogger(__name__)


class APIClient:
    """
    REST/流式 API 客户端

    类属性:
        api_url: REST API 基础地址
        upload_url: 上传 API 基础地址
        stream_url: 流式 API 基础地址
        user_stream_url: 用户流基础地址
        site_stream_url: 站点流基础地址
        default_timeout: 默认超时时间（秒）
        verify: SSL 证书验证开关
        max_workers: I/O 线程数
        chunk_size: 非流式请求读取响应体的分块大小
        default_headers: 默认请求头
        sensitive_headers: 日志中脱敏的请求头
        sensitive_params: 日志中脱敏的参数
        enable_sanitization: 是否启用日志脱敏

    使用示例:
        >>> client = APIClient("consumer-key", "consumer-secret", "token", "token-secret")
        >>> client.get_json(
        ...     "statuses/home_timeline.json",
        ...     params={"count": 20},
        ...     on_success=lambda timeline, envelope: print(timeline.array),
        ...     on_failure=lambda error: print(error),
        ... )
    """

    # ========== 基础配置 ==========
    api_url: str = API_URL
    upload_url: str = UPLOAD_URL
    stream_url: str = STREAM_URL
    user_stream_url: str = USER_STREAM_URL
    site_stream_url: str = SITE_STREAM_URL

    # SSL 证书验证开关
    verify: bool = True

    # ========== 安全性配置 ==========
    # 日志中会被脱敏的请求头和参数
    sensitive_headers: set[str] = DEFAULT_SENSITIVE_HEADERS
    sensitive_params: set[str] = DEFAULT_SENSITIVE_PARAMS
    enable_sanitization: bool = True

    # ========== 超时和并发配置 ==========
    # 每个请求的超时时间（秒），不做内部重试
    default_timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    chunk_size: int = DEFAULT_CHUNK_SIZE

    # 所有请求都会携带的请求头，可在请求时覆盖
    default_headers: dict[str, str] = {}

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        oauth_token: str | None = None,
        oauth_token_secret: str | None = None,
        app_only: bool = False,
        api_url: str | None = None,
        upload_url: str | None = None,
        stream_url: str | None = None,
        user_stream_url: str | None = None,
        site_stream_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        verify: bool | None = None,
        max_workers: int | None = None,
        signer: BaseSigner | None = None,
        io_executor: BaseAsyncExecutor | None = None,
        decode_executor: BaseAsyncExecutor | None = None,
        delivery_executor: BaseAsyncExecutor | None = None,
    ):
        """
        初始化客户端

        参数:
            consumer_key: 应用 consumer key
            consumer_secret: 应用 consumer secret
            oauth_token: 已有的访问令牌（可选）
            oauth_token_secret: 已有的访问令牌密钥（可选）
            app_only: 是否使用应用级认证（Basic/Bearer）
            api_url, upload_url, stream_url, user_stream_url, site_stream_url: 覆盖类级别的基础地址
            headers: 默认请求头（与类级别合并）
            timeout: 请求超时时间（秒）
            verify: SSL 证书验证开关
            max_workers: I/O 线程数
            signer: 自定义签名器，None 时按 app_only 选择
            io_executor, decode_executor, delivery_executor: 自定义执行上下文

        执行步骤:
            1. 合并基础地址、超时、请求头等配置
            2. 初始化活动凭证
            3. 初始化签名器
            4. 初始化三个执行上下文，未提供的由客户端创建并在 close() 时关闭

        异常:
            APIClientValidationError: 只提供了令牌或令牌密钥之一时抛出
        """
        if bool(oauth_token) != bool(oauth_token_secret):
            raise APIClientValidationError("oauth_token and oauth_token_secret must be provided together")

        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.app_only = app_only

        self.api_url = api_url or self.api_url
        self.upload_url = upload_url or self.upload_url
        self.stream_url = stream_url or self.stream_url
        self.user_stream_url = user_stream_url or self.user_stream_url
        self.site_stream_url = site_stream_url or self.site_stream_url
        self.default_timeout = timeout if timeout is not None else self.default_timeout
        self.verify = verify if verify is not None else self.verify
        self.max_workers = max_workers or self.max_workers
        self.headers = {**self.default_headers, **(headers or {})}

        self.credential_store = CredentialStore()
        if oauth_token:
            self.credential_store.install(
                Credential(OAuthAccessToken(key=oauth_token, secret=oauth_token_secret), CredentialKind.OAUTH1)
            )

        self.app_only_signer = AppOnlySigner(consumer_key, consumer_secret, self.credential_store)
        if signer is not None:
            self.signer = signer
        elif app_only:
            self.signer = self.app_only_signer
        else:
            self.signer = OAuth1Signer(consumer_key, consumer_secret, self.credential_store)

        self._owned_executors: list[BaseAsyncExecutor] = []
        self.io_executor = io_executor or self._own(ThreadPoolAsyncExecutor(max_workers=self.max_workers))
        self.decode_executor = decode_executor or self._own(
            ThreadPoolAsyncExecutor(max_workers=DEFAULT_DECODE_WORKERS, thread_name_prefix="restflex-decode")
        )
        self.delivery_executor = delivery_executor or self._own(SerialAsyncExecutor())

        self.classifier = ResponseClassifier()
        self.auth = AuthHandshake(self)

        logger.info(f"Initialized {self.__class__.__name__} (app_only={app_only}, api_url={self.api_url})")

    def _own(self, executor: BaseAsyncExecutor) -> BaseAsyncExecutor:
        self._owned_executors.append(executor)
        return executor

    # ========== URL ==========

    @property
    def oauth_base_url(self) -> str:
        """API 基础地址的根（OAuth 端点不带版本前缀）"""
        parsed = urlsplit(self.api_url)
        return f"{parsed.scheme}://{parsed.netloc}"

    def _build_url(self, path: str, base_url: str | None = None) -> str:
        base = base_url or self.api_url
        if not path:
            return base
        if path.startswith(("http://", "https://")):
            return path
        return f"{base.rstrip('/')}/{path.lstrip('/')}"

    # ========== 请求 ==========

    def build_spec(
        self,
        method: str,
        path: str,
        base_url: str | None = None,
        params: dict[str, ParamValue] | None = None,
        uploads: list[UploadPart] | None = None,
        headers: dict[str, str] | None = None,
        encode_parameters: bool = False,
        streaming: bool = False,
        timeout: float | None = None,
    ) -> RequestSpec:
        return RequestSpec(
            url=self._build_url(path, base_url),
            method=method,
            params=dict(params or {}),
            headers={**self.headers, **(headers or {})},
            encode_parameters=encode_parameters,
            uploads=list(uploads or []),
            timeout=timeout if timeout is not None else self.default_timeout,
            streaming=streaming,
        )

    def request(
        self,
        method: str,
        path: str,
        base_url: str | None = None,
        params: dict[str, ParamValue] | None = None,
        uploads: list[UploadPart] | None = None,
        headers: dict[str, str] | None = None,
        encode_parameters: bool = False,
        streaming: bool = False,
        timeout: float | None = None,
        response_parser: BaseResponseParser | None = None,
        on_success: SuccessCallback | None = None,
        on_failure: Callable | None = None,
        on_progress: ProgressCallback | None = None,
        on_upload_progress: ProgressCallback | None = None,
        on_document: DocumentCallback | None = None,
        token: OAuthAccessToken | None = None,
        sign_with: Callable[[RequestSpec], RequestSpec] | None = None,
    ) -> RequestExecutor:
        """
        发起请求的统一入口

        参数:
            method: HTTP 方法
            path: 相对 base_url 的路径，或完整 URL
            base_url: 基础地址，默认 api_url
            params: 参数字典
            uploads: 二进制附件，存在时使用 multipart
            headers: 额外请求头
            encode_parameters: POST 参数是否编码为 urlencoded 请求体
            streaming: 是否按流式 JSON 文档解码响应
            timeout: 超时时间（秒）
            response_parser: 完整响应体解析器，None 时成功回调收到原始字节
            on_success, on_failure, on_progress, on_upload_progress, on_document: 回调
            token: 覆盖活动凭证的签名令牌
            sign_with: 自定义签名函数，替代默认签名器

        签名在 I/O 执行器上发送前进行，签名失败与其他失败一样送达 on_failure

        返回:
            已启动的 RequestExecutor
        """
        spec = self.build_spec(
            method,
            path,
            base_url=base_url,
            params=params,
            uploads=uploads,
            headers=headers,
            encode_parameters=encode_parameters,
            streaming=streaming,
            timeout=timeout,
        )
        if sign_with is None:
            sign_with = functools.partial(self.signer.sign, token=token)

        executor = RequestExecutor(
            spec,
            sign=sign_with,
            on_success=on_success,
            on_failure=on_failure,
            on_progress=on_progress,
            on_upload_progress=on_upload_progress,
            on_document=on_document,
            response_parser=response_parser,
            classifier=self.classifier,
            io_executor=self.io_executor,
            decode_executor=self.decode_executor,
            delivery_executor=self.delivery_executor,
            chunk_size=self.chunk_size,
            verify=self.verify,
            request_id=generate_request_id(),
            sensitive_headers=self.sensitive_headers,
            sensitive_params=self.sensitive_params,
        )
        executor.enable_sanitization = self.enable_sanitization
        return executor.start()

    def get(self, path: str, **kwargs) -> RequestExecutor:
        return self.request(HTTP_METHOD_GET, path, **kwargs)

    def post(self, path: str, **kwargs) -> RequestExecutor:
        return self.request(HTTP_METHOD_POST, path, **kwargs)

    def json_request(self, method: str, path: str, streaming: bool = False, **kwargs) -> RequestExecutor:
        """
        JSON 请求

        非流式时成功回调收到 JSONValue；流式时每个文档送达 on_document，
        成功回调收到原始响应体字节
        """
        kwargs.setdefault("response_parser", RawResponseParser() if streaming else JSONResponseParser())
        return self.request(method, path, streaming=streaming, **kwargs)

    def get_json(self, path: str, **kwargs) -> RequestExecutor:
        return self.json_request(HTTP_METHOD_GET, path, **kwargs)

    def post_json(self, path: str, **kwargs) -> RequestExecutor:
        return self.json_request(HTTP_METHOD_POST, path, **kwargs)

    # ========== 认证 ==========

    @property
    def credential(self) -> Credential | None:
        return self.credential_store.get()

    def authorize(
        self,
        callback_url: str,
        open_authorize_url: Callable[[str], None],
        on_success: TokenCallback,
        on_failure: FailureCallback | None = None,
        close_authorize_url: Callable[[], None] | None = None,
    ) -> HandshakeSession | None:
        return self.auth.authorize(callback_url, open_authorize_url, on_success, on_failure, close_authorize_url)

    def handle_callback_url(self, url: str) -> bool:
        return self.auth.handle_callback_url(url)

    def cancel_authorization(self) -> bool:
        return self.auth.cancel()

    def authorize_app_only(self, on_success: TokenCallback, on_failure: FailureCallback | None = None) -> RequestExecutor:
        return self.auth.authorize_app_only(on_success, on_failure)

    def invalidate_bearer_token(
        self, on_success: TokenCallback, on_failure: FailureCallback | None = None
    ) -> RequestExecutor:
        return self.auth.invalidate_bearer_token(on_success, on_failure)

    # ========== 生命周期 ==========

    def close(self, wait: bool = True):
        """
        关闭客户端创建的执行器

        调用方传入的执行器由调用方负责关闭
        """
        self.auth.cancel()
        for executor in self._owned_executors:
            executor.shutdown(wait=wait)
        self._owned_executors.clear()
        logger.info(f"{self.__class__.__name__} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

