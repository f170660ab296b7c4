"""请求执行器模块

RequestExecutor 独占一次 HTTP 交换的全过程：构造请求、异步发送、流式接收、分类结果。

状态流转:
    Idle -> Sending -> AwaitingResponse -> ReceivingBody -> Completed | Failed
    任意非终止状态均可 cancel() 进入 Cancelled，之后不再触发任何回调

线程模型:
    - 网络交换在 I/O 执行器上运行，start() 立即返回
    - 流式 JSON 解码在投递网络字节的线程上同步进行（不阻塞）
    - 完整响应体的解析在解码执行器上运行
    - 所有回调都通过投递执行器触发，从不在调用 start() 的线程上同步执行
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from http.cookiejar import DefaultCookiePolicy
from typing import Any

import requests
from urllib3.exceptions import ReadTimeoutError

from restflex.async_executor import BaseAsyncExecutor, get_default_executor
from restflex.classifier import ResponseClassifier
from restflex.codec import (
    append_query_string,
    build_raw_query_string,
    encode_multipart,
    encode_query_string,
    generate_boundary,
    multipart_content_type,
    non_oauth_params,
    resolve_encoding_mode,
)
from restflex.constants import CONTENT_TYPE_FORM_URLENCODED, DEFAULT_CHUNK_SIZE
from restflex.exceptions import (
    APIClientDecodeError,
    APIClientError,
    APIClientNetworkError,
    APIClientTimeoutError,
    APIClientValidationError,
)
from restflex.json_value import JSONValue
from restflex.models import EncodingMode, ExecutionState, RequestSpec, ResponseEnvelope
from restflex.parser import BaseResponseParser, StreamingJSONDecoder
from restflex.utils import generate_request_id, sanitize_dict, sanitize_headers, sanitize_url

logger = logging.getLogger(__name__)

# (本次字节数, 累计字节数, 预期总字节数或 None)
ProgressCallback = Callable[[int, int, "int | None"], None]
SuccessCallback = Callable[[Any, ResponseEnvelope], None]
FailureCallback = Callable[[APIClientError], None]
DocumentCallback = Callable[[JSONValue, ResponseEnvelope], None]


def _is_read_timeout(error: requests.exceptions.ConnectionError) -> bool:
    """读取响应体时超时，requests 以 ConnectionError 包装 urllib3 的 ReadTimeoutError 抛出"""
    causes = (*error.args, error.__cause__, error.__context__)
    return any(isinstance(cause, ReadTimeoutError) for cause in causes)


class ProgressReader:
    """
    带上传进度回调的请求体读取器

    requests 会把带 __len__ 的可迭代对象作为定长流发送，每次 read 时报告进度
    """

    def __init__(self, data: bytes, callback: ProgressCallback, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._data = data
        self._callback = callback
        self._chunk_size = chunk_size
        self._offset = 0

    def __len__(self) -> int:
        return len(self._data)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._data) - self._offset
        chunk = self._data[self._offset : self._offset + size]
        self._offset += len(chunk)
        if chunk:
            self._callback(len(chunk), self._offset, len(self._data))
        return chunk

    def __iter__(self) -> Iterator[bytes]:
        while chunk := self.read(self._chunk_size):
            yield chunk


class RequestExecutor:
    """
    单次 HTTP 交换的执行器

    参数:
        spec: 请求描述
        on_success: 成功回调 (data, envelope)，data 为解析器输出；未配置解析器时为响应体字节
        on_failure: 失败回调 (error)
        on_progress: 下载进度回调 (本次字节数, 累计字节数, 预期总字节数或 None)
        on_upload_progress: 上传进度回调，参数同上
        on_document: 流式模式下每解析出一个 JSON 文档调用一次 (document, envelope)
        response_parser: 完整响应体解析器（可选）
        classifier: 响应分类器，默认 ResponseClassifier
        io_executor: 执行网络交换的执行器
        decode_executor: 执行响应体解析的执行器
        delivery_executor: 执行回调的执行器
        session: requests.Session（可选），未提供时每次交换独立创建并在结束后关闭
        chunk_size: 读取响应体的分块大小，None 表示按到达的数据块读取
        verify: SSL 证书验证开关
        request_id: 请求唯一标识，用于日志追踪
        sign: 签名函数（可选），在 I/O 执行器上发送前调用，签名失败送达失败回调

    保证:
        到达 Completed 或 Failed 的执行，成功/失败回调恰好触发其一且仅一次；
        Cancelled 不触发任何回调
    """

    # 是否在日志中脱敏
    enable_sanitization: bool = True

    def __init__(
        self,
        spec: RequestSpec,
        on_success: SuccessCallback | None = None,
        on_failure: FailureCallback | None = None,
        on_progress: ProgressCallback | None = None,
        on_upload_progress: ProgressCallback | None = None,
        on_document: DocumentCallback | None = None,
        response_parser: BaseResponseParser | None = None,
        classifier: ResponseClassifier | None = None,
        io_executor: BaseAsyncExecutor | None = None,
        decode_executor: BaseAsyncExecutor | None = None,
        delivery_executor: BaseAsyncExecutor | None = None,
        sign: Callable[[RequestSpec], RequestSpec] | None = None,
        session: requests.Session | None = None,
        chunk_size: int | None = DEFAULT_CHUNK_SIZE,
        verify: bool = True,
        request_id: str | None = None,
        sensitive_headers: set[str] | None = None,
        sensitive_params: set[str] | None = None,
    ):
        self.spec = spec
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_progress = on_progress
        self.on_upload_progress = on_upload_progress
        self.on_document = on_document
        self.response_parser = response_parser
        self.sign = sign
        self.classifier = classifier or ResponseClassifier(encoding=spec.charset)
        self.io_executor = io_executor or get_default_executor("io")
        self.decode_executor = decode_executor or get_default_executor("decode")
        self.delivery_executor = delivery_executor or get_default_executor("delivery")
        self.chunk_size = chunk_size
        self.verify = verify
        self.request_id = request_id or generate_request_id()
        self.sensitive_headers = sensitive_headers
        self.sensitive_params = sensitive_params

        self.envelope = ResponseEnvelope(url=spec.url)
        self._decoder = StreamingJSONDecoder(encoding=spec.charset) if spec.streaming else None

        self._session = session
        self._owns_session = session is None
        self._response: requests.Response | None = None

        # 状态锁只保护状态读写；投递锁在回调执行期间持有，使 cancel() 返回后不再有新回调开始
        self._state = ExecutionState.IDLE
        self._state_lock = threading.RLock()
        self._delivery_lock = threading.RLock()
        self._inert = threading.Event()

    # ========== 对外接口 ==========

    @property
    def state(self) -> ExecutionState:
        with self._state_lock:
            return self._state

    def start(self) -> RequestExecutor:
        """
        异步发送请求，立即返回

        异常:
            APIClientValidationError: 重复调用 start() 时抛出
        """
        with self._state_lock:
            if self._state is not ExecutionState.IDLE:
                raise APIClientValidationError(f"[{self.request_id}] RequestExecutor can only be started once")
            self._state = ExecutionState.SENDING

        self.io_executor.submit(self._run)
        return self

    def cancel(self) -> bool:
        """
        取消执行

        返回:
            True 表示已取消；执行已处于终止状态时返回 False
        """
        with self._delivery_lock:
            with self._state_lock:
                if self._state.is_terminal:
                    return False
                self._state = ExecutionState.CANCELLED
                response = self._response

        logger.info(f"[{self.request_id}] Request cancelled")
        if response is not None:
            self._close_quietly(response)
        self._inert.set()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """等待执行进入惰性状态（终止回调已执行完毕或已取消）"""
        return self._inert.wait(timeout)

    # ========== 请求构造 ==========

    def build_request_kwargs(self) -> dict[str, Any]:
        """
        根据编码方式构造 requests 参数

        执行步骤:
            1. 选择编码方式
            2. 按编码方式构造 URL、请求体和 Content-Type
            3. 有请求体时设置精确的 Content-Length
            4. 配置了上传进度回调时用 ProgressReader 包装请求体
        """
        spec = self.spec
        charset = spec.charset
        mode = resolve_encoding_mode(spec)
        params = non_oauth_params(spec.params)
        url = spec.url
        headers = dict(spec.headers)
        data: bytes | None = None

        if mode is EncodingMode.MULTIPART:
            boundary = generate_boundary()
            data = encode_multipart(boundary, spec.uploads, params, charset)
            headers["Content-Type"] = multipart_content_type(boundary)
        elif mode is EncodingMode.QUERY_APPEND:
            url = append_query_string(url, encode_query_string(params, charset))
        elif mode is EncodingMode.URLENCODED_BODY:
            data = encode_query_string(params, charset).encode(charset)
            headers["Content-Type"] = f"{CONTENT_TYPE_FORM_URLENCODED}; charset={charset}"
        elif mode is EncodingMode.RAW_BODY:
            data = build_raw_query_string(params).encode(charset)
            headers["Content-Type"] = CONTENT_TYPE_FORM_URLENCODED

        request_kwargs: dict[str, Any] = {
            "method": spec.method,
            "url": url,
            "headers": headers,
            "timeout": spec.timeout,
            "verify": self.verify,
            "stream": True,
        }
        if data is not None:
            headers["Content-Length"] = str(len(data))
            if self.on_upload_progress is not None:
                request_kwargs["data"] = ProgressReader(data, self._emit_upload_progress)
            else:
                request_kwargs["data"] = data

        logger.debug(f"[{self.request_id}] Encoding mode: {mode.value if mode else 'none'}")
        return request_kwargs

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        if not self.spec.handle_cookies:
            # 空白名单：既不保存也不发送 Cookie
            session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        return session

    # ========== 网络交换（I/O 线程） ==========

    def _sign_spec(self):
        if self.sign is None:
            return
        try:
            self.spec = self.sign(self.spec)
        except APIClientError:
            raise
        except Exception as e:
            logger.exception(f"[{self.request_id}] Signing failed: {e}")
            raise APIClientError(f"Failed to sign request: {e}") from e

    def _run(self):
        """
        在 I/O 执行器上执行一次完整交换

        执行步骤:
            1. 签名，构造请求参数并发送
            2. 逐块接收响应体：累计、报告进度、流式解码
            3. 分类响应结果
            4. 提交解析任务或直接完成
            5. 把 requests 异常转换为客户端异常并送达失败回调
        """
        session: requests.Session | None = None
        try:
            self._sign_spec()
            request_kwargs = self.build_request_kwargs()
            self._log_request(request_kwargs)

            if not self._advance(ExecutionState.AWAITING_RESPONSE):
                return

            session = self._session if self._session is not None else self._create_session()
            response = session.request(**request_kwargs)

            with self._state_lock:
                if self._state is ExecutionState.CANCELLED:
                    self._close_quietly(response)
                    return
                self._response = response
                self._state = ExecutionState.RECEIVING_BODY

            self._receive(response)
            if self.state is ExecutionState.CANCELLED:
                return

            self.classifier.classify(self.envelope)
        except requests.exceptions.Timeout as e:
            self._fail(APIClientTimeoutError(f"Request to {self._safe_url()} timed out after {self.spec.timeout}s: {e}"))
        except requests.exceptions.ConnectionError as e:
            if _is_read_timeout(e):
                self._fail(
                    APIClientTimeoutError(f"Request to {self._safe_url()} timed out after {self.spec.timeout}s: {e}")
                )
            else:
                self._fail(APIClientNetworkError(f"Request to {self._safe_url()} failed: {e}"))
        except requests.exceptions.RequestException as e:
            self._fail(APIClientNetworkError(f"Request to {self._safe_url()} failed: {e}"))
        except APIClientError as e:
            self._fail(e)
        except Exception as e:
            if self.state is not ExecutionState.CANCELLED:
                logger.exception(f"[{self.request_id}] Unexpected error during request: {e}")
            self._fail(APIClientError(f"Unexpected error: {e}"))
        else:
            if self.response_parser is not None:
                self.decode_executor.submit(self._parse_and_complete)
            else:
                self._complete(self.envelope.content)
        finally:
            if self._response is not None:
                self._close_quietly(self._response)
            if session is not None and self._owns_session:
                session.close()

    def _receive(self, response: requests.Response):
        """接收响应体，每个数据块触发一次进度回调和一次流式解码"""
        envelope = self.envelope
        envelope.status_code = response.status_code
        envelope.reason = response.reason or ""
        envelope.headers = dict(response.headers)
        envelope.url = response.url or self.spec.url
        envelope.expected_length = ResponseEnvelope.parse_content_length(response.headers.get("Content-Length"))

        logger.info(f"[{self.request_id}] Received {response.status_code} response")
        logger.debug(f"[{self.request_id}] Response headers: {sanitize_headers(envelope.headers, self.sensitive_headers)}")

        chunk_size = None if self.spec.streaming else self.chunk_size
        for chunk in response.iter_content(chunk_size=chunk_size):
            if self.state is ExecutionState.CANCELLED:
                return
            if not chunk:
                continue

            envelope.body += chunk
            logger.debug(
                f"[{self.request_id}] Received {len(chunk)} bytes ({envelope.total_received}/"
                f"{envelope.expected_length if envelope.expected_length is not None else 'unknown'})"
            )
            self._dispatch(self.on_progress, len(chunk), envelope.total_received, envelope.expected_length)

            if self._decoder is not None:
                for document in self._decoder.feed(chunk):
                    self._dispatch(self.on_document, document, envelope)

        if self._decoder is not None:
            for document in self._decoder.flush():
                self._dispatch(self.on_document, document, envelope)

    # ========== 解析（解码线程） ==========

    def _parse_and_complete(self):
        if self.state is ExecutionState.CANCELLED:
            return
        try:
            logger.debug(f"[{self.request_id}] Parsing response data")
            data = self.response_parser.parse(self.envelope)
        except APIClientError as e:
            self._fail(e)
        except Exception as e:
            logger.exception(f"[{self.request_id}] Response parser raised unexpected error: {e}")
            self._fail(APIClientDecodeError(f"Parsing failed: {e}", payload=self.envelope.content))
        else:
            self._complete(data)

    # ========== 状态与回调投递 ==========

    def _advance(self, state: ExecutionState) -> bool:
        with self._state_lock:
            if self._state.is_terminal:
                return False
            self._state = state
            return True

    def _complete(self, data: Any):
        logger.debug(f"[{self.request_id}] Request completed")
        self._finish(ExecutionState.COMPLETED, self.on_success, data, self.envelope)

    def _fail(self, error: APIClientError):
        if self.state is ExecutionState.CANCELLED:
            logger.debug(f"[{self.request_id}] Ignoring error after cancellation: {error}")
            return
        logger.error(f"[{self.request_id}] Request failed: {error}")
        self._finish(ExecutionState.FAILED, self.on_failure, error)

    def _finish(self, state: ExecutionState, callback: Callable | None, *args):
        """进入终止状态并投递终止回调；已处于终止状态时忽略"""
        with self._state_lock:
            if self._state.is_terminal:
                return
            self._state = state

        def deliver():
            with self._delivery_lock:
                try:
                    if callback is not None:
                        callback(*args)
                finally:
                    self._inert.set()

        self.delivery_executor.submit(deliver)

    def _dispatch(self, callback: Callable | None, *args):
        """投递非终止回调，取消后不再执行"""
        if callback is None:
            return

        def deliver():
            with self._delivery_lock:
                if self.state is ExecutionState.CANCELLED:
                    return
                callback(*args)

        self.delivery_executor.submit(deliver)

    def _emit_upload_progress(self, bytes_written: int, total_written: int, total_expected: int | None):
        if self.state is ExecutionState.CANCELLED:
            return
        self._dispatch(self.on_upload_progress, bytes_written, total_written, total_expected)

    # ========== 辅助 ==========

    def _safe_url(self) -> str:
        if not self.enable_sanitization:
            return self.spec.url
        return sanitize_url(self.spec.url, self.sensitive_params)

    def _log_request(self, request_kwargs: dict[str, Any]):
        logger.info(f"[{self.request_id}] Starting {self.spec.method} request to {self._safe_url()}")
        if logger.isEnabledFor(logging.DEBUG):
            safe_kwargs = {k: v for k, v in request_kwargs.items() if k != "data"}
            if self.enable_sanitization:
                safe_kwargs["url"] = sanitize_url(request_kwargs["url"], self.sensitive_params)
                safe_kwargs["headers"] = sanitize_headers(request_kwargs["headers"], self.sensitive_headers)
                safe_kwargs["params"] = sanitize_dict(non_oauth_params(self.spec.params), self.sensitive_params)
            logger.debug(f"[{self.request_id}] Request kwargs: {safe_kwargs}")

    @staticmethod
    def _close_quietly(response: requests.Response):
        try:
            response.close()
        except Exception as e:
            logger.debug(f"Error while closing response: {e}")
