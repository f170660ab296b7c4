"""
响应解析器模块

提供完整响应体的解析器（JSON、urlencoded、原始字节），
以及流式端点使用的增量 JSON 解码器
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from restflex.codec import decode_query_string
from restflex.constants import DEFAULT_ENCODING, STREAM_DELIMITER
from restflex.exceptions import APIClientDecodeError
from restflex.json_value import JSONValue
from restflex.models import ResponseEnvelope

logger = logging.getLogger(__name__)


class BaseResponseParser(ABC):
    """响应解析器基类，定义解析完整 ResponseEnvelope 的接口。"""

    @abstractmethod
    def parse(self, envelope: ResponseEnvelope) -> Any:
        """
        解析响应信封并返回所需格式的数据

        异常:
            APIClientDecodeError: 响应体无法解析时抛出
        """


class JSONResponseParser(BaseResponseParser):
    """解析响应为 JSONValue"""

    def parse(self, envelope: ResponseEnvelope) -> JSONValue:
        logger.debug("Parsing response as JSON")
        return JSONValue.parse(envelope.body)


class QueryStringResponseParser(BaseResponseParser):
    """解析 urlencoded 响应为字典（OAuth1 令牌端点使用）"""

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.encoding = encoding

    def parse(self, envelope: ResponseEnvelope) -> dict[str, str]:
        logger.debug("Parsing response as urlencoded query string")
        try:
            text = bytes(envelope.body).decode(self.encoding)
        except UnicodeDecodeError as e:
            raise APIClientDecodeError(f"Invalid urlencoded response: {e}", payload=bytes(envelope.body)) from e
        return decode_query_string(text.strip())


class RawResponseParser(BaseResponseParser):
    """返回原始响应体字节"""

    def parse(self, envelope: ResponseEnvelope) -> bytes:
        logger.debug("Returning raw response body")
        return envelope.content


class StreamingJSONDecoder:
    """
    流式 JSON 解码器

    流式端点的单个 HTTP 响应体实际上是以 CRLF 分隔的一系列 JSON 文档。
    解码器每次接收一段新字节，返回其中可以完整解析出的文档。

    解码策略:
        1. 先尝试把整个缓冲区作为一个 JSON 文档解析
        2. 失败则按 CRLF 拆分，逐段独立解析；解析失败的完整片段静默丢弃
        3. 最后一个 CRLF 之后的尾部片段尝试解析一次，失败则保留到下一次 feed，
           因此跨越两次网络读取的文档也能被正确拼接

    注意:
        - 在投递字节的线程上同步运行，不会阻塞
        - 一个实例只服务于一次交换

    使用示例:
        >>> decoder = StreamingJSONDecoder()
        >>> decoder.feed(b'{"a":1}\\r\\n{"b"')
        [JSONValue({'a': 1})]
        >>> decoder.feed(b':2}\\r\\n')
        [JSONValue({'b': 2})]
    """

    delimiter: bytes = STREAM_DELIMITER

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.encoding = encoding
        self._buffer = bytearray()
        self.dropped = 0

    @property
    def pending(self) -> bytes:
        """尚未解析的尾部片段"""
        return bytes(self._buffer)

    def feed(self, chunk: bytes, consumer: Callable[[JSONValue], None] | None = None) -> list[JSONValue]:
        """
        追加一段字节并解析出完整的文档

        参数:
            chunk: 新收到的字节
            consumer: 每解析出一个文档调用一次（可选）

        返回:
            本次解析出的文档列表
        """
        self._buffer += chunk
        documents: list[JSONValue] = []

        whole = self._try_parse(self._buffer)
        if whole is not None:
            self._buffer.clear()
            documents.append(whole)
        else:
            segments = bytes(self._buffer).split(self.delimiter)
            tail = segments.pop()
            for segment in segments:
                if not segment.strip():
                    continue
                document = self._try_parse(segment)
                if document is None:
                    self._drop(segment)
                    continue
                documents.append(document)

            self._buffer = bytearray(tail)
            if tail.strip():
                document = self._try_parse(tail)
                if document is not None:
                    self._buffer.clear()
                    documents.append(document)
            else:
                self._buffer.clear()

        if consumer is not None:
            for document in documents:
                consumer(document)
        return documents

    def flush(self, consumer: Callable[[JSONValue], None] | None = None) -> list[JSONValue]:
        """流结束时处理剩余片段，无法解析则丢弃"""
        documents: list[JSONValue] = []
        if self._buffer.strip():
            document = self._try_parse(self._buffer)
            if document is None:
                self._drop(bytes(self._buffer))
            else:
                documents.append(document)
        self._buffer.clear()

        if consumer is not None:
            for document in documents:
                consumer(document)
        return documents

    def _try_parse(self, data: bytes | bytearray) -> JSONValue | None:
        if not data.strip():
            return None
        try:
            return JSONValue.parse(data, self.encoding)
        except APIClientDecodeError:
            return None

    def _drop(self, segment: bytes):
        self.dropped += 1
        logger.debug(f"Dropping undecodable stream segment ({len(segment)} bytes)")
