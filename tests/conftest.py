"""
通用测试 Fixture 定义

提供测试所需的执行器、客户端、伪造 Session 等 Fixture 和工具函数
"""

import threading

import pytest
from requests.structures import CaseInsensitiveDict

from restflex.async_executor import QueueAsyncExecutor


class FakeResponse:
    """按预设分块返回响应体的伪造 Response"""

    def __init__(self, chunks, status_code=200, headers=None, url="https://api.example.com/test", gate=None, error=None):
        self.chunks = list(chunks)
        self.status_code = status_code
        self.reason = "OK" if status_code < 400 else "Error"
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.closed = False
        # gate: (started, release) 两个 Event，用于在读取第一个分块前暂停
        self.gate = gate
        # error: 发送完所有分块后抛出的异常，模拟读取响应体时中断
        self.error = error

    def iter_content(self, chunk_size=None):
        if self.gate is not None:
            started, release = self.gate
            started.set()
            release.wait(5)
        yield from self.chunks
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class Recorder:
    """记录回调调用的辅助类"""

    def __init__(self):
        self.successes = []
        self.failures = []
        self.progress = []
        self.documents = []
        self.threads = []

    def on_success(self, data, envelope):
        self.threads.append(threading.current_thread().name)
        self.successes.append((data, envelope))

    def on_failure(self, error):
        self.threads.append(threading.current_thread().name)
        self.failures.append(error)

    def on_progress(self, chunk_bytes, total, expected):
        self.progress.append((chunk_bytes, total, expected))

    def on_document(self, document, envelope):
        self.documents.append(document)


@pytest.fixture
def queue_executor():
    """在测试线程中手动驱动的执行器，可同时充当 I/O、解码、投递上下文"""
    return QueueAsyncExecutor()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def fake_session(mocker):
    """返回 (session, set_response) 二元组，set_response 设置下一次请求的响应"""
    session = mocker.MagicMock()

    def set_response(response):
        session.request.return_value = response
        return response

    return session, set_response


@pytest.fixture
def client(queue_executor):
    """使用队列执行器的 OAuth1 客户端"""
    from restflex import APIClient

    client = APIClient(
        "consumer-key",
        "consumer-secret",
        "token",
        "token-secret",
        io_executor=queue_executor,
        decode_executor=queue_executor,
        delivery_executor=queue_executor,
    )
    yield client
    client.close()


@pytest.fixture
def unauthorized_client(queue_executor):
    """没有活动凭证的 OAuth1 客户端"""
    from restflex import APIClient

    client = APIClient(
        "consumer-key",
        "consumer-secret",
        io_executor=queue_executor,
        decode_executor=queue_executor,
        delivery_executor=queue_executor,
    )
    yield client
    client.close()


@pytest.fixture
def app_only_client(queue_executor):
    """应用级认证客户端"""
    from restflex import APIClient

    client = APIClient(
        "xvz1evFS4wEEPTGEFPHBog",
        "L8qq9PZyRg6ieKGEKhZolGC0vJWLw8iEJ88DRdyOg",
        app_only=True,
        io_executor=queue_executor,
        decode_executor=queue_executor,
        delivery_executor=queue_executor,
    )
    yield client
    client.close()


@pytest.fixture
def make_response():
    """FakeResponse 构造函数"""
    return FakeResponse
