"""异步执行器模块

提供请求执行所需的执行上下文：
    - I/O 上下文：执行网络交换
    - 解码上下文：执行完整响应体的解析，避免阻塞投递网络字节的线程
    - 投递上下文：执行成功/失败/进度回调，调用方指定的唯一回调线程
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from restflex.constants import DEFAULT_DECODE_WORKERS, DEFAULT_MAX_WORKERS

logger = logging.getLogger(__name__)


class BaseAsyncExecutor:
    """
    异步执行器基类

    定义提交任务的统一接口，子类需实现具体的执行策略。
    任务抛出的异常会被记录，不会终止执行线程。

    参数:
        max_workers: 最大工作线程数
        **kwargs: 其他传递给具体执行器的参数
    """

    def __init__(self, max_workers: int | None = None, **kwargs):
        self.max_workers = max_workers
        self.executor_kwargs = kwargs

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """
        提交任务

        参数:
            fn: 可调用对象
            *args, **kwargs: 调用参数

        返回:
            表示任务结果的 Future
        """
        raise NotImplementedError("Subclasses must implement the 'submit' method.")

    def shutdown(self, wait: bool = True) -> None:
        """关闭执行器，释放线程资源"""

    @staticmethod
    def _log_task_error(future: Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Async task failed with unexpected error: {error!r}", exc_info=error)


class ThreadPoolAsyncExecutor(BaseAsyncExecutor):
    """
    线程池异步执行器

    使用 ThreadPoolExecutor 执行任务，适用于 I/O 密集型的网络交换和解码
    """

    thread_name_prefix: str = "restflex-io"

    def __init__(self, max_workers: int | None = None, thread_name_prefix: str | None = None, **kwargs):
        super().__init__(max_workers=max_workers or DEFAULT_MAX_WORKERS, **kwargs)
        self.thread_name_prefix = thread_name_prefix or self.thread_name_prefix
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=self.thread_name_prefix, **self.executor_kwargs
        )

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_task_error)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.debug(f"Executor '{self.thread_name_prefix}' shut down")


class SerialAsyncExecutor(ThreadPoolAsyncExecutor):
    """
    串行异步执行器

    单线程执行，保证回调按提交顺序依次执行，作为默认的回调投递上下文
    """

    thread_name_prefix = "restflex-delivery"

    def __init__(self, thread_name_prefix: str | None = None, **kwargs):
        kwargs.pop("max_workers", None)
        super().__init__(max_workers=1, thread_name_prefix=thread_name_prefix, **kwargs)


class QueueAsyncExecutor(BaseAsyncExecutor):
    """
    队列异步执行器

    任务只入队不执行，由调用方在自己的线程（例如 UI 主循环）中调用 run_pending() 处理。
    适用于回调必须在特定线程上执行的场景。

    使用示例:
        >>> delivery = QueueAsyncExecutor()
        >>> client = APIClient("key", "secret", delivery_executor=delivery)
        >>> while running:
        ...     delivery.run_pending(timeout=0.1)
    """

    def __init__(self, **kwargs):
        super().__init__(max_workers=1, **kwargs)
        self._queue: queue.Queue[tuple[Future, Callable, tuple, dict]] = queue.Queue()
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        if self._closed:
            raise RuntimeError("cannot schedule new tasks after shutdown")
        future: Future = Future()
        future.add_done_callback(self._log_task_error)
        self._queue.put((future, fn, args, kwargs))
        return future

    def run_pending(self, timeout: float | None = None) -> int:
        """
        在当前线程执行已入队的任务

        参数:
            timeout: 队列为空时等待第一个任务的时间（秒），None 表示不等待

        返回:
            执行的任务数
        """
        executed = 0
        block = timeout is not None
        while True:
            try:
                future, fn, args, kwargs = self._queue.get(block=block and executed == 0, timeout=timeout)
            except queue.Empty:
                return executed
            if future.set_running_or_notify_cancel():
                try:
                    future.set_result(fn(*args, **kwargs))
                except Exception as e:
                    future.set_exception(e)
            executed += 1

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        if wait:
            self.run_pending()


_default_executors: dict[str, BaseAsyncExecutor] = {}
_default_executors_lock = threading.Lock()


def get_default_executor(name: str) -> BaseAsyncExecutor:
    """
    获取进程级默认执行器（懒加载）

    参数:
        name: "io"、"decode" 或 "delivery"
    """
    factories: dict[str, Callable[[], BaseAsyncExecutor]] = {
        "io": lambda: ThreadPoolAsyncExecutor(max_workers=DEFAULT_MAX_WORKERS),
        "decode": lambda: ThreadPoolAsyncExecutor(
            max_workers=DEFAULT_DECODE_WORKERS, thread_name_prefix="restflex-decode"
        ),
        "delivery": SerialAsyncExecutor,
    }
    if name not in factories:
        raise ValueError(f"Invalid executor name: {name}. Must be one of: {list(factories.keys())}")

    with _default_executors_lock:
        if name not in _default_executors:
            _default_executors[name] = factories[name]()
        return _default_executors[name]
