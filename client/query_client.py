"""管理后台 HTTP 查询客户端。

带重试策略与缓存的 HTTP 客户端，供脚本或其他服务调用管理后台 API：

- 查询（GET）结果按路径缓存，在 ``stale_seconds`` 内直接返回缓存；
- 变更（POST/PUT/DELETE）成功后，使同一资源前缀下的缓存失效；
- 网络错误与 5xx 按指数退避重试，4xx 永不重试。

客户端是普通对象，由调用方创建并注入，不存在全局单例。

使用示例::

    client = QueryClient("http://localhost:8080", user_id=1)
    dashboard = client.fetch("/api/dashboard")
    client.mutate("POST", "/api/payouts", json={"amount": 40})
    client.close()
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import httpx
from loguru import logger

from config.settings import settings

DEFAULT_TIMEOUT_SECONDS = 30.0


class ApiError(Exception):
    """非 2xx 响应。

    Attributes:
        status_code: HTTP 状态码。
        message: 从响应体中提取的错误信息。
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


def error_message(response: httpx.Response) -> str:
    """提取错误信息：依次尝试 ``error.message``、``error``、``message``，否则取响应文本。"""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return response.text


def is_retryable(exc: Exception) -> bool:
    """网络错误与 5xx 可重试；4xx 不重试。"""
    if isinstance(exc, ApiError):
        return exc.status_code >= 500
    return isinstance(exc, httpx.TransportError)


@dataclass
class RetryPolicy:
    """重试策略。

    Attributes:
        max_attempts: 总尝试次数（含首次）。
        base_delay: 首次重试前的等待秒数。
        max_delay: 单次等待上限。
        should_retry: 判断异常是否可重试。
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    should_retry: Callable[[Exception], bool] = field(default=is_retryable)

    def backoff(self, attempt: int) -> float:
        """第 ``attempt`` 次失败（从 0 开始）后的等待秒数。"""
        return min(self.base_delay * 2 ** attempt, self.max_delay)

    def is_retryable(self, exc: Exception) -> bool:
        return self.should_retry(exc)

    @classmethod
    def for_queries(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.query_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    @classmethod
    def for_mutations(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.mutation_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )


def resource_prefix(path: str) -> str:
    """``/api/payouts/3/advance?x=1`` → ``/api/payouts``。"""
    path = path.split("?", 1)[0]
    parts = [p for p in path.split("/") if p]
    return "/" + "/".join(parts[:2])


class QueryClient:
    """带缓存与重试的 HTTP 客户端。

    Args:
        base_url: 服务地址。
        user_id: 以该用户身份调用（写入 ``X-User-Id`` 请求头）。
        transport: httpx 传输层（测试时注入 ``httpx.MockTransport``）。
        query_policy / mutation_policy: 查询与变更的重试策略。
        stale_seconds: 查询缓存的新鲜期。
        sleep: 等待函数（测试时注入空操作）。
        clock: 单调时钟。
    """

    def __init__(self, base_url: str,
                 user_id: Optional[int] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 query_policy: Optional[RetryPolicy] = None,
                 mutation_policy: Optional[RetryPolicy] = None,
                 stale_seconds: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic) -> None:
        headers = {"Accept": "application/json"}
        if user_id is not None:
            headers["X-User-Id"] = str(user_id)
        self._http = httpx.Client(
            base_url=base_url,
            transport=transport,
            timeout=DEFAULT_TIMEOUT_SECONDS,
            headers=headers,
        )
        self.query_policy = query_policy or RetryPolicy.for_queries()
        self.mutation_policy = mutation_policy or RetryPolicy.for_mutations()
        self.stale_seconds = (
            settings.query_stale_seconds if stale_seconds is None else stale_seconds
        )
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}

    def _send(self, policy: RetryPolicy, method: str, path: str,
              allow_unauthorized: bool = False, **kwargs) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = self._http.request(method, path, **kwargs)
                if response.status_code == 401 and allow_unauthorized:
                    return response
                if not response.is_success:
                    raise ApiError(response.status_code, error_message(response))
                return response
            except (httpx.TransportError, ApiError) as exc:
                attempt += 1
                if attempt >= policy.max_attempts or not policy.is_retryable(exc):
                    raise
                delay = policy.backoff(attempt - 1)
                logger.warning(
                    f"{method} {path} failed ({exc}), retry {attempt} in {delay}s"
                )
                self._sleep(delay)

    def fetch(self, path: str, on_unauthorized: str = "raise") -> Any:
        """GET 查询，新鲜期内直接返回缓存。

        Args:
            path: 请求路径（可带查询串，作为缓存键）。
            on_unauthorized: ``"raise"`` 时 401 抛出 ApiError；
                ``"none"`` 时 401 返回 None（不缓存）。

        Raises:
            ApiError: 非 2xx 响应（重试耗尽后）。
            httpx.TransportError: 网络错误（重试耗尽后）。
        """
        if on_unauthorized not in ("raise", "none"):
            raise ValueError(f"Unknown on_unauthorized mode: {on_unauthorized}")

        cached = self._cache.get(path)
        if cached is not None and self._clock() - cached[0] < self.stale_seconds:
            return cached[1]

        response = self._send(
            self.query_policy, "GET", path,
            allow_unauthorized=(on_unauthorized == "none")
        )
        if response.status_code == 401:
            return None
        data = response.json()
        self._cache[path] = (self._clock(), data)
        return data

    def mutate(self, method: str, path: str,
               json: Optional[Dict[str, Any]] = None,
               invalidates: Iterable[str] = ()) -> Any:
        """发送变更请求，成功后使相关缓存失效。

        Args:
            method: HTTP 方法。
            path: 请求路径。
            json: 请求体。
            invalidates: 额外需要失效的资源前缀。
        """
        response = self._send(self.mutation_policy, method.upper(), path, json=json)
        self.invalidate(resource_prefix(path))
        for prefix in invalidates:
            self.invalidate(prefix)
        if not response.content:
            return None
        return response.json()

    def invalidate(self, prefix: Optional[str] = None) -> None:
        """使缓存失效；prefix 为 None 时清空全部。"""
        if prefix is None:
            self._cache.clear()
            return
        stale = [
            key for key in self._cache
            if key == prefix or key.startswith((prefix + "/", prefix + "?"))
        ]
        for key in stale:
            del self._cache[key]

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "QueryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
