"""Query client tests using httpx.MockTransport."""
import httpx
import pytest

from client.query_client import (
    ApiError, QueryClient, RetryPolicy, error_message, is_retryable,
    resource_prefix
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Recorder:
    """Transport handler that replays scripted responses and records calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(handler, clock=None, sleeps=None, **kwargs):
    return QueryClient(
        "http://prn.test",
        user_id=kwargs.pop("user_id", 1),
        transport=httpx.MockTransport(handler),
        query_policy=kwargs.pop("query_policy", RetryPolicy(max_attempts=3)),
        mutation_policy=kwargs.pop("mutation_policy", RetryPolicy(max_attempts=2)),
        stale_seconds=kwargs.pop("stale_seconds", 60),
        sleep=(sleeps.append if sleeps is not None else (lambda _: None)),
        clock=clock or FakeClock(),
    )


class TestRetryPolicy:
    """Tests for RetryPolicy and the retry predicate."""

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
        assert [policy.backoff(i) for i in range(6)] == [1, 2, 4, 8, 16, 30]

    def test_retry_predicate(self):
        assert is_retryable(ApiError(503, "down"))
        assert not is_retryable(ApiError(404, "missing"))
        assert not is_retryable(ApiError(401, "login"))
        assert is_retryable(httpx.ConnectError("refused"))
        assert not is_retryable(ValueError("bad"))

    def test_custom_predicate(self):
        policy = RetryPolicy(should_retry=lambda exc: False)
        assert not policy.is_retryable(ApiError(500, "boom"))


class TestErrorMessage:
    """Tests for error message extraction."""

    def test_nested_error_message(self):
        response = httpx.Response(400, json={"error": {"message": "bad amount"}})
        assert error_message(response) == "bad amount"

    def test_flat_error(self):
        response = httpx.Response(400, json={"error": "nope"})
        assert error_message(response) == "nope"

    def test_message_key(self):
        response = httpx.Response(400, json={"message": "invalid"})
        assert error_message(response) == "invalid"

    def test_plain_text(self):
        response = httpx.Response(502, text="Bad Gateway from proxy")
        assert error_message(response) == "Bad Gateway from proxy"


class TestQueryClient:
    """Tests for fetch/mutate/invalidate."""

    def test_fetch_sends_identity_and_caches(self):
        handler = Recorder(httpx.Response(200, json={"total": 1}))
        clock = FakeClock()
        client = make_client(handler, clock=clock, user_id=7)

        assert client.fetch("/api/dashboard") == {"total": 1}
        assert client.fetch("/api/dashboard") == {"total": 1}
        assert len(handler.requests) == 1
        assert handler.requests[0].headers["X-User-Id"] == "7"

        clock.now = 61
        client.fetch("/api/dashboard")
        assert len(handler.requests) == 2

    def test_fetch_retries_server_errors_with_backoff(self):
        handler = Recorder(
            httpx.Response(503, json={"error": {"message": "busy"}}),
            httpx.Response(500, text="oops"),
            httpx.Response(200, json=[1, 2]),
        )
        sleeps = []
        client = make_client(handler, sleeps=sleeps)
        assert client.fetch("/api/activity") == [1, 2]
        assert len(handler.requests) == 3
        assert sleeps == [1.0, 2.0]

    def test_fetch_gives_up_after_max_attempts(self):
        handler = Recorder(httpx.Response(500, json={"message": "still broken"}))
        client = make_client(handler)
        with pytest.raises(ApiError) as exc_info:
            client.fetch("/api/activity")
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "still broken"
        assert len(handler.requests) == 3

    def test_fetch_never_retries_client_errors(self):
        handler = Recorder(httpx.Response(404, json={"error": {"message": "gone"}}))
        client = make_client(handler)
        with pytest.raises(ApiError):
            client.fetch("/api/numbers/99")
        assert len(handler.requests) == 1

    def test_fetch_retries_transport_errors(self):
        handler = Recorder(
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"ok": True}),
        )
        client = make_client(handler)
        assert client.fetch("/health") == {"ok": True}

    def test_unauthorized_modes(self):
        handler = Recorder(httpx.Response(401, json={"detail": "Unknown user"}))
        client = make_client(handler)
        assert client.fetch("/api/dashboard", on_unauthorized="none") is None
        with pytest.raises(ApiError) as exc_info:
            client.fetch("/api/dashboard")
        assert exc_info.value.status_code == 401
        assert len(handler.requests) == 2

    def test_unknown_unauthorized_mode(self):
        client = make_client(Recorder(httpx.Response(200, json={})))
        with pytest.raises(ValueError):
            client.fetch("/health", on_unauthorized="redirect")

    def test_mutation_invalidates_resource(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(201, json={"id": 1})
            return httpx.Response(200, json={"path": request.url.path})

        seen = []

        def recording(request):
            seen.append((request.method, request.url.path))
            return handler(request)

        client = make_client(recording)
        client.fetch("/api/payouts")
        client.fetch("/api/payouts?status=pending")
        client.fetch("/api/numbers")
        client.mutate("POST", "/api/payouts/1/advance", json={"status": "processing"})
        client.fetch("/api/payouts")
        client.fetch("/api/payouts?status=pending")
        client.fetch("/api/numbers")

        gets = [path for method, path in seen if method == "GET"]
        assert gets.count("/api/payouts") == 4
        assert gets.count("/api/numbers") == 1

    def test_mutation_retries_once(self):
        handler = Recorder(httpx.Response(500, text="down"))
        client = make_client(handler)
        with pytest.raises(ApiError):
            client.mutate("POST", "/api/payouts", json={"amount": 5})
        assert len(handler.requests) == 2

    def test_invalidate_all(self):
        handler = Recorder(httpx.Response(200, json={}))
        client = make_client(handler)
        client.fetch("/api/numbers")
        client.invalidate()
        client.fetch("/api/numbers")
        assert len(handler.requests) == 2

    def test_context_manager_closes(self):
        with make_client(Recorder(httpx.Response(200, json={}))) as client:
            client.fetch("/health")


def test_resource_prefix():
    assert resource_prefix("/api/payouts/3/advance?x=1") == "/api/payouts"
    assert resource_prefix("/health") == "/health"
