"""Tests for the chat completions call site and its response classification."""
import orjson
import pytest
from aiohttp import web

from digest_vault.chat import ChatClient, classify_chat_response
from digest_vault.exceptions import ExhaustedRetriesError, FatalCallError, ValidationError
from digest_vault.retry import FatalFailure, RetryableFailure, Success

from conftest import fake_http


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeChat:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def handler(self, request):
        self.requests.append((request.headers.get("Authorization"), await request.json()))
        if len(self.responses) > 1:
            status, payload = self.responses.pop(0)
        else:
            status, payload = self.responses[0]
        return web.json_response(payload, status=status)

    def routes(self):
        return [("POST", "/v1/chat/completions", self.handler)]


class TestClassifyChatResponse:

    def test_success(self):
        outcome = classify_chat_response(200, orjson.dumps(_completion("- bullet")))
        assert outcome == Success("- bullet")

    def test_no_choices_is_fatal(self):
        outcome = classify_chat_response(200, b'{"choices": []}')
        assert isinstance(outcome, FatalFailure)
        assert outcome.reason == "no choices"

    @pytest.mark.parametrize("payload", [
        {"choices": {"a": 1}},
        {"choices": ["text"]},
        {"choices": [{"message": "hi"}]},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": None}}]},
        {"choices": [{"message": {"content": ["a", "b"]}}]},
    ])
    def test_malformed_choices_are_fatal(self, payload):
        outcome = classify_chat_response(200, orjson.dumps(payload))
        assert isinstance(outcome, FatalFailure)
        assert outcome.reason == "no usable content"

    def test_not_json_is_fatal(self):
        assert isinstance(classify_chat_response(200, b"<html>"), FatalFailure)

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_retryable(self, status):
        outcome = classify_chat_response(status, b'{"error": {}}')
        assert isinstance(outcome, RetryableFailure)
        assert outcome.status == status

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_fatal(self, status):
        outcome = classify_chat_response(status, b'{"error": {"message": "nope"}}')
        assert isinstance(outcome, FatalFailure)
        assert "nope" in outcome.reason


class TestChatClient:

    def test_requires_api_key(self):
        with pytest.raises(ValidationError):
            ChatClient("")

    def test_from_env(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValidationError):
            ChatClient.from_env()

    @pytest.mark.asyncio
    async def test_complete_after_rate_limit(self, fast_policy):
        fake = FakeChat(
            (429, {"error": {"message": "slow down"}}),
            (200, _completion("- summary line")),
        )
        async with fake_http(*fake.routes()) as server:
            client = ChatClient("sk-test", policy=fast_policy, base_url=str(server.make_url("/")))
            answer = await client.complete(
                "gpt-4o-mini", [{"role": "user", "content": "Summarize"}],
                temperature=0.3, max_tokens=500,
            )

        assert answer == "- summary line"
        assert len(fake.requests) == 2
        auth, body = fake.requests[0]
        assert auth == "Bearer sk-test"
        assert body["model"] == "gpt-4o-mini"
        assert body["max_completion_tokens"] == 500
        assert body["messages"] == [{"role": "user", "content": "Summarize"}]

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self, fast_policy):
        fake = FakeChat((401, {"error": {"message": "invalid api key"}}))
        async with fake_http(*fake.routes()) as server:
            client = ChatClient("sk-bad", policy=fast_policy, base_url=str(server.make_url("/")))
            with pytest.raises(FatalCallError) as exc:
                await client.complete("gpt-4o", [{"role": "user", "content": "x"}])
        assert exc.value.status == 401
        assert len(fake.requests) == 1

    @pytest.mark.asyncio
    async def test_server_errors_exhaust(self, fast_policy):
        fake = FakeChat((500, {"error": {"message": "boom"}}))
        async with fake_http(*fake.routes()) as server:
            client = ChatClient("sk-test", policy=fast_policy, base_url=str(server.make_url("/")))
            with pytest.raises(ExhaustedRetriesError):
                await client.complete("gpt-4o", [{"role": "user", "content": "x"}])
        assert len(fake.requests) == fast_policy.max_attempts

    @pytest.mark.asyncio
    async def test_connection_refused_is_retryable(self, fast_policy, unused_tcp_port):
        client = ChatClient(
            "sk-test", policy=fast_policy, base_url=f"http://127.0.0.1:{unused_tcp_port}",
        )
        with pytest.raises(ExhaustedRetriesError) as exc:
            await client.complete("gpt-4o", [{"role": "user", "content": "x"}])
        assert "transport error" in exc.value.failure.reason
