"""Unit tests for email agent."""

from __future__ import annotations

import pytest

from inbox_synopsis.agent.email_agent import EmailAgent, build_llm
from inbox_synopsis.exceptions import LLMServiceError, UnauthenticatedError
from inbox_synopsis.gemini.client import GeminiClient
from inbox_synopsis.gmail.client import GmailClient
from inbox_synopsis.models import CallerIdentity
from inbox_synopsis.ollama.client import OllamaClient
from inbox_synopsis.security import FieldEncryptor
from tests.fakes import TEST_KEY, FakeClock, FakeGmailService, FakeLLM, FakeStore, gmail_message


class StaticIdentity:
    def __init__(self, caller: CallerIdentity | None = None) -> None:
        self._caller = caller

    async def current_user(self) -> CallerIdentity:
        if self._caller is None:
            raise UnauthenticatedError("no session")
        return self._caller


def _agent(settings, count: int, llm: FakeLLM | None = None, store: FakeStore | None = None, identity=None):
    service = FakeGmailService({f"m{i}": gmail_message(f"m{i}", subject=f"Subject {i}") for i in range(count)})
    agent = EmailAgent(
        settings,
        gmail_client=GmailClient(settings, service_factory=lambda token: service),
        llm=llm or FakeLLM(),
        store=store or FakeStore(),
        encryptor=FieldEncryptor.from_setting(TEST_KEY),
        identity=identity or StaticIdentity(CallerIdentity(id="owner-1", mailbox_token="tok")),
        clock=FakeClock(),
    )
    return agent, service


class TestEmailAgent:
    """Test suite for EmailAgent class."""

    def test_email_agent_initialization(self, settings) -> None:
        """Test that email agent is properly initialized."""
        agent, _ = _agent(settings, 0)

        assert agent.settings is settings
        assert agent.repository is None
        assert not agent.queue.running

    def test_build_llm_follows_provider(self, settings) -> None:
        assert isinstance(build_llm(settings), GeminiClient)
        settings.llm_provider = "ollama"
        assert isinstance(build_llm(settings), OllamaClient)

    @pytest.mark.asyncio
    async def test_small_batch_is_processed_inline(self, settings) -> None:
        store = FakeStore()
        agent, _ = _agent(settings, 3, store=store)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert len(result.messages) == 3
        assert result.processing_errors is None
        assert result.rate_limit_info is None
        assert result.queue_stats is None
        assert set(store.records) == {"m0", "m1", "m2"}
        assert store.counters == {"owner-1": 3}

    @pytest.mark.asyncio
    async def test_second_ingest_skips_processed_messages(self, settings) -> None:
        llm = FakeLLM()
        agent, _ = _agent(settings, 3, llm=llm)
        await agent.ingest_and_process("tok", owner_id="owner-1")

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert result.messages == []
        assert result.processing_errors is None
        assert len(llm.prompts) == 3

    @pytest.mark.asyncio
    async def test_large_batch_is_queued(self, settings) -> None:
        llm = FakeLLM()
        agent, _ = _agent(settings, 50, llm=llm)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert result.messages == []
        assert result.queue_stats is not None
        assert result.queue_stats.total == 50
        assert result.enqueued is not None and result.enqueued.accepted == 50
        assert result.processing_errors is None
        assert llm.prompts == []
        assert agent.queue_stats().pending == 50

    @pytest.mark.asyncio
    async def test_queue_overflow_is_reported(self, settings) -> None:
        settings.queue_capacity = 10
        agent, _ = _agent(settings, 12)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert result.enqueued is not None and result.enqueued.rejected == 2
        assert result.processing_errors is not None
        assert {e.kind for e in result.processing_errors} == {"queue_full"}

    @pytest.mark.asyncio
    async def test_rate_limited_llm_reports_quota(self, settings) -> None:
        payload = '{"error": {"code": 429, "details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "30s"}]}}'

        def quota_exhausted(prompt: str) -> str:
            raise LLMServiceError("Gemini request failed", status=429, payload=payload)

        store = FakeStore()
        agent, _ = _agent(settings, 3, llm=FakeLLM(quota_exhausted), store=store)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert result.messages == []
        assert result.rate_limit_info is not None
        assert result.rate_limit_info.retry_after_ms == 30000
        assert result.processing_errors is not None
        assert [e.kind for e in result.processing_errors] == ["rate_limited"] * 3
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_ingest_for_current_user(self, settings) -> None:
        agent, service = _agent(settings, 2, identity=StaticIdentity(CallerIdentity(id="alice", mailbox_token="t")))

        result = await agent.ingest_for_current_user(page_size=1)

        assert len(result.messages) == 1
        assert result.next_page_token == "1"
        assert service.list_calls[0]["maxResults"] == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_caller(self, settings) -> None:
        agent, service = _agent(settings, 2, identity=StaticIdentity())

        with pytest.raises(UnauthenticatedError):
            await agent.ingest_for_current_user()
        assert service.list_calls == []

    @pytest.mark.asyncio
    async def test_context_manager_opens_sqlite_store(self, settings) -> None:
        agent = EmailAgent(
            settings,
            gmail_client=GmailClient(settings, service_factory=lambda token: FakeGmailService()),
            llm=FakeLLM(),
            identity=StaticIdentity(),
            clock=FakeClock(),
        )

        async with agent:
            assert agent.queue.running
            assert settings.store_db_path.exists()

        assert not agent.queue.running

    @pytest.mark.asyncio
    async def test_batch_at_threshold_is_processed_inline(self, settings) -> None:
        agent, _ = _agent(settings, settings.inline_threshold)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert len(result.messages) == settings.inline_threshold
        assert result.queue_stats is None
        assert result.enqueued is None
        assert agent.queue.size() == 0

    @pytest.mark.asyncio
    async def test_batch_just_over_threshold_is_queued(self, settings) -> None:
        count = settings.inline_threshold + 1
        llm = FakeLLM()
        agent, _ = _agent(settings, count, llm=llm)

        result = await agent.ingest_and_process("tok", owner_id="owner-1")

        assert result.messages == []
        assert result.queue_stats is not None and result.queue_stats.total == count
        assert result.enqueued is not None and result.enqueued.accepted == count
        assert llm.prompts == []
