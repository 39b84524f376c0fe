# =============================================================================
# Integration Tests — Inquiry Pipeline Orchestrator
# =============================================================================
#
# Runs the full create → process → finalize flow against a temporary SQLite
# database (aiosqlite) with scripted answer clients. Each test drives one
# scenario inside a single event loop.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeClient, StaticRegistry, gateway, make_thread, temp_database
from sqlalchemy import delete, func, select

from finchat.config import Settings
from finchat.db.models import (
    ChatMessage,
    ChatThread,
    ConsolidatedAnswerRecord,
    Inquiry,
    InquiryStatus,
    MessageRole,
    ProviderConfig,
    ProviderRatingRecord,
    ProviderReplyRecord,
    ProviderStatus,
    ThreadStatus,
)
from finchat.pipeline.errors import (
    AdmissibilityRejected,
    AllProvidersFailed,
    InquiryNotFound,
    NoProvidersAvailable,
    ThreadInactive,
    ThreadNotFound,
)
from finchat.pipeline.orchestrator import InquiryPipeline
from finchat.pipeline.registry import ProviderRegistry, seed_default_providers
from finchat.services.admissibility import ADVISOR_PREFIX, KeywordAdmissibilityGate

FINANCE_QUESTION = "Should I invest in index funds for retirement?"


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _pipeline(session_factory, gateways, **overrides) -> InquiryPipeline:
    return InquiryPipeline(
        session_factory=session_factory,
        registry=StaticRegistry(gateways),
        gate=KeywordAdmissibilityGate(),
        settings=Settings(**overrides),
    )


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return await session.scalar(stmt)


async def _inquiries(session_factory) -> list[Inquiry]:
    async with session_factory() as session:
        result = await session.execute(select(Inquiry).order_by(Inquiry.id))
        return list(result.scalars().all())


async def _messages(session_factory, thread_id) -> list[ChatMessage]:
    async with session_factory() as session:
        result = await session.execute(
            select(ChatMessage)
            .where(ChatMessage.thread_id == thread_id)
            .order_by(ChatMessage.id)
        )
        return list(result.scalars().all())


async def _thread(session_factory, thread_id) -> ChatThread:
    async with session_factory() as session:
        return await session.get(ChatThread, thread_id)


async def _replies(session_factory) -> list[ProviderReplyRecord]:
    async with session_factory() as session:
        result = await session.execute(
            select(ProviderReplyRecord).order_by(ProviderReplyRecord.id)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Test: Successful Run
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    def test_partial_failure_completes(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway("A", FakeClient(answer="Index funds are a solid core.", confidence=0.9)),
                    gateway("B", FakeClient(answer="Mind the expense ratio.", confidence=0.8)),
                    gateway("C", FakeClient(answer="late", delay=1.0), timeout_ms=50),
                ])

                outcome = await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)

                return (
                    outcome,
                    await _inquiries(sf),
                    await _messages(sf, thread_id),
                    await _thread(sf, thread_id),
                    await _count(sf, ProviderReplyRecord),
                    await _count(sf, ProviderReplyRecord, ProviderReplyRecord.error.is_not(None)),
                    await _count(sf, ProviderRatingRecord),
                )

        outcome, inquiries, messages, thread, replies, errored, ratings = _run(scenario())

        assert outcome.status == InquiryStatus.COMPLETED
        assert outcome.consolidated.answer == (
            "Index funds are a solid core. Additionally, Mind the expense ratio."
        )
        assert round(outcome.consolidated.confidence, 3) == 0.853
        assert outcome.consolidated.sources == ["A", "B"]
        assert outcome.assistant_message.content == outcome.consolidated.answer
        assert outcome.assistant_message.metadata_["sources"] == ["A", "B"]

        assert len(inquiries) == 1
        inquiry = inquiries[0]
        assert inquiry.status == InquiryStatus.COMPLETED
        assert inquiry.processing_started_at is not None
        assert inquiry.processing_completed_at is not None
        assert inquiry.error_message is None

        # Every dispatched call is stored, the timed-out one with its error
        assert replies == 3
        assert errored == 1
        # C's rating also times out and is dropped
        assert ratings == 2

        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert all(m.inquiry_id == inquiry.id for m in messages)
        assert messages[0].content == FINANCE_QUESTION
        assert thread.message_count == 2
        assert thread.last_message_at is not None

    def test_question_is_enhanced_and_original_kept(self, tmp_path):
        client = FakeClient(answer="Yes.", confidence=0.7)

        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [gateway("A", client)])
                await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION, "Age 30")
                return await _inquiries(sf)

        inquiry = _run(scenario())[0]

        assert inquiry.question.startswith(ADVISOR_PREFIX)
        assert inquiry.context == "Age 30"
        assert inquiry.metadata_["original_prompt"] == FINANCE_QUESTION
        assert inquiry.metadata_["financial_context"]["intent"] == "ADVICE"
        assert inquiry.metadata_["validation"]["category"] == "FINANCE"

        # Providers get the enhanced prompt; raters judge against the original
        assert client.asked == [(inquiry.question, "Age 30")]
        assert client.rated == [("Yes.", FINANCE_QUESTION)]

    def test_rating_failures_do_not_block_completion(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway(p, FakeClient(
                        answer=f"answer {p}", confidence=0.7,
                        rating_error=RuntimeError("rater down"),
                    ))
                    for p in ("A", "B")
                ])
                outcome = await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                return outcome, await _count(sf, ProviderRatingRecord)

        outcome, ratings = _run(scenario())
        assert outcome.status == InquiryStatus.COMPLETED
        assert outcome.ratings == []
        assert ratings == 0

    def test_self_rating_disabled(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway("A", FakeClient(answer="answer", confidence=0.9)),
                    gateway("B", FakeClient(answer="", confidence=0.9)),
                ], allow_self_rating=False)
                return await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)

        outcome = _run(scenario())
        assert [r.provider for r in outcome.ratings] == ["B"]

    def test_registry_snapshotted_once(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                registry = StaticRegistry([gateway("A", FakeClient(answer="a", confidence=0.7))])
                pipeline = InquiryPipeline(sf, registry, KeywordAdmissibilityGate())
                await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                return registry.snapshots

        assert _run(scenario()) == 1


# ---------------------------------------------------------------------------
# Test: Failures
# ---------------------------------------------------------------------------


class TestFailedRun:
    def test_all_providers_time_out(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway(p, FakeClient(answer="late", delay=1.0), timeout_ms=50)
                    for p in ("A", "B", "C")
                ])
                with pytest.raises(AllProvidersFailed):
                    await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)

                return (
                    await _inquiries(sf),
                    await _messages(sf, thread_id),
                    await _thread(sf, thread_id),
                    await _count(sf, ConsolidatedAnswerRecord),
                    await _replies(sf),
                )

        inquiries, messages, thread, consolidated, replies = _run(scenario())

        assert inquiries[0].status == InquiryStatus.FAILED
        assert "AllProvidersFailed" in inquiries[0].error_message
        assert inquiries[0].processing_completed_at is not None
        assert consolidated == 0
        # The failed calls are still on record for provider metrics
        assert [r.provider for r in replies] == ["A", "B", "C"]
        assert all(r.inquiry_id == inquiries[0].id for r in replies)
        assert all(r.error == "Timed out after 50ms" for r in replies)
        assert [m.role for m in messages] == [MessageRole.USER]
        assert thread.message_count == 1

    def test_no_active_providers(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [])
                with pytest.raises(NoProvidersAvailable):
                    await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                return await _inquiries(sf)

        inquiries = _run(scenario())
        assert inquiries[0].status == InquiryStatus.FAILED
        assert "NoProvidersAvailable" in inquiries[0].error_message

    def test_persistence_failure_rolls_back_and_marks_failed(self, tmp_path):
        # metadata that cannot be JSON-encoded fails the reply INSERT
        bad = FakeClient(answer="fine", confidence=0.8, metadata={"raw": object()})

        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [gateway("A", bad)])
                with pytest.raises(Exception):
                    await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                return (
                    await _inquiries(sf),
                    await _count(sf, ProviderReplyRecord),
                    await _count(sf, ConsolidatedAnswerRecord),
                    await _messages(sf, thread_id),
                )

        inquiries, replies, consolidated, messages = _run(scenario())
        assert inquiries[0].status == InquiryStatus.FAILED
        assert replies == 0
        assert consolidated == 0
        assert [m.role for m in messages] == [MessageRole.USER]

    def test_terminal_inquiry_is_never_moved(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [gateway("A", FakeClient(answer="a", confidence=0.7))])
                outcome = await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)

                # Best-effort FAILED update must be a no-op on COMPLETED
                await pipeline._mark_failed(outcome.inquiry_id, "late failure")
                return await _inquiries(sf)

        inquiry = _run(scenario())[0]
        assert inquiry.status == InquiryStatus.COMPLETED
        assert inquiry.error_message is None

    def test_mark_failed_never_raises(self, tmp_path):
        class _BrokenFactory:
            def __call__(self):
                raise RuntimeError("database unreachable")

        pipeline = InquiryPipeline(_BrokenFactory(), StaticRegistry([]), KeywordAdmissibilityGate())
        # Logged, not raised
        _run(pipeline._mark_failed(1, "boom"))

    def test_cancelled_run_is_marked_failed(self, tmp_path):
        slow = FakeClient(answer="slow", confidence=0.8, delay=2.0)

        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [gateway("A", slow, timeout_ms=5000)])
                task = asyncio.create_task(
                    pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                )
                # The provider has been asked, so the inquiry is PROCESSING
                while not slow.asked:
                    await asyncio.sleep(0.01)

                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task
                return await _inquiries(sf), await _count(sf, ProviderReplyRecord)

        inquiries, replies = _run(scenario())
        assert inquiries[0].status == InquiryStatus.FAILED
        assert "CancelledError" in inquiries[0].error_message
        assert inquiries[0].processing_completed_at is not None
        assert replies == 0

    def test_failed_reply_insert_still_leaves_inquiry_failed(self, tmp_path):
        # consolidate() fails on the blank answer; the reply metadata cannot be
        # JSON-encoded, so storing the collected reply fails as well
        bad = FakeClient(answer="  ", metadata={"raw": object()})

        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [gateway("A", bad)])
                with pytest.raises(AllProvidersFailed):
                    await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                return await _inquiries(sf), await _count(sf, ProviderReplyRecord)

        inquiries, replies = _run(scenario())
        assert inquiries[0].status == InquiryStatus.FAILED
        assert replies == 0


# ---------------------------------------------------------------------------
# Test: Create Phase Guards
# ---------------------------------------------------------------------------


class TestCreatePhase:
    def test_rejected_prompt_writes_system_message_only(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                client = FakeClient(answer="x")
                pipeline = _pipeline(sf, [gateway("A", client)])

                with pytest.raises(AdmissibilityRejected) as exc_info:
                    await pipeline.submit(thread_id, "user-1", "What's a good recipe for pasta?")

                return (
                    exc_info.value,
                    client,
                    await _inquiries(sf),
                    await _messages(sf, thread_id),
                    await _thread(sf, thread_id),
                )

        error, client, inquiries, messages, thread = _run(scenario())

        assert error.result.category == "NON_FINANCE"
        assert error.system_message_id == messages[0].id
        assert inquiries == []
        assert client.asked == []
        assert len(messages) == 1
        assert messages[0].role == MessageRole.SYSTEM
        assert messages[0].inquiry_id is None
        assert messages[0].content == error.system_message
        assert messages[0].metadata_["original_prompt"] == "What's a good recipe for pasta?"
        assert thread.message_count == 1

    def test_unknown_thread(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                with pytest.raises(ThreadNotFound):
                    await _pipeline(sf, []).submit(999, "user-1", FINANCE_QUESTION)
                return await _count(sf, ChatMessage)

        assert _run(scenario()) == 0

    def test_other_users_thread(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf, user_id="owner")
                with pytest.raises(ThreadNotFound):
                    await _pipeline(sf, []).submit(thread_id, "intruder", FINANCE_QUESTION)
                return await _count(sf, ChatMessage)

        assert _run(scenario()) == 0

    def test_archived_thread(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf, status=ThreadStatus.ARCHIVED)
                with pytest.raises(ThreadInactive):
                    await _pipeline(sf, []).submit(thread_id, "user-1", FINANCE_QUESTION)
                return await _inquiries(sf)

        assert _run(scenario()) == []


# ---------------------------------------------------------------------------
# Test: Threads, Messages & Inquiry Details
# ---------------------------------------------------------------------------


class TestReads:
    def test_create_thread_and_list_messages(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                pipeline = _pipeline(sf, [gateway("A", FakeClient(answer="a", confidence=0.7))])
                thread = await pipeline.create_thread("user-1", "Retirement")
                await pipeline.submit(thread.id, "user-1", FINANCE_QUESTION)
                messages = await pipeline.list_messages(thread.id, "user-1")
                with pytest.raises(ThreadNotFound):
                    await pipeline.list_messages(thread.id, "someone-else")
                return thread, messages

        thread, messages = _run(scenario())
        assert thread.title == "Retirement"
        assert thread.status == ThreadStatus.ACTIVE
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]

    def test_inquiry_details(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway("A", FakeClient(answer="a", confidence=0.9, rating=90.0)),
                    gateway("B", FakeClient(
                        error=RuntimeError("down"), rating_error=RuntimeError("down"),
                    )),
                ])
                outcome = await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                details = await pipeline.get_inquiry_details(outcome.inquiry_id, "user-1")
                with pytest.raises(InquiryNotFound):
                    await pipeline.get_inquiry_details(outcome.inquiry_id, "someone-else")
                return details

        details = _run(scenario())
        assert details.inquiry.status == InquiryStatus.COMPLETED
        assert [r.provider for r in details.replies] == ["A", "B"]
        assert details.replies[1].error == "RuntimeError: down"
        assert details.consolidated.sources == ["A"]
        assert [r.provider for r in details.consolidated.ratings] == ["A"]


# ---------------------------------------------------------------------------
# Test: Database-Backed Registry
# ---------------------------------------------------------------------------


class TestProviderRegistry:
    def test_seed_and_snapshot(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                async with sf() as session:
                    inserted = await seed_default_providers(session)
                    again = await seed_default_providers(session)
                    await session.commit()
                async with sf() as session:
                    gateways = await ProviderRegistry().snapshot(session)
                return inserted, again, gateways

        inserted, again, gateways = _run(scenario())
        assert inserted == 3
        assert again == 0
        assert [g.provider_id for g in gateways] == ["YAHOO", "GOOGLE", "FALLBACK"]
        assert gateways[0].timeout_ms == 5000

    def test_inactive_and_unbuildable_providers_skipped(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                async with sf() as session:
                    session.add_all([
                        ProviderConfig(
                            provider_key="LATE", name="Late", client_spec="canned/google",
                            status=ProviderStatus.ACTIVE, priority=5,
                        ),
                        ProviderConfig(
                            provider_key="EARLY", name="Early", client_spec="canned/yahoo",
                            status=ProviderStatus.ACTIVE, priority=1, timeout_ms=2000,
                        ),
                        ProviderConfig(
                            provider_key="OFF", name="Off", client_spec="canned/yahoo",
                            status=ProviderStatus.INACTIVE, priority=0,
                        ),
                        ProviderConfig(
                            provider_key="BROKEN", name="Broken", client_spec="canned/nope",
                            status=ProviderStatus.ACTIVE, priority=2,
                        ),
                    ])
                    await session.commit()
                async with sf() as session:
                    registry = ProviderRegistry(default_timeout_ms=7000)
                    return await registry.snapshot(session), await registry.list_all(session)

        gateways, configs = _run(scenario())
        assert [g.provider_id for g in gateways] == ["EARLY", "LATE"]
        assert [g.timeout_ms for g in gateways] == [2000, 7000]
        assert len(configs) == 4

    def test_end_to_end_with_canned_providers(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                async with sf() as session:
                    for key, profile, priority in (("YAHOO", "yahoo", 1), ("GOOGLE", "google", 2)):
                        session.add(ProviderConfig(
                            provider_key=key, name=key.title(),
                            client_spec=f"canned/{profile}", priority=priority,
                            status=ProviderStatus.ACTIVE, timeout_ms=2000, config={},
                        ))
                    await session.commit()
                thread_id = await make_thread(sf)
                pipeline = InquiryPipeline(sf, ProviderRegistry(), KeywordAdmissibilityGate())
                return await pipeline.submit(
                    thread_id, "user-1", "Should I buy stock in a bear market?",
                )

        outcome = _run(scenario())
        assert outcome.status == InquiryStatus.COMPLETED
        # GOOGLE's stock answers are more confident than YAHOO's
        assert outcome.consolidated.sources == ["GOOGLE", "YAHOO"]
        assert len(outcome.ratings) == 2


# ---------------------------------------------------------------------------
# Test: Concurrency & Stored Answers
# ---------------------------------------------------------------------------


class TestConcurrentSends:
    def test_message_count_counts_every_send(self, tmp_path):
        sends = 5

        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway("A", FakeClient(answer="a", confidence=0.8, delay=0.02)),
                ])
                outcomes = await asyncio.gather(*(
                    pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)
                    for _ in range(sends)
                ))
                return (
                    outcomes,
                    await _thread(sf, thread_id),
                    await _count(sf, ChatMessage, ChatMessage.thread_id == thread_id),
                )

        outcomes, thread, messages = _run(scenario())
        assert all(o.status == InquiryStatus.COMPLETED for o in outcomes)
        assert len({o.inquiry_id for o in outcomes}) == sends
        assert messages == 2 * sends
        assert thread.message_count == 2 * sends


class TestStoredAnswer:
    def test_ratings_do_not_change_the_stored_answer(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                thread_id = await make_thread(sf)
                pipeline = _pipeline(sf, [
                    gateway("A", FakeClient(answer="Hold.", confidence=0.9, rating=10.0)),
                    gateway("B", FakeClient(answer="Buy.", confidence=0.8, rating=99.0)),
                ])
                outcome = await pipeline.submit(thread_id, "user-1", FINANCE_QUESTION)

                async with sf() as session:
                    await session.execute(delete(ProviderRatingRecord))
                    await session.commit()

                async with sf() as session:
                    stored = await session.get(ConsolidatedAnswerRecord, outcome.consolidated.id)
                    return outcome, stored.answer, stored.confidence, list(stored.ratings)

        outcome, answer, confidence, ratings = _run(scenario())
        assert len(outcome.ratings) == 2
        assert ratings == []
        assert answer == outcome.consolidated.answer == "Hold. Additionally, Buy."
        assert confidence == outcome.consolidated.confidence


# ---------------------------------------------------------------------------
# Test: Thread Management
# ---------------------------------------------------------------------------


class TestThreadManagement:
    def test_list_rename_archive_delete(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                pipeline = _pipeline(sf, [])
                first = await pipeline.create_thread("user-1", "First")
                second = await pipeline.create_thread("user-1", "Second")
                await pipeline.create_thread("someone-else", "Theirs")

                renamed = await pipeline.rename_thread(first.id, "user-1", "Budget")
                archived = await pipeline.archive_thread(second.id, "user-1")

                active = await pipeline.list_threads("user-1")
                only_archived = await pipeline.list_threads("user-1", ThreadStatus.ARCHIVED)

                await pipeline.delete_thread(first.id, "user-1")
                remaining = await pipeline.list_threads("user-1", status=None)

                with pytest.raises(ThreadInactive):
                    await pipeline.rename_thread(first.id, "user-1", "Back again")
                with pytest.raises(ThreadInactive):
                    await pipeline.submit(first.id, "user-1", FINANCE_QUESTION)
                with pytest.raises(ThreadInactive):
                    await pipeline.submit(second.id, "user-1", FINANCE_QUESTION)
                with pytest.raises(ThreadNotFound):
                    await pipeline.archive_thread(first.id, "someone-else")

                return renamed, archived, active, only_archived, remaining, await _thread(sf, first.id)

        renamed, archived, active, only_archived, remaining, deleted = _run(scenario())
        assert renamed.title == "Budget"
        assert archived.status == ThreadStatus.ARCHIVED
        assert [t.title for t in active] == ["Budget"]
        assert [t.title for t in only_archived] == ["Second"]
        assert [t.title for t in remaining] == ["Second"]
        # Soft delete keeps the row
        assert deleted.status == ThreadStatus.DELETED
        assert deleted.title == "Budget"

    def test_list_orders_by_last_activity(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                pipeline = _pipeline(sf, [gateway("A", FakeClient(answer="a", confidence=0.7))])
                older = await pipeline.create_thread("user-1", "Older")
                await pipeline.create_thread("user-1", "Idle")
                await pipeline.submit(older.id, "user-1", FINANCE_QUESTION)
                return await pipeline.list_threads("user-1", limit=1)

        assert [t.title for t in _run(scenario())] == ["Older"]

    def test_search_titles_and_messages(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                pipeline = _pipeline(sf, [gateway("A", FakeClient(answer="a", confidence=0.7))])
                by_title = await pipeline.create_thread("user-1", "Retirement ideas")
                by_message = await pipeline.create_thread("user-1", "Misc")
                await pipeline.create_thread("user-1", "Nothing here")
                gone = await pipeline.create_thread("user-1", "Retirement, deleted")
                await pipeline.submit(by_message.id, "user-1", FINANCE_QUESTION)
                await pipeline.delete_thread(gone.id, "user-1")

                return (
                    by_title.id,
                    by_message.id,
                    await pipeline.search_threads("user-1", "RETIREMENT"),
                    await pipeline.search_threads("user-1", "%"),
                    await pipeline.search_threads("someone-else", "retirement"),
                )

        title_id, message_id, found, literal_percent, other_user = _run(scenario())
        assert sorted(t.id for t in found) == sorted([title_id, message_id])
        assert literal_percent == []
        assert other_user == []

    def test_chat_statistics(self, tmp_path):
        async def scenario():
            async with temp_database(tmp_path / "db.sqlite") as sf:
                pipeline = _pipeline(sf, [gateway("A", FakeClient(answer="a", confidence=0.7))])
                used = await pipeline.create_thread("user-1", "Used")
                archived = await pipeline.create_thread("user-1", "Archived")
                gone = await pipeline.create_thread("user-1", "Gone")
                await pipeline.submit(used.id, "user-1", FINANCE_QUESTION)
                await pipeline.submit(gone.id, "user-1", FINANCE_QUESTION)
                await pipeline.archive_thread(archived.id, "user-1")
                await pipeline.delete_thread(gone.id, "user-1")
                return (
                    await pipeline.chat_statistics("user-1"),
                    await pipeline.chat_statistics("nobody"),
                )

        stats, empty = _run(scenario())
        assert stats.total_threads == 2
        assert stats.active_threads == 1
        assert stats.total_messages == 2
        assert stats.total_inquiries == 1
        assert stats.avg_response_time_ms >= 0
        assert empty.total_threads == 0
        assert empty.avg_response_time_ms == 0
