# =============================================================================
# Inquiry Pipeline Orchestrator — One Question, Three Phases
# =============================================================================
#
# Drives a user's finance question from chat message to consolidated
# assistant reply, with strict status tracking.
#
# PHASES:
#
#   1. CREATE (txn A)
#      thread checks → admissibility gate
#        rejected → SYSTEM message + counter bump, commit,
#                   raise AdmissibilityRejected (no inquiry row)
#        admitted → USER message + PENDING inquiry + counter bump, commit
#
#   2. PROCESS (no open transaction during provider I/O)
#      PENDING → PROCESSING (own short commit), registry snapshot,
#      then the LangGraph pipeline:
#
#        START ──▶ dispatch ──▶ consolidate ──▶ rate ──▶ END
#
#   3. FINALIZE (txn B), flushed in this order:
#      provider replies → consolidated answer → ratings →
#      ASSISTANT message → PROCESSING → COMPLETED → counter bump
#
# FAILURE:
#   Any exception after the inquiry exists, cancellation included, rolls
#   back the open transaction. A separate session then moves the inquiry
#   to FAILED (only from PENDING/PROCESSING) and, once that lands, stores
#   whatever provider replies the run already collected. If either write
#   fails it is logged and the ORIGINAL exception still reaches the caller.
#
# Status changes are conditional UPDATEs (`WHERE status IN (...)`), so a
# COMPLETED or FAILED inquiry can never move again, and thread counters
# are `message_count + 1` at the SQL level.
#
# DESIGN DECISION: No singleton. InquiryPipeline holds only injected
# collaborators (session factory, registry, gate, settings); per-run data
# lives on the stack and in the graph state.
#
# DESIGN DECISION: Graph compiled once at module level, like any
# stateless LangGraph pipeline. Providers and knobs travel in the state.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing_extensions import TypedDict

from finchat.config import Settings
from finchat.config import settings as default_settings
from finchat.db.models import (
    ChatMessage,
    ChatThread,
    ConsolidatedAnswerRecord,
    Inquiry,
    InquiryStatus,
    MessageRole,
    ProviderRatingRecord,
    ProviderReplyRecord,
    ThreadStatus,
)
from finchat.pipeline.consolidation import ConsolidatedAnswer, consolidate
from finchat.pipeline.dispatcher import ask_all_providers
from finchat.pipeline.errors import (
    AdmissibilityRejected,
    InquiryNotFound,
    InvalidStatusTransition,
    PipelineError,
    ThreadInactive,
    ThreadNotFound,
)
from finchat.pipeline.gateway import ProviderGateway, ProviderReply
from finchat.pipeline.rating import ProviderRating, rate_consolidated
from finchat.pipeline.registry import ProviderRegistry
from finchat.services.admissibility import (
    AdmissibilityGate,
    enhance_prompt,
    extract_financial_context,
    rejection_message,
)

logger = logging.getLogger(__name__)

# Longest error text stored on a FAILED inquiry
MAX_ERROR_MESSAGE_LENGTH = 2000


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """
    State flowing through the dispatch → consolidate → rate graph.

    NOTE: Gateways are not JSON-serialisable. Safe as long as no
    checkpointer is configured on the graph.
    """

    # --- Input (set by the orchestrator) ---
    providers: list[ProviderGateway]
    question: str           # context-enhanced prompt sent to providers
    original_question: str  # what the user typed; used for rating
    context: str | None
    secondary_threshold: float
    confidence_cap: float
    allow_self_rating: bool

    # --- Output (set by nodes) ---
    replies: list[ProviderReply]
    consolidated: ConsolidatedAnswer
    ratings: list[ProviderRating]


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def dispatch_node(state: PipelineState) -> dict:
    replies = await ask_all_providers(
        state["providers"], state["question"], state.get("context"),
    )
    return {"replies": replies}


async def consolidate_node(state: PipelineState) -> dict:
    consolidated = consolidate(
        state["replies"],
        secondary_threshold=state["secondary_threshold"],
        cap=state["confidence_cap"],
    )
    return {"consolidated": consolidated}


async def rate_node(state: PipelineState) -> dict:
    """Cross-rate against the original question, not the enhanced prompt."""
    consolidated = state["consolidated"]
    ratings = await rate_consolidated(
        state["providers"],
        consolidated.answer,
        state["original_question"],
        sources=consolidated.sources,
        allow_self_rating=state["allow_self_rating"],
    )
    return {"ratings": ratings}


_builder = StateGraph(PipelineState)
_builder.add_node("dispatch", dispatch_node)
_builder.add_node("consolidate", consolidate_node)
_builder.add_node("rate", rate_node)

_builder.add_edge(START, "dispatch")
_builder.add_edge("dispatch", "consolidate")
_builder.add_edge("consolidate", "rate")
_builder.add_edge("rate", END)

pipeline_graph = _builder.compile()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class PipelineOutcome:
    """Everything persisted by a successful run."""

    inquiry_id: int
    status: InquiryStatus
    user_message: ChatMessage
    assistant_message: ChatMessage
    consolidated: ConsolidatedAnswerRecord
    replies: list[ProviderReplyRecord] = field(default_factory=list)
    ratings: list[ProviderRatingRecord] = field(default_factory=list)


@dataclass
class ChatStatistics:
    total_threads: int
    active_threads: int
    total_messages: int
    total_inquiries: int
    avg_response_time_ms: int


@dataclass
class InquiryDetails:
    inquiry: Inquiry
    replies: list[ProviderReplyRecord]
    consolidated: ConsolidatedAnswerRecord | None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class InquiryPipeline:
    """Runs user questions through the multi-provider consolidation pipeline."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ProviderRegistry,
        gate: AdmissibilityGate,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._gate = gate
        self._settings = settings or default_settings

    # --- Threads & messages ---

    async def create_thread(self, user_id: str, title: str | None = None) -> ChatThread:
        async with self._session_factory() as session:
            thread = ChatThread(
                user_id=user_id,
                title=title or "New Chat",
                status=ThreadStatus.ACTIVE,
                message_count=0,
            )
            session.add(thread)
            await session.commit()
            await session.refresh(thread)

        logger.info("Created thread %d for user %s", thread.id, user_id)
        return thread

    async def list_messages(self, thread_id: int, user_id: str) -> list[ChatMessage]:
        async with self._session_factory() as session:
            await self._get_owned_thread(session, thread_id, user_id)
            result = await session.execute(
                select(ChatMessage)
                .where(ChatMessage.thread_id == thread_id)
                .order_by(ChatMessage.created_at, ChatMessage.id)
            )
            return list(result.scalars().all())

    async def list_threads(
        self,
        user_id: str,
        status: ThreadStatus | None = ThreadStatus.ACTIVE,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ChatThread]:
        """
        The user's threads, most recently active first.

        `status=None` lists every thread that is not DELETED.
        """
        stmt = select(ChatThread).where(ChatThread.user_id == user_id)
        if status is None:
            stmt = stmt.where(ChatThread.status != ThreadStatus.DELETED)
        else:
            stmt = stmt.where(ChatThread.status == status)

        async with self._session_factory() as session:
            result = await session.execute(
                stmt.order_by(
                    ChatThread.last_message_at.desc().nulls_last(),
                    ChatThread.created_at.desc(),
                    ChatThread.id.desc(),
                )
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def search_threads(
        self, user_id: str, query: str, limit: int = 20,
    ) -> list[ChatThread]:
        """Non-deleted threads whose title or any message contains `query`, any case."""
        matching_messages = select(ChatMessage.thread_id).where(
            ChatMessage.content.icontains(query, autoescape=True)
        )

        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatThread)
                .where(
                    ChatThread.user_id == user_id,
                    ChatThread.status != ThreadStatus.DELETED,
                    or_(
                        ChatThread.title.icontains(query, autoescape=True),
                        ChatThread.id.in_(matching_messages),
                    ),
                )
                .order_by(
                    ChatThread.last_message_at.desc().nulls_last(),
                    ChatThread.created_at.desc(),
                    ChatThread.id.desc(),
                )
                .limit(limit)
            )
            return list(result.scalars().all())

    async def rename_thread(self, thread_id: int, user_id: str, title: str) -> ChatThread:
        return await self._set_thread(thread_id, user_id, title=title)

    async def archive_thread(self, thread_id: int, user_id: str) -> ChatThread:
        return await self._set_thread(thread_id, user_id, status=ThreadStatus.ARCHIVED)

    async def delete_thread(self, thread_id: int, user_id: str) -> None:
        """Soft delete: the thread and its history stay, marked DELETED."""
        await self._set_thread(thread_id, user_id, status=ThreadStatus.DELETED)

    async def chat_statistics(self, user_id: str) -> ChatStatistics:
        """Totals over the user's non-deleted threads."""
        visible = (
            ChatThread.user_id == user_id,
            ChatThread.status != ThreadStatus.DELETED,
        )

        async with self._session_factory() as session:
            total_threads = await session.scalar(
                select(func.count()).select_from(ChatThread).where(*visible)
            )
            active_threads = await session.scalar(
                select(func.count())
                .select_from(ChatThread)
                .where(
                    ChatThread.user_id == user_id,
                    ChatThread.status == ThreadStatus.ACTIVE,
                )
            )
            total_messages = await session.scalar(
                select(func.coalesce(func.sum(ChatThread.message_count), 0))
                .where(*visible)
            )
            total_inquiries = await session.scalar(
                select(func.count(Inquiry.id))
                .select_from(Inquiry)
                .join(ChatThread, Inquiry.thread_id == ChatThread.id)
                .where(*visible)
            )
            avg_response_time = await session.scalar(
                select(func.avg(ProviderReplyRecord.response_time_ms))
                .select_from(ProviderReplyRecord)
                .join(Inquiry, ProviderReplyRecord.inquiry_id == Inquiry.id)
                .join(ChatThread, Inquiry.thread_id == ChatThread.id)
                .where(*visible)
            )

        return ChatStatistics(
            total_threads=total_threads or 0,
            active_threads=active_threads or 0,
            total_messages=int(total_messages or 0),
            total_inquiries=total_inquiries or 0,
            avg_response_time_ms=round(float(avg_response_time or 0)),
        )

    # --- Submission ---

    async def submit(
        self,
        thread_id: int,
        user_id: str,
        content: str,
        context: str | None = None,
    ) -> PipelineOutcome:
        """
        Run one question end to end.

        Raises:
            ThreadNotFound / ThreadInactive: before anything is written.
            AdmissibilityRejected: after the SYSTEM message is committed.
            NoProvidersAvailable / AllProvidersFailed / InvalidStatusTransition
            or a persistence error: after the inquiry is marked FAILED.
        """
        inquiry, user_message = await self._create(thread_id, user_id, content, context)

        # Latest graph state, kept so a failed run can still store its replies
        progress: PipelineState = {}
        try:
            return await self._process(inquiry, user_message, progress)
        except asyncio.CancelledError:
            logger.warning("Inquiry %d cancelled mid-run", inquiry.id)
            await asyncio.shield(self._mark_failed(
                inquiry.id, "CancelledError: run cancelled", progress.get("replies", []),
            ))
            raise
        except Exception as e:
            if isinstance(e, PipelineError):
                logger.warning("Inquiry %d failed: %s", inquiry.id, e)
            else:
                logger.exception("Inquiry %d failed unexpectedly", inquiry.id)
            await self._mark_failed(
                inquiry.id, f"{type(e).__name__}: {e}", progress.get("replies", []),
            )
            raise

    async def get_inquiry_details(self, inquiry_id: int, user_id: str) -> InquiryDetails:
        """Inquiry with its provider replies and consolidated answer (+ ratings)."""
        async with self._session_factory() as session:
            inquiry = await session.get(Inquiry, inquiry_id)
            if inquiry is None or inquiry.user_id != user_id:
                raise InquiryNotFound(f"Inquiry {inquiry_id} not found")

            replies = await session.execute(
                select(ProviderReplyRecord)
                .where(ProviderReplyRecord.inquiry_id == inquiry_id)
                .order_by(ProviderReplyRecord.id)
            )
            consolidated = await session.execute(
                select(ConsolidatedAnswerRecord)
                .where(ConsolidatedAnswerRecord.inquiry_id == inquiry_id)
            )
            return InquiryDetails(
                inquiry=inquiry,
                replies=list(replies.scalars().all()),
                consolidated=consolidated.scalar_one_or_none(),
            )

    # -------------------------------------------------------------------------
    # Phase 1: Create
    # -------------------------------------------------------------------------

    async def _create(
        self,
        thread_id: int,
        user_id: str,
        content: str,
        context: str | None,
    ) -> tuple[Inquiry, ChatMessage]:
        async with self._session_factory() as session:
            thread = await self._get_owned_thread(session, thread_id, user_id)
            if thread.status != ThreadStatus.ACTIVE:
                raise ThreadInactive(
                    f"Thread {thread_id} is {thread.status.value} and accepts no messages"
                )

            validation = await self._gate.validate(content, user_id)

            if not validation.is_valid:
                text = rejection_message(validation)
                system_message = ChatMessage(
                    thread_id=thread_id,
                    role=MessageRole.SYSTEM,
                    content=text,
                    metadata_={
                        "original_prompt": content,
                        "validation": validation.to_dict(),
                    },
                )
                session.add(system_message)
                await session.flush()
                await self._bump_thread(session, thread_id)
                await session.commit()

                logger.info(
                    "Rejected prompt on thread %d (%s, score=%.2f)",
                    thread_id, validation.category, validation.confidence,
                )
                raise AdmissibilityRejected(
                    validation,
                    system_message_id=system_message.id,
                    system_message=text,
                )

            financial_context = extract_financial_context(content)
            inquiry = Inquiry(
                thread_id=thread_id,
                user_id=user_id,
                question=enhance_prompt(content, financial_context),
                context=context,
                status=InquiryStatus.PENDING,
                metadata_={
                    "original_prompt": content,
                    "financial_context": financial_context.to_dict(),
                    "validation": validation.to_dict(),
                },
            )
            session.add(inquiry)
            await session.flush()

            user_message = ChatMessage(
                thread_id=thread_id,
                role=MessageRole.USER,
                content=content,
                inquiry_id=inquiry.id,
                metadata_={
                    "validation": validation.to_dict(),
                    "financial_context": financial_context.to_dict(),
                },
            )
            session.add(user_message)
            await session.flush()
            await self._bump_thread(session, thread_id)
            await session.commit()
            await session.refresh(user_message)

        logger.info(
            "Inquiry %d created on thread %d (%s)",
            inquiry.id, thread_id, validation.category,
        )
        return inquiry, user_message

    # -------------------------------------------------------------------------
    # Phases 2 & 3: Process and Finalize
    # -------------------------------------------------------------------------

    async def _process(
        self,
        inquiry: Inquiry,
        user_message: ChatMessage,
        progress: PipelineState,
    ) -> PipelineOutcome:
        async with self._session_factory() as session:
            await self._transition(
                session,
                inquiry.id,
                allowed=(InquiryStatus.PENDING,),
                target=InquiryStatus.PROCESSING,
                processing_started_at=func.now(),
            )
            providers = await self._registry.snapshot(session)
            await session.commit()

        logger.info(
            "Inquiry %d PROCESSING with %d provider(s)", inquiry.id, len(providers),
        )

        inputs: PipelineState = {
            "providers": providers,
            "question": inquiry.question,
            "original_question": user_message.content,
            "context": inquiry.context,
            "secondary_threshold": self._settings.secondary_confidence_threshold,
            "confidence_cap": self._settings.confidence_cap,
            "allow_self_rating": self._settings.allow_self_rating,
        }
        # "values" mode yields the full state after every node
        async for state in pipeline_graph.astream(inputs, stream_mode="values"):
            progress.update(state)

        return await self._finalize(inquiry, user_message, progress)

    async def _finalize(
        self,
        inquiry: Inquiry,
        user_message: ChatMessage,
        state: PipelineState,
    ) -> PipelineOutcome:
        consolidated: ConsolidatedAnswer = state["consolidated"]

        async with self._session_factory() as session:
            reply_records = self._reply_records(inquiry.id, state["replies"])
            session.add_all(reply_records)
            await session.flush()

            answer_record = ConsolidatedAnswerRecord(
                inquiry_id=inquiry.id,
                answer=consolidated.answer,
                confidence=consolidated.confidence,
                sources=consolidated.sources,
                methodology=consolidated.methodology,
                metadata_=consolidated.metadata,
                ratings=[],
            )
            session.add(answer_record)
            await session.flush()

            rating_records = [
                ProviderRatingRecord(
                    provider=r.provider,
                    correctness_percentage=r.correctness_percentage,
                    reasoning=r.reasoning,
                    rated_by=r.rated_by,
                    response_time_ms=r.response_time_ms,
                )
                for r in state.get("ratings", [])
            ]
            answer_record.ratings.extend(rating_records)
            await session.flush()

            assistant_message = ChatMessage(
                thread_id=inquiry.thread_id,
                role=MessageRole.ASSISTANT,
                content=consolidated.answer,
                inquiry_id=inquiry.id,
                metadata_={
                    "confidence": consolidated.confidence,
                    "sources": consolidated.sources,
                    "methodology": consolidated.methodology,
                },
            )
            session.add(assistant_message)
            await session.flush()

            await self._transition(
                session,
                inquiry.id,
                allowed=(InquiryStatus.PROCESSING,),
                target=InquiryStatus.COMPLETED,
                processing_completed_at=func.now(),
            )
            await self._bump_thread(session, inquiry.thread_id)
            await session.commit()

            # Load server-side timestamps while the session is open
            for record in [assistant_message, answer_record, *reply_records, *rating_records]:
                await session.refresh(record)

        logger.info(
            "Inquiry %d COMPLETED (confidence=%.3f, sources=%s, ratings=%d)",
            inquiry.id, consolidated.confidence, consolidated.sources,
            len(rating_records),
        )
        return PipelineOutcome(
            inquiry_id=inquiry.id,
            status=InquiryStatus.COMPLETED,
            user_message=user_message,
            assistant_message=assistant_message,
            consolidated=answer_record,
            replies=reply_records,
            ratings=list(answer_record.ratings),
        )

    async def _mark_failed(
        self,
        inquiry_id: int,
        error_message: str,
        replies: Iterable[ProviderReply] = (),
    ) -> None:
        """
        Best-effort move to FAILED. Logs, never raises.

        Replies the run collected are stored after the FAILED update commits,
        so a rejected reply INSERT cannot keep the inquiry out of FAILED.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Inquiry)
                    .where(
                        Inquiry.id == inquiry_id,
                        Inquiry.status.in_(
                            [InquiryStatus.PENDING, InquiryStatus.PROCESSING]
                        ),
                    )
                    .values(
                        status=InquiryStatus.FAILED,
                        error_message=error_message[:MAX_ERROR_MESSAGE_LENGTH],
                        processing_completed_at=func.now(),
                        updated_at=func.now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception:
            logger.exception("Could not mark inquiry %d FAILED", inquiry_id)
            return

        if not result.rowcount:
            logger.warning(
                "Inquiry %d already terminal; FAILED update skipped", inquiry_id,
            )
            return
        logger.info("Inquiry %d FAILED", inquiry_id)

        replies = list(replies)
        if not replies:
            return
        try:
            async with self._session_factory() as session:
                session.add_all(self._reply_records(inquiry_id, replies))
                await session.commit()
        except Exception:
            logger.exception(
                "Could not store %d provider replies of FAILED inquiry %d",
                len(replies), inquiry_id,
            )

    # -------------------------------------------------------------------------
    # Storage helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _get_owned_thread(
        session: AsyncSession, thread_id: int, user_id: str,
    ) -> ChatThread:
        thread = await session.get(ChatThread, thread_id)
        if thread is None or thread.user_id != user_id:
            raise ThreadNotFound(f"Thread {thread_id} not found")
        return thread

    async def _set_thread(self, thread_id: int, user_id: str, **values) -> ChatThread:
        async with self._session_factory() as session:
            thread = await self._get_owned_thread(session, thread_id, user_id)
            if thread.status == ThreadStatus.DELETED:
                raise ThreadInactive(f"Thread {thread_id} is DELETED")
            for name, value in values.items():
                setattr(thread, name, value)
            await session.commit()
            await session.refresh(thread)

        logger.info("Thread %d updated (%s)", thread_id, ", ".join(values))
        return thread

    @staticmethod
    def _reply_records(
        inquiry_id: int, replies: Iterable[ProviderReply],
    ) -> list[ProviderReplyRecord]:
        return [
            ProviderReplyRecord(
                inquiry_id=inquiry_id,
                provider=r.provider,
                answer=r.answer,
                confidence=r.confidence,
                response_time_ms=r.response_time_ms,
                tokens_used=r.tokens_used,
                cost_cents=r.cost_cents,
                error=r.error,
                metadata_=r.metadata,
            )
            for r in replies
        ]

    @staticmethod
    async def _transition(
        session: AsyncSession,
        inquiry_id: int,
        allowed: Iterable[InquiryStatus],
        target: InquiryStatus,
        **values,
    ) -> None:
        result = await session.execute(
            update(Inquiry)
            .where(Inquiry.id == inquiry_id, Inquiry.status.in_(list(allowed)))
            .values(status=target, updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStatusTransition(inquiry_id, target.value)

    @staticmethod
    async def _bump_thread(session: AsyncSession, thread_id: int) -> None:
        await session.execute(
            update(ChatThread)
            .where(ChatThread.id == thread_id)
            .values(
                message_count=ChatThread.message_count + 1,
                last_message_at=func.now(),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
