import logging
import random
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from .catalog import QuestionCatalog
from .config import settings
from .errors import AlreadyAnsweredError, MemorizeModeError, NoActiveSessionError
from .evaluator import Selection, evaluate, normalize_selection, options_for
from .ledger import WrongLedger
from .models import AnswerRecord, Mode, SessionView, UserAggregate
from .quiz import WorkingSetFactory
from .session import QuizSession, TypeStateCache
from .stats import StatsAggregator, type_accuracy
from .storage import PersistenceGateway

logger = logging.getLogger(__name__)

# (delay in seconds, callback) -> handle with a cancel() method
Scheduler = Callable[[float, Callable[[], None]], Any]


class SessionContext(NamedTuple):
    subject: Optional[str]
    type_name: Optional[str]
    mode: Mode
    revision: int


class AutoAdvance:
    """At most one pending move to the next question."""

    def __init__(self, scheduler: Optional[Scheduler] = None):
        self.scheduler = scheduler
        self.handle = None

    @property
    def pending(self) -> bool:
        return self.handle is not None

    def schedule(self, delay: float, callback: Callable[[], None]):
        self.cancel()
        if self.scheduler is None:
            return

        def fire():
            self.handle = None
            callback()

        self.handle = self.scheduler(delay, fire)

    def cancel(self):
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class QuizEngine:
    """Single owner of the quiz state for one device.

    Every user action goes through a method here. Each one runs to
    completion; the only work that leaves the caller's control flow is the
    auto-advance timer and ``refresh``.
    """

    def __init__(
        self,
        catalog: QuestionCatalog,
        gateway: PersistenceGateway,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        correct_delay: float = settings.CORRECT_JUMP_SECONDS,
        wrong_delay: float = settings.WRONG_JUMP_SECONDS,
        autosave_every: int = settings.AUTOSAVE_EVERY,
        identity: Optional[str] = None,
    ):
        self.catalog = catalog
        self.gateway = gateway
        self.rng = rng
        self.correct_delay = correct_delay
        self.wrong_delay = wrong_delay
        self.autosave_every = autosave_every
        self.auto_advance = AutoAdvance(scheduler)

        self.identity = identity
        self.subject: Optional[str] = None
        self.type_name: Optional[str] = None
        self.mode = Mode.SEQUENCE
        self.session: Optional[QuizSession] = None
        self.type_states = TypeStateCache()
        self.ledger = WrongLedger()
        self.stats = StatsAggregator()
        self._revision = 0

        self._apply(self.gateway.load_all(self.identity))

    # --- Context bookkeeping ---
    @property
    def context(self) -> SessionContext:
        return SessionContext(self.subject, self.type_name, self.mode, self._revision)

    def _touch(self):
        self._revision += 1

    def _apply(self, aggregate: UserAggregate):
        self.ledger = WrongLedger(aggregate.wrong_ledger)
        self.stats = StatsAggregator(aggregate.stats)
        self.type_states = TypeStateCache(aggregate.type_states)

    def _catalog_entry(self):
        if not self.subject or not self.type_name:
            return []
        return self.catalog.get_entry(self.subject, self.type_name)

    def _snapshot(self, persist: bool = True):
        if self.session is None or self.session.mode == Mode.WRONG:
            return
        record = self.session.snapshot(self._catalog_entry())
        self.type_states.put(self.session.key, record)
        if persist:
            self.gateway.save_type_states(self.identity, self.type_states)

    def _leave(self):
        self.auto_advance.cancel()
        if self.session is None:
            return
        self._snapshot()
        session = self.session
        if session.submitted:
            self.stats.close_session(
                session.subject,
                session.type_name,
                session.mode,
                session.score,
                session.answered_count,
                session.total,
            )
            self.gateway.save_stats(self.identity, self.stats.stats)

    def _enter(self) -> QuizSession:
        self._touch()
        entry = self._catalog_entry() if self.mode != Mode.WRONG else []
        builder = WorkingSetFactory.create(self.mode, self.rng)
        slots = builder.build(entry, self.ledger.entries())

        session = QuizSession(self.subject or "", self.type_name or "", self.mode, slots)
        if self.mode != Mode.WRONG:
            session.reconcile(self.type_states.get(session.key), entry)
        session.jump_to_first_unanswered()
        self.session = session
        self._on_slot_changed()

        logger.info(
            f"Session start: {session.key} [Mode: {self.mode.value}, "
            f"Slots: {session.total}, Answered: {session.answered_count}]"
        )
        return session

    def _on_slot_changed(self):
        if self.session is not None and self.mode == Mode.MEMORIZE:
            self.session.reveal()

    def _require_session(self) -> QuizSession:
        if self.session is None:
            raise NoActiveSessionError("Select a subject and a question type first")
        return self.session

    # --- Selection ---
    def select_subject(self, subject: str) -> List[str]:
        self._leave()
        self.subject = subject
        self.type_name = None
        self.session = None
        self._touch()
        return self.catalog.get_types(subject)

    def select_type(self, type_name: str) -> QuizSession:
        self._leave()
        self.type_name = type_name
        return self._enter()

    def select_mode(self, mode: Mode) -> Optional[QuizSession]:
        self._leave()
        self.mode = Mode(mode)
        if self.type_name or self.mode == Mode.WRONG:
            return self._enter()
        self.session = None
        self._touch()
        return None

    # --- Answering ---
    def submit(self, selection: Selection) -> AnswerRecord:
        session = self._require_session()
        self.auto_advance.cancel()
        if self.mode == Mode.MEMORIZE:
            raise MemorizeModeError("Answers are shown directly in memorize mode")
        question = session.current()
        if question is None:
            raise NoActiveSessionError("There is no question to answer")
        if session.is_answered:
            raise AlreadyAnsweredError(f"Question {session.current_index + 1} already answered")

        submitted = normalize_selection(question.type, selection)
        is_correct = evaluate(question, submitted)
        session.record(submitted, is_correct)
        self._touch()

        if not is_correct and self.mode != Mode.WRONG:
            self.ledger.append(question)
        self.stats.record(is_correct)

        self.gateway.save_answers(self.identity, self.mode, session.answers)
        self.gateway.save_wrong_ledger(self.identity, self.ledger)
        self.gateway.save_stats(self.identity, self.stats.stats)
        self._snapshot()
        if self.autosave_every and session.answered_count % self.autosave_every == 0:
            self.save_all()

        delay = self.correct_delay if is_correct else self.wrong_delay
        self.auto_advance.schedule(delay, self._advance_callback())

        return AnswerRecord(
            text=question.text,
            user_answer=submitted,
            correct_answer=question.answer,
            is_correct=is_correct,
        )

    def _advance_callback(self) -> Callable[[], None]:
        context = self.context

        def advance():
            if self.context != context or self.session is None:
                return
            if self.session.next():
                self._on_slot_changed()

        return advance

    def reveal(self) -> str:
        session = self._require_session()
        if self.mode != Mode.MEMORIZE:
            raise MemorizeModeError("Answers are only revealed in memorize mode")
        answer = session.reveal()
        if answer is None:
            raise NoActiveSessionError("There is no question to reveal")
        return answer

    # --- Navigation ---
    def go_to(self, index: int) -> bool:
        session = self._require_session()
        self.auto_advance.cancel()
        moved = session.go_to(index)
        if moved:
            self._on_slot_changed()
        return moved

    def next(self) -> bool:
        return self.go_to(self._require_session().current_index + 1)

    def prev(self) -> bool:
        return self.go_to(self._require_session().current_index - 1)

    # --- Lifecycle ---
    def reset(self) -> QuizSession:
        """Start the current (subject, type, mode) over with no answers."""
        self.auto_advance.cancel()
        session = self._require_session()
        entry = self._catalog_entry() if self.mode != Mode.WRONG else []
        slots = WorkingSetFactory.create(self.mode, self.rng).build(entry, self.ledger.entries())
        self.session = QuizSession(session.subject, session.type_name, self.mode, slots)
        self._touch()
        self._on_slot_changed()
        self._snapshot()
        self.gateway.save_answers(self.identity, self.mode, self.session.answers)
        self.gateway.save_stats(self.identity, self.stats.stats)
        return self.session

    def clear_wrong_questions(self):
        """Empty the wrong-question ledger for the current account."""
        self.ledger.clear()
        self.gateway.save_wrong_ledger(self.identity, self.ledger)
        if self.mode == Mode.WRONG and self.session is not None:
            self.auto_advance.cancel()
            self._enter()

    def save_all(self):
        self._snapshot()
        self.gateway.save_stats(self.identity, self.stats.stats)
        if self.session is not None:
            self.gateway.save_answers(self.identity, self.mode, self.session.answers)
        self.gateway.save_wrong_ledger(self.identity, self.ledger)

    def login(self, identity: str):
        self.save_all()
        self.auto_advance.cancel()
        self.identity = identity
        self._apply(self.gateway.load_all(identity))
        logger.info(f"Loaded data for {identity}")
        if self.session is not None:
            self._enter()

    def logout(self):
        self.save_all()
        self.auto_advance.cancel()
        logger.info(f"Logged out {self.identity}")
        self.identity = None
        self._apply(UserAggregate())
        if self.session is not None:
            self._enter()

    def close(self):
        self.auto_advance.cancel()
        self.save_all()

    async def refresh(self) -> bool:
        """Reload the user's aggregates off the event loop.

        The result is dropped when anything changed the session while the
        load was in flight.
        """
        context = self.context
        identity = self.identity
        aggregate = await self.gateway.load_all_async(identity)
        if self.context != context or self.identity != identity:
            logger.info(f"Discarding stale load for {identity}")
            return False
        self._apply(aggregate)
        if self.session is not None and self.mode != Mode.WRONG:
            self.session.reconcile(
                self.type_states.get(self.session.key), self._catalog_entry()
            )
            self._touch()
        return True

    # --- Views ---
    def view(self) -> SessionView:
        session = self._require_session()
        question = session.current()
        if question is not None:
            question = question.model_copy(update={"options": options_for(question)})
        revealed = None
        if question is not None and session.current_index in session.revealed:
            revealed = question.answer
        return SessionView(
            subject=session.subject,
            type=session.type_name,
            mode=session.mode,
            current_index=session.current_index,
            total_questions=session.total,
            question=question,
            user_answer=session.answers.get(session.current_index),
            is_answered=session.is_answered,
            revealed_answer=revealed,
            score=session.score,
            answered_count=session.answered_count,
            progress=session.progress(),
        )

    def type_accuracy(self) -> Dict[str, int]:
        if not self.subject:
            return {}
        self._snapshot(persist=False)
        return type_accuracy(self.subject, self.type_states.records(), self.catalog)
