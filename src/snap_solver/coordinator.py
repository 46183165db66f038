"""Solve and debug pipelines sharing one provider client and one problem context."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cancellation import CancelToken
from .classifier import AnswerClassifier, synthesize_problem
from .config import Settings
from .events import EventChannel, ProcessingEvent
from .history import CallHistory
from .llm.errors import map_exception
from .llm.registry import ProviderClientRegistry
from .llm.types import Canceled, ImagePayload, NoContext, NotConfigured, ProviderError, ProviderIdentity
from .models import DebugAnalysis, NormalizedAnswer, ProblemContext
from .prompts import (
    CODING_SYSTEM_PROMPT,
    DEBUG_SYSTEM_PROMPT,
    EXTRACTION_INSTRUCTION,
    build_debug_prompt,
    build_extraction_prompt,
    build_single_shot_prompt,
    build_solution_prompt,
)
from .screenshots import ScreenshotQueues

logger = logging.getLogger(__name__)

SINGLE_SHOT_PROVIDERS = frozenset({ProviderIdentity.GEMINI})


class PipelineKind(str, Enum):
    SOLVE = "solve"
    DEBUG = "debug"


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


VIEW_PIPELINES = {"queue": PipelineKind.SOLVE, "solutions": PipelineKind.DEBUG}


@dataclass
class PipelineResult:
    kind: PipelineKind
    state: PipelineState
    answer: Optional[NormalizedAnswer] = None
    debug: Optional[DebugAnalysis] = None
    problem: Optional[ProblemContext] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.SUCCESS


class PipelineCoordinator:
    """Runs one pipeline per call in the caller's thread.

    Token and context changes happen under a single lock. A run that was
    cancelled or replaced by a newer run of the same kind only ever reports
    ``processing-canceled``.
    """

    def __init__(
        self,
        config: Any,
        registry: ProviderClientRegistry,
        screenshots: ScreenshotQueues,
        channel: Optional[EventChannel] = None,
        classifier: Optional[AnswerClassifier] = None,
        history: Optional[CallHistory] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.screenshots = screenshots
        self.channel = channel or EventChannel()
        self.classifier = classifier or AnswerClassifier()
        self.history = history
        self._lock = threading.Lock()
        self._tokens: Dict[PipelineKind, Optional[CancelToken]] = {kind: None for kind in PipelineKind}
        self._problem: Optional[ProblemContext] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        subscribe = getattr(config, "subscribe", None)
        if callable(subscribe):
            self._unsubscribe = subscribe(self._on_settings_changed)

    @property
    def problem(self) -> Optional[ProblemContext]:
        with self._lock:
            return self._problem

    def state(self, kind: PipelineKind) -> PipelineState:
        with self._lock:
            token = self._tokens[PipelineKind(kind)]
        return PipelineState.RUNNING if token is not None and not token.cancelled else PipelineState.IDLE

    def process(self, kind: PipelineKind | str) -> PipelineResult:
        kind = PipelineKind(kind)
        settings = self.config.load()
        if kind is PipelineKind.SOLVE:
            return self._solve(settings)
        return self._debug(settings)

    def solve(self) -> PipelineResult:
        return self.process(PipelineKind.SOLVE)

    def debug(self) -> PipelineResult:
        return self.process(PipelineKind.DEBUG)

    def process_screenshots(self, view: str = "queue") -> PipelineResult:
        kind = VIEW_PIPELINES.get(view)
        if kind is None:
            raise ValueError(f"Unknown view: {view}")
        return self.process(kind)

    def cancel_ongoing_requests(self) -> bool:
        with self._lock:
            tokens = [token for token in self._tokens.values() if token is not None]
            self._tokens = {kind: None for kind in PipelineKind}
            self._problem = None
        for token in tokens:
            token.cancel()
        if tokens:
            logger.info("Cancelled %d in-flight pipeline(s)", len(tokens))
            self.channel.emit(ProcessingEvent.NO_SCREENSHOTS)
        return bool(tokens)

    def reset(self) -> None:
        with self._lock:
            self._problem = None

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_settings_changed(self, settings: Settings) -> None:
        self.registry.apply_settings(settings)

    def _begin(self, kind: PipelineKind) -> CancelToken:
        token = CancelToken(kind.value)
        with self._lock:
            stale = [self._tokens[kind]]
            if kind is PipelineKind.SOLVE:
                stale.append(self._tokens[PipelineKind.DEBUG])
                self._tokens[PipelineKind.DEBUG] = None
                self._problem = None
            self._tokens[kind] = token
        for previous in stale:
            if previous is not None:
                previous.cancel()
        return token

    def _release(self, kind: PipelineKind, token: CancelToken) -> bool:
        """Clears token if it is still current; False when the run was superseded."""
        with self._lock:
            current = self._tokens[kind] is token
            if current:
                self._tokens[kind] = None
        return current and not token.cancelled

    def _status(self, token: CancelToken, message: str, progress: int) -> None:
        if not token.cancelled:
            self.channel.emit(ProcessingEvent.STATUS, {"message": message, "progress": progress})

    def _solve(self, settings: Settings) -> PipelineResult:
        kind = PipelineKind.SOLVE
        self.channel.emit(ProcessingEvent.INITIAL_START)
        paths = self.screenshots.existing(self.screenshots.main)
        if not paths:
            logger.info("No screenshots to process")
            self.channel.emit(ProcessingEvent.NO_SCREENSHOTS)
            return PipelineResult(kind, PipelineState.IDLE)

        token = self._begin(kind)
        try:
            self.registry.ensure_client(settings)
            images = self.screenshots.load(paths)
            if not images:
                raise ProviderError("no screenshot could be read", "Failed to load screenshot data.")
            if settings.provider in SINGLE_SHOT_PROVIDERS:
                answer, problem = self._single_shot(settings, images, token)
            else:
                answer, problem = self._two_stage(settings, images, token)
            token.raise_if_cancelled()
        except Exception as exc:
            return self._fail(kind, token, settings, exc, len(paths))

        with self._lock:
            current = self._tokens[kind] is token and not token.cancelled
            if current:
                self._tokens[kind] = None
                self._problem = problem
        if not current:
            return self._canceled(kind, settings, len(paths))

        self._status(token, "Solution generated successfully", 100)
        self.channel.emit(ProcessingEvent.SOLUTION_SUCCESS, answer.to_dict())
        self.screenshots.clear_extra()
        self._record(kind, settings, PipelineState.SUCCESS, len(paths), answer_type=answer.answer_type)
        return PipelineResult(kind, PipelineState.SUCCESS, answer=answer, problem=problem)

    def _single_shot(
        self,
        settings: Settings,
        images: List[ImagePayload],
        token: CancelToken,
    ) -> Tuple[NormalizedAnswer, ProblemContext]:
        self._status(token, f"Analyzing screenshots with {settings.provider.label}...", 20)
        result = self.registry.generate(
            "solve",
            build_single_shot_prompt(settings.language),
            images,
            token=token,
        )
        token.raise_if_cancelled()
        answer = self.classifier.classify(result.text, settings.language)
        problem = synthesize_problem(answer, settings.language)
        self.channel.emit(ProcessingEvent.PROBLEM_EXTRACTED, problem.to_dict())
        return answer, problem

    def _two_stage(
        self,
        settings: Settings,
        images: List[ImagePayload],
        token: CancelToken,
    ) -> Tuple[NormalizedAnswer, ProblemContext]:
        self._status(token, "Analyzing problem from screenshots...", 20)
        extraction = self.registry.generate(
            "extract",
            build_extraction_prompt(settings.language),
            images,
            system=EXTRACTION_INSTRUCTION,
            token=token,
        )
        token.raise_if_cancelled()
        problem = self.classifier.parse_problem(extraction.text, settings.language)
        self.channel.emit(ProcessingEvent.PROBLEM_EXTRACTED, problem.to_dict())
        self._status(token, "Problem analyzed successfully. Preparing to generate solution...", 40)

        system, prompt = build_solution_prompt(problem, settings.language)
        self._status(
            token,
            "Creating optimal solution with detailed explanations..."
            if system == CODING_SYSTEM_PROMPT
            else "Composing a structured answer...",
            60,
        )
        solution = self.registry.generate("solve", prompt, system=system, token=token)
        token.raise_if_cancelled()
        return self.classifier.parse_solution(solution.text, problem, settings.language), problem

    def _debug(self, settings: Settings) -> PipelineResult:
        kind = PipelineKind.DEBUG
        problem = self.problem
        if problem is None:
            error = NoContext()
            logger.info("Debug requested without a problem context")
            self.channel.emit(ProcessingEvent.DEBUG_ERROR, error.user_message)
            self._record(kind, settings, PipelineState.FAILED, 0, error=type(error).__name__)
            return PipelineResult(kind, PipelineState.FAILED, error=error.user_message)

        extra = self.screenshots.existing(self.screenshots.extra)
        if not extra:
            self.channel.emit(ProcessingEvent.NO_SCREENSHOTS)
            return PipelineResult(kind, PipelineState.IDLE)
        paths = self.screenshots.existing(self.screenshots.main) + extra

        token = self._begin(kind)
        try:
            self.registry.ensure_client(settings)
            self.channel.emit(ProcessingEvent.DEBUG_START)
            self._status(token, "Processing debug screenshots...", 30)
            images = self.screenshots.load(paths)
            if not images:
                raise ProviderError("no screenshot could be read", "Failed to load screenshot data.")
            self._status(token, "Analyzing code and generating debug feedback...", 60)
            result = self.registry.generate(
                "debug",
                build_debug_prompt(problem, settings.language),
                images,
                system=DEBUG_SYSTEM_PROMPT,
                token=token,
            )
            token.raise_if_cancelled()
            analysis = self.classifier.parse_debug(result.text)
        except Exception as exc:
            return self._fail(kind, token, settings, exc, len(paths))

        if not self._release(kind, token):
            return self._canceled(kind, settings, len(paths))
        self._status(token, "Debug analysis complete", 100)
        self.channel.emit(ProcessingEvent.DEBUG_SUCCESS, analysis.to_dict())
        self._record(kind, settings, PipelineState.SUCCESS, len(paths), answer_type="debug")
        return PipelineResult(kind, PipelineState.SUCCESS, debug=analysis, problem=problem)

    def _fail(
        self,
        kind: PipelineKind,
        token: CancelToken,
        settings: Settings,
        exc: Exception,
        screenshot_count: int,
    ) -> PipelineResult:
        if not self._release(kind, token) or isinstance(exc, Canceled):
            return self._canceled(kind, settings, screenshot_count)

        error = map_exception(settings.provider, exc)
        if error is exc:
            logger.error("%s pipeline failed: %s", kind.value, error)
        else:
            logger.exception("%s pipeline failed unexpectedly", kind.value, exc_info=exc)
        if isinstance(error, NotConfigured):
            self.channel.emit(ProcessingEvent.API_KEY_INVALID)
        event = ProcessingEvent.INITIAL_SOLUTION_ERROR if kind is PipelineKind.SOLVE else ProcessingEvent.DEBUG_ERROR
        self.channel.emit(event, error.user_message)
        self._record(kind, settings, PipelineState.FAILED, screenshot_count, error=type(error).__name__)
        return PipelineResult(kind, PipelineState.FAILED, error=error.user_message)

    def _canceled(self, kind: PipelineKind, settings: Settings, screenshot_count: int) -> PipelineResult:
        logger.info("%s pipeline canceled", kind.value)
        self.channel.emit(ProcessingEvent.CANCELED, {"kind": kind.value})
        self._record(kind, settings, PipelineState.CANCELED, screenshot_count)
        return PipelineResult(kind, PipelineState.CANCELED, error=Canceled.default_message)

    def _record(
        self,
        kind: PipelineKind,
        settings: Settings,
        state: PipelineState,
        screenshot_count: int,
        answer_type: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.history is None:
            return
        try:
            self.history.record_run(
                kind=kind.value,
                provider=settings.provider.value,
                outcome=state.value,
                answer_type=answer_type,
                error=error,
                screenshot_count=screenshot_count,
            )
        except Exception:
            logger.warning("Failed to record %s run", kind.value, exc_info=True)
