"""Single-flight orchestration of contextual AI actions."""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Callable, Optional

from .accumulator import accumulate
from .errors import DEFAULT_MESSAGES, ErrorKind, classify_failure
from .logger import get_logger
from .metrics import inc_action, inc_stream_increments
from .models import (
    ActionKind,
    ActionRequest,
    Failed,
    Haptic,
    HapticType,
    Loading,
    StateDelta,
    Streaming,
    Succeeded,
    UiState,
)
from .ports import ContextProvider, TextService, closing_stream
from .prompts import render_prompt
from .trace import new_trace_id


DeltaSink = Callable[[StateDelta], None]
SnapshotReader = Callable[[], UiState]

logger = get_logger("whisperly.orchestrator")


def failed_delta(kind: ErrorKind, message: str | None = None, retryable: bool | None = None) -> StateDelta:
    return StateDelta(
        response_state=Failed(
            message=message or DEFAULT_MESSAGES[kind],
            kind=kind,
            retryable=kind.retryable if retryable is None else retryable,
        ),
        effects=(Haptic(HapticType.ERROR),),
    )


class ActionHandle:
    """Cancellable handle over one orchestrated run."""

    def __init__(self, token: int, kind: ActionKind, task: asyncio.Task[None]) -> None:
        self.token = token
        self.kind = kind
        self._task = task

    def cancel(self) -> bool:
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """Wait for the run to finish, whether it completed or was cancelled."""
        await asyncio.wait({self._task})


class ActionOrchestrator:
    """Turns an action request into a timeline of state deltas.

    At most one run is in flight: starting a run cancels the previous one and
    bumps the run token, so deltas the old run might still produce are
    dropped before they reach the sink. The last failed request is kept in a
    single slot for :meth:`retry`.
    """

    def __init__(
        self,
        context_provider: ContextProvider,
        text_service: TextService,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._context = context_provider
        self._service = text_service
        self._clock = clock
        self._token = 0
        self._current: Optional[ActionHandle] = None
        self._last_failed: Optional[ActionRequest] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def last_failed_request(self) -> Optional[ActionRequest]:
        return self._last_failed

    @property
    def current(self) -> Optional[ActionHandle]:
        return self._current

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def run(
        self,
        kind: ActionKind,
        prompt_template_id: str,
        *,
        sink: DeltaSink,
        snapshot: SnapshotReader,
        command: str | None = None,
    ) -> ActionHandle:
        """Start a full action: screen read, submission and streaming."""
        token = self._supersede()
        steps = self._action_steps(token, kind, prompt_template_id, command, snapshot)
        return self._start(token, kind, steps, sink)

    def retry(self, *, sink: DeltaSink, snapshot: SnapshotReader) -> Optional[ActionHandle]:
        """Re-submit the retained failed request unchanged.

        Returns ``None`` (and leaves any in-flight run alone) when nothing
        is retained.
        """
        request = self._last_failed
        if request is None:
            return None
        if not request.context_snapshot.strip():
            # The screen was empty the first time: there is no snapshot to reuse.
            return self.run(
                request.action_kind,
                request.prompt_template_id,
                sink=sink,
                snapshot=snapshot,
                command=request.command,
            )
        token = self._supersede()
        return self._start(token, request.action_kind, self._retry_steps(token, request, snapshot), sink)

    def detach(self) -> None:
        """Drop every later delta of the in-flight run without cancelling it."""
        self._token += 1

    def cancel(self) -> None:
        """Cancel the in-flight run; its stream is closed on the next suspension."""
        self._token += 1
        if self._current is not None and not self._current.done():
            self._current.cancel()

    async def join(self) -> None:
        """Wait for the current run to settle."""
        handle = self._current
        if handle is not None:
            await handle.wait()

    # ------------------------------------------------------------------ #
    # Runs
    # ------------------------------------------------------------------ #
    def _supersede(self) -> int:
        self.cancel()
        return self._token

    def _start(self, token: int, kind: ActionKind, steps: AsyncIterator[StateDelta], sink: DeltaSink) -> ActionHandle:
        task = asyncio.get_running_loop().create_task(self._drive(token, kind, steps, sink))
        handle = ActionHandle(token, kind, task)
        self._current = handle
        return handle

    async def _drive(self, token: int, kind: ActionKind, steps: AsyncIterator[StateDelta], sink: DeltaSink) -> None:
        new_trace_id()
        logger.info("Action %s started (run %d)", kind.value, token, extra={"action": kind.value, "run": token})
        try:
            async with closing_stream(steps) as deltas:
                async for delta in deltas:
                    if token != self._token:
                        continue
                    sink(delta)
        except asyncio.CancelledError:
            logger.info(
                "Action %s cancelled (run %d)",
                kind.value,
                token,
                extra={"action": kind.value, "run": token, "outcome": "cancelled"},
            )
            inc_action(kind.value, "cancelled")
            raise
        except Exception:  # pragma: no cover - sink bug
            logger.exception("Action %s crashed (run %d)", kind.value, token)
            inc_action(kind.value, "crashed")

    async def _action_steps(
        self,
        token: int,
        kind: ActionKind,
        template_id: str,
        command: str | None,
        snapshot: SnapshotReader,
    ) -> AsyncIterator[StateDelta]:
        if not snapshot().expanded:
            yield StateDelta(expanded=True)
        yield StateDelta(effects=(Haptic(HapticType.LIGHT),))

        context = self._read_context()
        request = ActionRequest(
            action_kind=kind,
            prompt_template_id=template_id,
            context_snapshot=context,
            issued_at=self._clock(),
            command=command,
        )
        if not context.strip():
            logger.info("No screen context available for %s", kind.value)
            self._record_failure(token, request)
            inc_action(kind.value, ErrorKind.NO_CONTEXT_AVAILABLE.value)
            yield failed_delta(ErrorKind.NO_CONTEXT_AVAILABLE, retryable=True)
            return

        async with closing_stream(self._submit_steps(token, request)) as submission:
            async for delta in submission:
                yield delta

    async def _retry_steps(
        self, token: int, request: ActionRequest, snapshot: SnapshotReader
    ) -> AsyncIterator[StateDelta]:
        if not snapshot().expanded:
            yield StateDelta(expanded=True)
        async with closing_stream(self._submit_steps(token, request)) as submission:
            async for delta in submission:
                yield delta

    async def _submit_steps(self, token: int, request: ActionRequest) -> AsyncIterator[StateDelta]:
        kind = request.action_kind
        label = kind.label
        yield StateDelta(response_state=Loading(label))

        text = ""
        try:
            prompt = render_prompt(request.prompt_template_id, request.command)
            increments = self._service.submit(prompt, request.context_snapshot)
            async with closing_stream(increments) as feed, closing_stream(accumulate(feed)) as partials:
                async for partial in partials:
                    text = partial
                    inc_stream_increments()
                    yield StateDelta(response_state=Streaming(partial, label))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = classify_failure(exc)
            logger.warning(
                "Action %s failed: %s (%s)",
                kind.value,
                failure.kind.value,
                exc,
                extra={"action": kind.value, "run": token, "outcome": failure.kind.value},
            )
            if failure.retryable:
                self._record_failure(token, request)
            else:
                self._clear_failure(token)
            inc_action(kind.value, failure.kind.value)
            yield failed_delta(failure.kind, failure.message, failure.retryable)
            return

        if not text.strip():
            logger.warning("Action %s produced an empty response", kind.value)
            self._record_failure(token, request)
            inc_action(kind.value, ErrorKind.INVALID_RESPONSE.value)
            yield failed_delta(ErrorKind.INVALID_RESPONSE)
            return

        self._clear_failure(token)
        inc_action(kind.value, "succeeded")
        logger.info(
            "Action %s succeeded (%d chars)",
            kind.value,
            len(text),
            extra={"action": kind.value, "run": token, "outcome": "succeeded"},
        )
        yield StateDelta(
            response_state=Succeeded(final_text=text, action_label=label, completed_at=self._clock()),
            effects=(Haptic(HapticType.SUCCESS),),
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _read_context(self) -> str:
        try:
            text = self._context.get_current_context()
        except Exception:
            logger.exception("Context provider raised; treating the screen as empty")
            return ""
        return text if isinstance(text, str) else ""

    def _record_failure(self, token: int, request: ActionRequest) -> None:
        if token == self._token:
            self._last_failed = request

    def _clear_failure(self, token: int) -> None:
        if token == self._token:
            self._last_failed = None
