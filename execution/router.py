"""
Action Router
-------------
Dispatches one Action through the privilege-tiered execution methods.

Algorithm:
1. Validate and coerce parameters of known kinds (failure invokes nothing)
2. Candidates = methods supporting the kind, priority desc, id asc
3. Skip candidates the availability cache reports unavailable
4. Invoke; on failure classify, look up the recovery action and retry the
   same method while attempts <= max_retries, then fall back to the next
5. Nothing left: report the last classified error

Methods are invoked strictly one at a time.
"""

from typing import Callable, Iterable, List, Optional
import logging
import threading
import time

from core.cancellation import CancellationScope, CancellationToken, sleep_ms
from core.errors import (
    ErrorCategory,
    ErrorClassifier,
    ErrorHandler,
    ErrorInfo,
    SessionCancelledError,
    create_unsupported_error,
    create_validation_error,
)
from core.retry_policy import RecoveryAction, RecoveryStrategy, RetryPolicyEngine, perturb

from .actions import Action, normalize_action
from .availability import AvailabilityCache
from .methods import ExecutionMethod, MethodDescriptor, RawResult, check_unique_ids, sort_methods
from .results import AttemptRecord, ExecutionResult


PermissionRequester = Callable[[ExecutionMethod, Action], None]


class ActionRouter:
    """
    Priority-ordered fallback dispatcher.

    The router is shared between sessions; it holds no per-session state.
    """

    def __init__(
        self,
        methods: Iterable[ExecutionMethod],
        classifier: Optional[ErrorClassifier] = None,
        policy: Optional[RetryPolicyEngine] = None,
        availability: Optional[AvailabilityCache] = None,
        permission_requester: Optional[PermissionRequester] = None,
        sleep: Optional[Callable[[float], None]] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        methods = list(methods)
        check_unique_ids(methods)

        self._methods: List[ExecutionMethod] = sort_methods(methods)
        self.classifier = classifier or ErrorClassifier()
        self.policy = policy or RetryPolicyEngine()
        self.availability = availability or AvailabilityCache()
        self.error_handler = error_handler or ErrorHandler()
        self._permission_requester = permission_requester
        self._sleep = sleep
        self._lock = threading.Lock()
        self._logger = logging.getLogger("droidpilot.router")

        self._logger.info(
            f"Router initialized with methods: {[m.id for m in self._methods]}"
        )

    @property
    def methods(self) -> List[ExecutionMethod]:
        return list(self._methods)

    def register(self, method: ExecutionMethod) -> None:
        """Add a method; ids must stay unique."""
        with self._lock:
            methods = self._methods + [method]
            check_unique_ids(methods)
            self._methods = sort_methods(methods)
        self._logger.info(f"Registered method: {method.id} (priority {method.priority})")

    def candidates_for(self, kind: str) -> List[ExecutionMethod]:
        """Methods supporting `kind`, in dispatch order."""
        return [m for m in self._methods if m.supports(kind)]

    def describe_methods(self) -> List[MethodDescriptor]:
        """Descriptors in dispatch order, with cached availability."""
        return [m.describe(self.availability.is_available(m)) for m in self._methods]

    def execute(
        self,
        action: Action,
        cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """
        Route one action through the fallback chain.

        Returns exactly one ExecutionResult. Never raises for method failures.

        Raises:
            SessionCancelledError: If `cancel_token` is cancelled between attempts
                or during a wait inside a method
        """
        with CancellationScope(cancel_token):
            return self._dispatch(action, cancel_token)

    def _dispatch(self, action: Action, cancel_token: Optional[CancellationToken]) -> ExecutionResult:
        start = time.monotonic()

        normalized, error = normalize_action(action)
        if normalized is None:
            self._logger.warning(f"Rejected {action.kind}: {error}")
            return ExecutionResult(
                success=False,
                error=create_validation_error(error, field_name=action.kind),
                duration_ms=self._elapsed_ms(start),
            )
        action = normalized

        candidates = self.candidates_for(action.kind)
        attempts: List[AttemptRecord] = []
        last_error: Optional[ErrorInfo] = None
        retry_count = 0

        for method in candidates:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            if not self.availability.is_available(method):
                self._logger.debug(f"Skipping unavailable method {method.id}")
                continue

            current = action
            attempt = 0

            while True:
                attempt += 1
                raw, error_info, elapsed = self._invoke(method, current)

                if raw is not None and raw.success:
                    attempts.append(AttemptRecord(
                        method_id=method.id,
                        attempt=attempt,
                        success=True,
                        duration_ms=elapsed,
                    ))
                    self._logger.info(
                        f"{action.kind} succeeded via {method.id} "
                        f"(attempt {attempt}, {len(attempts)} total)"
                    )
                    return ExecutionResult(
                        success=True,
                        method_used=method.id,
                        output=raw.output,
                        duration_ms=self._elapsed_ms(start),
                        retry_count=retry_count,
                        attempts=attempts,
                    )

                last_error = error_info
                attempts.append(AttemptRecord(
                    method_id=method.id,
                    attempt=attempt,
                    success=False,
                    category=error_info.category,
                    message=error_info.message,
                    duration_ms=elapsed,
                ))

                recovery = self.policy.policy_for(error_info.category)
                self._logger.warning(
                    f"{action.kind} failed on {method.id} attempt {attempt}: "
                    f"{error_info.category.name}: {error_info.message}"
                )

                if not self.policy.should_retry(error_info.category, attempt):
                    break

                if not self._prepare_retry(method, current, recovery, cancel_token):
                    break

                current = perturb(current, recovery, attempt)
                retry_count += 1

            self._logger.info(f"Falling back from {method.id}")

        if last_error is None:
            last_error = create_unsupported_error(action.kind)

        self.error_handler.handle(last_error)
        return ExecutionResult(
            success=False,
            error=last_error,
            duration_ms=self._elapsed_ms(start),
            retry_count=retry_count,
            attempts=attempts,
        )

    def _invoke(self, method: ExecutionMethod, action: Action):
        """Run one attempt, returning (raw, error_info, elapsed_ms)."""
        started = time.monotonic()
        try:
            raw = method.execute(action)
        except SessionCancelledError:
            raise
        except Exception as e:
            category = self.classifier.classify_exception(e)
            message = str(e) or type(e).__name__
            self._logger.error(f"{method.id} raised {type(e).__name__}: {message}")
            return None, self._error_info(category, message, method), self._elapsed_ms(started)

        elapsed = self._elapsed_ms(started)
        if raw.success:
            return raw, None, elapsed

        category = self._classify_raw(raw)
        message = raw.error or (f"exit code {raw.code}" if raw.code is not None else "Command failed")
        return raw, self._error_info(category, message, method), elapsed

    def _classify_raw(self, raw: RawResult) -> ErrorCategory:
        """Error text first; fall back to the exit code."""
        if raw.error:
            category = self.classifier.classify(raw.error)
            if category != ErrorCategory.COMMAND_FAILED or raw.code is None:
                return category
        if raw.code is not None:
            return self.classifier.classify(raw.code)
        return ErrorCategory.COMMAND_FAILED

    def _error_info(self, category: ErrorCategory, message: str, method: ExecutionMethod) -> ErrorInfo:
        return ErrorInfo(
            category=category,
            message=message,
            retryable=self.policy.policy_for(category).retryable,
            details={"method": method.id},
        )

    def _prepare_retry(
        self,
        method: ExecutionMethod,
        action: Action,
        recovery: RecoveryAction,
        cancel_token: Optional[CancellationToken]
    ) -> bool:
        """Side effects before a retry. False means give up on this method."""
        if recovery.refresh_availability:
            if not self.availability.refresh(method):
                self._logger.warning(f"{method.id} still unavailable after refresh")
                return False

        if recovery.strategy == RecoveryStrategy.REQUEST_PERMISSION and self._permission_requester:
            try:
                self._permission_requester(method, action)
            except Exception as e:
                self._logger.warning(f"Permission requester error: {e}")

        self._wait(recovery.backoff_ms, cancel_token)
        return True

    def _wait(self, backoff_ms: int, cancel_token: Optional[CancellationToken]) -> None:
        seconds = max(0, backoff_ms) / 1000.0
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if self._sleep is not None:
            self._sleep(seconds)
        else:
            sleep_ms(backoff_ms, cancel_token)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.monotonic() - start) * 1000
