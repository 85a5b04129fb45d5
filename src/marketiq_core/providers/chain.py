"""Ordered fallback across interchangeable providers of one capability."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from marketiq_core.circuit_breaker import CircuitBreaker
from marketiq_core.errors import FailureKind, classify_exception
from marketiq_core.logging import AnyLogger, get_logger, log_info, log_warning

T = TypeVar("T")

REASON_UNACCEPTABLE = "unacceptable_result"
REASON_ALL_UNAVAILABLE = "all_providers_unavailable"

OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class ProviderCandidate(Generic[T]):
    """One provider invocation for a capability.

    Attributes:
        name: Provider name reported back on success.
        invoke: Zero-argument coroutine factory performing the call.
        breaker_name: Circuit breaker key, defaults to ``name``.
        timeout: Deadline for this candidate, overriding the chain's
            per-candidate timeout. Set it when ``invoke`` makes several
            bounded attempts of its own.
    """

    name: str
    invoke: Callable[[], Awaitable[T]]
    breaker_name: str | None = None
    timeout: float | None = None

    @property
    def breaker_key(self) -> str:
        return self.breaker_name or self.name


@dataclass(frozen=True)
class AttemptRecord:
    """What happened to one candidate during a chain run."""

    provider: str
    outcome: str
    kind: FailureKind | None = None
    reason: str = ""


@dataclass(frozen=True)
class ChainSuccess(Generic[T]):
    """First acceptable result and the provider that produced it."""

    result: T
    provider_name: str
    attempts: tuple[AttemptRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ChainFailure:
    """Every candidate was skipped or failed."""

    capability: str
    reason: str
    attempts: tuple[AttemptRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return False


ChainOutcome = ChainSuccess[T] | ChainFailure


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "timeout"
    message = str(exc)
    return message or exc.__class__.__name__


class ProviderChain:
    """Try candidates in order until one returns an acceptable result.

    Candidates whose breaker is open are skipped without being invoked. Every
    invoked candidate reports its outcome to its breaker. Nothing raises out of
    ``fetch_first_success`` apart from task cancellation.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        logger: AnyLogger | None = None,
    ) -> None:
        self._breaker = breaker
        self._logger = get_logger(__name__) if logger is None else logger

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _accepts(
        self,
        is_acceptable: Callable[[T], bool],
        result: T,
        *,
        capability: str,
        provider: str,
    ) -> bool:
        # A predicate that cannot judge the result rejects it.
        try:
            return bool(is_acceptable(result))
        except Exception as exc:
            log_warning(
                self._logger,
                "provider_chain.acceptance_check_failed",
                capability=capability,
                provider=provider,
                error=_describe(exc),
            )
            return False

    async def fetch_first_success(
        self,
        capability: str,
        candidates: Sequence[ProviderCandidate[T]],
        is_acceptable: Callable[[T], bool] | None = None,
        timeout: float = 8.0,
    ) -> ChainSuccess[T] | ChainFailure:
        """Return the first acceptable result or an aggregate failure.

        Args:
            capability: Capability label used for logging and the failure value.
            candidates: Statically ordered provider invocations.
            is_acceptable: Success predicate; results failing it, or making
                it raise, count as a provider failure.
            timeout: Per-candidate deadline in seconds, unless the candidate
                carries its own.
        """
        attempts: list[AttemptRecord] = []
        last_reason = ""

        for candidate in candidates:
            if not await self._breaker.allows(candidate.breaker_key):
                attempts.append(AttemptRecord(candidate.name, OUTCOME_SKIPPED))
                continue

            deadline = timeout if candidate.timeout is None else candidate.timeout
            try:
                result = await asyncio.wait_for(candidate.invoke(), timeout=deadline)
            except Exception as exc:
                kind = classify_exception(exc)
                last_reason = _describe(exc)
                attempts.append(
                    AttemptRecord(candidate.name, OUTCOME_FAILED, kind, last_reason)
                )
                await self._breaker.report_outcome(candidate.breaker_key, False)
                log_warning(
                    self._logger,
                    "provider_chain.candidate_failed",
                    capability=capability,
                    provider=candidate.name,
                    kind=str(kind),
                    reason=last_reason,
                )
                continue

            if is_acceptable is not None and not self._accepts(
                is_acceptable, result, capability=capability, provider=candidate.name
            ):
                last_reason = REASON_UNACCEPTABLE
                attempts.append(
                    AttemptRecord(
                        candidate.name,
                        OUTCOME_FAILED,
                        FailureKind.VALIDATION,
                        last_reason,
                    )
                )
                await self._breaker.report_outcome(candidate.breaker_key, False)
                log_warning(
                    self._logger,
                    "provider_chain.candidate_unacceptable",
                    capability=capability,
                    provider=candidate.name,
                )
                continue

            await self._breaker.report_outcome(candidate.breaker_key, True)
            attempts.append(AttemptRecord(candidate.name, OUTCOME_SUCCEEDED))
            log_info(
                self._logger,
                "provider_chain.succeeded",
                capability=capability,
                provider=candidate.name,
                attempts=len(attempts),
            )
            return ChainSuccess(
                result=result,
                provider_name=candidate.name,
                attempts=tuple(attempts),
            )

        reason = last_reason or REASON_ALL_UNAVAILABLE
        log_warning(
            self._logger,
            "provider_chain.exhausted",
            capability=capability,
            reason=reason,
            candidates=len(candidates),
        )
        return ChainFailure(capability=capability, reason=reason, attempts=tuple(attempts))
