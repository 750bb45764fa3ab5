"""Token balance debits and usage audit rows for paid generations.

Flow:
1. authorize_usage: paid tier + positive balance, checked before any model call
2. execute the generation
3. charge_usage_for_result: debit the balance and append one ledger row as a
   single all-or-nothing unit of work

The debit is clamped at zero; an overdraw is flagged in the row, never raised.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from observability import setup_structured_logger
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from plan_errors import AuthorizationError, LedgerWriteFailure, PlanPipelineError
from pricing import PricingMap, calculate_cost_cents
from schemas import ModelResult, UsageCharge, UsageLedgerEntry, UsageUser

logger = setup_structured_logger("pipeline.ledger")

NOT_PRO = "NOT_PRO"
INSUFFICIENT_TOKENS = "INSUFFICIENT_TOKENS"


# ============================================================================
# Storage
# ============================================================================


class LedgerUnitOfWork(ABC):
    """Operations available inside one ledger transaction."""

    @abstractmethod
    def get_balance(self, user_id: str) -> Optional[int]:
        """Current balance, or None when the store does not know the user."""

    @abstractmethod
    def set_balance(self, user_id: str, balance: int) -> None:
        pass

    @abstractmethod
    def find_entry(
        self, user_id: str, feature: str, request_id: str
    ) -> Optional[UsageLedgerEntry]:
        pass

    @abstractmethod
    def append_entry(self, entry: UsageLedgerEntry) -> None:
        pass


class LedgerStore(ABC):
    """Persistence for balances and usage rows.

    transaction() must commit every write of the block or none of them, and
    serialize concurrent read-modify-write cycles on the same user.
    """

    @abstractmethod
    def transaction(self):
        """Context manager yielding a LedgerUnitOfWork."""


class _InMemoryUnitOfWork(LedgerUnitOfWork):
    def __init__(self, store: "InMemoryLedgerStore"):
        self._store = store

    def get_balance(self, user_id: str) -> Optional[int]:
        return self._store.balances.get(user_id)

    def set_balance(self, user_id: str, balance: int) -> None:
        self._store.balances[user_id] = balance

    def find_entry(
        self, user_id: str, feature: str, request_id: str
    ) -> Optional[UsageLedgerEntry]:
        for entry in self._store.entries:
            if (entry.user_id, entry.feature, entry.request_id) == (user_id, feature, request_id):
                return entry
        return None

    def append_entry(self, entry: UsageLedgerEntry) -> None:
        self._store.entries.append(entry)


class InMemoryLedgerStore(LedgerStore):
    """Process-local store; rolls back to a snapshot when the block raises."""

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.entries: List[UsageLedgerEntry] = []
        self._lock = threading.RLock()

    def unit_of_work(self) -> LedgerUnitOfWork:
        return _InMemoryUnitOfWork(self)

    @contextmanager
    def transaction(self) -> Iterator[LedgerUnitOfWork]:
        with self._lock:
            balances_snapshot = dict(self.balances)
            entries_snapshot = len(self.entries)
            try:
                yield self.unit_of_work()
            except BaseException:
                self.balances = balances_snapshot
                del self.entries[entries_snapshot:]
                raise


# ============================================================================
# Authorization & Charging
# ============================================================================


def _require_paid_tier(user: UsageUser, config: PipelineConfig) -> None:
    if user.plan_tier != config.paid_tier:
        raise AuthorizationError(NOT_PRO, 403, debug={"user_id": user.id, "plan_tier": user.plan_tier})


def _require_positive_balance(user_id: str, balance: int) -> None:
    if balance <= 0:
        raise AuthorizationError(
            INSUFFICIENT_TOKENS, 402, debug={"user_id": user_id, "token_balance": balance}
        )


def authorize_usage(user: UsageUser, config: PipelineConfig = DEFAULT_CONFIG) -> None:
    """Pre-model guard: raise AuthorizationError unless the user may start a paid generation.

    Checks the caller's snapshot of the user. The debit itself re-checks the
    balance held by the ledger store (see charge_usage_for_result).
    """
    _require_paid_tier(user, config)
    _require_positive_balance(user.id, user.token_balance)


def charge_usage_for_result(
    store: LedgerStore,
    user: UsageUser,
    feature: str,
    result: ModelResult,
    pricing: Optional[PricingMap] = None,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> UsageCharge:
    """Debit the tokens a generation consumed and record it.

    The balance that is checked and debited is the one read inside the store
    transaction; `user.token_balance` only seeds users the store has no row for.

    Args:
        store: Ledger persistence
        user: Billing view of the user
        feature: Feature key (e.g. "nutrition_plan", "training_plan")
        result: Model output with optional usage counters
        pricing: Per-model pricing; defaults to config.pricing
        config: Pipeline settings (paid tier, currency, model name)

    Raises:
        AuthorizationError: not on the paid tier, or the stored balance is not positive
        LedgerWriteFailure: when the store failed; nothing was written
    """
    _require_paid_tier(user, config)
    pricing = config.pricing if pricing is None else pricing

    usage = result.usage
    usage_missing = usage is None
    prompt_tokens = max(0, (usage.prompt_tokens or 0)) if usage else 0
    completion_tokens = max(0, (usage.completion_tokens or 0)) if usage else 0
    if usage is not None and usage.total_tokens is not None:
        total_tokens = usage.total_tokens
    else:
        total_tokens = prompt_tokens + completion_tokens
    spend = max(0, total_tokens)
    model = result.model or config.model_name
    cost_cents, pricing_found = calculate_cost_cents(pricing, model, prompt_tokens, completion_tokens)

    try:
        with store.transaction() as uow:
            current = uow.get_balance(user.id)
            balance_before = user.token_balance if current is None else current

            if result.request_id:
                existing = uow.find_entry(user.id, feature, result.request_id)
                if existing is not None:
                    logger.info(
                        "Usage charge replayed",
                        extra={
                            "extra_fields": {
                                "user_id": user.id,
                                "feature": feature,
                                "request_id": result.request_id,
                            }
                        },
                    )
                    return UsageCharge(
                        payload=result.payload,
                        tokens_spent=0,
                        cost_cents=0,
                        balance_before=balance_before,
                        balance_after=balance_before,
                        idempotent_replay=True,
                        entry=existing,
                    )

            _require_positive_balance(user.id, balance_before)

            overdraw = spend > balance_before
            balance_after = max(0, balance_before - spend)
            entry = UsageLedgerEntry(
                user_id=user.id,
                feature=feature,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=spend,
                cost_cents=cost_cents,
                currency=config.currency,
                request_id=result.request_id,
                meta={
                    "usageMissing": usage_missing,
                    "pricingMissing": not pricing_found,
                    "overdraw": overdraw,
                },
            )
            uow.set_balance(user.id, balance_after)
            uow.append_entry(entry)
    except PlanPipelineError:
        raise
    except Exception as e:
        logger.error(
            "Usage ledger write failed",
            extra={
                "extra_fields": {
                    "user_id": user.id,
                    "feature": feature,
                    "error_type": type(e).__name__,
                }
            },
            exc_info=True,
        )
        raise LedgerWriteFailure(
            "Usage ledger write failed", debug={"user_id": user.id, "feature": feature}
        ) from e

    flagged = {name: value for name, value in entry.meta.items() if value}
    log = logger.warning if flagged else logger.info
    log(
        "Usage charged",
        extra={
            "extra_fields": {
                "user_id": user.id,
                "feature": feature,
                "model": model,
                "tokens_spent": spend,
                "cost_cents": cost_cents,
                "balance_before": balance_before,
                "balance_after": balance_after,
                "flags": sorted(flagged),
            }
        },
    )

    return UsageCharge(
        payload=result.payload,
        tokens_spent=spend,
        cost_cents=cost_cents,
        balance_before=balance_before,
        balance_after=balance_after,
        overdrawn=overdraw,
        entry=entry,
    )


def charge_ai_usage(
    store: LedgerStore,
    user: UsageUser,
    feature: str,
    execute: Callable[[], ModelResult],
    pricing: Optional[PricingMap] = None,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> UsageCharge:
    """Authorize, run the generation, then charge it.

    Errors raised by `execute` propagate and nothing is written.
    """
    authorize_usage(user, config)
    result = execute()
    return charge_usage_for_result(store, user, feature, result, pricing, config)
