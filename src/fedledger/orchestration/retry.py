"""Retry policy for ledger submissions.

Exponential backoff: the delay after attempt k (1-indexed) is
``initial_backoff * backoff_multiplier ** (k - 1)``, optionally capped.
Only transient failures are retried, and never past the attempt budget.
"""

from dataclasses import dataclass
from typing import List, Optional

from fedledger.ledger.outcome import TransactionOutcome, TransientFailure


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether and when to re-attempt a failed submission"""
    initial_backoff: float = 2.0
    backoff_multiplier: float = 2.0
    max_backoff: Optional[float] = None

    def __post_init__(self):
        if self.initial_backoff < 0:
            raise ValueError(f"initial_backoff must be >= 0, got {self.initial_backoff}")
        if self.backoff_multiplier < 1:
            raise ValueError(f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}")

    @classmethod
    def from_config(cls, config) -> 'RetryPolicy':
        """Build a policy from an OrchestratorConfig"""
        return cls(
            initial_backoff=config.initial_backoff,
            backoff_multiplier=config.backoff_multiplier,
            max_backoff=config.max_backoff
        )

    def next_delay(self, attempt_number: int) -> float:
        """Delay to wait after a failed attempt before the next one.

        Args:
            attempt_number: 1-based number of the attempt that just failed

        Returns:
            Delay in seconds
        """
        if attempt_number < 1:
            raise ValueError(f"attempt_number is 1-based, got {attempt_number}")
        delay = self.initial_backoff * self.backoff_multiplier ** (attempt_number - 1)
        if self.max_backoff is not None:
            delay = min(delay, self.max_backoff)
        return delay

    def should_retry(
        self,
        outcome: TransactionOutcome,
        attempt_number: int,
        max_retries: int
    ) -> bool:
        """True iff the outcome is transient and budget remains"""
        return isinstance(outcome, TransientFailure) and attempt_number < max_retries

    def schedule(self, max_retries: int) -> List[float]:
        """Delays between consecutive attempts when every attempt fails transiently"""
        return [self.next_delay(k) for k in range(1, max_retries)]
