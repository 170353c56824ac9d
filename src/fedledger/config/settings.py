"""Validated orchestrator settings."""

from dataclasses import dataclass, fields, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional
import math

from fedledger.errors import ConfigurationError


class PrecheckPolicy(Enum):
    """What to do before submitting for a client that may already be recorded"""
    NONE = "none"  # always submit
    SKIP_IF_RECORDED = "skip_if_recorded"


@dataclass(frozen=True)
class OrchestratorConfig:
    """Configuration for a submission run.

    Defaults mirror the original experiment scripts: five tries per
    submission starting at a 2s delay that doubles, and a 3s pause
    between rounds.
    """
    # Retry settings
    max_retries: int = 5
    initial_backoff: float = 2.0
    backoff_multiplier: float = 2.0
    max_backoff: Optional[float] = None

    # Timing
    inter_round_delay: float = 3.0
    per_attempt_timeout: float = 120.0
    read_timeout: Optional[float] = None

    # Ledger access
    ledger_concurrency: Optional[int] = None
    precheck: PrecheckPolicy = PrecheckPolicy.NONE

    def __post_init__(self):
        self._check_number('max_retries', self.max_retries, minimum=1, integer=True)
        self._check_number('initial_backoff', self.initial_backoff, minimum=0)
        self._check_number('backoff_multiplier', self.backoff_multiplier, minimum=1)
        self._check_number('inter_round_delay', self.inter_round_delay, minimum=0)
        self._check_number('per_attempt_timeout', self.per_attempt_timeout, minimum=0, strict=True)
        if self.max_backoff is not None:
            self._check_number('max_backoff', self.max_backoff, minimum=0)
        if self.read_timeout is not None:
            self._check_number('read_timeout', self.read_timeout, minimum=0, strict=True)
        if self.ledger_concurrency is not None:
            self._check_number('ledger_concurrency', self.ledger_concurrency, minimum=1, integer=True)

        if not isinstance(self.precheck, PrecheckPolicy):
            try:
                object.__setattr__(self, 'precheck', PrecheckPolicy(self.precheck))
            except ValueError as e:
                choices = ", ".join(p.value for p in PrecheckPolicy)
                raise ConfigurationError(
                    f"Unknown precheck policy {self.precheck!r} (choose from {choices})"
                ) from e

    @staticmethod
    def _check_number(
        name: str,
        value: Any,
        minimum: float,
        integer: bool = False,
        strict: bool = False
    ) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigurationError(f"{name} must be a number, got {value!r}")
        if integer and not isinstance(value, int):
            raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        if math.isnan(value) or math.isinf(value):
            raise ConfigurationError(f"{name} must be finite, got {value!r}")
        if value < minimum or (strict and value == minimum):
            bound = ">" if strict else ">="
            raise ConfigurationError(f"{name} must be {bound} {minimum}, got {value!r}")

    @property
    def effective_read_timeout(self) -> float:
        return self.read_timeout if self.read_timeout is not None else self.per_attempt_timeout

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'OrchestratorConfig':
        """Build a config from a plain mapping.

        Raises:
            ConfigurationError: Unknown keys or invalid values
        """
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Orchestrator config must be a mapping, got {type(data).__name__}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown orchestrator option(s): {', '.join(unknown)}")

        return cls(**dict(data))

    @classmethod
    def from_manager(cls, manager, section: str = 'orchestrator') -> 'OrchestratorConfig':
        """Build a config from a ConfigManager section"""
        return cls.from_dict(manager.get(section, {}))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['precheck'] = self.precheck.value
        return data
