"""Exception taxonomy for round submission runs.

Only ConfigurationError is fatal to a run. Ledger failures are not
exceptions at all: adapters classify them into TransientFailure or
FatalFailure outcome values (see fedledger.ledger.outcome).
"""


class FedLedgerError(Exception):
    """Base class for all fedledger errors"""


class ConfigurationError(FedLedgerError):
    """Invalid run configuration; raised before any round starts"""


class ReconciliationError(FedLedgerError):
    """The post-round read of the ledger failed.

    Degrades the affected round's RoundResult, never aborts the run.
    """

    def __init__(self, round_num: int, reason: str):
        super().__init__(f"Reconciliation read failed for round {round_num}: {reason}")
        self.round_num = round_num
        self.reason = reason


class CancellationRequested(FedLedgerError):
    """A run was stopped early by its cancellation signal.

    Raised only when the caller asks for it; by default a cancelled run
    simply returns the RoundResults it completed.
    """

    def __init__(self, last_round: int, results=None):
        super().__init__(f"Run cancelled after round {last_round}")
        self.last_round = last_round
        self.results = list(results or [])
