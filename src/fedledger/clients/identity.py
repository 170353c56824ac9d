"""Client identities and identity providers.

An identity is an address plus an opaque signing capability. The signer
is handed to the ledger adapter untouched and never shows up in reprs
or log lines.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Optional
import logging
import re

import pandas as pd


ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')


def is_address(value: Any) -> bool:
    """Check for a 20-byte hex account address"""
    return isinstance(value, str) and ADDRESS_PATTERN.match(value) is not None


@dataclass(frozen=True)
class ClientIdentity:
    """A client able to authorize ledger writes.

    Attributes:
        address: Account address on the ledger
        signer: Opaque capability used by the ledger adapter to sign
        index: Position of the client in its source account list; this is
            the client_index handed to value sources. None means "its
            position in the client list it is run with"
    """
    address: str
    signer: Any = field(default=None, repr=False, compare=False)
    index: Optional[int] = None

    def with_index(self, index: int) -> 'ClientIdentity':
        """Copy of this identity with an explicit index"""
        return replace(self, index=index)


class IdentityProvider(ABC):
    """Supplies a finite, ordered sequence of client identities"""

    @abstractmethod
    def load(self) -> List[ClientIdentity]:
        """Load all identities.

        Returns:
            Identities in source order
        """
        pass


class StaticIdentityProvider(IdentityProvider):
    """Identities built from in-memory (address, signer) pairs"""

    def __init__(self, accounts: Iterable[Any]):
        """Initialize provider.

        Args:
            accounts: ClientIdentity objects, or (address, signer) tuples,
                or bare addresses
        """
        self._identities: List[ClientIdentity] = []
        for index, account in enumerate(accounts):
            if isinstance(account, ClientIdentity):
                if account.index is None:
                    account = account.with_index(index)
                self._identities.append(account)
            elif isinstance(account, tuple):
                address, signer = account
                self._identities.append(ClientIdentity(address, signer, index))
            else:
                self._identities.append(ClientIdentity(str(account), None, index))

    def load(self) -> List[ClientIdentity]:
        return list(self._identities)


class CsvIdentityProvider(IdentityProvider):
    """Identities from an accounts CSV with 'Address' and 'Private Key' columns.

    Rows with a missing key or a malformed address are dropped with a
    warning. Surviving rows keep their original row index so that value
    lookups stay aligned with the weights file.
    """

    def __init__(
        self,
        path: str,
        address_column: str = 'Address',
        key_column: str = 'Private Key',
        limit: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.path = path
        self.address_column = address_column
        self.key_column = key_column
        self.limit = limit
        self.logger = logger or logging.getLogger("fedledger.identity")

    def load(self) -> List[ClientIdentity]:
        df = pd.read_csv(self.path, dtype=str)
        for column in (self.address_column, self.key_column):
            if column not in df.columns:
                raise KeyError(f"Accounts file {self.path} has no '{column}' column")

        if self.limit is not None:
            df = df.head(self.limit)

        identities = []
        for index, row in df.iterrows():
            address = row[self.address_column]
            key = row[self.key_column]
            if pd.isna(key) or not str(key).strip() or not is_address(address):
                self.logger.warning(f"Invalid account data at index {index}, skipping")
                continue
            identities.append(ClientIdentity(address=address, signer=str(key).strip(), index=int(index)))

        self.logger.info(f"Loaded {len(identities)} accounts from {self.path}")
        return identities
