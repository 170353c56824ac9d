"""Client-side collaborators: identities and the values they submit."""

from fedledger.clients.identity import (
    ClientIdentity,
    IdentityProvider,
    StaticIdentityProvider,
    CsvIdentityProvider,
    is_address
)
from fedledger.clients.values import (
    ValueSource,
    StaticValueSource,
    CsvValueSource,
    coerce_value
)

__all__ = [
    'ClientIdentity',
    'IdentityProvider',
    'StaticIdentityProvider',
    'CsvIdentityProvider',
    'is_address',
    'ValueSource',
    'StaticValueSource',
    'CsvValueSource',
    'coerce_value'
]
