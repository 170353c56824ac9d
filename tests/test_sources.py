"""Tests for client identity providers and value sources."""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from fedledger.clients import (
    ClientIdentity,
    CsvIdentityProvider,
    CsvValueSource,
    StaticIdentityProvider,
    StaticValueSource,
    coerce_value,
    is_address,
)


ADDR_0 = "0x" + "1" * 40
ADDR_1 = "0x" + "2" * 40
ADDR_2 = "0x" + "3" * 40


def write_accounts(path, rows):
    lines = ["Address,Private Key"] + [f"{address},{key}" for address, key in rows]
    path.write_text("\n".join(lines) + "\n")


class TestIdentity:
    """Tests for ClientIdentity and address checks."""

    def test_is_address(self):
        assert is_address(ADDR_0)
        assert is_address("0x" + "aBcDeF0123" * 4)
        assert not is_address("0x123")
        assert not is_address("1" * 42)
        assert not is_address(None)

    def test_signer_hidden_from_repr(self):
        """The signing key never appears in reprs."""
        identity = ClientIdentity(ADDR_0, signer="super-secret-key", index=3)
        assert "super-secret-key" not in repr(identity)
        assert ADDR_0 in repr(identity)

    def test_signer_not_part_of_equality(self):
        assert ClientIdentity(ADDR_0, "k1", 0) == ClientIdentity(ADDR_0, "k2", 0)


class TestStaticIdentityProvider:
    """Tests for StaticIdentityProvider."""

    def test_mixed_accounts(self):
        """Identities, tuples and bare addresses are all accepted."""
        provider = StaticIdentityProvider([
            ClientIdentity(ADDR_0, "k0", 0),
            (ADDR_1, "k1"),
            ADDR_2,
        ])
        identities = provider.load()

        assert [i.address for i in identities] == [ADDR_0, ADDR_1, ADDR_2]
        assert [i.index for i in identities] == [0, 1, 2]
        assert identities[1].signer == "k1"
        assert identities[2].signer is None

    def test_identities_without_index_take_position(self):
        """Identities built without an index get their list position."""
        provider = StaticIdentityProvider([
            ClientIdentity(ADDR_0, "k0"),
            ClientIdentity(ADDR_1, "k1", 7),
            ClientIdentity(ADDR_2, "k2"),
        ])
        identities = provider.load()

        assert [i.index for i in identities] == [0, 7, 2]
        assert identities[2].signer == "k2"


class TestCsvIdentityProvider:
    """Tests for CsvIdentityProvider."""

    def test_load(self, tmp_path):
        path = tmp_path / "accounts.csv"
        write_accounts(path, [(ADDR_0, "0xkey0"), (ADDR_1, "0xkey1")])

        identities = CsvIdentityProvider(str(path)).load()

        assert [i.address for i in identities] == [ADDR_0, ADDR_1]
        assert [i.signer for i in identities] == ["0xkey0", "0xkey1"]
        assert [i.index for i in identities] == [0, 1]

    def test_invalid_rows_keep_indices(self, tmp_path, caplog):
        """Bad rows are dropped with a warning; survivors keep their row index."""
        path = tmp_path / "accounts.csv"
        write_accounts(path, [(ADDR_0, "0xkey0"), ("bogus", "0xkey1"), (ADDR_2, "")])
        path.write_text(path.read_text() + f"{ADDR_1},0xkey3\n")

        with caplog.at_level("WARNING", logger="fedledger.identity"):
            identities = CsvIdentityProvider(str(path)).load()

        assert [(i.address, i.index) for i in identities] == [(ADDR_0, 0), (ADDR_1, 3)]
        assert "Invalid account data at index 1" in caplog.text
        assert "Invalid account data at index 2" in caplog.text

    def test_limit(self, tmp_path):
        path = tmp_path / "accounts.csv"
        write_accounts(path, [(ADDR_0, "a"), (ADDR_1, "b"), (ADDR_2, "c")])

        identities = CsvIdentityProvider(str(path), limit=2).load()
        assert len(identities) == 2

    def test_missing_column(self, tmp_path):
        path = tmp_path / "accounts.csv"
        path.write_text(f"Address\n{ADDR_0}\n")

        with pytest.raises(KeyError):
            CsvIdentityProvider(str(path)).load()


class TestCoerceValue:
    """Tests for coerce_value."""

    def test_numbers(self):
        assert coerce_value(3) == 3
        assert isinstance(coerce_value(np.int64(3)), int)
        assert coerce_value(2.5) == 2.5
        assert coerce_value("4.5") == 4.5

    def test_missing(self):
        for raw in (None, True, float('nan'), float('inf'), "n/a", [1]):
            assert coerce_value(raw) is None


class TestStaticValueSource:
    """Tests for StaticValueSource."""

    def test_per_client_mapping(self):
        source = StaticValueSource({0: 10, 1: 20})
        assert source.value_for(1, 0) == 10
        assert source.value_for(7, 1) == 20
        assert source.value_for(1, 2) is None

    def test_per_round_mapping(self):
        """(round, client) keys take precedence over per-client keys."""
        source = StaticValueSource({0: 10, (2, 0): 99})
        assert source.value_for(1, 0) == 10
        assert source.value_for(2, 0) == 99

    def test_callable(self):
        source = StaticValueSource(lambda round_num, index: round_num * 100 + index)
        assert source.value_for(3, 4) == 304

    def test_nan_is_missing(self):
        source = StaticValueSource({0: float('nan')})
        assert source.value_for(1, 0) is None


class TestCsvValueSource:
    """Tests for CsvValueSource."""

    def write_weights(self, path):
        path.write_text(
            "Client 0 NMSE,Client 1 NMSE\n"
            "0.0123,0.5\n"
            "0.0456,\n"
        )

    def test_scaled_lookup(self, tmp_path):
        """Row round-1 is scaled by 1000 and truncated."""
        path = tmp_path / "weights.csv"
        self.write_weights(path)
        source = CsvValueSource(str(path))

        assert source.value_for(1, 0) == 12
        assert source.value_for(1, 1) == 500
        assert source.value_for(2, 0) == 45

    def test_missing_values(self, tmp_path):
        """Empty cells, unknown clients and rounds past the file are None."""
        path = tmp_path / "weights.csv"
        self.write_weights(path)
        source = CsvValueSource(str(path))

        assert source.value_for(2, 1) is None
        assert source.value_for(1, 5) is None
        assert source.value_for(3, 0) is None

    def test_custom_column_and_scale(self, tmp_path):
        path = tmp_path / "weights.csv"
        path.write_text("w_0,w_1\n1.5,2.5\n")
        source = CsvValueSource(str(path), column_template="w_{index}", scale=1)

        assert source.value_for(1, 1) == 2

    def test_values_are_cached(self, tmp_path):
        """The file is read once; later edits do not change results."""
        path = tmp_path / "weights.csv"
        self.write_weights(path)
        source = CsvValueSource(str(path))
        first = source.value_for(1, 0)

        path.write_text("Client 0 NMSE\n9.9\n")
        assert source.value_for(1, 0) == first
