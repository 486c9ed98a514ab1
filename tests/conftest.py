"""
Pytest configuration and shared fixtures for the test suite.
"""

from typing import Dict, List, Optional

import pytest
import uplc.ast
from pycardano import (
    Address,
    Asset,
    AssetName,
    MultiAsset,
    ScriptHash,
    TransactionId,
    TransactionInput,
    TransactionOutput,
    UTxO,
    Value,
)
from uplc.tools import flatten

from minter.config import MinterConfig, NetworkType, PlutusVersion
from minter.node.interface import (
    AssetTransaction,
    LedgerGateway,
    NetworkError,
    ProtocolParameters,
    RejectionKind,
    SubmissionRejected,
)
from minter.tx.policy import ScriptTemplate

TEST_SEED = " ".join(["abandon"] * 11 + ["about"])

TEST_ADDRESS = (
    "addr_test1qz2fxv2umyhttkxyxp8x0dlpdt3k6cwng5pxj3jhsydzer3jcu5d8ps7zex2k2xt3uqxgjqnnj83ws8lhrn648jjxtwq2ytjqp"
)

TEST_POLICY_ID = "ab" * 28


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> MinterConfig:
    """Create a test configuration."""
    return MinterConfig(
        network=NetworkType.PREPROD,
        blockfrost_base_url="https://blockfrost.test/api/v0",
        plutus_version=PlutusVersion.V3,
        max_attempts=3,
        retry_delay_seconds=0,
        indexer_lag_wait_ms=20_000,
        confirmation_poll_seconds=0.01,
        log_level="DEBUG",
    )


@pytest.fixture
def protocol_params() -> ProtocolParameters:
    """Preprod-like protocol parameters."""
    return ProtocolParameters(
        min_fee_a=44,
        min_fee_b=155381,
        max_tx_size=16384,
        coins_per_utxo_byte=4310,
        collateral_percentage=150,
        price_mem=0.0577,
        price_step=0.0000721,
        cost_models={"PlutusV3": list(range(300))},
    )


# ============================================================================
# Test Data Generators
# ============================================================================

def generate_test_tx_hash(index: int = 0) -> str:
    """Generate a deterministic test transaction hash."""
    base = "abcd1234" * 8  # 64 chars
    return base[:60] + f"{index:04d}"


def make_utxo(
    index: int,
    lovelace: int,
    assets: Optional[Dict[str, int]] = None,
    output_index: int = 0,
    address: str = TEST_ADDRESS,
) -> UTxO:
    """Create a UTXO holding lovelace and optional assets keyed by unit."""
    multi_asset = MultiAsset()
    for unit, quantity in (assets or {}).items():
        policy = ScriptHash.from_primitive(unit[:56])
        multi_asset.setdefault(policy, Asset())[AssetName(bytes.fromhex(unit[56:]))] = quantity

    value = Value(lovelace, multi_asset) if multi_asset else Value(lovelace)
    return UTxO(
        TransactionInput(TransactionId.from_primitive(generate_test_tx_hash(index)), output_index),
        TransactionOutput(Address.from_primitive(address), value),
    )


def template_cbor_hex() -> str:
    """A tiny program standing in for the compiled minting policy, as a compiler emits it."""
    program = uplc.ast.Program((1, 0, 0), uplc.ast.BuiltinUnit())
    return flatten(program).hex()


def make_template(version: PlutusVersion = PlutusVersion.V3) -> ScriptTemplate:
    return ScriptTemplate.from_cbor_hex(template_cbor_hex(), version)


@pytest.fixture
def sample_utxos() -> List[UTxO]:
    """Pure lovelace UTXOs of 5, 10, 15, 20 and 25 ADA."""
    return [make_utxo(i, (i + 1) * 5_000_000) for i in range(5)]


@pytest.fixture
def batch_unit() -> str:
    """Unit of an already minted batch token named Coffee#1."""
    return TEST_POLICY_ID + b"Coffee#1".hex()


# ============================================================================
# Mock Ledger Gateway
# ============================================================================

class MockLedgerGateway(LedgerGateway):
    """
    Mock ledger gateway for testing.

    submit_effects is consumed one entry per submission: an exception
    instance is raised, anything else means acceptance.
    """

    def __init__(self, protocol_params: ProtocolParameters, utxos: Optional[List[UTxO]] = None):
        self.protocol_params = protocol_params
        self.utxos: List[UTxO] = list(utxos or [])
        self.submit_effects: list = []
        self.submit_calls = 0
        self.submitted = []
        self.confirmed: set = set()
        self.history: List[AssetTransaction] = []
        self.project_ids: List[str] = []
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def list_spendable_inputs(self, address: str) -> List[UTxO]:
        return list(self.utxos)

    async def get_protocol_parameters(self) -> ProtocolParameters:
        return self.protocol_params

    async def submit(self, tx) -> str:
        self.submit_calls += 1
        if self.submit_effects:
            effect = self.submit_effects.pop(0)
            if isinstance(effect, BaseException):
                raise effect
        tx_id = tx.transaction_body.hash().hex()
        self.submitted.append(tx)
        self.confirmed.add(tx_id)
        return tx_id

    async def transaction_exists(self, tx_id: str) -> bool:
        return tx_id in self.confirmed

    async def await_confirmation(self, tx_id: str, timeout_seconds: int = 180) -> bool:
        return tx_id in self.confirmed

    async def get_asset_history(self, unit: str) -> List[AssetTransaction]:
        return list(self.history)

    def factory(self, project_id: str) -> "MockLedgerGateway":
        """Gateway factory handing out this mock."""
        self.project_ids.append(project_id)
        return self


@pytest.fixture
def mock_gateway(protocol_params) -> MockLedgerGateway:
    """Create a mock gateway without inputs."""
    return MockLedgerGateway(protocol_params)


@pytest.fixture
def funded_gateway(protocol_params, sample_utxos) -> MockLedgerGateway:
    """Create a mock gateway with sample inputs."""
    return MockLedgerGateway(protocol_params, sample_utxos)


class LateAcceptGateway(MockLedgerGateway):
    """
    Gateway whose first submission reaches the ledger but times out on the
    way back. Resubmitting then finds the inputs already spent.
    """

    async def submit(self, tx) -> str:
        self.submit_calls += 1
        tx_id = tx.transaction_body.hash().hex()
        if tx_id not in self.confirmed:
            self.submitted.append(tx)
            self.confirmed.add(tx_id)
            raise NetworkError("Blockfrost request timed out: /tx/submit")
        raise SubmissionRejected("BadInputsUTxO", RejectionKind.CONFLICT)
