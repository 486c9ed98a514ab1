"""
Test suite for transaction construction.

Tests fee estimation, the mint transaction and the status transfer.
"""

import math

import pytest
from pycardano import (
    Address,
    AssetName,
    ExecutionUnits,
    RedeemerTag,
    ScriptHash,
    TransactionBody,
    TransactionOutput,
    TransactionWitnessSet,
    Value,
)

from minter.config import PlutusVersion
from minter.core.errors import AssetNotHeld, InsufficientFunds, MetadataTooLarge
from minter.tx.builder import TransactionBuilder, asset_quantity
from minter.tx.metadata import build_mint_metadata, build_status_metadata
from minter.tx.policy import PolicyBinder
from minter.tx.selector import UtxoSelector
from minter.wallet.context import WalletContext

from conftest import TEST_ADDRESS, TEST_POLICY_ID, TEST_SEED, make_template, make_utxo


@pytest.fixture
def builder(test_config) -> TransactionBuilder:
    return TransactionBuilder(UtxoSelector(config=test_config), test_config)


@pytest.fixture
def wallet() -> WalletContext:
    return WalletContext.from_seed(TEST_SEED)


def _quantity(output: TransactionOutput, unit: str) -> int:
    return asset_quantity(
        output.amount,
        ScriptHash.from_primitive(unit[:56]),
        AssetName(bytes.fromhex(unit[56:])),
    )


# ============================================================================
# Test Fee Estimation
# ============================================================================

class TestFees:
    """Tests for fee and minimum output calculation."""

    def _body(self):
        utxo = make_utxo(0, 10_000_000)
        return TransactionBody(
            inputs=[utxo.input],
            outputs=[TransactionOutput(utxo.output.address, Value(9_000_000))],
            fee=200_000,
        )

    def test_fee_covers_constant(self, builder, protocol_params):
        fee = builder.estimate_fee(self._body(), TransactionWitnessSet(), protocol_params)
        assert fee > protocol_params.min_fee_b

    def test_execution_units_add_to_fee(self, builder, protocol_params):
        body = self._body()
        plain = builder.estimate_fee(body, TransactionWitnessSet(), protocol_params)
        scripted = builder.estimate_fee(
            body, TransactionWitnessSet(), protocol_params,
            ex_units=ExecutionUnits(1_000_000, 400_000_000),
        )
        assert scripted > plain

    def test_margin_applied(self, test_config, protocol_params):
        body = self._body()
        test_config.fee_margin_percent = 0
        bare = TransactionBuilder(config=test_config).estimate_fee(body, TransactionWitnessSet(), protocol_params)
        test_config.fee_margin_percent = 10
        padded = TransactionBuilder(config=test_config).estimate_fee(body, TransactionWitnessSet(), protocol_params)
        assert padded == math.ceil(bare * 110 / 100)

    def test_min_output_grows_with_assets(self, protocol_params):
        address = Address.from_primitive(TEST_ADDRESS)
        plain = TransactionOutput(address, Value(2_000_000))
        with_token = make_utxo(0, 2_000_000, {TEST_POLICY_ID + b"Coffee#1".hex(): 1}).output

        assert (
            TransactionBuilder.min_output_lovelace(with_token, protocol_params)
            > TransactionBuilder.min_output_lovelace(plain, protocol_params)
        )


# ============================================================================
# Test Mint Transaction
# ============================================================================

class TestBuildMint:
    """Tests for the mint transaction."""

    def _build(self, builder, test_config, wallet, protocol_params, utxo, record=None, version=PlutusVersion.V3):
        binding = PolicyBinder(test_config).bind(utxo, b"Coffee#1", make_template(version))
        metadata = build_mint_metadata(binding.policy_id, b"Coffee#1", record or {"farmer": "Ana"})
        tx = builder.build_mint(
            utxo, binding, metadata, wallet.address, protocol_params,
            required_signer=wallet.payment_key_hash,
        )
        return tx, binding

    def test_mint_structure(self, builder, test_config, wallet, protocol_params):
        """Test minting Coffee#1 from a 10 ADA input."""
        utxo = make_utxo(0, 10_000_000)
        tx, binding = self._build(builder, test_config, wallet, protocol_params, utxo)
        body = tx.transaction_body

        assert list(body.inputs) == [utxo.input]
        assert list(body.collateral) == [utxo.input]
        assert list(body.required_signers) == [wallet.payment_key_hash]
        assert body.mint[binding.policy_hash][AssetName(b"Coffee#1")] == 1
        assert body.script_data_hash is not None
        assert body.auxiliary_data_hash == tx.auxiliary_data.hash()

        assert len(body.outputs) == 1
        output = body.outputs[0]
        assert output.address == wallet.address
        assert _quantity(output, binding.unit) == 1
        assert output.amount.coin + body.fee == 10_000_000

    def test_mint_redeemer(self, builder, test_config, wallet, protocol_params):
        tx, _ = self._build(builder, test_config, wallet, protocol_params, make_utxo(0, 10_000_000))
        witness_set = tx.transaction_witness_set

        assert len(witness_set.plutus_v3_script) == 1
        redeemer = witness_set.redeemer[0]
        assert redeemer.tag == RedeemerTag.MINT
        assert redeemer.index == 0
        assert redeemer.ex_units == ExecutionUnits(
            test_config.mint_ex_units_mem, test_config.mint_ex_units_steps,
        )

    def test_v2_template_uses_v2_witness_slot(self, builder, test_config, wallet, protocol_params):
        """Test that a V2 template is witnessed as V2 even when the default is V3."""
        protocol_params.cost_models["PlutusV2"] = list(range(175))
        utxo = make_utxo(0, 10_000_000)

        v2_tx, v2_binding = self._build(
            builder, test_config, wallet, protocol_params, utxo, version=PlutusVersion.V2,
        )
        v3_tx, _ = self._build(builder, test_config, wallet, protocol_params, utxo)
        witness_set = v2_tx.transaction_witness_set

        assert v2_binding.version == PlutusVersion.V2
        assert len(witness_set.plutus_v2_script) == 1
        assert not witness_set.plutus_v3_script
        assert v2_tx.transaction_body.script_data_hash != v3_tx.transaction_body.script_data_hash

    def test_mint_fee_reasonable(self, builder, test_config, wallet, protocol_params):
        tx, _ = self._build(builder, test_config, wallet, protocol_params, make_utxo(0, 10_000_000))
        assert 155_381 < tx.transaction_body.fee < 2_000_000

    def test_mint_carries_existing_assets(self, builder, test_config, wallet, protocol_params):
        other_unit = TEST_POLICY_ID + b"Coffee#0".hex()
        utxo = make_utxo(0, 10_000_000, {other_unit: 1})
        tx, binding = self._build(builder, test_config, wallet, protocol_params, utxo)

        output = tx.transaction_body.outputs[0]
        assert _quantity(output, other_unit) == 1
        assert _quantity(output, binding.unit) == 1

    def test_mint_insufficient_funds(self, builder, test_config, wallet, protocol_params):
        with pytest.raises(InsufficientFunds) as exc_info:
            self._build(builder, test_config, wallet, protocol_params, make_utxo(0, 1_000_000))
        assert exc_info.value.available == 1_000_000
        assert exc_info.value.required > 1_000_000

    def test_mint_metadata_too_large(self, test_config, wallet, protocol_params):
        test_config.max_metadata_bytes = 300
        builder = TransactionBuilder(config=test_config)
        with pytest.raises(MetadataTooLarge):
            self._build(
                builder, test_config, wallet, protocol_params,
                make_utxo(0, 10_000_000), record={"notes": "x" * 1_000},
            )


# ============================================================================
# Test Status Transfer
# ============================================================================

class TestBuildStatusTransfer:
    """Tests for the status transfer transaction."""

    def _metadata(self, unit):
        return build_status_metadata(unit, {"status": "washed"})

    def test_find_asset_input(self, builder, batch_unit):
        holder = make_utxo(3, 2_000_000, {batch_unit: 1})
        found = builder.find_asset_input([make_utxo(1, 9_000_000), holder], batch_unit)
        assert found is holder

    def test_asset_not_held(self, builder, batch_unit, sample_utxos):
        with pytest.raises(AssetNotHeld):
            builder.find_asset_input(sample_utxos, batch_unit)

    def test_self_transfer_with_change(self, builder, wallet, protocol_params, batch_unit):
        """Test that a funded holder pays for its own transfer."""
        holder = make_utxo(0, 5_000_000, {batch_unit: 1})
        inputs = [holder, make_utxo(1, 20_000_000)]

        tx = builder.build_status_transfer(
            inputs, batch_unit, wallet.address, self._metadata(batch_unit),
            wallet.address, protocol_params,
        )
        body = tx.transaction_body

        assert list(body.inputs) == [holder.input]
        assert len(body.outputs) == 2
        assert _quantity(body.outputs[0], batch_unit) == 1
        assert _quantity(body.outputs[1], batch_unit) == 0
        assert sum(o.amount.coin for o in body.outputs) + body.fee == 5_000_000
        assert tx.auxiliary_data.data.metadata[674]["status"] == "washed"

    def test_adds_funding_input(self, builder, wallet, protocol_params, batch_unit):
        """Test that a holder too small to pay the fee gets a second input."""
        holder = make_utxo(0, 1_000_000, {batch_unit: 1})
        funding = make_utxo(1, 20_000_000)

        tx = builder.build_status_transfer(
            [holder, funding], batch_unit, wallet.address, self._metadata(batch_unit),
            wallet.address, protocol_params,
        )
        body = tx.transaction_body

        assert list(body.inputs) == [holder.input, funding.input]
        assert sum(o.amount.coin for o in body.outputs) + body.fee == 21_000_000

    def test_leftover_tokens_go_to_change(self, builder, wallet, protocol_params, batch_unit):
        holder = make_utxo(0, 10_000_000, {batch_unit: 2})

        tx = builder.build_status_transfer(
            [holder], batch_unit, Address.from_primitive(TEST_ADDRESS), self._metadata(batch_unit),
            wallet.address, protocol_params,
        )
        outputs = tx.transaction_body.outputs

        assert str(outputs[0].address) == TEST_ADDRESS
        assert _quantity(outputs[0], batch_unit) == 1
        assert outputs[1].address == wallet.address
        assert _quantity(outputs[1], batch_unit) == 1

    def test_insufficient_funds(self, builder, wallet, protocol_params, batch_unit):
        holder = make_utxo(0, 1_000_000, {batch_unit: 1})
        with pytest.raises(InsufficientFunds):
            builder.build_status_transfer(
                [holder], batch_unit, wallet.address, self._metadata(batch_unit),
                wallet.address, protocol_params,
            )
