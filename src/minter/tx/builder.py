"""
Transaction Builder - constructs mint and status transfer transactions.

Transactions are assembled by hand so the builder controls exactly which
inputs are consumed. Fees are computed from the serialized size of the
transaction with a placeholder witness.
"""

import copy
import math
from typing import List, Optional, Sequence

import structlog

from pycardano import (
    Address,
    Asset,
    AssetName,
    CostModels,
    ExecutionUnits,
    MultiAsset,
    Redeemer,
    RedeemerTag,
    ScriptHash,
    Transaction,
    TransactionBody,
    TransactionOutput,
    TransactionWitnessSet,
    Unit,
    UTxO,
    Value,
    VerificationKey,
    VerificationKeyHash,
    VerificationKeyWitness,
)
from pycardano.utils import script_data_hash

from minter.config import MinterConfig, PlutusVersion, get_config
from minter.core.errors import (
    AssetNotHeld,
    InsufficientFunds,
    MinterError,
    NoFundsAvailable,
    TransactionBuildError,
)
from minter.node.interface import ProtocolParameters, split_unit
from minter.tx.metadata import to_auxiliary_data
from minter.tx.policy import PolicyBinding
from minter.tx.selector import UtxoSelector, canonical_key, utxo_ref

logger = structlog.get_logger(__name__)

# Fits the same CBOR integer width as any realistic fee
PLACEHOLDER_FEE = 2_000_000

# Per-output overhead in the Babbage minimum UTXO formula
UTXO_ENTRY_OVERHEAD = 160

PLUTUS_LANGUAGE_IDS = {
    PlutusVersion.V2: (1, "PlutusV2"),
    PlutusVersion.V3: (2, "PlutusV3"),
}

_FAKE_WITNESS = VerificationKeyWitness(VerificationKey(bytes(32)), bytes(64))


def asset_quantity(value: Value, policy: ScriptHash, name: AssetName) -> int:
    """Quantity of one asset inside a value."""
    multi_asset = value.multi_asset
    if not multi_asset or policy not in multi_asset:
        return 0
    return multi_asset[policy].get(name, 0)


def _without_one(multi_asset: Optional[MultiAsset], policy: ScriptHash, name: AssetName) -> MultiAsset:
    """Copy of multi_asset with one unit of (policy, name) removed and empty entries dropped."""
    result = MultiAsset()
    for pid, assets in (multi_asset or {}).items():
        for asset_name, quantity in assets.items():
            if pid == policy and asset_name == name:
                quantity -= 1
            if quantity > 0:
                result.setdefault(pid, Asset())[asset_name] = quantity
    return result


def _merge(values: Sequence[Value]) -> Value:
    total = Value(0)
    for value in values:
        total += value
    return total


class TransactionBuilder:
    """
    Builds unsigned mint and status transfer transactions.

    Signing is left to the WalletContext.
    """

    def __init__(
        self,
        selector: Optional[UtxoSelector] = None,
        config: Optional[MinterConfig] = None,
    ):
        """
        Initialize the transaction builder.

        Args:
            selector: Selector used to add a funding input to transfers
            config: Minter configuration
        """
        self.config = config or get_config()
        self.selector = selector or UtxoSelector(config=self.config)

    # Fee and minimum output helpers

    def estimate_fee(
        self,
        body: TransactionBody,
        witness_set: TransactionWitnessSet,
        protocol_params: ProtocolParameters,
        auxiliary_data=None,
        ex_units: Optional[ExecutionUnits] = None,
    ) -> int:
        """
        Fee for a transaction signed by one key.

        Linear size fee plus script execution cost, plus the configured margin.
        """
        witnesses = copy.copy(witness_set)
        witnesses.vkey_witnesses = [_FAKE_WITNESS]
        size = len(Transaction(body, witnesses, auxiliary_data=auxiliary_data).to_cbor())

        fee = protocol_params.min_fee_a * size + protocol_params.min_fee_b
        if ex_units is not None:
            fee += math.ceil(protocol_params.price_mem * ex_units.mem)
            fee += math.ceil(protocol_params.price_step * ex_units.steps)

        return math.ceil(fee * (100 + self.config.fee_margin_percent) / 100)

    @staticmethod
    def min_output_lovelace(output: TransactionOutput, protocol_params: ProtocolParameters) -> int:
        """Minimum lovelace an output must carry."""
        return (UTXO_ENTRY_OVERHEAD + len(output.to_cbor())) * protocol_params.coins_per_utxo_byte

    def _script_data_hash(
        self,
        redeemers: List[Redeemer],
        version: PlutusVersion,
        protocol_params: ProtocolParameters,
    ):
        language_id, language_name = PLUTUS_LANGUAGE_IDS[version]
        raw_model = protocol_params.cost_models.get(language_name)
        cost_models = CostModels({language_id: dict(enumerate(raw_model))}) if raw_model else None
        return script_data_hash(redeemers, [], cost_models=cost_models)

    def _script_witness_set(self, binding: PolicyBinding, redeemer: Redeemer) -> TransactionWitnessSet:
        if binding.version == PlutusVersion.V2:
            return TransactionWitnessSet(plutus_v2_script=[binding.policy], redeemer=[redeemer])
        return TransactionWitnessSet(plutus_v3_script=[binding.policy], redeemer=[redeemer])

    # Mint

    def build_mint(
        self,
        selected_input: UTxO,
        binding: PolicyBinding,
        metadata: dict,
        change_address: Address,
        protocol_params: ProtocolParameters,
        required_signer: Optional[VerificationKeyHash] = None,
    ) -> Transaction:
        """
        Build the transaction minting one batch token.

        Consumes exactly the selected input (also pledged as collateral),
        mints 1 of the bound unit and returns everything to change_address.

        Args:
            selected_input: Input the policy was bound to
            binding: Minting policy binding
            metadata: Mint payload by label
            change_address: Receives the token and the change
            protocol_params: Current protocol parameters
            required_signer: Payment key hash of the wallet

        Raises:
            InsufficientFunds: If the input cannot cover minimum output plus fee
        """
        try:
            return self._build_mint(
                selected_input, binding, metadata, change_address, protocol_params, required_signer,
            )
        except MinterError:
            raise
        except Exception as e:
            logger.error("mint_build_failed", utxo=utxo_ref(selected_input), error=str(e))
            raise TransactionBuildError(f"Failed to build mint transaction: {e}")

    def _build_mint(
        self,
        selected_input: UTxO,
        binding: PolicyBinding,
        metadata: dict,
        change_address: Address,
        protocol_params: ProtocolParameters,
        required_signer: Optional[VerificationKeyHash],
    ) -> Transaction:
        auxiliary_data = to_auxiliary_data(metadata, self.config.max_metadata_bytes)

        minted = MultiAsset({
            binding.policy_hash: Asset({AssetName(binding.token_name): 1})
        })
        ex_units = ExecutionUnits(self.config.mint_ex_units_mem, self.config.mint_ex_units_steps)
        redeemer = Redeemer(Unit(), ex_units)
        redeemer.tag = RedeemerTag.MINT
        redeemer.index = 0

        witness_set = self._script_witness_set(binding, redeemer)
        data_hash = self._script_data_hash([redeemer], binding.version, protocol_params)

        available = selected_input.output.amount
        carried = available.multi_asset or MultiAsset()
        change_assets = carried.union(minted)

        def make_body(fee: int, change_coin: int) -> TransactionBody:
            return TransactionBody(
                inputs=[selected_input.input],
                outputs=[TransactionOutput(change_address, Value(change_coin, change_assets))],
                fee=fee,
                mint=minted,
                collateral=[selected_input.input],
                required_signers=[required_signer] if required_signer else None,
                script_data_hash=data_hash,
                auxiliary_data_hash=auxiliary_data.hash(),
            )

        fee = self.estimate_fee(
            make_body(PLACEHOLDER_FEE, available.coin),
            witness_set,
            protocol_params,
            auxiliary_data,
            ex_units,
        )
        min_output = self.min_output_lovelace(
            TransactionOutput(change_address, Value(available.coin, change_assets)),
            protocol_params,
        )
        required = min_output + fee
        collateral_required = math.ceil(fee * protocol_params.collateral_percentage / 100)

        if available.coin < max(required, collateral_required):
            raise InsufficientFunds(
                f"Input {utxo_ref(selected_input)} holds {available.coin} lovelace, "
                f"minting needs {max(required, collateral_required)}",
                required=max(required, collateral_required),
                available=available.coin,
            )

        body = make_body(fee, available.coin - fee)

        logger.info(
            "mint_transaction_built",
            utxo=utxo_ref(selected_input),
            policy_id=binding.policy_id,
            fee=fee,
        )
        return Transaction(body, witness_set, auxiliary_data=auxiliary_data)

    # Status transfer

    def find_asset_input(self, inputs: Sequence[UTxO], asset_unit: str) -> UTxO:
        """
        First input (in reference order) carrying the asset.

        Raises:
            AssetNotHeld: If no input carries it
        """
        policy_hex, name_hex = split_unit(asset_unit)
        policy = ScriptHash.from_primitive(policy_hex)
        name = AssetName(bytes.fromhex(name_hex))

        holders = [u for u in inputs if asset_quantity(u.output.amount, policy, name) >= 1]
        if not holders:
            raise AssetNotHeld(asset_unit)
        return sorted(holders, key=canonical_key)[0]

    def build_status_transfer(
        self,
        inputs: Sequence[UTxO],
        asset_unit: str,
        recipient_address: Address,
        metadata: dict,
        change_address: Address,
        protocol_params: ProtocolParameters,
    ) -> Transaction:
        """
        Build a transaction moving one unit of an asset with status metadata.

        Under self-transfer the recipient is the wallet's own address; the
        chain-ordered sequence of these transactions is the status history.

        Args:
            inputs: Spendable inputs of the wallet
            asset_unit: Unit to move
            recipient_address: Receives exactly one unit
            metadata: Status payload by label
            change_address: Receives everything else
            protocol_params: Current protocol parameters

        Raises:
            AssetNotHeld: If the wallet holds none of the asset
            InsufficientFunds: If the wallet cannot fund fee and outputs
        """
        try:
            return self._build_status_transfer(
                inputs, asset_unit, recipient_address, metadata, change_address, protocol_params,
            )
        except MinterError:
            raise
        except Exception as e:
            logger.error("status_transfer_build_failed", error=str(e))
            raise TransactionBuildError(f"Failed to build status transfer: {e}")

    def _build_status_transfer(
        self,
        inputs: Sequence[UTxO],
        asset_unit: str,
        recipient_address: Address,
        metadata: dict,
        change_address: Address,
        protocol_params: ProtocolParameters,
    ) -> Transaction:
        if not asset_unit or len(asset_unit) < 56:
            raise AssetNotHeld(asset_unit or "")

        holder = self.find_asset_input(inputs, asset_unit)
        auxiliary_data = to_auxiliary_data(metadata, self.config.max_metadata_bytes)

        policy_hex, name_hex = split_unit(asset_unit)
        policy = ScriptHash.from_primitive(policy_hex)
        name = AssetName(bytes.fromhex(name_hex))
        moved = MultiAsset({policy: Asset({name: 1})})

        used = [holder]
        while True:
            body = self._compose_transfer(
                used, moved, policy, name, recipient_address, change_address,
                auxiliary_data, protocol_params,
            )
            if body is not None:
                break
            try:
                extra = self.selector.select(inputs, exclude=[u.input for u in used])
            except NoFundsAvailable:
                total = _merge([u.output.amount for u in used]).coin
                raise InsufficientFunds(
                    f"Wallet cannot fund the status transfer with {total} lovelace",
                    available=total,
                )
            used.append(extra)

        logger.info(
            "status_transfer_built",
            unit=asset_unit[:24] + "...",
            inputs=len(used),
            fee=body.fee,
        )
        return Transaction(body, TransactionWitnessSet(), auxiliary_data=auxiliary_data)

    def _compose_transfer(
        self,
        used: List[UTxO],
        moved: MultiAsset,
        policy: ScriptHash,
        name: AssetName,
        recipient_address: Address,
        change_address: Address,
        auxiliary_data,
        protocol_params: ProtocolParameters,
    ) -> Optional[TransactionBody]:
        """Transfer body over the given inputs, or None if they cannot fund it."""
        total = _merge([u.output.amount for u in used])
        change_assets = _without_one(total.multi_asset, policy, name)

        recipient_draft = TransactionOutput(recipient_address, Value(total.coin, moved))
        recipient_coin = self.min_output_lovelace(recipient_draft, protocol_params)
        change_draft = TransactionOutput(change_address, Value(total.coin, change_assets))
        change_min = self.min_output_lovelace(change_draft, protocol_params)

        def make_body(fee: int, recipient: int, change: Optional[int]) -> TransactionBody:
            outputs = [TransactionOutput(recipient_address, Value(recipient, moved))]
            if change is not None:
                outputs.append(TransactionOutput(change_address, Value(change, change_assets)))
            return TransactionBody(
                inputs=[u.input for u in used],
                outputs=outputs,
                fee=fee,
                auxiliary_data_hash=auxiliary_data.hash(),
            )

        witness_set = TransactionWitnessSet()

        # Two outputs: recipient plus change
        fee = self.estimate_fee(
            make_body(PLACEHOLDER_FEE, recipient_coin, total.coin),
            witness_set, protocol_params, auxiliary_data,
        )
        change = total.coin - recipient_coin - fee
        if change >= change_min:
            return make_body(fee, recipient_coin, change)

        if change_assets:
            # Leftover tokens need an output of their own
            return None

        # Pure lovelace leftover too small for an output goes to the recipient
        fee = self.estimate_fee(
            make_body(PLACEHOLDER_FEE, total.coin, None),
            witness_set, protocol_params, auxiliary_data,
        )
        if total.coin - fee < recipient_coin:
            return None
        return make_body(fee, total.coin - fee, None)
