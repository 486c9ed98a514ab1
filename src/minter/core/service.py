"""
Token service - entry point for mint and status update requests.

Coordinates wallet derivation, input selection, policy binding, transaction
construction, signing and submission. Stateless per call: the seed and the
provider key are only held for the duration of one request.
"""

import asyncio
import uuid
from contextlib import nullcontext
from typing import Any, Callable, Dict, List, Optional

import structlog

from pycardano import Address, Network

from minter.config import MinterConfig, get_config
from minter.core.errors import FailureKind, InvalidRequestError, MinterError
from minter.core.results import MintResult, PermanentFailure, StatusRecord, Success
from minter.core.session import WalletSession
from minter.node.blockfrost import BlockfrostGateway
from minter.node.interface import LedgerGateway, NetworkError, split_unit
from minter.tx.builder import TransactionBuilder
from minter.tx.metadata import (
    build_mint_metadata,
    build_status_metadata,
    join_metadatum,
    status_unit,
)
from minter.tx.policy import PolicyBinder, validate_token_name
from minter.tx.selector import UtxoSelector, utxo_ref
from minter.tx.submitter import SubmissionRetryEngine, Submitted
from minter.wallet.context import WalletContext

logger = structlog.get_logger(__name__)

GatewayFactory = Callable[[str], LedgerGateway]


def _validate_unit(asset_unit: str) -> str:
    if not asset_unit:
        raise InvalidRequestError("Asset unit is required")
    policy_hex, name_hex = split_unit(asset_unit)
    try:
        bytes.fromhex(asset_unit)
    except ValueError:
        raise InvalidRequestError("Asset unit must be hex encoded")
    if len(policy_hex) != 56 or len(name_hex) > 64:
        raise InvalidRequestError("Asset unit must be a 56 character policy id plus asset name")
    return asset_unit.lower()


class TokenService:
    """
    Mints batch tokens and records status updates for them.

    Usage:
        ```python
        service = TokenService()
        result = await service.mint("Coffee#1", record, seed=seed, project_id=key)
        ```
    """

    def __init__(
        self,
        config: Optional[MinterConfig] = None,
        gateway_factory: Optional[GatewayFactory] = None,
        session: Optional[WalletSession] = None,
        selector: Optional[UtxoSelector] = None,
        binder: Optional[PolicyBinder] = None,
        builder: Optional[TransactionBuilder] = None,
    ):
        """
        Initialize the service.

        Args:
            config: Minter configuration
            gateway_factory: Builds a gateway from the call-scoped provider key
            session: Serializes requests per wallet address
            selector: Input selector
            binder: Policy binder
            builder: Transaction builder
        """
        self.config = config or get_config()
        self.gateway_factory = gateway_factory or (
            lambda project_id: BlockfrostGateway(project_id, self.config)
        )
        self.session = session
        self.selector = selector or UtxoSelector(config=self.config)
        self.binder = binder or PolicyBinder(self.config)
        self.builder = builder or TransactionBuilder(self.selector, self.config)

    @property
    def network(self) -> Network:
        return Network.MAINNET if self.config.is_mainnet else Network.TESTNET

    def _hold(self, seed: str):
        """Session slot for the wallet, taken before any signing key is derived."""
        if self.session is None:
            return nullcontext()
        return self.session.acquire(WalletContext.derive_address(seed, self.network))

    def _engine(self, gateway: LedgerGateway) -> SubmissionRetryEngine:
        return SubmissionRetryEngine(gateway, config=self.config)

    async def _finish(
        self,
        gateway: LedgerGateway,
        outcome,
        unit: str,
        policy_id: str,
        log,
    ) -> MintResult:
        if not isinstance(outcome, Submitted):
            return outcome

        if self.config.await_confirmation:
            confirmed = await gateway.await_confirmation(
                outcome.transaction_id,
                self.config.confirmation_timeout_seconds,
            )
            if not confirmed:
                log.warning("confirmation_pending", tx_id=outcome.transaction_id)

        return Success(outcome.transaction_id, unit, policy_id, outcome.attempts)

    async def mint(
        self,
        token_name: str,
        metadata: Dict[str, Any],
        seed: str,
        project_id: str,
        script_cbor: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MintResult:
        """
        Mint one batch token carrying its provenance record.

        Args:
            token_name: Asset name, e.g. "Coffee#1"
            metadata: Provenance record (farmer, region, specifications, ...)
            seed: Custodial wallet mnemonic (secret)
            project_id: Ledger provider key (secret)
            script_cbor: Minting script template, configured template if omitted
            cancel_event: Set to stop further submission attempts

        Returns:
            Success, RetryLater or PermanentFailure
        """
        log = logger.bind(request_id=str(uuid.uuid4())[:8], operation="mint")

        try:
            name = validate_token_name(token_name)
            if not metadata:
                raise InvalidRequestError("Mint metadata is required")
            template = self.binder.load_template(script_cbor)

            async with self._hold(seed):
                with WalletContext.from_seed(seed, self.network) as wallet:
                    async with self.gateway_factory(project_id) as gateway:
                        inputs = await gateway.list_spendable_inputs(wallet.address_str)
                        params = await gateway.get_protocol_parameters()

                        selected = self.selector.select(inputs)
                        binding = self.binder.bind(selected, name, template)
                        payload = build_mint_metadata(
                            binding.policy_id, name, metadata, self.config.mint_metadata_label,
                        )
                        unsigned = self.builder.build_mint(
                            selected, binding, payload, wallet.address, params,
                            required_signer=wallet.payment_key_hash,
                        )
                        signed = wallet.sign_transaction(unsigned)

                        log.info("mint_submitting", utxo=utxo_ref(selected), unit=binding.unit)
                        outcome = await self._engine(gateway).submit(signed, cancel_event)
                        return await self._finish(gateway, outcome, binding.unit, binding.policy_id, log)

        except MinterError as e:
            log.warning("mint_failed", kind=e.kind.value, reason=e.reason)
            return PermanentFailure(e.kind, e.reason)
        except NetworkError as e:
            log.error("mint_provider_unavailable", error=str(e))
            return PermanentFailure(FailureKind.NETWORK, str(e))

    async def update_status(
        self,
        asset_unit: str,
        status_metadata: Dict[str, Any],
        seed: str,
        project_id: str,
        self_transfer: bool = True,
        recipient_address: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> MintResult:
        """
        Record a status update by moving the token with status metadata.

        Args:
            asset_unit: Unit of the batch token
            status_metadata: status (required), description, note, timestamp
            seed: Custodial wallet mnemonic (secret)
            project_id: Ledger provider key (secret)
            self_transfer: Send the token back to the custodial wallet
            recipient_address: Destination when not self-transferring
            cancel_event: Set to stop further submission attempts

        Returns:
            Success, RetryLater or PermanentFailure
        """
        log = logger.bind(request_id=str(uuid.uuid4())[:8], operation="update_status")

        try:
            unit = _validate_unit(asset_unit)
            payload = build_status_metadata(
                unit, status_metadata, self.config.status_metadata_label,
            )

            recipient: Optional[Address] = None
            if not self_transfer:
                if not recipient_address:
                    raise InvalidRequestError("Recipient address is required without self transfer")
                try:
                    recipient = Address.from_primitive(recipient_address)
                except Exception:
                    raise InvalidRequestError("Recipient address is not a valid address")

            async with self._hold(seed):
                with WalletContext.from_seed(seed, self.network) as wallet:
                    async with self.gateway_factory(project_id) as gateway:
                        inputs = await gateway.list_spendable_inputs(wallet.address_str)
                        params = await gateway.get_protocol_parameters()

                        unsigned = self.builder.build_status_transfer(
                            inputs,
                            unit,
                            recipient or wallet.address,
                            payload,
                            wallet.address,
                            params,
                        )
                        signed = wallet.sign_transaction(unsigned)

                        log.info(
                            "status_update_submitting",
                            unit=unit[:24] + "...",
                            status=status_metadata.get("status"),
                            self_transfer=self_transfer,
                        )
                        outcome = await self._engine(gateway).submit(signed, cancel_event)
                        return await self._finish(gateway, outcome, unit, unit[:56], log)

        except MinterError as e:
            log.warning("status_update_failed", kind=e.kind.value, reason=e.reason)
            return PermanentFailure(e.kind, e.reason)
        except NetworkError as e:
            log.error("status_update_provider_unavailable", error=str(e))
            return PermanentFailure(FailureKind.NETWORK, str(e))

    async def status_history(self, asset_unit: str, project_id: str) -> List[StatusRecord]:
        """
        Read the status updates of a batch token in chain order.

        Raises:
            InvalidRequestError: If the unit is malformed
            NetworkError: If the provider cannot be reached
        """
        unit = _validate_unit(asset_unit)
        label = self.config.status_metadata_label

        async with self.gateway_factory(project_id) as gateway:
            transactions = await gateway.get_asset_history(unit)

        records = []
        for tx in transactions:
            body = tx.metadata.get(label)
            if not isinstance(body, dict):
                continue
            if status_unit(body) not in (None, unit):
                continue
            records.append(StatusRecord(
                transaction_id=tx.transaction_id,
                block_height=tx.block_height,
                block_time=tx.block_time,
                status=join_metadatum(body.get("status")),
                description=join_metadatum(body.get("description")) or "",
                note=join_metadatum(body.get("note")) or "",
                timestamp=join_metadatum(body.get("timestamp")),
            ))
        return records
