"""
Blockfrost API gateway.

Provides ledger access via the Blockfrost API service. Submission failures
are classified here, once, into typed errors.
"""

import asyncio
from typing import Any, List, Optional

import httpx
import structlog

from pycardano import (
    Address,
    Asset,
    AssetName,
    MultiAsset,
    ScriptHash,
    Transaction,
    TransactionId,
    TransactionInput,
    TransactionOutput,
    UTxO,
    Value,
)

from minter.config import MinterConfig, get_config
from minter.node.interface import (
    AssetTransaction,
    LedgerGateway,
    NetworkError,
    ProtocolParameters,
    RejectionKind,
    SubmissionRejected,
)

logger = structlog.get_logger(__name__)

# Ledger error tags reporting spent inputs or an unbalanced transaction.
# With a single wallet both point at inputs the indexer still lists as unspent.
CONFLICT_MARKERS = (
    "BadInputsUTxO",
    "ValueNotConservedUTxO",
    "All inputs are spent",
    "already been included",
)

# Provider-side statuses that say nothing about the transaction itself
PROVIDER_FAILURE_STATUSES = {402, 403, 418, 425, 429}

PAGE_SIZE = 100


def classify_rejection(message: str) -> RejectionKind:
    """Classify a ledger rejection message."""
    if any(marker in message for marker in CONFLICT_MARKERS):
        return RejectionKind.CONFLICT
    return RejectionKind.OTHER


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


class BlockfrostGateway(LedgerGateway):
    """
    Blockfrost API gateway.

    Implements the LedgerGateway using Blockfrost's REST API. The project id
    is call-scoped and only ever sent as a request header.
    """

    def __init__(
        self,
        project_id: str,
        config: Optional[MinterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Blockfrost gateway.

        Args:
            project_id: Blockfrost project id (secret)
            config: Minter configuration. Uses global config if not provided.
            transport: Optional httpx transport (used by tests)
        """
        self.config = config or get_config()
        self.base_url = self.config.blockfrost_url
        self._project_id = project_id
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def __repr__(self) -> str:
        return f"BlockfrostGateway(base_url={self.base_url!r})"

    @property
    def headers(self) -> dict:
        """Get request headers with API key."""
        return {
            "project_id": self._project_id or "",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        if not self._project_id:
            raise NetworkError("Blockfrost project id not provided")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.config.request_timeout_seconds,
            transport=self._transport,
        )
        logger.debug("blockfrost_client_created", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("blockfrost_client_closed")

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> Any:
        """Make an API request. Returns None for 404."""
        if not self._client:
            await self.connect()

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.warning("blockfrost_request_timeout", path=path)
            raise NetworkError(f"Blockfrost request timed out: {path}")
        except httpx.RequestError as e:
            logger.error("blockfrost_request_error", path=path, error=type(e).__name__)
            raise NetworkError(f"Blockfrost request failed: {type(e).__name__}")

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            error_msg = _error_message(response)
            logger.error(
                "blockfrost_request_failed",
                path=path,
                status=response.status_code,
                error=error_msg,
            )
            raise NetworkError(f"Blockfrost API error {response.status_code}: {error_msg}")

        try:
            return response.json()
        except ValueError:
            logger.error("blockfrost_malformed_response", path=path)
            raise NetworkError(f"Blockfrost returned a malformed response: {path}")

    async def get_protocol_parameters(self) -> ProtocolParameters:
        """Get current protocol parameters from Blockfrost."""
        data = await self._request("GET", "/epochs/latest/parameters")
        if not data:
            raise NetworkError("Blockfrost returned no protocol parameters")

        try:
            return self._parse_protocol_parameters(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("blockfrost_malformed_parameters", error=type(e).__name__)
            raise NetworkError(f"Blockfrost returned malformed protocol parameters: {type(e).__name__} {e}")

    @staticmethod
    def _parse_protocol_parameters(data: dict) -> ProtocolParameters:
        coins_per_byte = data.get("coins_per_utxo_size")
        if coins_per_byte is None:
            coins_per_byte = int(data["coins_per_utxo_word"]) // 8

        cost_models = {}
        raw = data.get("cost_models_raw") or data.get("cost_models") or {}
        for language, model in raw.items():
            cost_models[language] = list(model.values()) if isinstance(model, dict) else list(model)

        return ProtocolParameters(
            min_fee_a=int(data["min_fee_a"]),
            min_fee_b=int(data["min_fee_b"]),
            max_tx_size=int(data["max_tx_size"]),
            coins_per_utxo_byte=int(coins_per_byte),
            collateral_percentage=int(data.get("collateral_percent") or 150),
            price_mem=float(data.get("price_mem") or 0),
            price_step=float(data.get("price_step") or 0),
            cost_models=cost_models,
        )

    async def list_spendable_inputs(self, address: str) -> List[UTxO]:
        """Get UTXOs at an address."""
        utxos = []
        page = 1

        while True:
            data = await self._request(
                "GET",
                f"/addresses/{address}/utxos",
                params={"page": page, "order": "asc"},
            )

            if not data:
                break

            try:
                utxos.extend(self._parse_utxo(item) for item in data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error("blockfrost_malformed_utxo", error=type(e).__name__)
                raise NetworkError(f"Blockfrost returned a malformed UTXO: {type(e).__name__}")

            if len(data) < PAGE_SIZE:
                break
            page += 1

        logger.debug("utxos_fetched", address=address[:20] + "...", count=len(utxos))
        return utxos

    @staticmethod
    def _parse_utxo(data: dict) -> UTxO:
        """Parse Blockfrost UTXO data into a pycardano UTxO."""
        coin = 0
        multi_asset = MultiAsset()

        for amount in data["amount"]:
            unit = amount["unit"]
            quantity = int(amount["quantity"])

            if unit == "lovelace":
                coin += quantity
                continue

            # Split unit into policy_id and asset_name
            script_hash = ScriptHash.from_primitive(unit[:56])
            asset_name = AssetName(bytes.fromhex(unit[56:]))
            if script_hash not in multi_asset:
                multi_asset[script_hash] = Asset()
            multi_asset[script_hash][asset_name] = quantity

        value = Value(coin, multi_asset) if multi_asset else Value(coin)

        tx_input = TransactionInput(
            TransactionId.from_primitive(data["tx_hash"]),
            int(data["output_index"]),
        )
        output = TransactionOutput(Address.from_primitive(data["address"]), value)

        return UTxO(tx_input, output)

    async def submit(self, tx: Transaction) -> str:
        """Submit a signed transaction."""
        if not self._client:
            await self.connect()

        try:
            response = await self._client.post(
                "/tx/submit",
                content=tx.to_cbor(),
                headers={"Content-Type": "application/cbor"},
            )
        except httpx.TimeoutException:
            logger.warning("tx_submit_timeout")
            raise NetworkError("Transaction submission timed out")
        except httpx.RequestError as e:
            logger.error("tx_submit_request_error", error=type(e).__name__)
            raise NetworkError(f"Transaction submission request failed: {type(e).__name__}")

        if response.status_code == 200:
            try:
                tx_id = str(response.json())
            except ValueError:
                tx_id = response.text.strip().strip("\"")
            logger.info("tx_submitted", tx_hash=tx_id)
            return tx_id

        error_msg = _error_message(response)

        if response.status_code >= 500 or response.status_code in PROVIDER_FAILURE_STATUSES:
            logger.error("tx_submit_provider_failure", status=response.status_code, error=error_msg)
            raise NetworkError(f"Provider error {response.status_code}: {error_msg}")

        kind = classify_rejection(error_msg)
        logger.warning("tx_submit_rejected", status=response.status_code, kind=kind.value)
        raise SubmissionRejected(error_msg, kind)

    async def get_transaction(self, tx_id: str) -> Optional[dict]:
        """Get transaction details."""
        return await self._request("GET", f"/txs/{tx_id}")

    async def transaction_exists(self, tx_id: str) -> bool:
        """True if the transaction is in a block or in the Blockfrost mempool."""
        if await self.get_transaction(tx_id):
            return True
        return await self._request("GET", f"/mempool/{tx_id}") is not None

    async def await_confirmation(self, tx_id: str, timeout_seconds: int = 180) -> bool:
        """Poll until the transaction is in a block."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds

        while loop.time() < deadline:
            tx_data = await self.get_transaction(tx_id)
            if tx_data and tx_data.get("block"):
                logger.info("tx_confirmed", tx_hash=tx_id, block_height=tx_data.get("block_height"))
                return True
            await asyncio.sleep(self.config.confirmation_poll_seconds)

        logger.warning("tx_confirmation_timeout", tx_hash=tx_id)
        return False

    async def get_asset_history(self, unit: str) -> List[AssetTransaction]:
        """Get the transactions of an asset with their metadata, oldest first."""
        history = []
        page = 1

        while True:
            data = await self._request(
                "GET",
                f"/assets/{unit}/transactions",
                params={"page": page, "order": "asc"},
            )
            if not data:
                break

            for item in data:
                try:
                    tx_hash = item["tx_hash"]
                    metadata_rows = await self._request("GET", f"/txs/{tx_hash}/metadata") or []
                    history.append(AssetTransaction(
                        transaction_id=tx_hash,
                        block_height=item.get("block_height"),
                        block_time=item.get("block_time"),
                        metadata={int(row["label"]): row.get("json_metadata") for row in metadata_rows},
                    ))
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("blockfrost_malformed_history", unit=unit[:24] + "...", error=type(e).__name__)
                    raise NetworkError(f"Blockfrost returned a malformed asset history: {type(e).__name__}")

            if len(data) < PAGE_SIZE:
                break
            page += 1

        return history
