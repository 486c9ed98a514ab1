"""
Policy Binder - derives a batch-unique minting policy.

The compiled script template takes three parameters: the funding input's
transaction id, its output index and the token name. The funding input is
spent by the same transaction that mints, so the ledger never lets two
mints share a policy id.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import cbor2
import structlog
import uplc.ast
from uplc.tools import flatten, unflatten

from pycardano import PlutusV2Script, PlutusV3Script, ScriptHash, UTxO, plutus_script_hash

from minter.config import MinterConfig, PlutusVersion, get_config
from minter.core.errors import InvalidRequestError, InvalidScriptError

logger = structlog.get_logger(__name__)

MAX_ASSET_NAME_BYTES = 32

PlutusScript = Union[PlutusV2Script, PlutusV3Script]


@dataclass(frozen=True)
class ScriptTemplate:
    """An unparameterized compiled minting script."""
    program: uplc.ast.Program
    version: PlutusVersion = PlutusVersion.V3

    @classmethod
    def from_cbor_hex(cls, cbor_hex: str, version: PlutusVersion = PlutusVersion.V3) -> "ScriptTemplate":
        """
        Load a template from CBOR hex (single or double wrapped flat program).

        Raises:
            InvalidScriptError: If the bytes are not a flat encoded program
        """
        try:
            data = bytes.fromhex(cbor_hex.strip())
            # unflatten expects exactly one CBOR byte string layer around the flat program
            while True:
                inner = cbor2.loads(data)
                if not (isinstance(inner, bytes) and inner and 0x40 <= inner[0] <= 0x5f):
                    break
                data = inner
            program = unflatten(data)
        except Exception as e:
            raise InvalidScriptError(f"Minting script template is not a valid program: {type(e).__name__}")

        return cls(program, version)

    @classmethod
    def from_blueprint(cls, path: Union[str, Path], title: Optional[str] = None) -> "ScriptTemplate":
        """
        Load a template from an Aiken blueprint (plutus.json).

        Args:
            path: Blueprint file
            title: Validator title, defaults to the first minting validator
        """
        try:
            blueprint = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise InvalidScriptError(f"Cannot read blueprint {path}: {e}")

        validators = blueprint.get("validators") or []
        if title:
            matches = [v for v in validators if v.get("title") == title]
        else:
            matches = [v for v in validators if v.get("title", "").endswith(".mint")] or validators

        if not matches:
            raise InvalidScriptError(f"No validator found in blueprint {path}")

        plutus_version = blueprint.get("preamble", {}).get("plutusVersion", "v3")
        try:
            version = PlutusVersion(plutus_version)
        except ValueError:
            raise InvalidScriptError(f"Unsupported Plutus version in blueprint: {plutus_version}")
        return cls.from_cbor_hex(matches[0].get("compiledCode", ""), version)


@dataclass(frozen=True)
class PolicyBinding:
    """Minting policy bound to one input reference and one token name."""
    policy: PlutusScript
    policy_hash: ScriptHash
    token_name: bytes
    version: PlutusVersion = PlutusVersion.V3

    @property
    def policy_id(self) -> str:
        return self.policy_hash.payload.hex()

    @property
    def unit(self) -> str:
        return self.policy_id + self.token_name.hex()


def validate_token_name(token_name: Union[str, bytes]) -> bytes:
    """Encode and validate a token name as asset name bytes."""
    name = token_name.encode("utf-8") if isinstance(token_name, str) else bytes(token_name)
    if not name:
        raise InvalidRequestError("Token name is required")
    if len(name) > MAX_ASSET_NAME_BYTES:
        raise InvalidRequestError(
            f"Token name is {len(name)} bytes, the ledger allows {MAX_ASSET_NAME_BYTES}"
        )
    return name


def _data_param(value: Union[bytes, int]) -> uplc.ast.AST:
    """Plutus data constant for a bytes or integer parameter."""
    return uplc.ast.data_from_cbor(cbor2.dumps(value))


class PolicyBinder:
    """Applies input reference and token name to the minting script template."""

    def __init__(self, config: Optional[MinterConfig] = None):
        self.config = config or get_config()

    def load_template(self, script_cbor: Optional[str] = None) -> ScriptTemplate:
        """
        Resolve the script template from the request or configuration.

        Raises:
            InvalidScriptError: If no template is available
        """
        if script_cbor:
            return ScriptTemplate.from_cbor_hex(script_cbor, self.config.plutus_version)
        if self.config.mint_script_cbor:
            return ScriptTemplate.from_cbor_hex(self.config.mint_script_cbor, self.config.plutus_version)
        if self.config.mint_script_path:
            return ScriptTemplate.from_blueprint(
                self.config.mint_script_path,
                self.config.mint_validator_title,
            )
        raise InvalidScriptError("No minting script template configured")

    def bind(
        self,
        selected_input: UTxO,
        token_name: bytes,
        template: ScriptTemplate,
    ) -> PolicyBinding:
        """
        Parameterize the template and derive policy id and unit.

        Args:
            selected_input: Input the minting transaction will spend
            token_name: Asset name bytes
            template: Compiled script template

        Returns:
            PolicyBinding with the applied script, its hash and the unit
        """
        token_name = validate_token_name(token_name)
        tx_id = selected_input.input.transaction_id.payload
        index = selected_input.input.index

        term = template.program.term
        for param in (_data_param(tx_id), _data_param(index), _data_param(token_name)):
            term = uplc.ast.Apply(term, param)

        applied = uplc.ast.Program(template.program.version, term)
        script_bytes = flatten(applied)

        if template.version == PlutusVersion.V2:
            policy = PlutusV2Script(script_bytes)
        else:
            policy = PlutusV3Script(script_bytes)

        binding = PolicyBinding(policy, plutus_script_hash(policy), token_name, template.version)
        logger.debug(
            "policy_bound",
            utxo=f"{tx_id.hex()[:16]}...#{index}",
            policy_id=binding.policy_id,
        )
        return binding
