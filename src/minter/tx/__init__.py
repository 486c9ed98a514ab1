"""
Transaction module.

Handles input selection, policy binding, transaction construction and submission.
"""

from minter.tx.builder import TransactionBuilder
from minter.tx.policy import PolicyBinder, PolicyBinding, ScriptTemplate
from minter.tx.selector import UtxoSelector
from minter.tx.submitter import SubmissionRetryEngine

__all__ = [
    "TransactionBuilder",
    "PolicyBinder",
    "PolicyBinding",
    "ScriptTemplate",
    "UtxoSelector",
    "SubmissionRetryEngine",
]
