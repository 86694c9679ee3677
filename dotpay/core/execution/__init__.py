"""
On-chain funding layer.

- TransactionBuilder: encodes the ERC-20 transfer to the treasury
- WalletSigner: boundary to the user's wallet (signing and broadcasting)
- OnchainFundingSubmitter (in ``.funding``): validates a quote's funding
  descriptor, sends the transfer and waits for confirmation

Usage:
    from dotpay.core.execution.funding import OnchainFundingSubmitter

    submitter = OnchainFundingSubmitter(wallet=wallet, rpc=EvmRpcProvider())
    funding = await submitter.submit(quote_transaction)
"""

from .models import (
    FundingResult,
    NOT_REQUIRED,
    OnchainStatus,
    PreparedTransaction,
    TransactionResult,
)
from .tx_builder import TransactionBuilder
from .wallet import JsonRpcWalletSigner, WalletSigner

__all__ = [
    "FundingResult",
    "NOT_REQUIRED",
    "OnchainStatus",
    "PreparedTransaction",
    "TransactionResult",
    "TransactionBuilder",
    "JsonRpcWalletSigner",
    "WalletSigner",
]
