"""Shared payment fixtures."""

import copy
from typing import Any, Dict

import pytest

from dotpay.types.mpesa import MpesaTransaction


WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"
TREASURY_ADDRESS = "0x2222222222222222222222222222222222222222"
USDC_ADDRESS = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
FUNDING_TX_HASH = "0x" + "ab" * 32
SIGNATURE = "0x" + "1b" * 65

QUOTE = {
    "quoteId": "q_123",
    "currency": "KES",
    "amountRequested": 1000,
    "amountKes": 1000,
    "amountUsd": 6.56,
    "rateKesPerUsd": 152.439,
    "feeAmountKes": 10,
    "networkFeeKes": 5,
    "totalDebitKes": 1015,
    "expectedReceiveKes": 1000,
    "expiresAt": "2030-01-01T00:05:00.000Z",
    "snapshotAt": "2030-01-01T00:00:00.000Z",
}

TARGETS = {
    "onramp": {"phoneNumber": "254712345678"},
    "offramp": {"phoneNumber": "254712345678"},
    "paybill": {"paybillNumber": "888880", "accountReference": "ACC-001"},
    "buygoods": {"tillNumber": "123456", "accountReference": "DotPay"},
}


def transaction_payload(
    flow_type: str = "offramp",
    status: str = "quoted",
    transaction_id: str = "tx_1",
    onchain_required: bool = True,
    **overrides: Any,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "transactionId": transaction_id,
        "flowType": flow_type,
        "status": status,
        "quote": copy.deepcopy(QUOTE),
        "targets": dict(TARGETS[flow_type]),
        "daraja": {},
        "refund": {"status": "none"},
        "history": [],
        "createdAt": "2030-01-01T00:00:00.000Z",
        "updatedAt": "2030-01-01T00:00:01.000Z",
    }
    if onchain_required and flow_type != "onramp":
        payload["onchain"] = {
            "required": True,
            "chainId": 42161,
            "tokenAddress": USDC_ADDRESS,
            "tokenSymbol": "USDC",
            "treasuryAddress": TREASURY_ADDRESS,
            "expectedAmountUsd": 6.56,
            "expectedAmountUnits": "6560000",
        }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_payload():
    """Factory for camelCase transaction payloads as the backend sends them."""
    return transaction_payload


@pytest.fixture
def make_transaction():
    """Factory for parsed transactions."""

    def _make(*args: Any, **kwargs: Any) -> MpesaTransaction:
        return MpesaTransaction.model_validate(transaction_payload(*args, **kwargs))

    return _make
