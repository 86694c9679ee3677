"""
Settlement requests and their endpoints.

Each flow has one request model (see ``dotpay.types.mpesa``) and one
initiate endpoint. Building a request from a quoted transaction and
resolving its path both go through the tables below, so adding a flow means
adding one row to each.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type

from ...types.mpesa import (
    BuygoodsSettlement,
    FlowType,
    MpesaTargets,
    MpesaTransaction,
    OfframpSettlement,
    OnrampSettlement,
    PaybillSettlement,
    SettlementRequest,
)
from ..errors import InputValidationError
from ..execution.models import FundingResult
from .signing import DEFAULT_BUYGOODS_REFERENCE


SETTLEMENT_MODELS: Dict[FlowType, Type[Any]] = {
    FlowType.ONRAMP: OnrampSettlement,
    FlowType.OFFRAMP: OfframpSettlement,
    FlowType.PAYBILL: PaybillSettlement,
    FlowType.BUYGOODS: BuygoodsSettlement,
}

SETTLEMENT_PATHS: Dict[FlowType, str] = {
    FlowType.ONRAMP: "onramp/stk/initiate",
    FlowType.OFFRAMP: "offramp/initiate",
    FlowType.PAYBILL: "merchant/paybill/initiate",
    FlowType.BUYGOODS: "merchant/buygoods/initiate",
}


def settlement_path(request: SettlementRequest) -> str:
    return SETTLEMENT_PATHS[request.flow_type]


def _require(value: Optional[str], message: str, field_name: str) -> str:
    if not value:
        raise InputValidationError(message, field_name=field_name)
    return value


def build_settlement_request(
    tx: MpesaTransaction,
    *,
    pin: Optional[str] = None,
    signature: Optional[str] = None,
    signed_at: Optional[str] = None,
    nonce: Optional[str] = None,
    funding: Optional[FundingResult] = None,
    business_id: Optional[str] = None,
    targets: Optional[MpesaTargets] = None,
) -> SettlementRequest:
    """
    Build the settlement variant for a quoted transaction.

    Authorization flows need pin, signature, signed_at and nonce; funding
    fields are attached only when a transfer hash exists. ``targets`` overrides
    the ones echoed on the quote.
    """
    if tx.quote is None:
        raise InputValidationError("Transaction has no quote to settle.", field_name="quote")

    flow = tx.flow_type
    targets = targets or tx.targets
    fields: Dict[str, Any] = {
        "quote_id": tx.quote.quote_id,
        "business_id": business_id or tx.business_id,
    }

    if flow is FlowType.ONRAMP or flow is FlowType.OFFRAMP:
        fields["phone_number"] = _require(targets.phone_number, "Phone number is missing.", "phone_number")
    elif flow is FlowType.PAYBILL:
        fields["paybill_number"] = _require(
            targets.paybill_number, "Paybill number is missing.", "paybill_number"
        )
        fields["account_reference"] = _require(
            targets.account_reference, "Account reference is missing.", "account_reference"
        )
    else:
        fields["till_number"] = _require(targets.till_number, "Till number is missing.", "till_number")
        fields["account_reference"] = targets.account_reference or DEFAULT_BUYGOODS_REFERENCE

    if flow.requires_authorization:
        fields["pin"] = _require(pin, "PIN is required.", "pin")
        fields["signature"] = _require(signature, "Signature is required.", "signature")
        fields["signed_at"] = _require(signed_at, "Signature timestamp is required.", "signed_at")
        fields["nonce"] = _require(nonce, "Signature nonce is required.", "nonce")
        if funding is not None and funding.funded:
            fields["onchain_tx_hash"] = funding.onchain_tx_hash
            fields["chain_id"] = funding.chain_id

    return SETTLEMENT_MODELS[flow](**fields)
