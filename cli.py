#!/usr/bin/env python3
"""Command line client for DotPay M-Pesa flows"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from dotpay.auth import BackendTokenError, LocalTokenProvider, RemoteTokenProvider, TokenProvider
from dotpay.config import settings
from dotpay.core.errors import MpesaFlowError
from dotpay.core.execution import JsonRpcWalletSigner
from dotpay.core.execution.funding import OnchainFundingSubmitter
from dotpay.core.mpesa.orchestrator import TransactionOrchestrator
from dotpay.core.mpesa.poller import PollOutcome, StatusPoller
from dotpay.core.mpesa.receipt import build_receipt_text, flow_label, format_ksh, format_usd, status_label
from dotpay.logging_config import setup_logging
from dotpay.providers.evm import EvmRpcProvider
from dotpay.providers.mpesa import MpesaBackendClient
from dotpay.types.mpesa import FlowType, MpesaTransaction, TransactionStatus

SEND_FLOWS = {
    "cashout": FlowType.OFFRAMP,
    "offramp": FlowType.OFFRAMP,
    "paybill": FlowType.PAYBILL,
    "till": FlowType.BUYGOODS,
    "buygoods": FlowType.BUYGOODS,
}


def build_token_provider(address: Optional[str], session_token: Optional[str]) -> TokenProvider:
    """Mint locally when the backend secret is configured, otherwise ask the token endpoint."""
    if settings.has_jwt_secret and address:
        return LocalTokenProvider(address)
    return RemoteTokenProvider(session_token=session_token)


def build_backend(args) -> MpesaBackendClient:
    return MpesaBackendClient(
        base_url=args.backend_url,
        token_provider=build_token_provider(args.address, args.session_token),
    )


def print_quote(tx: MpesaTransaction):
    """Pretty print a quoted transaction"""
    quote = tx.quote
    print(f"\n🧾 {flow_label(tx.flow_type)} quote")
    print("=" * 50)
    if quote is None:
        print("❌ Backend returned no quote")
        return
    print(f"Quote ID:        {quote.quote_id}")
    print(f"Amount:          {format_ksh(quote.amount_kes)} ({format_usd(quote.amount_usd)})")
    print(f"Rate:            {quote.rate_kes_per_usd:,.2f} KES/USD")
    print(f"Fee:             {format_ksh(quote.fee_amount_kes)}")
    print(f"Network fee:     {format_ksh(quote.network_fee_kes)}")
    print(f"Total debit:     {format_ksh(quote.total_debit_kes)}")
    print(f"Recipient gets:  {format_ksh(quote.expected_receive_kes)}")
    if quote.expires_at:
        print(f"Expires at:      {quote.expires_at.isoformat()}")
    if tx.onchain and tx.onchain.required:
        print(f"Funding:         {tx.onchain.expected_amount_units} units of {tx.onchain.token_symbol or 'USDC'}")


def print_status(tx: MpesaTransaction):
    print(f"  ⏳ {tx.transaction_id}: {status_label(tx.status)}")


def print_error(error: MpesaFlowError):
    print(f"❌ Error: {error.message}")
    context = error.context
    if context.suggested_action:
        print(f"   {context.suggested_action}")
    if context.tx_hash:
        print(f"   Funding transfer: {context.tx_hash} (chain {context.chain_id})")
    if context.idempotency_key:
        print(f"   Idempotency key: {context.idempotency_key}")


def confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")


async def cli_quote(args):
    """CLI command to price a payment without sending it"""
    backend = build_backend(args)
    orchestrator = TransactionOrchestrator(backend)
    try:
        tx = await orchestrator.create_quote(
            FlowType(args.flow),
            args.amount,
            phone_number=args.phone,
            paybill_number=args.paybill,
            till_number=args.till,
            account_reference=args.reference,
        )
        print_quote(tx)
    finally:
        await backend.close()


async def _settle(orchestrator: TransactionOrchestrator, pin: Optional[str]):
    result = await orchestrator.confirm_and_send(pin=pin, on_update=print_status)
    if result.outcome is PollOutcome.TERMINAL and result.transaction is not None:
        icon = "✅" if result.transaction.status is TransactionStatus.SUCCEEDED else "⚠️"
        print(f"\n{icon} {status_label(result.transaction.status)}\n")
        print(build_receipt_text(result.transaction, mask_phone_number=True))
    elif result.transaction is not None:
        print(f"\n⏳ Still processing. Check again with: status {result.transaction.transaction_id} --watch")


async def settle_with_retry(orchestrator: TransactionOrchestrator, pin: Optional[str], assume_yes: bool) -> Optional[int]:
    """Settle, offering to resend the held quote under the same key after a recoverable failure"""
    while True:
        try:
            await _settle(orchestrator, pin)
            return None
        except MpesaFlowError as e:
            if assume_yes or not e.context.recoverable:
                raise
            print_error(e)
            if not confirm("\nRetry with the same quote?", False):
                return 1
            print("🔁 Retrying...")


async def cli_topup(args):
    """Top up the wallet from M-Pesa via an STK push"""
    backend = build_backend(args)
    orchestrator = TransactionOrchestrator(backend)
    try:
        tx = await orchestrator.create_quote(FlowType.ONRAMP, args.amount, phone_number=args.phone)
        print_quote(tx)
        if not confirm("\nSend the M-Pesa prompt to this phone?", args.yes):
            print("Cancelled.")
            return
        print("📲 Check your phone for the M-Pesa prompt...")
        await _settle(orchestrator, None)
    finally:
        await backend.close()


async def cli_send(args):
    """Cash out or pay a merchant from the wallet"""
    if not args.address:
        print("❌ --address is required to sign and fund payments")
        return

    flow = SEND_FLOWS[args.flow]
    backend = build_backend(args)
    rpc = EvmRpcProvider(rpc_url=args.rpc_url)
    wallet = JsonRpcWalletSigner(args.address, rpc)
    orchestrator = TransactionOrchestrator(
        backend,
        wallet=wallet,
        funding=OnchainFundingSubmitter(wallet=wallet, rpc=rpc),
    )

    try:
        tx = await orchestrator.create_quote(
            flow,
            args.amount,
            phone_number=args.phone,
            paybill_number=args.paybill,
            till_number=args.till,
            account_reference=args.reference,
        )
        print_quote(tx)
        if not confirm("\nApprove and send this payment?", args.yes):
            print("Cancelled.")
            return

        pin = args.pin or getpass.getpass(f"Enter your {settings.pin_length}-digit app PIN: ")
        print("🔐 Approving payment...")
        return await settle_with_retry(orchestrator, pin, args.yes)
    finally:
        await backend.close()
        await rpc.close()


async def cli_status(args):
    """Show a transaction, optionally polling until it settles"""
    backend = build_backend(args)
    try:
        if not args.watch:
            tx = await backend.get_transaction(args.transaction_id)
            print(build_receipt_text(tx, mask_phone_number=True))
            return

        poller = StatusPoller(backend.get_transaction)
        result = await poller.poll(args.transaction_id, on_update=print_status)
        if result.transaction is not None:
            print()
            print(build_receipt_text(result.transaction, mask_phone_number=True))
        if result.outcome is PollOutcome.TIMED_OUT:
            print("\n⏳ Still processing after the polling window.")
    finally:
        await backend.close()


async def cli_history(args):
    """List recent M-Pesa transactions"""
    backend = build_backend(args)
    try:
        result = await backend.list_transactions(
            flow_type=FlowType(args.flow) if args.flow else None,
            status=TransactionStatus(args.status) if args.status else None,
            limit=args.limit,
        )
    finally:
        await backend.close()

    if not result.transactions:
        print("No transactions yet.")
        return

    print(f"\n📜 {len(result.transactions)} transactions")
    print("-" * 70)
    for tx in result.transactions:
        total = format_ksh(tx.quote.total_debit_kes) if tx.quote else "-"
        when = tx.created_at.strftime("%Y-%m-%d %H:%M") if tx.created_at else "-"
        print(f"{when:<17} {flow_label(tx.flow_type):<13} {total:>16}  {status_label(tx.status):<32} {tx.transaction_id}")


def _add_target_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--phone", help="M-Pesa phone number (07..., 2547..., +2547...)")
    parser.add_argument("--paybill", help="PayBill business number")
    parser.add_argument("--till", help="Till (Buy Goods) number")
    parser.add_argument("--reference", help="Account reference")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DotPay M-Pesa CLI")
    parser.add_argument("--address", help="Wallet address used for backend tokens and signing")
    parser.add_argument("--session-token", help="Session token for the backend-token endpoint")
    parser.add_argument("--backend-url", help="Override the M-Pesa API base URL")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command")

    quote_parser = subparsers.add_parser("quote", help="Get a price quote")
    quote_parser.add_argument("flow", choices=[f.value for f in FlowType], help="Flow type")
    quote_parser.add_argument("amount", type=float, help="Amount in KES")
    _add_target_arguments(quote_parser)

    topup_parser = subparsers.add_parser("topup", help="Top up from M-Pesa")
    topup_parser.add_argument("amount", type=float, help="Amount in KES")
    topup_parser.add_argument("--phone", required=True, help="M-Pesa phone number")
    topup_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    send_parser = subparsers.add_parser("send", help="Cash out or pay a merchant")
    send_parser.add_argument("flow", choices=sorted(SEND_FLOWS), help="Payment type")
    send_parser.add_argument("amount", type=float, help="Amount in KES")
    _add_target_arguments(send_parser)
    send_parser.add_argument("--pin", help="App PIN (prompted when omitted)")
    send_parser.add_argument("--rpc-url", help="JSON-RPC endpoint for funding")
    send_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    status_parser = subparsers.add_parser("status", help="Show transaction status")
    status_parser.add_argument("transaction_id", help="Transaction ID")
    status_parser.add_argument("--watch", action="store_true", help="Poll until the transaction settles")

    history_parser = subparsers.add_parser("history", help="List recent transactions")
    history_parser.add_argument("--flow", choices=[f.value for f in FlowType], help="Filter by flow type")
    history_parser.add_argument("--status", choices=[s.value for s in TransactionStatus], help="Filter by status")
    history_parser.add_argument("--limit", type=int, default=20, help="Max transactions (default: 20)")

    return parser


COMMANDS = {
    "quote": cli_quote,
    "topup": cli_topup,
    "send": cli_send,
    "status": cli_status,
    "history": cli_history,
}


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level)

    try:
        code = await COMMANDS[args.command](args)
    except MpesaFlowError as e:
        print_error(e)
        return 1
    except BackendTokenError as e:
        print(f"❌ Auth error: {e.message}")
        return 1
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nGoodbye! 👋")
        return 130
    return code or 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
