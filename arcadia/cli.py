"""
Arcadia Payments CLI
Create payment requests, submit transaction hashes, watch payment status
and send owner-only escrow calls
"""

import asyncio
import sys
from typing import List, Optional

import httpx
import structlog
from rich.console import Console
from rich.table import Table

from arcadia.chain.web3_client import Web3ChainClient, Web3EscrowAdmin
from arcadia.config import get_config
from arcadia.errors import PaymentNotFoundError, PollingTimeoutError
from arcadia.models import Tier
from arcadia.payments.polling import HttpStatusFetcher, PaymentStatusSnapshot, StatusPoller

logger = structlog.get_logger()
console = Console()

STATUS_COLOURS = {
    "PENDING": "yellow",
    "PROCESSING": "blue",
    "COMPLETED": "green",
    "FAILED": "red",
    "EXPIRED": "red",
    "REFUNDED": "magenta",
}


class PaymentCLI:
    """
    Client for a running Arcadia API:
    1. Request a payment for a tier
    2. Submit the transaction hash for verification
    3. Watch the payment until it settles
    """

    def __init__(self, base_url: Optional[str] = None):
        config = get_config()
        self.base_url = (base_url or config.public_base_url).rstrip("/")
        self.client = httpx.AsyncClient(timeout=30.0)
        self.poll_interval = config.polling_interval_seconds
        self.poll_max_duration = config.polling_max_duration_seconds

    async def request_payment(self, tier: str, brand_id: str, brief_id: Optional[str] = None) -> Optional[dict]:
        """Create a payment request; the API answers 402 with the payment details"""
        response = await self.client.post(
            f"{self.base_url}/api/payments/request",
            json={"promptType": tier, "brandId": brand_id, "briefId": brief_id},
        )
        if response.status_code != 402:
            console.print(f"[red]Payment request failed: {response.json().get('error')}[/red]")
            return None

        payment = response.json()
        logger.info("payment_requested", payment_id=payment["paymentId"], amount=payment["amount"])
        return payment

    async def verify(self, payment_id: str, transaction_hash: str) -> dict:
        response = await self.client.post(
            f"{self.base_url}/api/payments/verify",
            json={"paymentId": payment_id, "transactionHash": transaction_hash},
        )
        return response.json()

    async def watch(self, payment_id: str) -> Optional[PaymentStatusSnapshot]:
        """Poll until the payment reaches a terminal status, printing each change"""
        poller = StatusPoller(
            HttpStatusFetcher(self.base_url, client=self.client),
            interval=self.poll_interval,
            max_duration=self.poll_max_duration,
            only_changes=True,
        )

        last = None
        try:
            async for snapshot in poller.poll(payment_id):
                self.display_status(snapshot)
                last = snapshot
        except PaymentNotFoundError:
            console.print(f"[red]Payment not found: {payment_id}[/red]")
        except PollingTimeoutError:
            console.print("[yellow]Polling timeout - payment status check stopped[/yellow]")
        return last

    def display_payment(self, payment: dict):
        table = Table(title="Payment Request", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")

        for key in ("paymentId", "tier", "amount", "currency", "network", "recipient", "expiresAt", "paymentUrl"):
            table.add_row(key, str(payment.get(key, "")))
        console.print(table)

        for step in payment.get("instructions", {}).get("steps", []):
            console.print(f"  - {step}")

    def display_status(self, snapshot: PaymentStatusSnapshot):
        colour = STATUS_COLOURS.get(snapshot.status.value, "white")
        console.print(f"Status: [{colour}]{snapshot.status.value}[/]")

        if snapshot.transaction_hash:
            console.print(f"Transaction: {snapshot.transaction_hash}")
        if snapshot.block_number is not None:
            console.print(f"Block: {snapshot.block_number}")
        if snapshot.generation_id:
            console.print(f"Prompt: {snapshot.generation_id}")
        if snapshot.failure_reason:
            console.print(f"[red]Reason: {snapshot.failure_reason}[/red]")

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()


def build_admin() -> Web3EscrowAdmin:
    """Owner-signed escrow client for the configured RPC endpoint"""
    config = get_config()
    if not config.escrow_admin_private_key:
        raise ValueError("ESCROW_ADMIN_PRIVATE_KEY is required for admin commands")
    chain = Web3ChainClient(
        rpc_url=config.rpc_url,
        contract_address=config.escrow_contract_address,
        network=config.network,
    )
    return Web3EscrowAdmin(chain, config.escrow_admin_private_key)


async def run_admin_command(admin: Web3EscrowAdmin, args: List[str]) -> str:
    """Dispatch an owner-only escrow call; returns the mined tx hash"""
    command = args[0] if args else ""

    if command == "set-price" and len(args) > 2:
        return await admin.update_tier_price(Tier.parse(args[1]), int(args[2]))
    if command == "set-treasury" and len(args) > 1:
        return await admin.update_treasury_wallet(args[1])
    if command == "set-refund-window" and len(args) > 1:
        return await admin.update_refund_window(int(args[1]))
    if command == "pause":
        return await admin.pause()
    if command == "unpause":
        return await admin.unpause()
    if command == "withdraw":
        return await admin.emergency_withdraw()

    raise ValueError(f"Invalid admin command: {' '.join(args)}")


USAGE = (
    "Usage: python -m arcadia.cli "
    "[request <tier> <brand_id> | verify <payment_id> <tx_hash> | status <payment_id> | watch <payment_id> | "
    "admin <set-price tier wei | set-treasury address | set-refund-window seconds | pause | unpause | withdraw>]"
)


async def main():
    """Main entry point for the payments CLI"""
    # Configure structured logging
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer()
        ]
    )

    args = sys.argv[1:]
    if not args:
        console.print(USAGE)
        return

    cli = PaymentCLI()
    command = args[0]

    try:
        if command == "request" and len(args) > 2:
            payment = await cli.request_payment(args[1], args[2], args[3] if len(args) > 3 else None)
            if payment:
                cli.display_payment(payment)

        elif command == "verify" and len(args) > 2:
            result = await cli.verify(args[1], args[2])
            console.print(result)

        elif command == "status" and len(args) > 1:
            fetch = HttpStatusFetcher(cli.base_url, client=cli.client)
            cli.display_status(await fetch(args[1]))

        elif command == "watch" and len(args) > 1:
            await cli.watch(args[1])

        elif command == "admin" and len(args) > 1:
            tx_hash = await run_admin_command(build_admin(), args[1:])
            console.print(f"[green]Confirmed: {tx_hash}[/green]")

        else:
            console.print("[red]Invalid command[/red]")
            console.print(USAGE)

    except PaymentNotFoundError:
        console.print(f"[red]Payment not found: {args[1]}[/red]")
    except httpx.HTTPError as e:
        console.print(f"[red]API error: {e}[/red]")
    except (ValueError, RuntimeError) as e:
        console.print(f"[red]{e}[/red]")

    finally:
        await cli.close()


if __name__ == "__main__":
    asyncio.run(main())
