"""
Web3-backed chain client for the deployed escrow contract
Reads transactions, receipts and ledger entries over JSON-RPC; the admin
helper signs owner-only contract calls with a local key.
"""

import asyncio
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound
import structlog

from arcadia.chain.client import ChainClient, ChainReceipt, ChainTransaction
from arcadia.config import ZERO_ADDRESS
from arcadia.escrow.abi import ESCROW_ABI
from arcadia.escrow.contract import EscrowPayment
from arcadia.models import Tier

logger = structlog.get_logger()

# Approximate gas for owner-only setters
ADMIN_GAS_LIMIT = 100000


def _hex(value) -> str:
    """Normalise HexBytes/bytes/str to a 0x-prefixed lowercase hex string"""
    if value is None:
        return "0x"
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text.lower() if text.startswith("0x") else f"0x{text.lower()}"


class Web3ChainClient(ChainClient):
    """
    Chain client talking to a JSON-RPC node.

    web3's HTTP provider is blocking, so calls are pushed onto a worker
    thread to keep the event loop responsive.
    """

    def __init__(
        self,
        rpc_url: str = "https://sepolia-rpc.scroll.io",
        contract_address: str = ZERO_ADDRESS,
        network: str = "scroll-sepolia",
        w3: Optional[Web3] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.network = network
        self.contract_address = contract_address.lower()
        self.escrow = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=ESCROW_ABI,
        )
        logger.info("web3_chain_client_ready", network=network, contract=self.contract_address)

    async def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        try:
            tx = await asyncio.to_thread(self.w3.eth.get_transaction, tx_hash)
        except TransactionNotFound:
            return None

        return ChainTransaction(
            hash=_hex(tx["hash"]),
            sender=str(tx["from"]).lower(),
            to=str(tx["to"]).lower() if tx.get("to") else None,
            value=int(tx["value"]),
            input=_hex(tx.get("input")),
            block_number=tx.get("blockNumber"),
        )

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        try:
            receipt = await asyncio.to_thread(self.w3.eth.get_transaction_receipt, tx_hash)
        except TransactionNotFound:
            return None

        return ChainReceipt(
            transaction_hash=_hex(receipt["transactionHash"]),
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
        )

    async def get_tier_price(self, tier: Tier) -> int:
        call = self.escrow.functions.getTierPrice(Tier.parse(tier).index)
        return int(await asyncio.to_thread(call.call))

    async def get_payment(self, payment_id: str) -> Optional[EscrowPayment]:
        call = self.escrow.functions.getPayment(payment_id)
        payer, amount, tier_index, completed, timestamp = await asyncio.to_thread(call.call)

        # Solidity returns a zeroed struct for unknown ids
        if str(payer).lower() == ZERO_ADDRESS:
            return None

        return EscrowPayment(
            payer=str(payer).lower(),
            amount=int(amount),
            tier=Tier.from_index(int(tier_index)),
            completed=bool(completed),
            timestamp=int(timestamp),
        )


class Web3EscrowAdmin:
    """Signs and sends owner-only escrow calls (prices, treasury, refund window, pause)"""

    def __init__(self, chain: Web3ChainClient, private_key: str):
        self.chain = chain
        self.account = Account.from_key(private_key)
        self.address = self.account.address

    async def update_tier_price(self, tier: Tier, new_price: int) -> str:
        if new_price <= 0:
            raise ValueError("Price must be greater than zero")
        fn = self.chain.escrow.functions.updateTierPrice(Tier.parse(tier).index, new_price)
        return await self._send(fn, "updateTierPrice")

    async def update_treasury_wallet(self, new_treasury: str) -> str:
        fn = self.chain.escrow.functions.updateTreasuryWallet(Web3.to_checksum_address(new_treasury))
        return await self._send(fn, "updateTreasuryWallet")

    async def update_refund_window(self, new_window: int) -> str:
        fn = self.chain.escrow.functions.updateRefundWindow(new_window)
        return await self._send(fn, "updateRefundWindow")

    async def pause(self) -> str:
        return await self._send(self.chain.escrow.functions.pause(), "pause")

    async def unpause(self) -> str:
        return await self._send(self.chain.escrow.functions.unpause(), "unpause")

    async def emergency_withdraw(self) -> str:
        return await self._send(self.chain.escrow.functions.emergencyWithdraw(), "emergencyWithdraw")

    async def _send(self, fn, name: str) -> str:
        """Build, sign and broadcast an owner call; returns the tx hash once mined successfully"""
        tx_hash = await asyncio.to_thread(self._sign_and_send, fn)
        logger.info("escrow_admin_call_sent", call=name, tx_hash=_hex(tx_hash))

        receipt = await asyncio.to_thread(self.chain.w3.eth.wait_for_transaction_receipt, tx_hash, 120)
        if receipt["status"] != 1:
            logger.error("escrow_admin_call_reverted", call=name, tx_hash=_hex(tx_hash))
            raise RuntimeError(f"Escrow admin call {name} reverted on-chain")

        logger.info(
            "escrow_admin_call_confirmed",
            call=name,
            tx_hash=_hex(tx_hash),
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
        return _hex(tx_hash)

    def _sign_and_send(self, fn):
        # Blocking JSON-RPC calls; run off the event loop
        w3 = self.chain.w3
        tx = fn.build_transaction({
            "from": self.address,
            "nonce": w3.eth.get_transaction_count(self.address),
            "gas": ADMIN_GAS_LIMIT,
            "gasPrice": w3.eth.gas_price,
            "chainId": self.chain.chain_id,
        })
        signed_tx = w3.eth.account.sign_transaction(tx, self.account.key)
        return w3.eth.send_raw_transaction(signed_tx.raw_transaction)
