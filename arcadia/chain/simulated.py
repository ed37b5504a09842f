"""
In-process simulated chain
Hosts the escrow contract, mines transactions into blocks and serves the
ChainClient read interface. Used for local development and tests.
"""

from typing import Callable, Dict, List, Optional

from web3 import Web3
import structlog

from arcadia.chain.client import ChainClient, ChainReceipt, ChainTransaction
from arcadia.errors import ContractRevert, InvalidPaymentIdError, InvalidTierError
from arcadia.escrow.abi import (
    PROCESS_PAYMENT_SELECTOR,
    REQUEST_REFUND_SELECTOR,
    call_selector,
    decode_payment_binding,
    decode_refund_call,
)
from arcadia.escrow.contract import (
    CallContext,
    DEFAULT_REFUND_WINDOW,
    EscrowContract,
    EscrowPayment,
)
from arcadia.escrow.ledger import Ledger, normalize_address
from arcadia.models import Tier

logger = structlog.get_logger()

# Flat gas schedule for the simulation
GAS_TRANSFER = 21000
GAS_PROCESS_PAYMENT = 87512
GAS_REFUND = 41230


class SimulatedChain(ChainClient):
    """
    Deterministic single-node chain.

    Each mined transaction runs atomically: ledger and contract state are
    snapshotted first and restored if the contract reverts, and the receipt
    is recorded with status 0 like a reverted EVM transaction.
    """

    def __init__(
        self,
        contract: EscrowContract,
        network: str = "local",
    ):
        self.contract = contract
        self.ledger = contract.ledger
        self.network = network
        self.contract_address = contract.address

        self.block_number = 0
        self._nonces: Dict[str, int] = {}
        self._transactions: Dict[str, ChainTransaction] = {}
        self._receipts: Dict[str, ChainReceipt] = {}
        self._revert_reasons: Dict[str, str] = {}
        self._pending: List[ChainTransaction] = []

    @classmethod
    def deploy(
        cls,
        owner: str,
        treasury: str,
        contract_address: str,
        tier_prices: Optional[Dict[Tier, int]] = None,
        refund_window: int = DEFAULT_REFUND_WINDOW,
        network: str = "local",
        clock: Optional[Callable[[], int]] = None,
    ) -> "SimulatedChain":
        """Create a fresh ledger and escrow contract sharing one clock"""
        ledger = Ledger()
        contract = EscrowContract(
            address=contract_address,
            owner=owner,
            treasury=treasury,
            ledger=ledger,
            tier_prices=tier_prices,
            refund_window=refund_window,
            clock=clock,
        )
        return cls(contract, network=network)

    # ===== WRITE PATH (wallet side) =====

    def fund(self, address: str, amount: int) -> None:
        """Faucet: mint wei to an address"""
        self.ledger.credit(address, amount)

    def send_transaction(
        self,
        sender: str,
        to: str,
        value: int = 0,
        data: str = "0x",
        mine: bool = True,
    ) -> str:
        """
        Broadcast a transaction.

        Args:
            sender: From address
            to: Destination (escrow contract or any account)
            value: Attached wei
            data: Calldata hex
            mine: Include immediately; otherwise stays pending until mine_pending()

        Returns:
            Transaction hash
        """
        sender = normalize_address(sender)
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        tx_hash = "0x" + bytes(Web3.keccak(text=f"{sender}:{nonce}:{self.network}")).hex()

        tx = ChainTransaction(
            hash=tx_hash,
            sender=sender,
            to=normalize_address(to),
            value=value,
            input=data or "0x",
            block_number=None,
        )
        self._transactions[tx_hash] = tx

        if mine:
            self._mine(tx)
        else:
            self._pending.append(tx)
        return tx_hash

    def mine_pending(self) -> int:
        """Mine every pending transaction, one block each; returns count"""
        pending, self._pending = self._pending, []
        for tx in pending:
            self._mine(tx)
        return len(pending)

    def revert_reason(self, tx_hash: str) -> Optional[str]:
        return self._revert_reasons.get(tx_hash)

    def _mine(self, tx: ChainTransaction) -> None:
        self.block_number += 1
        ledger_state = self.ledger.snapshot()
        contract_state = self.contract.snapshot()

        status = 1
        try:
            gas_used = self._execute(tx)
        except ContractRevert as e:
            self.ledger.restore(ledger_state)
            self.contract.restore(contract_state)
            status = 0
            gas_used = GAS_TRANSFER
            self._revert_reasons[tx.hash] = str(e)
            logger.info("simulated_tx_reverted", tx_hash=tx.hash, reason=str(e))

        mined = ChainTransaction(
            hash=tx.hash,
            sender=tx.sender,
            to=tx.to,
            value=tx.value,
            input=tx.input,
            block_number=self.block_number,
        )
        self._transactions[tx.hash] = mined
        self._receipts[tx.hash] = ChainReceipt(
            transaction_hash=tx.hash,
            status=status,
            block_number=self.block_number,
            gas_used=gas_used,
        )

    def _execute(self, tx: ChainTransaction) -> int:
        ctx = CallContext(sender=tx.sender, value=tx.value)

        if tx.to != self.contract.address:
            self.ledger.transfer(tx.sender, tx.to, tx.value)
            return GAS_TRANSFER

        binding = decode_payment_binding(tx.input)
        if binding is not None and binding.kind == "contract":
            self.contract.process_payment(ctx, binding.payment_id, binding.tier)
            return GAS_PROCESS_PAYMENT

        refund_id = decode_refund_call(tx.input)
        if refund_id is not None:
            self.contract.request_refund(ctx, refund_id)
            return GAS_REFUND

        selector = call_selector(tx.input)
        if selector == PROCESS_PAYMENT_SELECTOR:
            raise InvalidTierError("Invalid tier")
        if selector == REQUEST_REFUND_SELECTOR:
            raise InvalidPaymentIdError("Malformed refund call")
        if selector and binding is None:
            raise ContractRevert("Unrecognised contract call")

        # Plain value (or memo) sent to the contract lands in its refund pool
        self.contract.receive(ctx)
        return GAS_TRANSFER

    # ===== READ PATH (ChainClient) =====

    async def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        return self._transactions.get(tx_hash.lower())

    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        return self._receipts.get(tx_hash.lower())

    async def get_tier_price(self, tier: Tier) -> int:
        return self.contract.get_tier_price(tier)

    async def get_payment(self, payment_id: str) -> Optional[EscrowPayment]:
        return self.contract.get_payment(payment_id)
