"""
Chain client capability
Read-only view of the chain consumed by the verifier and the request generator
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from arcadia.escrow.contract import EscrowPayment
from arcadia.models import Tier

CHAIN_IDS = {
    "scroll-sepolia": 534351,
    "scroll": 534352,
    "local": 31337,
}


@dataclass(frozen=True)
class ChainTransaction:
    """A transaction as seen on-chain; block_number is None while unmined"""
    hash: str
    sender: str
    to: Optional[str]
    value: int
    input: str
    block_number: Optional[int] = None


@dataclass(frozen=True)
class ChainReceipt:
    """Execution result of a mined transaction (status 1 = success, 0 = reverted)"""
    transaction_hash: str
    status: int
    block_number: int
    gas_used: int


class ChainClient(ABC):
    """Injected chain access; implementations must not mutate chain state"""

    contract_address: str
    network: str

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[ChainTransaction]:
        """Transaction by hash, or None if unknown to the node"""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[ChainReceipt]:
        """Receipt by hash, or None if not yet mined"""

    @abstractmethod
    async def get_tier_price(self, tier: Tier) -> int:
        """Current escrow contract price for a tier, in wei"""

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[EscrowPayment]:
        """Escrow ledger entry for a payment id, or None if never paid"""

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS.get(self.network, CHAIN_IDS["local"])
