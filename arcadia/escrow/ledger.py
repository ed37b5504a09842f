"""
Native balance ledger backing the in-process escrow contract
"""

import copy
from typing import Dict, Set

import structlog

from arcadia.config import ZERO_ADDRESS
from arcadia.errors import TransferFailedError

logger = structlog.get_logger()


def normalize_address(address: str) -> str:
    return (address or "").lower()


class Ledger:
    """Wei balances per address with all-or-nothing transfers"""

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._rejecting: Set[str] = set()

    def balance_of(self, address: str) -> int:
        return self._balances.get(normalize_address(address), 0)

    def credit(self, address: str, amount: int) -> None:
        """Mint funds to an address (faucet / genesis allocation)"""
        if amount < 0:
            raise ValueError("Cannot credit a negative amount")
        key = normalize_address(address)
        self._balances[key] = self._balances.get(key, 0) + amount

    def reject_incoming(self, address: str, reject: bool = True) -> None:
        """Make an address refuse native transfers, like a contract without receive()"""
        key = normalize_address(address)
        if reject:
            self._rejecting.add(key)
        else:
            self._rejecting.discard(key)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """
        Move wei between addresses.

        Raises:
            TransferFailedError: recipient is the zero address or refuses funds,
                or the sender balance is too low
        """
        src = normalize_address(sender)
        dst = normalize_address(recipient)

        if amount < 0:
            raise TransferFailedError("Negative transfer amount")
        if dst == ZERO_ADDRESS:
            raise TransferFailedError("Transfer to the zero address")
        if dst in self._rejecting:
            raise TransferFailedError(f"Recipient {dst} rejected the transfer")

        available = self._balances.get(src, 0)
        if available < amount:
            raise TransferFailedError(f"Insufficient balance: {available} < {amount}")

        self._balances[src] = available - amount
        self._balances[dst] = self._balances.get(dst, 0) + amount
        logger.debug("ledger_transfer", sender=src, recipient=dst, amount=amount)

    def snapshot(self) -> dict:
        return {
            "balances": dict(self._balances),
            "rejecting": set(self._rejecting),
        }

    def restore(self, state: dict) -> None:
        self._balances = copy.copy(state["balances"])
        self._rejecting = copy.copy(state["rejecting"])
