"""
Chain access layer for Arcadia
The chain client is injected into the verifier and request generator
"""

from arcadia.chain.client import ChainClient, ChainTransaction, ChainReceipt, CHAIN_IDS
from arcadia.chain.simulated import SimulatedChain
from arcadia.chain.web3_client import Web3ChainClient, Web3EscrowAdmin

__all__ = [
    "ChainClient",
    "ChainTransaction",
    "ChainReceipt",
    "CHAIN_IDS",
    "SimulatedChain",
    "Web3ChainClient",
    "Web3EscrowAdmin",
]
