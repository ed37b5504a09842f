"""
Service wiring for the Arcadia API
Builds the chain client, store, verifier, reconciler and gateway from config
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from arcadia.chain.client import ChainClient
from arcadia.chain.simulated import SimulatedChain
from arcadia.chain.web3_client import Web3ChainClient
from arcadia.config import ArcadiaConfig
from arcadia.database.client import PaymentStore, get_payment_store
from arcadia.models import Tier, utcnow
from arcadia.payments.generation import GenerationTrigger, HttpGenerationTrigger
from arcadia.payments.polling import PaymentStatusGateway
from arcadia.payments.reconciler import PaymentReconciler
from arcadia.payments.requests import PaymentRequestGenerator
from arcadia.payments.verifier import TransactionVerifier

logger = structlog.get_logger()


@dataclass
class ArcadiaServices:
    """Collaborators shared by the routers and the maintenance loop"""
    config: ArcadiaConfig
    chain: ChainClient
    store: PaymentStore
    generation: GenerationTrigger
    generator: PaymentRequestGenerator
    verifier: TransactionVerifier
    reconciler: PaymentReconciler
    gateway: PaymentStatusGateway

    async def close(self) -> None:
        await self.generation.close()


def build_chain(config: ArcadiaConfig) -> ChainClient:
    """Simulated in-process escrow or a JSON-RPC client, per CHAIN_MODE"""
    if config.chain_mode == "web3":
        return Web3ChainClient(
            rpc_url=config.rpc_url,
            contract_address=config.escrow_contract_address,
            network=config.network,
        )

    tier_prices = {Tier(name): price for name, price in config.default_tier_prices().items()}
    chain = SimulatedChain.deploy(
        owner=config.contract_owner_address,
        treasury=config.treasury_address,
        contract_address=config.escrow_contract_address,
        tier_prices=tier_prices,
        refund_window=config.refund_window_seconds,
        network=config.network,
    )
    logger.info("simulated_chain_deployed", contract=chain.contract_address, network=config.network)
    return chain


def build_services(
    config: ArcadiaConfig,
    chain: Optional[ChainClient] = None,
    store: Optional[PaymentStore] = None,
    generation: Optional[GenerationTrigger] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ArcadiaServices:
    """Assemble the service graph; any collaborator can be injected"""
    chain = chain or build_chain(config)
    store = store or get_payment_store(config)
    generation = generation or HttpGenerationTrigger(
        url=config.generation_url,
        api_key=config.internal_api_key,
        timeout=config.generation_timeout,
    )

    verifier = TransactionVerifier(chain)

    return ArcadiaServices(
        config=config,
        chain=chain,
        store=store,
        generation=generation,
        generator=PaymentRequestGenerator(store, chain, config, clock=clock),
        verifier=verifier,
        reconciler=PaymentReconciler(store, verifier, generation, config, clock=clock),
        gateway=PaymentStatusGateway(store, clock=clock),
    )
