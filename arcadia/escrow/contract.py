"""
Tiered payment escrow contract
Deterministic model of the on-chain contract: exact-price tier payments,
forward-to-treasury settlement and a time-boxed refund window.

Every method validates all of its preconditions before touching state, so a
revert (any ContractRevert) never leaves partial state behind.
"""

import copy
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import structlog

from arcadia.config import ZERO_ADDRESS
from arcadia.errors import (
    AlreadyRefundedError,
    AmountMismatchError,
    ContractPausedError,
    DuplicatePaymentIdError,
    EscrowPaymentNotFound,
    InsufficientContractBalanceError,
    InvalidParameterError,
    InvalidPaymentIdError,
    InvalidTierError,
    RefundWindowClosedError,
    TransferFailedError,
    UnauthorizedError,
)
from arcadia.escrow.ledger import Ledger, normalize_address
from arcadia.models import Tier

logger = structlog.get_logger()

DEFAULT_TIER_PRICES = {
    Tier.BASIC: 5_000_000_000_000_000,        # 0.005 ETH
    Tier.PREMIUM: 10_000_000_000_000_000,     # 0.01 ETH
    Tier.ENTERPRISE: 25_000_000_000_000_000,  # 0.025 ETH
}
DEFAULT_REFUND_WINDOW = 24 * 60 * 60


@dataclass(frozen=True)
class CallContext:
    """msg.sender and msg.value for a contract call"""
    sender: str
    value: int = 0


@dataclass
class EscrowPayment:
    """Ledger entry for a single payment id"""
    payer: str
    amount: int
    tier: Tier
    completed: bool
    timestamp: int


@dataclass(frozen=True)
class ContractEvent:
    name: str
    args: dict = field(default_factory=dict)
    timestamp: int = 0


class EscrowContract:
    """
    Escrow ledger for tiered payments.

    Payments are forwarded to the treasury inside process_payment, so the
    contract only holds funds that were explicitly sent to receive(). Refunds
    are paid from that balance and revert when it is too low.
    """

    def __init__(
        self,
        address: str,
        owner: str,
        treasury: str,
        ledger: Ledger,
        tier_prices: Optional[Dict[Tier, int]] = None,
        refund_window: int = DEFAULT_REFUND_WINDOW,
        clock: Optional[Callable[[], int]] = None,
    ):
        if normalize_address(treasury) == ZERO_ADDRESS:
            raise InvalidParameterError("Invalid treasury wallet")

        self.address = normalize_address(address)
        self.ledger = ledger
        self._clock = clock or (lambda: int(time.time()))

        self._owner = normalize_address(owner)
        self._treasury = normalize_address(treasury)
        self._tier_prices: Dict[Tier, int] = dict(tier_prices or DEFAULT_TIER_PRICES)
        self._refund_window = refund_window
        self._paused = False

        self._payments: Dict[str, EscrowPayment] = {}
        self._payer_counts: Dict[str, int] = {}
        self._total_payments = 0
        self._events: List[ContractEvent] = []

        logger.info(
            "escrow_contract_deployed",
            address=self.address,
            owner=self._owner,
            treasury=self._treasury,
        )

    # ===== PAYMENT METHODS =====

    def process_payment(self, ctx: CallContext, payment_id: str, tier) -> EscrowPayment:
        """
        Record a tier payment and forward the attached value to the treasury.

        Args:
            ctx: Caller and attached value
            payment_id: Off-chain generated payment id, written at most once
            tier: Tier enum, name or contract index

        Returns:
            The recorded EscrowPayment
        """
        if self._paused:
            raise ContractPausedError("Contract is paused", payment_id=payment_id)
        if not payment_id:
            raise InvalidPaymentIdError("Payment ID cannot be empty")

        resolved_tier = self._resolve_tier(tier)

        if payment_id in self._payments:
            raise DuplicatePaymentIdError("Payment ID already exists", payment_id=payment_id)

        price = self._tier_prices[resolved_tier]
        if ctx.value != price:
            raise AmountMismatchError(expected=price, actual=ctx.value, payment_id=payment_id)

        payer = normalize_address(ctx.sender)
        self.ledger.transfer(payer, self.address, ctx.value)
        try:
            self.ledger.transfer(self.address, self._treasury, ctx.value)
        except TransferFailedError:
            self.ledger.transfer(self.address, payer, ctx.value)
            raise TransferFailedError("Treasury transfer failed", payment_id=payment_id)

        now = self._clock()
        payment = EscrowPayment(
            payer=payer,
            amount=ctx.value,
            tier=resolved_tier,
            completed=True,
            timestamp=now,
        )
        self._payments[payment_id] = payment
        self._payer_counts[payer] = self._payer_counts.get(payer, 0) + 1
        self._total_payments += 1

        self._emit(
            "PaymentReceived",
            paymentId=payment_id,
            payer=payer,
            amount=ctx.value,
            tier=resolved_tier.value,
        )
        logger.info(
            "escrow_payment_received",
            payment_id=payment_id,
            payer=payer,
            amount=ctx.value,
            tier=resolved_tier.value,
        )
        return copy.copy(payment)

    def request_refund(self, ctx: CallContext, payment_id: str) -> int:
        """
        Refund a payment to its original payer within the refund window.

        Returns:
            Refunded amount in wei
        """
        payment = self._payments.get(payment_id)
        if payment is None:
            raise EscrowPaymentNotFound("Payment not found", payment_id=payment_id)
        if normalize_address(ctx.sender) != payment.payer:
            raise UnauthorizedError("Only payer can request refund", payment_id=payment_id)
        if not payment.completed:
            raise AlreadyRefundedError("Payment already refunded", payment_id=payment_id)
        if self._clock() > payment.timestamp + self._refund_window:
            raise RefundWindowClosedError("Refund window expired", payment_id=payment_id)

        available = self.ledger.balance_of(self.address)
        if available < payment.amount:
            raise InsufficientContractBalanceError(
                f"Contract balance {available} cannot cover refund of {payment.amount}",
                payment_id=payment_id,
            )

        self.ledger.transfer(self.address, payment.payer, payment.amount)
        payment.completed = False

        self._emit("PaymentRefunded", paymentId=payment_id, payer=payment.payer, amount=payment.amount)
        logger.info("escrow_payment_refunded", payment_id=payment_id, amount=payment.amount)
        return payment.amount

    def receive(self, ctx: CallContext) -> None:
        """Accept plain value transfers (treasury top-ups for refunds)"""
        if ctx.value <= 0:
            raise InvalidParameterError("No value sent")
        self.ledger.transfer(ctx.sender, self.address, ctx.value)
        self._emit("FundsReceived", sender=normalize_address(ctx.sender), amount=ctx.value)

    # ===== ADMIN METHODS =====

    def update_tier_price(self, ctx: CallContext, tier, new_price: int) -> None:
        self._only_owner(ctx)
        resolved_tier = self._resolve_tier(tier)
        if new_price <= 0:
            raise InvalidParameterError("Price must be greater than zero")
        old_price = self._tier_prices[resolved_tier]
        self._tier_prices[resolved_tier] = new_price
        self._emit("TierPriceUpdated", tier=resolved_tier.value, oldPrice=old_price, newPrice=new_price)
        logger.info("tier_price_updated", tier=resolved_tier.value, old_price=old_price, new_price=new_price)

    def update_treasury_wallet(self, ctx: CallContext, new_treasury: str) -> None:
        self._only_owner(ctx)
        new_treasury = normalize_address(new_treasury)
        if new_treasury == ZERO_ADDRESS:
            raise InvalidParameterError("Invalid treasury wallet")
        old_treasury = self._treasury
        self._treasury = new_treasury
        self._emit("TreasuryWalletUpdated", oldWallet=old_treasury, newWallet=new_treasury)

    def update_refund_window(self, ctx: CallContext, new_window: int) -> None:
        self._only_owner(ctx)
        if new_window <= 0:
            raise InvalidParameterError("Refund window must be greater than zero")
        self._refund_window = new_window
        self._emit("RefundWindowUpdated", newWindow=new_window)

    def pause(self, ctx: CallContext) -> None:
        self._only_owner(ctx)
        self._paused = True
        self._emit("Paused", account=self._owner)

    def unpause(self, ctx: CallContext) -> None:
        self._only_owner(ctx)
        self._paused = False
        self._emit("Unpaused", account=self._owner)

    def emergency_withdraw(self, ctx: CallContext) -> int:
        """Sweep the full contract balance to the owner"""
        self._only_owner(ctx)
        balance = self.ledger.balance_of(self.address)
        if balance == 0:
            raise InvalidParameterError("No funds to withdraw")
        self.ledger.transfer(self.address, self._owner, balance)
        self._emit("EmergencyWithdraw", owner=self._owner, amount=balance)
        logger.warning("escrow_emergency_withdraw", owner=self._owner, amount=balance)
        return balance

    def transfer_ownership(self, ctx: CallContext, new_owner: str) -> None:
        self._only_owner(ctx)
        new_owner = normalize_address(new_owner)
        if new_owner == ZERO_ADDRESS:
            raise InvalidParameterError("New owner is the zero address")
        previous = self._owner
        self._owner = new_owner
        self._emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)

    # ===== READ ACCESSORS =====

    def get_payment(self, payment_id: str) -> Optional[EscrowPayment]:
        payment = self._payments.get(payment_id)
        return copy.copy(payment) if payment else None

    def get_payer_payment_count(self, payer: str) -> int:
        return self._payer_counts.get(normalize_address(payer), 0)

    def get_tier_price(self, tier) -> int:
        return self._tier_prices[self._resolve_tier(tier)]

    @property
    def total_payments(self) -> int:
        return self._total_payments

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.address)

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def treasury(self) -> str:
        return self._treasury

    @property
    def refund_window(self) -> int:
        return self._refund_window

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def events(self) -> List[ContractEvent]:
        return list(self._events)

    # ===== STATE SNAPSHOTS =====

    def snapshot(self) -> dict:
        """Capture contract storage so a failed transaction can be rolled back"""
        return copy.deepcopy({
            "owner": self._owner,
            "treasury": self._treasury,
            "tier_prices": self._tier_prices,
            "refund_window": self._refund_window,
            "paused": self._paused,
            "payments": self._payments,
            "payer_counts": self._payer_counts,
            "total_payments": self._total_payments,
            "events": self._events,
        })

    def restore(self, state: dict) -> None:
        state = copy.deepcopy(state)
        self._owner = state["owner"]
        self._treasury = state["treasury"]
        self._tier_prices = state["tier_prices"]
        self._refund_window = state["refund_window"]
        self._paused = state["paused"]
        self._payments = state["payments"]
        self._payer_counts = state["payer_counts"]
        self._total_payments = state["total_payments"]
        self._events = state["events"]

    # ===== INTERNALS =====

    def _only_owner(self, ctx: CallContext) -> None:
        if normalize_address(ctx.sender) != self._owner:
            raise UnauthorizedError("Caller is not the owner")

    @staticmethod
    def _resolve_tier(tier) -> Tier:
        try:
            return Tier.parse(tier)
        except ValueError:
            raise InvalidTierError(f"Invalid tier: {tier}")

    def _emit(self, name: str, **args) -> None:
        self._events.append(ContractEvent(name=name, args=args, timestamp=self._clock()))
