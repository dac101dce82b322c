"""
token_ledger.py - Single-token double-entry balance book

TokenLedger is the in-memory implementation of the TokenTransfer protocol.
It holds wallet balances for one fungible token and moves value between them
atomically, with full validation and an append-only audit log.

Key properties:
    - Always validates: a transfer that would overdraw its source, or that
      names an unregistered source, is REJECTED and nothing changes
    - Always logs: every applied transfer is recorded with a monotonic
      sequence number
    - Conservation: total_supply() only changes through mint(), which
      issues from SYSTEM_WALLET

The vesting pool is an ordinary wallet (POOL_WALLET by default);
transfer_in/transfer_out are thin wrappers that move value into and out of it.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from .core import (
    DEFAULT_TOKEN_DECIMAL_PLACES, POOL_WALLET, SYSTEM_WALLET, ZERO,
    ExecuteResult, InvalidInput, VestingError,
    quantize_amount, to_amount,
)

logger = logging.getLogger(__name__)


class WalletNotRegistered(VestingError):
    """Raised when querying a wallet the token ledger has never seen."""
    pass


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single applied movement of tokens between two wallets.

    Attributes:
        quantity: Amount moved (positive, finite)
        source: Wallet debited
        dest: Wallet credited
        reference: Free-form description of why the transfer happened
        sequence_number: Monotonic position in the ledger's log
        timestamp: Wall-clock or logical time of execution, if known
    """
    quantity: Decimal
    source: str
    dest: str
    reference: str
    sequence_number: int
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")
        if not isinstance(self.quantity, Decimal) or not self.quantity.is_finite():
            raise ValueError(f"Transfer quantity must be a finite Decimal, got {self.quantity!r}")
        if self.quantity <= 0:
            raise ValueError(f"Transfer quantity must be positive, got {self.quantity}")

    def __repr__(self) -> str:
        return f"Transfer(#{self.sequence_number} {self.quantity}: {self.source}→{self.dest})"


class TokenLedger:
    """
    Double-entry book for one token, implementing the TokenTransfer protocol.

    Thread Safety:
        Not thread-safe on its own. The VestingService serialises its calls.

    Example:
        token = TokenLedger("VEST")
        token.register_wallet("admin")
        token.mint("admin", Decimal("1000000"))

        token.transfer_in("admin", Decimal("250000"))   # admin -> pool
        token.transfer_out("alice", Decimal("1000"))    # pool -> alice
        token.balance_of(POOL_WALLET)                   # Decimal("249000")
    """

    def __init__(
        self,
        symbol: str,
        decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
        pool_wallet: str = POOL_WALLET,
        test_mode: bool = False,
        clock: Optional[Any] = None,
    ):
        """
        Create a token ledger.

        Args:
            symbol: Token symbol (informational)
            decimal_places: Precision every amount is truncated to
            pool_wallet: Wallet used by transfer_in/transfer_out
            test_mode: Allow set_balance() calls (default: False)
            clock: Optional Clock used to timestamp log entries
        """
        if not symbol or not symbol.strip():
            raise InvalidInput("symbol cannot be empty")
        self.symbol = symbol
        self.decimal_places = decimal_places
        self.pool_wallet = pool_wallet
        self.balances: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transfer] = []
        self._next_sequence: int = 0
        self._test_mode = test_mode
        self._clock = clock

        # System wallet issues supply; the pool must exist before anything is vested.
        self.registered_wallets.add(SYSTEM_WALLET)
        self.registered_wallets.add(pool_wallet)

    # ========================================================================
    # TokenTransfer PROTOCOL
    # ========================================================================

    def transfer_in(self, frm: str, amount: Decimal) -> bool:
        """Move amount from an external wallet into the pool."""
        return self.transfer(frm, self.pool_wallet, amount, "transfer_in") == ExecuteResult.APPLIED

    def transfer_out(self, to: str, amount: Decimal) -> bool:
        """Move amount from the pool to an external wallet."""
        return self.transfer(self.pool_wallet, to, amount, "transfer_out") == ExecuteResult.APPLIED

    def balance_of(self, holder: str) -> Decimal:
        """Balance of a holder; Decimal("0") for unknown wallets."""
        return self.balances.get(holder, ZERO)

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def get_balance(self, wallet_id: str) -> Decimal:
        """
        Strict balance lookup.

        Raises:
            WalletNotRegistered: If the wallet is unknown
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return self.balances.get(wallet_id, ZERO)

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def total_supply(self) -> Decimal:
        """
        Sum of every wallet's balance, system wallet included.

        Wallets are summed in sorted order for deterministic accumulation.
        Because the system wallet goes negative on issuance, this is always
        zero; use circulating_supply() for the issued amount.
        """
        return sum((self.balances.get(w, ZERO) for w in sorted(self.registered_wallets)), ZERO)

    def circulating_supply(self) -> Decimal:
        """Tokens issued out of the system wallet and not returned to it."""
        return -self.balances.get(SYSTEM_WALLET, ZERO)

    def verify_double_entry(
        self,
        expected_supply: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        """
        Verify that the book balances.

        Returns:
            Dict with keys:
            - 'valid': bool - True if total_supply() is zero and, when given,
              circulating_supply() equals expected_supply
            - 'total_supply': Decimal
            - 'circulating_supply': Decimal
            - 'discrepancies': List[Dict]
        """
        discrepancies = []
        total = self.total_supply()
        circulating = self.circulating_supply()
        if total != ZERO:
            discrepancies.append({'check': 'total_supply', 'expected': ZERO, 'actual': total})
        if expected_supply is not None and circulating != expected_supply:
            discrepancies.append({
                'check': 'circulating_supply',
                'expected': expected_supply,
                'actual': circulating,
            })
        return {
            'valid': not discrepancies,
            'total_supply': total,
            'circulating_supply': circulating,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise InvalidInput("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        return wallet_id

    def set_balance(self, wallet_id: str, quantity: Decimal) -> None:
        """
        Set a wallet's balance directly.

        WARNING: bypasses double-entry accounting. Only available in test mode;
        use mint() and transfer() otherwise.

        Raises:
            VestingError: If called when test_mode is False
        """
        if not self._test_mode:
            raise VestingError(
                "set_balance() is disabled in production mode. "
                "Use mint() and transfer() to modify balances. "
                "Set test_mode=True when creating TokenLedger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        self.balances[wallet_id] = quantize_amount(to_amount(quantity), self.decimal_places)

    def mint(self, wallet_id: str, amount: Decimal) -> ExecuteResult:
        """Issue new tokens to a wallet from SYSTEM_WALLET."""
        return self.transfer(SYSTEM_WALLET, wallet_id, amount, "mint")

    # ========================================================================
    # TRANSFER EXECUTION (Mutating)
    # ========================================================================

    def transfer(self, source: str, dest: str, amount: Any, reference: str = "transfer") -> ExecuteResult:
        """
        Execute a transfer atomically.

        An unknown dest wallet is registered on the fly; an unknown source
        is rejected. SYSTEM_WALLET is exempt from the non-negative balance check.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (nothing changed)
        """
        try:
            quantity = quantize_amount(to_amount(amount), self.decimal_places)
        except InvalidInput as exc:
            logger.warning("REJECTED %s %s: %s", reference, amount, exc)
            return ExecuteResult.REJECTED

        valid, reason = self._validate(source, dest, quantity)
        if not valid:
            logger.warning("REJECTED %s of %s %s %s→%s: %s",
                           reference, quantity, self.symbol, source, dest, reason)
            return ExecuteResult.REJECTED

        if dest not in self.registered_wallets:
            self.registered_wallets.add(dest)

        record = Transfer(
            quantity=quantity,
            source=source,
            dest=dest,
            reference=reference,
            sequence_number=self._next_sequence,
            timestamp=self._clock.now() if self._clock is not None else None,
        )
        self._next_sequence += 1

        self.balances[source] = self.balances[source] - quantity
        self.balances[dest] = self.balances[dest] + quantity
        self.transaction_log.append(record)

        logger.debug("APPLIED %r", record)
        return ExecuteResult.APPLIED

    def _validate(self, source: str, dest: str, quantity: Decimal) -> Tuple[bool, str]:
        """
        Validate a transfer against all constraints.

        Returns:
            Tuple of (success: bool, reason: str); reason is empty on success
        """
        if quantity <= 0:
            return False, f"quantity must be positive, got {quantity}"
        if not source or not dest:
            return False, "source and dest cannot be empty"
        if source == dest:
            return False, "source and dest must be different"
        if source not in self.registered_wallets:
            return False, f"wallet not registered: {source}"
        if source != SYSTEM_WALLET and self.balances[source] - quantity < 0:
            return False, f"{source} balance {self.balances[source]} < {quantity}"
        return True, ""
