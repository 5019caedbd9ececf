from decimal import Decimal, localcontext
from typing import Dict, Iterable, List
import structlog

from models import Account, Transaction, TransactionType

# Configure structured logging
logger = structlog.get_logger()

# Amounts carry at most 28 integer and 28 fractional digits; sums over any
# realistic batch stay well inside this precision, so no rounding happens
LEDGER_PRECISION = 100


class LedgerError(Exception):
    """Base class for business errors raised while replaying a batch."""


class NoAvailableFundsToWithdraw(LedgerError):
    def __init__(self, client: int):
        self.client = client
        super().__init__(
            f"withdrawn amount is bigger than deposited amount for client {client}"
        )


class LedgerService:
    """Replays transaction batches into per-client account snapshots.

    The service keeps no state between calls; every batch is replayed from
    scratch.
    """

    def from_transactions(self, transactions: Iterable[Transaction]) -> List[Account]:
        """Replay a batch and return one account per client.

        Raises NoAvailableFundsToWithdraw for the first client whose deposits
        minus withdrawals is negative. No accounts are returned in that case.
        """
        client_transactions = self._group_by_client(transactions)

        logger.info(
            "Replaying transaction batch",
            clients=len(client_transactions),
            transactions=sum(len(txns) for txns in client_transactions.values())
        )

        accounts = [
            self.process_client_transactions(client, txns)
            for client, txns in client_transactions.items()
        ]

        logger.info("Transaction batch replayed", accounts=len(accounts))
        return accounts

    def process_client_transactions(
        self,
        client: int,
        transactions: List[Transaction]
    ) -> Account:
        """Replay the full history of a single client."""
        with localcontext() as ctx:
            ctx.prec = LEDGER_PRECISION
            return self._replay(client, transactions)

    def _replay(self, client: int, transactions: List[Transaction]) -> Account:
        tx_amounts = self._build_amount_map(transactions)
        total = sum(tx_amounts.values(), Decimal(0))

        if total < 0:
            logger.warning(
                "Withdrawals exceed deposits",
                client=client,
                total=str(total)
            )
            raise NoAvailableFundsToWithdraw(client)

        available = total
        held = Decimal(0)
        locked = False

        for tx in transactions:
            if tx.type.is_monetary:
                continue

            amount = tx_amounts.get(tx.tx)
            if amount is None:
                logger.debug(
                    "Ignoring reference to unknown transaction",
                    client=client,
                    tx=tx.tx,
                    type=tx.type.value
                )
                continue

            if tx.type == TransactionType.dispute:
                available, held, total = self._apply_dispute(amount, available, held, total)
            elif tx.type == TransactionType.resolve:
                available, held = self._apply_resolve(amount, available, held)
            elif tx.type == TransactionType.chargeback:
                locked = True

        account = Account(
            client=client,
            available=available,
            held=held,
            total=total,
            locked=locked
        )

        logger.debug(
            "Client replayed",
            client=client,
            available=str(available),
            held=str(held),
            total=str(total),
            locked=locked
        )

        return account

    @staticmethod
    def _group_by_client(transactions: Iterable[Transaction]) -> Dict[int, List[Transaction]]:
        grouped: Dict[int, List[Transaction]] = {}
        for tx in transactions:
            grouped.setdefault(tx.client, []).append(tx)
        return grouped

    @staticmethod
    def _build_amount_map(transactions: List[Transaction]) -> Dict[int, Decimal]:
        """Map each deposit/withdrawal id to its signed amount."""
        return {
            tx.tx: tx.signed_amount
            for tx in transactions
            if tx.type.is_monetary
        }

    @staticmethod
    def _apply_dispute(amount: Decimal, available: Decimal, held: Decimal, total: Decimal):
        if amount > 0:
            return available - amount, held + amount, total
        # disputed withdrawal: the withdrawn value comes back as held funds
        return available, held - amount, total - amount

    @staticmethod
    def _apply_resolve(amount: Decimal, available: Decimal, held: Decimal):
        if amount > 0:
            return available + amount, held - amount
        # released withdrawal dispute: held funds become available, total already includes them
        return available - amount, held + amount


# Factory function for dependency injection
def get_ledger_service() -> LedgerService:
    return LedgerService()
