from abc import ABC, abstractmethod
from typing import IO, Iterable, List, Optional, Union
import csv
import io
from pydantic import ValidationError
import structlog

from models import Account, Transaction

logger = structlog.get_logger()

INPUT_COLUMNS = ("type", "client", "tx", "amount")
REQUIRED_INPUT_COLUMNS = ("type", "client", "tx")
OUTPUT_COLUMNS = ("client", "available", "held", "total", "locked")


class TransactionParseError(Exception):
    def __init__(self, line: int, message: str):
        self.line = line
        self.message = message
        super().__init__(f"could not parse transaction on line {line}: {message}")


class TransactionSource(ABC):
    @abstractmethod
    def read(self, stream: IO) -> List[Transaction]:
        """Decode transactions from a stream, collapsing identical rows."""
        pass


class AccountSink(ABC):
    @abstractmethod
    def write(self, accounts: Iterable[Account], stream: IO) -> None:
        """Encode account snapshots to a stream."""
        pass


class CsvTransactionSource(TransactionSource):
    """Reads `type,client,tx,amount` rows.

    Columns are located by header name, fields may be padded with
    whitespace and the amount column may be empty or missing for disputes,
    resolves and chargebacks. Identical rows collapse to the first one seen.
    """

    def read(self, stream: Union[IO[str], IO[bytes]]) -> List[Transaction]:
        reader = csv.reader(_as_text(stream))

        # dict keys form an ordered set: duplicates collapse, first occurrence keeps its place
        transactions = {}
        rows = 0
        try:
            header = self._read_header(reader)
            if header is None:
                logger.info("Empty transaction stream")
                return []

            for row in reader:
                if not any(field.strip() for field in row):
                    continue
                rows += 1
                transaction = self._parse_row(header, row, reader.line_num)
                transactions.setdefault(transaction, None)
        except UnicodeDecodeError as e:
            raise TransactionParseError(reader.line_num + 1, "stream is not valid UTF-8") from e
        except csv.Error as e:
            raise TransactionParseError(reader.line_num, str(e)) from e

        if rows != len(transactions):
            logger.info(
                "Collapsed duplicate transaction rows",
                rows=rows,
                transactions=len(transactions)
            )

        return list(transactions)

    @staticmethod
    def _read_header(reader) -> Optional[List[str]]:
        for row in reader:
            if not any(field.strip() for field in row):
                continue
            header = [field.strip().lower() for field in row]
            missing = [column for column in REQUIRED_INPUT_COLUMNS if column not in header]
            if missing:
                raise TransactionParseError(
                    reader.line_num,
                    f"header is missing column(s): {', '.join(missing)}"
                )
            return header
        return None

    @staticmethod
    def _parse_row(header: List[str], row: List[str], line: int) -> Transaction:
        record = {
            column: value.strip()
            for column, value in zip(header, row)
            if column in INPUT_COLUMNS
        }
        try:
            return Transaction(**record)
        except ValidationError as e:
            raise TransactionParseError(line, _describe_validation_error(e)) from e


class CsvAccountSink(AccountSink):
    def write(self, accounts: Iterable[Account], stream: IO[str]) -> None:
        writer = csv.writer(stream, lineterminator="\n")
        writer.writerow(OUTPUT_COLUMNS)
        for account in accounts:
            writer.writerow([
                account.client,
                format(account.available, "f"),
                format(account.held, "f"),
                format(account.total, "f"),
                "true" if account.locked else "false",
            ])


class StatsRepository(ABC):
    @abstractmethod
    def record_batch(self, transactions: int) -> None:
        """Count a replayed batch."""
        pass

    @abstractmethod
    def get_batches_count(self) -> int:
        pass

    @abstractmethod
    def get_transactions_count(self) -> int:
        pass


class InMemoryStatsRepository(StatsRepository):
    def __init__(self):
        self.batches = 0
        self.transactions = 0

    def record_batch(self, transactions: int) -> None:
        self.batches += 1
        self.transactions += transactions

    def get_batches_count(self) -> int:
        return self.batches

    def get_transactions_count(self) -> int:
        return self.transactions


def _as_text(stream: Union[IO[str], IO[bytes]]) -> IO[str]:
    if isinstance(stream, io.TextIOBase):
        return stream
    return io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")


def _describe_validation_error(error: ValidationError) -> str:
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        messages.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(messages)


_transaction_source = CsvTransactionSource()
_account_sink = CsvAccountSink()
_stats_repo = InMemoryStatsRepository()


def get_transaction_source() -> TransactionSource:
    return _transaction_source


def get_account_sink() -> AccountSink:
    return _account_sink


def get_stats_repository() -> StatsRepository:
    return _stats_repo


def reset_repositories():
    """Reset process counters to their initial state (for testing only)."""
    global _stats_repo
    _stats_repo = InMemoryStatsRepository()
