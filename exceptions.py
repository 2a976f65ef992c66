from typing import Optional


class LedgerError(Exception):
    """Base class for structural failures that abort a replay."""


class RecordParseError(LedgerError):
    """A transaction record could not be decoded."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)

    def at_line(self, line: int) -> "RecordParseError":
        """Return a copy of this error annotated with the CSV line number."""
        return type(self)(self.message, line)


class AmountParseError(RecordParseError):
    pass


class MissingAmountError(RecordParseError):
    pass


class UnknownTransactionTypeError(RecordParseError):
    pass


class AmountOverflowError(LedgerError):
    """An amount operation would need more precision than the ledger keeps."""
