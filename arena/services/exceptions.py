"""Exception hierarchy for contest operations.

API routes translate these into HTTP errors; the message is user-facing
and returned verbatim.
"""


class ArenaError(Exception):
    """Base class for all StockArena errors."""


class ContestNotFoundError(ArenaError):
    def __init__(self, contest_id):
        super().__init__(f"Contest not found: {contest_id}")
        self.contest_id = contest_id


class EntryNotFoundError(ArenaError):
    def __init__(self, entry_id):
        super().__init__(f"Contest entry not found: {entry_id}")
        self.entry_id = entry_id


class UserNotFoundError(ArenaError):
    def __init__(self, user_id):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InvalidContestStateError(ArenaError):
    """An operation's status precondition does not hold."""


class PrizesAlreadyDistributedError(InvalidContestStateError):
    def __init__(self, contest_id):
        super().__init__(f"Prizes have already been distributed for contest {contest_id}")
        self.contest_id = contest_id


class ContestValidationError(ArenaError):
    """Request data for a contest or entry is invalid."""


class InsufficientCoinsError(ArenaError):
    def __init__(self, user_id, balance: int, required: int):
        super().__init__(
            f"Insufficient coins: balance {balance}, {required} required"
        )
        self.user_id = user_id
        self.balance = balance
        self.required = required


class MissingPriceError(ArenaError):
    """No current price is known for one or more holdings."""

    def __init__(self, symbols: list[str]):
        super().__init__(f"No current price for: {', '.join(symbols)}")
        self.symbols = symbols
