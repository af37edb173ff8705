"""
User balance records.

CSV layout: a header ``username,<asset>,...`` with an optional ``salt``
column anywhere after the username, then one row per user holding
non-negative integer balances. Errors name the 1-based line of the file.
"""

import csv
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .errors import MalformedInput
from .merkle_sum_tree import Leaf

SALT_COLUMN = "salt"


@dataclass(frozen=True)
class UserRecord:
    username: str
    balances: Tuple[int, ...]
    salt: bytes = b""

    def to_leaf(self, salt: bytes = b"") -> Leaf:
        return Leaf.from_record(self.username, self.balances, salt=self.salt or salt)


@dataclass(frozen=True)
class UserRecords:
    asset_names: Tuple[str, ...]
    records: Tuple[UserRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def to_leaves(self, salt: bytes = b"") -> List[Leaf]:
        """Leaves in file order; a per-row salt takes precedence over `salt`."""
        return [record.to_leaf(salt) for record in self.records]

    def totals(self) -> Tuple[int, ...]:
        return tuple(sum(r.balances[i] for r in self.records) for i in range(len(self.asset_names)))


def _is_ascii_digits(text: str) -> bool:
    return text.isascii() and text.isdigit()


def _parse_balance(text: str, column: str, row: int) -> int:
    text = text.strip()
    if not text:
        raise MalformedInput(f"missing balance for {column}", row=row)
    if not _is_ascii_digits(text):
        if text.startswith("-") and _is_ascii_digits(text[1:]):
            raise MalformedInput(f"negative balance {text} for {column}", row=row)
        raise MalformedInput(f"balance {text!r} for {column} is not a non-negative integer", row=row)
    return int(text)


def parse_rows(rows: Iterable[Sequence[str]]) -> UserRecords:
    """Parse a header row followed by user rows."""
    rows = iter(rows)
    try:
        header = [h.strip() for h in next(rows)]
    except StopIteration:
        raise MalformedInput("empty input: a header row is required", row=1) from None

    if not header or header[0].lower() != "username":
        raise MalformedInput("first column must be 'username'", row=1)
    lowered = [h.lower() for h in header]
    salt_index = lowered.index(SALT_COLUMN) if SALT_COLUMN in lowered else None
    asset_indexes = [i for i in range(1, len(header)) if i != salt_index]
    if not asset_indexes:
        raise MalformedInput("at least one asset column is required", row=1)
    if any(not header[i] for i in asset_indexes):
        raise MalformedInput("asset columns need a name", row=1)

    records = []
    for line, row in enumerate(rows, start=2):
        if not row or all(not cell.strip() for cell in row):
            continue
        if len(row) != len(header):
            raise MalformedInput(f"expected {len(header)} fields, got {len(row)}", row=line)
        username = row[0].strip()
        if not username:
            raise MalformedInput("missing username", row=line)
        balances = tuple(_parse_balance(row[i], header[i], line) for i in asset_indexes)
        salt = row[salt_index].strip().encode("utf-8") if salt_index is not None else b""
        records.append(UserRecord(username=username, balances=balances, salt=salt))

    if not records:
        raise MalformedInput("no user rows after the header")
    return UserRecords(asset_names=tuple(header[i] for i in asset_indexes), records=tuple(records))


def read_csv(path) -> UserRecords:
    with open(path, newline="", encoding="utf-8") as f:
        return parse_rows(csv.reader(f))
