from __future__ import annotations

from typing import Optional


class WowVerbsUserError(Exception):
    """An instructional error intended for end users.

    Use this for mistakes in a verb definition (unknown verbs, malformed parameters, bad IR, etc.).
    It carries a short error code and an optional hint to guide the user.
    """

    def __init__(self, code: str, message: str, *, hint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.hint:
            return base + f"\nHint: {self.hint}"
        return base


class UnknownVerbError(WowVerbsUserError):
    """A verb name that is not present in the verb registry."""

    def __init__(self, name: object, *, hint: Optional[str] = None):
        super().__init__("E_VERB_UNKNOWN", f"Unknown verb: {name!r}.", hint=hint)
        self.name = name


class UnresolvedTableError(WowVerbsUserError):
    """The catalog returned no table for a referenced name."""

    def __init__(self, name: object, *, hint: Optional[str] = None):
        super().__init__(
            "E_TABLE_UNRESOLVED",
            f"Table {name!r} could not be resolved from the catalog.",
            hint=hint or "Register the table in the catalog before evaluating the verb.",
        )
        self.name = name


class UnparsableExpressionError(WowVerbsUserError):
    """An expression that has no retrievable source text, or whose source does not parse."""

    def __init__(self, message: str, *, hint: Optional[str] = None, code: str = "E_EXPR_UNPARSABLE"):
        super().__init__(code, message, hint=hint)


class MismatchedJoinArityError(WowVerbsUserError):
    """Left and right join key (or value) lists have different lengths."""

    def __init__(self, left: list, right: list):
        super().__init__(
            "E_JOIN_ARITY",
            f"Left and right join lists must be the same length (got {len(left)} and {len(right)}).",
            hint=f"Got left={left!r} and right={right!r}.",
        )
        self.left = left
        self.right = right
