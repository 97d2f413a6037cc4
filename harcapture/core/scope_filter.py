from typing import Iterable, Optional, Tuple


class ScopeFilter:
    """
    Restricts body capture to URLs containing one of a set of substrings.

    An empty pattern set means the capture is unrestricted.
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns: Tuple[str, ...] = tuple(patterns or ())

    @classmethod
    def parse(cls, value: Optional[str]) -> "ScopeFilter":
        """
        Builds a filter from a comma separated list such as "example.com,cdn.example.net".

        Args:
            value: The raw command line value, or None.

        Returns:
            A ScopeFilter; unrestricted when no usable pattern was given.
        """
        if not value:
            return cls()
        patterns = [part.strip() for part in value.split(",")]
        return cls(part for part in patterns if part)

    @property
    def restricted(self) -> bool:
        return bool(self.patterns)

    def in_scope(self, url: str) -> bool:
        if not self.patterns:
            return True
        return any(pattern in url for pattern in self.patterns)
