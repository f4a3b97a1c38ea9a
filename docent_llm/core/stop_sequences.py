"""Stop-sequence detection over a bounded trailing window of streamed text."""


class StopSequenceMatcher:
    """
    Detects literal stop sequences across fragment boundaries.

    Only the last ``window`` characters are retained. The window is never
    smaller than the longest stop sequence, and each new fragment is searched
    together with the retained tail, so a match split across fragments (or
    buried inside a long fragment) is still found.
    """

    def __init__(self, stop_sequences: list[str] | tuple[str, ...], window: int = 64):
        self.stop_sequences = tuple(s for s in stop_sequences if s)
        longest = max((len(s) for s in self.stop_sequences), default=0)
        self.window = max(window, longest)
        self._tail = ""
        self.matched: str | None = None

    def reset(self) -> None:
        self._tail = ""
        self.matched = None

    @property
    def tail(self) -> str:
        return self._tail

    def feed(self, fragment: str) -> bool:
        """Append a fragment; return True once any stop sequence has appeared."""
        if self.matched is not None:
            return True

        text = self._tail + fragment
        for stop in self.stop_sequences:
            if stop in text:
                self.matched = stop
                break

        self._tail = text[-self.window:] if self.window else ""
        return self.matched is not None
