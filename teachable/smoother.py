"""Majority-vote smoothing over the last K predicted class indices."""
from __future__ import annotations

from collections import Counter, deque


class Smoother:
    """
    Fixed-capacity FIFO of recent class indices. window == 0 disables smoothing.

    Ties: the window is scanned oldest to newest and the first index to reach
    the highest count wins.
    """

    def __init__(self, window: int = 5):
        if window < 0:
            raise ValueError("smoothing window must be >= 0")
        self.window = window
        self._q: deque[int] = deque(maxlen=window or None)

    def __len__(self) -> int:
        return len(self._q)

    def push(self, class_index: int) -> int:
        if self.window == 0:
            return class_index
        self._q.append(class_index)
        counts: Counter[int] = Counter()
        best, best_cnt = class_index, 0
        for k in self._q:
            counts[k] += 1
            if counts[k] > best_cnt:
                best, best_cnt = k, counts[k]
        return best

    def clear(self) -> None:
        self._q.clear()
