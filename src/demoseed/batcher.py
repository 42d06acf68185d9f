from typing import List


class Batcher:
    """Collects rewritten lines until `size` of them are ready to send.

    The caller flushes when `accept` reports a full batch and once more at the
    end of the stream; lines come back out in the order they went in.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"batch size must be at least 1, got {size!r}")
        self.size = size
        self._lines: List[str] = []

    def __len__(self) -> int:
        return len(self._lines)

    def accept(self, line: str) -> bool:
        self._lines.append(line)
        return len(self._lines) >= self.size

    def flush(self) -> List[str]:
        batch, self._lines = self._lines, []
        return batch
