"""Page OCR double driven by a page-image lookup."""
from __future__ import annotations

import threading
from typing import Callable, Dict, List, Union

Outcome = Union[str, BaseException]


class MockPageOcr:
    """Returns scripted text per image payload.

    ``outcomes`` maps an image payload to a list of results consumed one per
    call; exceptions are raised. Unknown images echo their decoded bytes.
    """

    def __init__(
        self,
        outcomes: Dict[bytes, List[Outcome]] | None = None,
        on_call: Callable[[bytes], None] | None = None,
    ) -> None:
        self.outcomes = {key: list(values) for key, values in (outcomes or {}).items()}
        self.on_call = on_call
        self.calls: List[bytes] = []
        self._lock = threading.Lock()

    def ocr_page(self, image_bytes: bytes) -> str:
        with self._lock:
            self.calls.append(image_bytes)
            queue = self.outcomes.get(image_bytes)
            outcome: Outcome = queue.pop(0) if queue else image_bytes.decode("utf-8", errors="replace")
        if self.on_call is not None:
            self.on_call(image_bytes)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome
