"""In-process notifier backed by a thread-safe queue."""

import queue

from compliance_engine.models import FireInstruction


class QueueNotifier:
    """Collect fire instructions for an in-process consumer."""

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: queue.Queue[FireInstruction] = queue.Queue(maxsize=maxsize)

    def publish(self, instruction: FireInstruction) -> None:
        self.queue.put_nowait(instruction)

    def drain(self) -> list[FireInstruction]:
        """Remove and return everything published so far."""
        items = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        pass
