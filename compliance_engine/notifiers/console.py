"""Console notifier for debugging and development."""

import json

from compliance_engine.models import FireInstruction
from compliance_engine.serialization import to_dict


class ConsoleNotifier:
    """Print fire instructions to stdout."""

    def __init__(self, pretty: bool = True) -> None:
        """Initialize console notifier.

        Parameters
        ----------
        pretty : bool
            Pretty-print JSON output.
        """
        self.pretty = pretty
        self._counts: dict[str, int] = {}

    def publish(self, instruction: FireInstruction) -> None:
        """Print a single fire instruction."""
        data = to_dict(instruction)
        if self.pretty:
            print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
        else:
            print(json.dumps(data, ensure_ascii=False, default=str))
        channel = instruction.channel.value
        self._counts[channel] = self._counts.get(channel, 0) + 1

    def close(self) -> None:
        """Print summary and close."""
        print(f"\n{'='*60}")
        print("Console Notifier Summary")
        print("=" * 60)
        for channel, count in self._counts.items():
            print(f"  {channel}: {count} reminders")
