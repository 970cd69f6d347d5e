"""Console abstraction used by the interactive scheduling workflows."""

import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CANCEL_WORD = "cancel"


class Console:
    """
    Operator I/O used by the workflows.

    Prompts carry a ``key`` naming the decision being asked for (for
    example ``"schedule"`` or ``"degraded_override"``) so non-terminal
    front ends can answer them from form state.
    """

    def ask(self, prompt: str, key: str) -> str:
        raise NotImplementedError

    def confirm(self, prompt: str, key: str) -> bool:
        raise NotImplementedError

    def acknowledge(self, prompt: str, key: str) -> bool:
        """Block until the operator acknowledges a critical condition."""
        raise NotImplementedError

    def emit(self, level: str, text: str) -> None:
        raise NotImplementedError

    @property
    def interactive(self) -> bool:
        return False

    def show(self, text: str) -> None:
        self.emit("info", text)

    def success(self, text: str) -> None:
        self.emit("success", text)

    def warn(self, text: str) -> None:
        self.emit("warning", text)

    def error(self, text: str) -> None:
        self.emit("error", text)

    def critical(self, text: str) -> None:
        self.emit("critical", text)


class TerminalConsole(Console):
    """Console backed by stdin/stdout."""

    PREFIXES = {
        "info": "",
        "success": "✅ ",
        "warning": "⚠️  ",
        "error": "❌ ",
        "critical": "🚨 CRITICAL: ",
    }

    def __init__(self, input_func=input, output_func=print):
        self._input = input_func
        self._output = output_func

    @property
    def interactive(self) -> bool:
        return True

    def ask(self, prompt: str, key: str) -> str:
        return self._input(f"{prompt} ").strip()

    def confirm(self, prompt: str, key: str) -> bool:
        answer = self._input(f"{prompt} (y/n): ").strip().lower()
        return answer in ("y", "yes")

    def acknowledge(self, prompt: str, key: str) -> bool:
        while True:
            answer = self._input(f"{prompt} (type 'ack' to acknowledge): ").strip().lower()
            if answer == "ack":
                return True

    def emit(self, level: str, text: str) -> None:
        self._output(f"{self.PREFIXES.get(level, '')}{text}")


class PresetConsole(Console):
    """
    Non-interactive console answering prompts from preset values.

    Used by form-based front ends: every field is collected up front, each
    confirmation is a checkbox keyed by its prompt key, and the messages
    the workflow emits are kept for rendering afterwards.
    """

    def __init__(
        self,
        answers: Optional[Dict[str, str]] = None,
        confirmations: Optional[Dict[str, bool]] = None,
        acknowledged: bool = False
    ):
        self.answers = dict(answers or {})
        self.confirmations = dict(confirmations or {})
        self.acknowledged = acknowledged
        self.messages: List[Tuple[str, str]] = []

    def ask(self, prompt: str, key: str) -> str:
        return self.answers.get(key, CANCEL_WORD)

    def confirm(self, prompt: str, key: str) -> bool:
        answer = self.confirmations.get(key, False)
        logger.debug("Preset answer for %s: %s", key, answer)
        return answer

    def acknowledge(self, prompt: str, key: str) -> bool:
        return self.acknowledged

    def emit(self, level: str, text: str) -> None:
        self.messages.append((level, text))

    def messages_at(self, level: str) -> List[str]:
        return [text for msg_level, text in self.messages if msg_level == level]
