"""Context compaction: replace older history with a model-written summary."""

from abc import ABC, abstractmethod
from typing import Sequence

from loopwright.instructions import InstructionLoader, get_instruction_loader
from loopwright.llm import ContentPart, LLMProvider, Message, Role
from loopwright.logging import get_logger

log = get_logger(__name__)


class Compaction(ABC):
    """Strategy that shortens a conversation history."""

    @abstractmethod
    async def compact(self, messages: Sequence[Message], provider: LLMProvider) -> list[Message]:
        """Return the replacement history.

        Implementations must not raise for model failures; they return the
        original history instead.
        """


class SimpleCompaction(Compaction):
    """Keep the last N user/assistant messages and summarize everything before them."""

    def __init__(
        self,
        preserved_messages: int = 2,
        instructions: InstructionLoader | None = None,
    ):
        self.preserved_messages = max(1, preserved_messages)
        self.instructions = instructions or get_instruction_loader()

    def _preserve_start(self, history: list[Message]) -> int | None:
        n_preserved = 0
        for index in range(len(history) - 1, -1, -1):
            if history[index].role in (Role.USER, Role.ASSISTANT):
                n_preserved += 1
                if n_preserved == self.preserved_messages:
                    return index
        return None

    @staticmethod
    def _history_text(messages: list[Message]) -> str:
        blocks = []
        for i, msg in enumerate(messages, start=1):
            blocks.append(f"## Message {i}\nRole: {msg.role.value}\nContent: {msg.text}\n")
        return "\n".join(blocks)

    async def compact(self, messages: Sequence[Message], provider: LLMProvider) -> list[Message]:
        history = list(messages)
        if not history:
            return history

        start = self._preserve_start(history)
        if start is None:
            log.debug("Not enough messages to compact", messages=len(history))
            return history

        to_compact = history[:start]
        to_preserve = history[start:]
        if not to_compact:
            log.debug("No messages to compact")
            return to_preserve

        log.info("Compacting context", compacting=len(to_compact), preserving=len(to_preserve))
        prompt = self.instructions.render(
            "compaction_user_prompt.md",
            history=self._history_text(to_compact),
        )
        try:
            response = await provider.generate(
                self.instructions.load("compaction_system_prompt.md"),
                [Message.user(prompt)],
                [],
            )
        except Exception as e:
            log.error("Compaction failed, keeping original messages", error=str(e))
            return history

        if response.usage is not None:
            log.debug(
                "Compaction usage",
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )

        parts = [ContentPart(self.instructions.load("compaction_summary_header.md"))]
        summary = response.message.text
        if summary:
            parts.append(ContentPart(summary))

        compacted = [Message(role=Role.ASSISTANT, content=tuple(parts))]
        compacted.extend(to_preserve)
        log.info("Context compacted", before=len(history), after=len(compacted))
        return compacted
