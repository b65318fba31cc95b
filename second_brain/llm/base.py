"""
Base interface for language-model text generation.

Translation, paraphrase expansion and answer generation all go through this
interface, so tests can substitute a deterministic generator.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class GenerationConfig:
    """Configuration for a single text generation call."""
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    max_tokens: int = 512
    stop_sequences: Optional[List[str]] = None
    seed: Optional[int] = None
    repeat_penalty: float = 1.1


class TextGenerator(ABC):
    """Abstract base class for language-model backends."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None,
        system: Optional[str] = None
    ) -> str:
        """
        Generate a completion for a single prompt.

        Args:
            prompt: Input prompt
            config: Generation configuration
            model: Model override
            system: Optional system instruction

        Returns:
            Generated text

        Raises:
            GenerationError: If generation fails
        """
        pass

    @abstractmethod
    async def chat(
        self,
        messages: List[Dict[str, str]],
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None
    ) -> str:
        """
        Generate the next assistant message for a conversation.

        Args:
            messages: Conversation as role/content dicts
            config: Generation configuration
            model: Model override

        Returns:
            Assistant message text

        Raises:
            GenerationError: If generation fails
        """
        pass
