"""
Ollama client for local LLM inference.

Provides the text generation backend used for query translation, query
paraphrasing and answer generation. HTTP calls are made with a shared
requests session and moved to worker threads for the async interface.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .base import GenerationConfig, TextGenerator
from ..config import LLMConfig
from ..errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass
class OllamaModelInfo:
    """Information about an Ollama model."""
    name: str
    size: str
    modified_at: str
    digest: str
    details: Dict[str, Any]


class OllamaClient(TextGenerator):
    """
    Client for interacting with Ollama models locally.

    Timeouts belong to this client; callers in the retrieval pipeline do
    not add their own.
    """

    def __init__(self, config: LLMConfig, session: Optional[requests.Session] = None):
        """
        Initialize Ollama client.

        Args:
            config: LLM configuration (server URL, default model, timeout)
            session: Optional pre-configured requests session
        """
        self.config = config
        self.base_url = config.base_url.rstrip('/')
        self.timeout = config.timeout_seconds
        self.default_model = config.answer_model
        self.session = session or requests.Session()

        self._stats_lock = threading.Lock()
        self._generation_stats = self._empty_stats()

        logger.info(f"OllamaClient initialized with base URL: {self.base_url}")

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_characters_generated': 0,
            'average_response_time': 0.0,
            'model_usage': {}
        }

    def is_available(self) -> bool:
        """
        Check if Ollama server is available.

        Returns:
            True if server is reachable, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Ollama server not available: {e}")
            return False

    def list_models(self) -> List[OllamaModelInfo]:
        """
        List available models.

        Returns:
            List of available model information

        Raises:
            GenerationError: If request fails
        """
        try:
            response = self.session.get(f"{self.base_url}/api/tags", timeout=self.timeout)
            response.raise_for_status()

            models = []
            for model_data in response.json().get('models', []):
                models.append(
                    OllamaModelInfo(
                        name=model_data['name'],
                        size=str(model_data.get('size', 'unknown')),
                        modified_at=model_data.get('modified_at', ''),
                        digest=model_data.get('digest', ''),
                        details=model_data.get('details', {})
                    )
                )

            logger.info(f"Found {len(models)} available models")
            return models

        except requests.RequestException as e:
            error_msg = f"Failed to list models: {str(e)}"
            logger.error(error_msg)
            raise GenerationError(error_msg, cause=e) from e

    def _options(self, config: GenerationConfig) -> Dict[str, Any]:
        options = {
            "temperature": config.temperature,
            "top_p": config.top_p,
            "top_k": config.top_k,
            "num_predict": config.max_tokens,
            "repeat_penalty": config.repeat_penalty,
        }
        if config.stop_sequences:
            options["stop"] = config.stop_sequences
        if config.seed is not None:
            options["seed"] = config.seed
        return options

    def generate_sync(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None,
        system: Optional[str] = None
    ) -> str:
        """
        Generate text with the /api/generate endpoint.

        Args:
            prompt: Input prompt
            config: Generation configuration
            model: Model name (defaults to the configured answer model)
            system: Optional system instruction

        Returns:
            Generated text response

        Raises:
            GenerationError: If generation fails
        """
        config = config or GenerationConfig()
        model = model or self.default_model
        start_time = time.time()

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": self._options(config),
        }
        if system:
            payload["system"] = system

        try:
            response = self.session.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            generated_text = response.json().get('response', '')

        except (requests.RequestException, ValueError) as e:
            self._update_generation_stats(model, time.time() - start_time, 0, False)
            error_msg = f"Text generation failed with {model}: {str(e)}"
            logger.error(error_msg)
            raise GenerationError(error_msg, cause=e) from e

        response_time = time.time() - start_time
        self._update_generation_stats(model, response_time, len(generated_text), True)
        logger.debug(f"Generated {len(generated_text)} characters using {model} in {response_time:.2f}s")
        return generated_text

    def chat_sync(
        self,
        messages: List[Dict[str, str]],
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None
    ) -> str:
        """
        Generate a response with the /api/chat endpoint.

        Args:
            messages: List of chat messages with 'role' and 'content'
            config: Generation configuration
            model: Model name (defaults to the configured answer model)

        Returns:
            Generated assistant message

        Raises:
            GenerationError: If generation fails
        """
        config = config or GenerationConfig()
        model = model or self.default_model
        start_time = time.time()

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": self._options(config),
        }

        try:
            response = self.session.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            generated_text = response.json().get('message', {}).get('content', '')

        except (requests.RequestException, ValueError) as e:
            self._update_generation_stats(model, time.time() - start_time, 0, False)
            error_msg = f"Chat generation failed with {model}: {str(e)}"
            logger.error(error_msg)
            raise GenerationError(error_msg, cause=e) from e

        self._update_generation_stats(model, time.time() - start_time, len(generated_text), True)
        return generated_text

    async def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None,
        system: Optional[str] = None
    ) -> str:
        return await asyncio.to_thread(self.generate_sync, prompt, config, model, system)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        config: Optional[GenerationConfig] = None,
        model: Optional[str] = None
    ) -> str:
        return await asyncio.to_thread(self.chat_sync, messages, config, model)

    def _update_generation_stats(
        self,
        model: str,
        response_time: float,
        characters_generated: int,
        success: bool
    ) -> None:
        """Update generation performance statistics."""
        with self._stats_lock:
            stats = self._generation_stats
            stats['total_requests'] += 1

            if success:
                stats['successful_requests'] += 1
                stats['total_characters_generated'] += characters_generated
            else:
                stats['failed_requests'] += 1

            total_requests = stats['total_requests']
            stats['average_response_time'] = (
                (stats['average_response_time'] * (total_requests - 1) + response_time) / total_requests
            )

            model_stats = stats['model_usage'].setdefault(
                model, {'requests': 0, 'characters': 0, 'avg_response_time': 0.0}
            )
            model_stats['requests'] += 1
            model_stats['characters'] += characters_generated
            model_stats['avg_response_time'] = (
                (model_stats['avg_response_time'] * (model_stats['requests'] - 1) + response_time)
                / model_stats['requests']
            )

    def get_generation_stats(self) -> Dict[str, Any]:
        """Get generation performance statistics."""
        with self._stats_lock:
            return {
                **self._generation_stats,
                'model_usage': {k: dict(v) for k, v in self._generation_stats['model_usage'].items()},
            }

    def close(self) -> None:
        self.session.close()
