"""
Text generation module.

This module runs the decode loop for one chat turn:
- Seeded sampling through LogitsProcessor
- Repeat penalty over a recent-token window
- KV cache reuse so each step only feeds the newest token
- Word-level streaming through TokenOutputStream
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterator, Optional

import torch

from .sampling import LogitsProcessor, apply_repeat_penalty
from .token_stream import TokenOutputStream

logger = logging.getLogger(__name__)

EOS_TOKEN = "</s>"


class GenerationError(RuntimeError):
    """Exception raised when text generation cannot proceed."""

    pass


@dataclass
class GenerationStats:
    """Throughput of one generation run."""

    generated_tokens: int
    elapsed: float

    @property
    def tokens_per_second(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.generated_tokens / self.elapsed

    def __str__(self) -> str:
        return f"{self.generated_tokens} tokens generated ({self.tokens_per_second:.2f} token/s)"


class TextGeneration:
    """Token-by-token generation pipeline around a causal language model."""

    def __init__(
        self,
        model,
        tokenizer,
        device: torch.device,
        seed: int,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
        repeat_penalty: float = 1.1,
        repeat_last_n: int = 64,
    ):
        """
        Initialize the pipeline.

        Args:
            model: The loaded causal language model
            tokenizer: The loaded tokenizer
            device: Device the model lives on
            seed: Seed for the sampler
            temperature: Sampling temperature, None or <= 0 for greedy decoding
            top_p: Nucleus sampling probability
            top_k: Top-k sampling parameter
            repeat_penalty: Penalty for repeating tokens, 1.0 means no penalty
            repeat_last_n: How many recent tokens the penalty looks at
        """
        self.model = model
        self.device = device
        self.tokenizer = TokenOutputStream(tokenizer)
        self.logits_processor = LogitsProcessor(
            seed, temperature=temperature, top_k=top_k, top_p=top_p
        )
        self.repeat_penalty = repeat_penalty
        self.repeat_last_n = repeat_last_n
        self.stats: Optional[GenerationStats] = None

    def run(self, prompt: str, sample_len: int) -> Iterator[str]:
        """
        Generate a continuation of the prompt.

        The prompt itself is echoed first, then generated text follows as it
        becomes available. Stops at the end-of-sequence token or after
        sample_len tokens; self.stats is set once the iterator is exhausted.

        Args:
            prompt: Text to continue
            sample_len: Maximum number of tokens to generate

        Yields:
            Text chunks, in order

        Raises:
            GenerationError: If the tokenizer has no end-of-sequence token
        """
        self.tokenizer.clear()
        self.stats = None
        tokens = list(self.tokenizer.tokenizer.encode(prompt, add_special_tokens=True))
        for token in tokens:
            text = self.tokenizer.next_token(token)
            if text is not None:
                yield text

        eos_token = self.tokenizer.get_token(EOS_TOKEN)
        if eos_token is None:
            raise GenerationError(f"cannot find the {EOS_TOKEN} token")

        logger.debug(f"Input length: {len(tokens)} tokens")
        logger.debug(f"Generating up to {sample_len} new tokens")

        generated_tokens = 0
        past_key_values = None
        start_gen = time.perf_counter()

        with torch.no_grad():
            for index in range(sample_len):
                context_size = 1 if index > 0 else len(tokens)
                start_pos = max(len(tokens) - context_size, 0)
                input_ids = torch.tensor([tokens[start_pos:]], dtype=torch.long, device=self.device)

                outputs = self.model(
                    input_ids=input_ids, past_key_values=past_key_values, use_cache=True
                )
                past_key_values = outputs.past_key_values
                logits = outputs.logits[0, -1].to(torch.float32)

                if self.repeat_penalty != 1.0:
                    start_at = max(len(tokens) - self.repeat_last_n, 0)
                    logits = apply_repeat_penalty(logits, self.repeat_penalty, tokens[start_at:])

                next_token = self.logits_processor.sample(logits)
                tokens.append(next_token)
                generated_tokens += 1
                if next_token == eos_token:
                    break

                text = self.tokenizer.next_token(next_token)
                if text is not None:
                    yield text

        self.stats = GenerationStats(generated_tokens, time.perf_counter() - start_gen)

        rest = self.tokenizer.decode_rest()
        if rest is not None:
            yield rest

        logger.debug(f"Generation finished: {self.stats}")
