"""
Token sampling from next-token logits.

Supports greedy (argmax) decoding and temperature sampling restricted to
the top-k tokens, the top-p nucleus, or top-k followed by top-p. Sampling
uses its own seeded generator so a run is reproducible for a given seed.
"""

import logging
from enum import Enum
from typing import Optional, Sequence

import torch
import torch.nn.functional as F

logger = logging.getLogger(__name__)


class Sampling(Enum):
    ARG_MAX = "argmax"
    ALL = "all"
    TOP_K = "top_k"
    TOP_P = "top_p"
    TOP_K_THEN_TOP_P = "top_k_then_top_p"


def select_sampling(
    temperature: Optional[float], top_k: Optional[int], top_p: Optional[float]
) -> Sampling:
    """Choose the sampling strategy from the user-supplied parameters."""
    if temperature is None or temperature <= 0.0:
        return Sampling.ARG_MAX
    if top_k is None and top_p is None:
        return Sampling.ALL
    if top_p is None:
        return Sampling.TOP_K
    if top_k is None:
        return Sampling.TOP_P
    return Sampling.TOP_K_THEN_TOP_P


def apply_top_k(probs: torch.Tensor, top_k: int) -> torch.Tensor:
    top_k = min(top_k, probs.size(-1))
    # Exactly k tokens survive, even when probabilities tie
    top_indices = torch.topk(probs, top_k).indices
    keep = torch.zeros_like(probs, dtype=torch.bool)
    keep.scatter_(-1, top_indices, True)
    return probs.masked_fill(~keep, 0.0)


def apply_top_p(probs: torch.Tensor, top_p: float) -> torch.Tensor:
    if top_p >= 1.0:
        return probs

    sorted_probs, sorted_indices = torch.sort(probs, descending=True, dim=-1)
    cumulative_probs = torch.cumsum(sorted_probs, dim=-1)

    # Drop a token once the mass before it already reaches top_p (keep at least one)
    sorted_indices_to_remove = (cumulative_probs - sorted_probs) >= top_p
    sorted_indices_to_remove[..., 0] = False

    indices_to_remove = torch.zeros_like(probs, dtype=torch.bool)
    indices_to_remove.scatter_(-1, sorted_indices, sorted_indices_to_remove)
    return probs.masked_fill(indices_to_remove, 0.0)


def apply_repeat_penalty(
    logits: torch.Tensor, penalty: float, context: Sequence[int]
) -> torch.Tensor:
    """
    Penalize tokens that already appear in the context.

    Positive logits are divided by the penalty and negative ones multiplied
    by it, so a penalty above 1 always makes a seen token less likely.

    Args:
        logits: 1-D next-token logits
        penalty: Penalty factor, 1.0 leaves the logits untouched
        context: Recent token ids the penalty applies to

    Returns:
        A new logits tensor
    """
    logits = logits.clone()
    if not context:
        return logits

    token_ids = torch.tensor(sorted(set(context)), dtype=torch.long, device=logits.device)
    token_ids = token_ids[token_ids < logits.size(-1)]
    selected = logits[token_ids]
    logits[token_ids] = torch.where(selected >= 0, selected / penalty, selected * penalty)
    return logits


class LogitsProcessor:
    """Turns next-token logits into a token id."""

    def __init__(
        self,
        seed: int,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
        top_p: Optional[float] = None,
    ):
        """
        Initialize the processor.

        Args:
            seed: Seed for the private random generator
            temperature: Sampling temperature, None or <= 0 for greedy decoding
            top_k: Only sample among the k most likely tokens
            top_p: Nucleus sampling probability cutoff
        """
        self.temperature = temperature
        self.top_k = top_k
        self.top_p = top_p
        self.sampling = select_sampling(temperature, top_k, top_p)
        self.generator = torch.Generator(device="cpu")
        self.generator.manual_seed(seed)
        logger.debug(f"Sampling strategy: {self.sampling.value} (seed={seed})")

    def sample(self, logits: torch.Tensor) -> int:
        """Pick the next token from a 1-D logits tensor."""
        logits = logits.detach().to(device="cpu", dtype=torch.float32)

        # Greedy decoding - skip all the sampling overhead
        if self.sampling is Sampling.ARG_MAX:
            return int(torch.argmax(logits, dim=-1).item())

        probs = F.softmax(logits / self.temperature, dim=-1)

        if self.sampling in (Sampling.TOP_K, Sampling.TOP_K_THEN_TOP_P):
            probs = apply_top_k(probs, self.top_k)
            if self.sampling is Sampling.TOP_K_THEN_TOP_P:
                probs = probs / probs.sum()

        if self.sampling in (Sampling.TOP_P, Sampling.TOP_K_THEN_TOP_P):
            probs = apply_top_p(probs, self.top_p)

        return int(torch.multinomial(probs, num_samples=1, generator=self.generator).item())
