"""
Tests for logits processing and repeat penalty.
"""

import pytest
import torch

from mistral_chat.sampling import (
    LogitsProcessor,
    Sampling,
    apply_repeat_penalty,
    apply_top_k,
    apply_top_p,
    select_sampling,
)


@pytest.mark.parametrize(
    "temperature, top_k, top_p, expected",
    [
        (None, None, None, Sampling.ARG_MAX),
        (0.0, 10, 0.9, Sampling.ARG_MAX),
        (-1.0, None, None, Sampling.ARG_MAX),
        (0.8, None, None, Sampling.ALL),
        (0.8, 10, None, Sampling.TOP_K),
        (0.8, None, 0.9, Sampling.TOP_P),
        (0.8, 10, 0.9, Sampling.TOP_K_THEN_TOP_P),
    ],
)
def test_select_sampling(temperature, top_k, top_p, expected):
    assert select_sampling(temperature, top_k, top_p) is expected


def test_greedy_returns_argmax():
    logits = torch.tensor([0.1, 3.0, -2.0, 2.9])
    processor = LogitsProcessor(seed=1)

    assert processor.sample(logits) == 1


def test_same_seed_same_samples():
    logits = torch.randn(50, generator=torch.Generator().manual_seed(0))

    first = LogitsProcessor(seed=299792458, temperature=1.0)
    second = LogitsProcessor(seed=299792458, temperature=1.0)

    assert [first.sample(logits) for _ in range(20)] == [second.sample(logits) for _ in range(20)]


def test_top_k_one_is_greedy():
    logits = torch.tensor([0.5, 0.1, 4.0, 3.9, -1.0])
    processor = LogitsProcessor(seed=3, temperature=2.0, top_k=1)

    assert all(processor.sample(logits) == 2 for _ in range(10))


def test_tiny_top_p_keeps_the_most_likely_token():
    logits = torch.tensor([1.0, 2.0, 0.5])
    processor = LogitsProcessor(seed=5, temperature=1.0, top_p=0.01)

    assert all(processor.sample(logits) == 1 for _ in range(10))


def test_top_k_then_top_p_samples_only_from_kept_tokens():
    logits = torch.tensor([5.0, 4.9, 4.8, -10.0, -10.0])
    processor = LogitsProcessor(seed=11, temperature=1.0, top_k=2, top_p=0.99)

    samples = {processor.sample(logits) for _ in range(50)}
    assert samples <= {0, 1}


def test_apply_top_k():
    probs = torch.tensor([0.1, 0.4, 0.3, 0.2])
    kept = apply_top_k(probs, 2)

    assert kept.tolist() == pytest.approx([0.0, 0.4, 0.3, 0.0])


def test_apply_top_p_keeps_smallest_prefix_reaching_p():
    probs = torch.tensor([0.2, 0.5, 0.3])
    kept = apply_top_p(probs, 0.7)

    assert kept.tolist() == pytest.approx([0.0, 0.5, 0.3])


def test_apply_top_p_one_is_noop():
    probs = torch.tensor([0.2, 0.5, 0.3])
    assert torch.equal(apply_top_p(probs, 1.0), probs)


def test_repeat_penalty_only_touches_context_tokens():
    logits = torch.tensor([2.0, -2.0, 1.0, 0.5])
    penalized = apply_repeat_penalty(logits, 2.0, [0, 1, 1])

    assert penalized.tolist() == pytest.approx([1.0, -4.0, 1.0, 0.5])
    # Input is left untouched
    assert logits.tolist() == pytest.approx([2.0, -2.0, 1.0, 0.5])


def test_repeat_penalty_with_empty_context():
    logits = torch.tensor([2.0, -2.0])
    assert torch.equal(apply_repeat_penalty(logits, 1.5, []), logits)


def test_apply_top_k_keeps_exactly_k_on_ties():
    probs = torch.tensor([0.4, 0.4, 0.2])
    kept = apply_top_k(probs, 1)

    assert int((kept > 0).sum()) == 1


def test_top_k_one_with_tied_logits_is_deterministic():
    logits = torch.tensor([3.0, 3.0, 1.0])
    processor = LogitsProcessor(seed=13, temperature=1.0, top_k=1)

    assert len({processor.sample(logits) for _ in range(20)}) == 1
