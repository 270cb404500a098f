"""
Shared fixtures: a word-piece tokenizer and a scripted causal LM that run
without downloading anything.
"""

from types import SimpleNamespace

import pytest
import torch

PIECES = ["<unk>", "<s>", "</s>", "Hel", "lo", "!", " world", " there", "Hi", ","]
SPECIAL = {"<unk>", "<s>", "</s>"}


class FakeTokenizer:
    """Minimal stand-in for PreTrainedTokenizerFast over a fixed vocabulary."""

    def __init__(self, pieces=PIECES, with_eos=True):
        self.pieces = list(pieces)
        if not with_eos:
            self.pieces = [p if p != "</s>" else "<pad>" for p in self.pieces]
        self.vocab = {piece: i for i, piece in enumerate(self.pieces)}

    def get_vocab(self):
        return dict(self.vocab)

    def encode(self, text, add_special_tokens=True):
        ids = [self.vocab["<s>"]] if add_special_tokens else []
        # Greedy longest-match over the vocabulary
        pos = 0
        while pos < len(text):
            match = max(
                (p for p in self.pieces if p not in SPECIAL and text.startswith(p, pos)),
                key=len,
                default=None,
            )
            if match is None:
                ids.append(self.vocab["<unk>"])
                pos += 1
            else:
                ids.append(self.vocab[match])
                pos += len(match)
        return ids

    def decode(self, ids, skip_special_tokens=True):
        pieces = [self.pieces[i] for i in ids]
        if skip_special_tokens:
            pieces = [p for p in pieces if p not in SPECIAL and p != "<pad>"]
        return "".join(pieces)


class ScriptedModel:
    """Causal LM that always predicts the next token of a fixed script."""

    def __init__(self, script, vocab_size=len(PIECES), logits=None):
        self.script = list(script)
        self.vocab_size = vocab_size
        self.fixed_logits = logits
        self.calls = []

    def __call__(self, input_ids, past_key_values=None, use_cache=True):
        step = len(self.calls)
        self.calls.append(SimpleNamespace(input_ids=input_ids.tolist(), past_key_values=past_key_values))

        seq_len = input_ids.shape[1]
        if self.fixed_logits is not None:
            last = torch.tensor(self.fixed_logits, dtype=torch.float32)
        else:
            last = torch.zeros(self.vocab_size)
            last[self.script[min(step, len(self.script) - 1)]] = 10.0
        logits = torch.zeros(1, seq_len, self.vocab_size)
        logits[0, -1] = last
        return SimpleNamespace(logits=logits, past_key_values=step + 1)


def token_id(piece):
    return PIECES.index(piece)


@pytest.fixture
def tokenizer():
    return FakeTokenizer()


@pytest.fixture
def scripted_model():
    def build(pieces, **kwargs):
        return ScriptedModel([token_id(p) for p in pieces], **kwargs)

    return build
