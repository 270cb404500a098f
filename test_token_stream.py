"""
Tests for incremental detokenization.
"""

from mistral_chat.token_stream import TokenOutputStream


def test_text_is_released_on_word_boundaries(tokenizer):
    vocab = tokenizer.vocab
    stream = TokenOutputStream(tokenizer)

    assert stream.next_token(vocab["<s>"]) is None
    assert stream.next_token(vocab["Hel"]) == "Hel"
    assert stream.next_token(vocab["lo"]) == "lo"
    # Punctuation is held back until the next word arrives
    assert stream.next_token(vocab["!"]) is None
    assert stream.next_token(vocab[" world"]) == "! world"
    assert stream.next_token(vocab[","]) is None
    assert stream.decode_rest() == ","


def test_streamed_chunks_reassemble_the_full_text(tokenizer):
    stream = TokenOutputStream(tokenizer)
    ids = tokenizer.encode("Hello world, there!")

    chunks = [text for text in (stream.next_token(i) for i in ids) if text is not None]
    rest = stream.decode_rest()
    if rest is not None:
        chunks.append(rest)

    assert "".join(chunks) == "Hello world, there!"


def test_decode_rest_on_empty_stream(tokenizer):
    assert TokenOutputStream(tokenizer).decode_rest() is None


def test_get_token(tokenizer):
    stream = TokenOutputStream(tokenizer)

    assert stream.get_token("</s>") == tokenizer.vocab["</s>"]
    assert stream.get_token("<missing>") is None


def test_clear_resets_state(tokenizer):
    stream = TokenOutputStream(tokenizer)
    stream.next_token(tokenizer.vocab["Hel"])
    stream.clear()

    assert stream.tokens == []
    assert stream.next_token(tokenizer.vocab["Hi"]) == "Hi"
