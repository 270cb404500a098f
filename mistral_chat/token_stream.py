"""
Incremental detokenization for streaming output.

Decoding tokens one at a time breaks multi-token words and multi-byte
characters apart, so text is only released once the decoded suffix ends
on an alphanumeric character.
"""

from typing import List, Optional


class TokenOutputStream:
    """Wraps a tokenizer and turns a stream of token ids into text chunks."""

    def __init__(self, tokenizer):
        self.tokenizer = tokenizer
        self.tokens: List[int] = []
        self.prev_index = 0
        self.current_index = 0

    def _decode(self, tokens: List[int]) -> str:
        return self.tokenizer.decode(tokens, skip_special_tokens=True)

    def next_token(self, token: int) -> Optional[str]:
        """
        Add a token and return any text that is now complete.

        Returns:
            The newly completed text, or None if it is still pending
        """
        if self.tokens:
            prev_text = self._decode(self.tokens[self.prev_index : self.current_index])
        else:
            prev_text = ""
        self.tokens.append(token)
        text = self._decode(self.tokens[self.prev_index :])
        if len(text) > len(prev_text) and text[-1].isalnum():
            self.prev_index = self.current_index
            self.current_index = len(self.tokens)
            return text[len(prev_text) :]
        return None

    def decode_rest(self) -> Optional[str]:
        """Return whatever text is still pending."""
        if self.tokens:
            prev_text = self._decode(self.tokens[self.prev_index : self.current_index])
        else:
            prev_text = ""
        text = self._decode(self.tokens[self.prev_index :])
        if len(text) > len(prev_text):
            return text[len(prev_text) :]
        return None

    def get_token(self, token_string: str) -> Optional[int]:
        """Look up a token id in the vocabulary."""
        return self.tokenizer.get_vocab().get(token_string)

    def clear(self):
        self.tokens = []
        self.prev_index = 0
        self.current_index = 0
