"""
Mistral Chat

A command-line chatbot that runs Mistral models locally:
- Model variants resolved from the Hugging Face Hub
- Seeded sampling with top-k / top-p and repeat penalty
- Word-by-word streaming in an interactive prompt
"""

__version__ = "0.1.0"
