"""
Command-line argument contract.

Parses the invocation into an immutable InvocationConfig:
- --which selects the model variant (required)
- --sample-len bounds the tokens generated per turn (required)
- --cpu forces CPU execution
plus the optional sampling and model-file overrides.
"""

import argparse
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .config import config
from .models import Which


class InvalidArgumentError(ValueError):
    """Raised when an invocation value is out of range."""

    pass


@dataclass(frozen=True)
class InvocationConfig:
    """Settings for one process run, built once from the command line."""

    model_id: str
    sample_len: int
    use_cpu: bool = False
    prompt: str = ""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    seed: int = 299792458
    repo_id: Optional[str] = None
    revision: str = "main"
    tokenizer_file: Optional[str] = None
    config_file: Optional[str] = None
    weight_files: Tuple[str, ...] = ()
    quantized: bool = False
    repeat_penalty: float = 1.1
    repeat_last_n: int = 64
    use_flash_attn: bool = False
    tracing: bool = False
    verbose: bool = False

    def __post_init__(self):
        if self.model_id not in Which.names():
            raise InvalidArgumentError(
                f"model_id must be one of: {', '.join(Which.names())}"
            )
        if self.sample_len <= 0:
            raise InvalidArgumentError("sample_len must be > 0")
        if self.top_p is not None and not 0 < self.top_p <= 1:
            raise InvalidArgumentError("top_p must be in (0, 1]")
        if self.top_k is not None and self.top_k < 1:
            raise InvalidArgumentError("top_k must be >= 1")
        if self.seed < 0:
            raise InvalidArgumentError("seed must be >= 0")
        if self.repeat_penalty <= 0:
            raise InvalidArgumentError("repeat_penalty must be > 0")
        if self.repeat_last_n < 0:
            raise InvalidArgumentError("repeat_last_n must be >= 0")

    @property
    def which(self) -> Which:
        return Which.from_name(self.model_id)


def positive_int(value: str) -> int:
    """argparse type for strictly positive integers."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


def non_negative_int(value: str) -> int:
    """argparse type for integers >= 0."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def comma_separated(value: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the chat command."""
    parser = argparse.ArgumentParser(
        prog="mistral-chat",
        description="Interactive chat with a local Mistral model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mistral-chat --which nemo-instruct-2407 --sample-len 150 --cpu
  mistral-chat --which 7b-v0.1 -n 64 --temperature 0.8 --top-p 0.95
  mistral-chat --which 7b-v0.1 -n 100 --quantized --prompt "Once upon a time"
        """,
    )

    # Required contract
    parser.add_argument(
        "--which",
        dest="model_id",
        required=True,
        choices=Which.names(),
        metavar="MODEL_ID",
        help=f"The model variant to use ({', '.join(Which.names())})",
    )
    parser.add_argument(
        "--sample-len",
        "-n",
        type=positive_int,
        required=True,
        help="The length of the sample to generate (in tokens)",
    )
    parser.add_argument(
        "--cpu", dest="use_cpu", action="store_true", help="Run on CPU rather than on GPU"
    )

    # Sampling
    parser.add_argument(
        "--prompt",
        type=str,
        default="",
        help="Generate from this prompt once and exit instead of chatting",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=config.TEMPERATURE,
        help="The temperature used to generate samples (unset or <= 0 means greedy)",
    )
    parser.add_argument(
        "--top-p", type=float, default=config.TOP_P, help="Nucleus sampling probability cutoff"
    )
    parser.add_argument(
        "--top-k", type=positive_int, default=config.TOP_K, help="Only sample among the top K samples"
    )
    parser.add_argument(
        "--seed",
        type=non_negative_int,
        default=config.SEED,
        help=f"The seed to use when generating random samples (default: {config.SEED})",
    )
    parser.add_argument(
        "--repeat-penalty",
        type=float,
        default=config.REPEAT_PENALTY,
        help=f"Penalty to be applied for repeating tokens, 1. means no penalty (default: {config.REPEAT_PENALTY})",
    )
    parser.add_argument(
        "--repeat-last-n",
        type=non_negative_int,
        default=config.REPEAT_LAST_N,
        help=f"The context size to consider for the repeat penalty (default: {config.REPEAT_LAST_N})",
    )

    # Model files
    parser.add_argument(
        "--repo-id", type=str, default=None, help="Hub repository overriding the --which mapping"
    )
    parser.add_argument(
        "--revision",
        type=str,
        default=config.REVISION,
        help=f"Hub revision to download (default: {config.REVISION})",
    )
    parser.add_argument("--tokenizer-file", type=str, default=None, help="Local tokenizer.json")
    parser.add_argument("--config-file", type=str, default=None, help="Local config.json")
    parser.add_argument(
        "--weight-files",
        type=comma_separated,
        default=(),
        help="Comma-separated local safetensors files",
    )
    parser.add_argument(
        "--quantized", action="store_true", help="Use the quantized (GGUF) build"
    )
    parser.add_argument(
        "--use-flash-attn", action="store_true", help="Use flash-attention-2 kernels"
    )

    # Diagnostics
    parser.add_argument(
        "--tracing",
        action="store_true",
        help="Enable tracing (generates a trace-timestamp.json file)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> InvocationConfig:
    """
    Parse command-line tokens into an InvocationConfig.

    Args:
        argv: Tokens to parse (defaults to sys.argv[1:])

    Returns:
        The parsed configuration

    Raises:
        SystemExit: With status 2 on a usage error
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return InvocationConfig(**vars(args))
    except InvalidArgumentError as e:
        parser.error(str(e))
