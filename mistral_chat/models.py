"""
Registry of the Mistral model variants that can be selected with --which.
"""

from enum import Enum
from typing import Optional, Tuple


class UnsupportedModelError(ValueError):
    """Raised when a model variant is unknown or has no build for the request."""

    pass


class Which(Enum):
    """Model variants, keyed by their command-line name."""

    MISTRAL_7B_V01 = "7b-v0.1"
    MISTRAL_7B_V02 = "7b-v0.2"
    MISTRAL_7B_INSTRUCT_V01 = "7b-instruct-v0.1"
    MISTRAL_7B_INSTRUCT_V02 = "7b-instruct-v0.2"
    MATHSTRAL_7B_V01 = "7b-maths-v0.1"
    MISTRAL_NEMO_2407 = "nemo-2407"
    MISTRAL_NEMO_INSTRUCT_2407 = "nemo-instruct-2407"

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        return tuple(member.value for member in cls)

    @classmethod
    def from_name(cls, name: str) -> "Which":
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedModelError(
                f"Unknown model variant {name!r}, expected one of: {', '.join(cls.names())}"
            ) from None

    @property
    def repo_id(self) -> str:
        return HUB_REPOSITORIES[self]


HUB_REPOSITORIES = {
    Which.MISTRAL_7B_V01: "mistralai/Mistral-7B-v0.1",
    Which.MISTRAL_7B_V02: "mistralai/Mistral-7B-v0.2",
    Which.MISTRAL_7B_INSTRUCT_V01: "mistralai/Mistral-7B-Instruct-v0.1",
    Which.MISTRAL_7B_INSTRUCT_V02: "mistralai/Mistral-7B-Instruct-v0.2",
    Which.MATHSTRAL_7B_V01: "mistralai/mathstral-7B-v0.1",
    Which.MISTRAL_NEMO_2407: "mistralai/Mistral-Nemo-Base-2407",
    Which.MISTRAL_NEMO_INSTRUCT_2407: "mistralai/Mistral-Nemo-Instruct-2407",
}

# Only 7b-v0.1 has a quantized build for now: (repository, GGUF file)
QUANTIZED_BUILDS = {
    Which.MISTRAL_7B_V01: ("TheBloke/Mistral-7B-v0.1-GGUF", "mistral-7b-v0.1.Q4_K_M.gguf"),
}

# GGUF file expected in a repository given with --repo-id
DEFAULT_GGUF_FILE = "model-q4k.gguf"


def quantized_build(which: Which) -> Tuple[str, str]:
    """
    Get the GGUF repository and file for a quantized variant.

    Raises:
        UnsupportedModelError: If the variant has no quantized build
    """
    build = QUANTIZED_BUILDS.get(which)
    if build is None:
        available = ", ".join(w.value for w in QUANTIZED_BUILDS)
        raise UnsupportedModelError(
            f"only {available} is available as a quantized model for now"
        )
    return build


def resolve_repo_id(which: Which, quantized: bool = False, repo_id: Optional[str] = None) -> str:
    """
    Map a model variant to the Hub repository it is downloaded from.

    Args:
        which: The selected model variant
        quantized: Whether the quantized build is requested
        repo_id: Explicit repository that overrides the registry

    Returns:
        Hugging Face repository id
    """
    if repo_id:
        return repo_id
    if quantized:
        return quantized_build(which)[0]
    return which.repo_id


def resolve_gguf_file(which: Which, repo_id: Optional[str] = None) -> str:
    """
    Name of the GGUF file to download for a quantized run.

    An explicit repository is not checked against the registry and is
    expected to hold DEFAULT_GGUF_FILE.
    """
    if repo_id:
        return DEFAULT_GGUF_FILE
    return quantized_build(which)[1]
