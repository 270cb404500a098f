"""
Model and tokenizer loading utilities.

This module handles:
- Device and dtype selection
- Retrieving tokenizer, config and weights from the Hugging Face Hub
- Loading the Mistral model (full precision or quantized GGUF)
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import torch
from huggingface_hub import hf_hub_download, snapshot_download
from safetensors.torch import load_file
from transformers import AutoModelForCausalLM, MistralConfig, PreTrainedTokenizerFast

from .args import InvocationConfig
from .models import resolve_gguf_file, resolve_repo_id

logger = logging.getLogger(__name__)

SAFETENSORS_INDEX = "model.safetensors.index.json"
HUB_PATTERNS = [
    "config.json",
    "generation_config.json",
    "model*.safetensors",
    SAFETENSORS_INDEX,
]


class ModelLoadError(RuntimeError):
    """Raised when model files cannot be retrieved or loaded."""

    pass


@dataclass(frozen=True)
class ModelFiles:
    """Local paths of everything needed to build the model."""

    tokenizer_file: str
    config_file: Optional[str] = None
    weight_files: Tuple[str, ...] = ()
    model_dir: Optional[str] = None
    gguf_file: Optional[str] = None


def select_device(use_cpu: bool = False) -> torch.device:
    """
    Pick the device to run on.

    Args:
        use_cpu: Force CPU execution

    Returns:
        cuda or mps when available and not forced to CPU, otherwise cpu
    """
    if use_cpu:
        return torch.device("cpu")
    if torch.cuda.is_available():
        logger.info(f"GPU detected: {torch.cuda.get_device_name(0)}")
        return torch.device("cuda")
    if torch.backends.mps.is_available():
        logger.info("Apple Metal (MPS) device detected")
        return torch.device("mps")
    logger.info("Running on CPU, pass --cpu to silence this message")
    return torch.device("cpu")


def select_dtype(device: torch.device) -> torch.dtype:
    return torch.bfloat16 if device.type == "cuda" else torch.float32


def log_cpu_capabilities():
    """Log the SIMD instruction set torch dispatches CPU kernels to."""
    capability = torch.backends.cpu.get_cpu_capability()
    logger.info(f"CPU capability: {capability}, threads: {torch.get_num_threads()}")


def safetensors_shards(model_dir: str) -> Tuple[str, ...]:
    """
    List the weight shards of a downloaded model directory.

    Uses the safetensors index when the weights are sharded, otherwise any
    model*.safetensors file in the directory.

    Returns:
        Local paths of the shards, in index order
    """
    index_path = Path(model_dir) / SAFETENSORS_INDEX
    if not index_path.exists():
        return tuple(str(p) for p in sorted(Path(model_dir).glob("model*.safetensors")))

    with open(index_path) as f:
        weight_map = json.load(f).get("weight_map")
    if not isinstance(weight_map, dict):
        raise ModelLoadError(f"no weight map in {SAFETENSORS_INDEX}")

    shards = dict.fromkeys(weight_map.values())
    return tuple(str(Path(model_dir) / shard) for shard in shards)


def retrieve_files(cfg: InvocationConfig) -> ModelFiles:
    """
    Resolve local paths for the tokenizer, config and weights.

    Local overrides from the command line are used as-is; everything else is
    downloaded from the Hub (or taken from the local Hub cache).

    Args:
        cfg: The parsed invocation

    Returns:
        ModelFiles with local paths

    Raises:
        ModelLoadError: If a download fails
    """
    start = time.perf_counter()
    which = cfg.which
    repo_id = resolve_repo_id(which, cfg.quantized, cfg.repo_id)
    logger.info(f"Model repository: {repo_id} (revision {cfg.revision})")

    try:
        if cfg.tokenizer_file:
            tokenizer_file = cfg.tokenizer_file
        else:
            # An explicit --repo-id must ship tokenizer.json, registry GGUF repositories
            # do not, so the tokenizer then comes from the base model
            tokenizer_repo = cfg.repo_id or which.repo_id
            tokenizer_file = hf_hub_download(tokenizer_repo, "tokenizer.json", revision=cfg.revision)

        if cfg.weight_files:
            # A quantized run reads its GGUF from the first weight file
            files = ModelFiles(
                tokenizer_file=tokenizer_file,
                config_file=cfg.config_file,
                weight_files=tuple(cfg.weight_files),
                gguf_file=cfg.weight_files[0] if cfg.quantized else None,
            )
        elif cfg.quantized:
            filename = resolve_gguf_file(which, cfg.repo_id)
            gguf_file = hf_hub_download(repo_id, filename, revision=cfg.revision)
            files = ModelFiles(
                tokenizer_file=tokenizer_file,
                config_file=cfg.config_file,
                weight_files=(gguf_file,),
                gguf_file=gguf_file,
            )
        else:
            model_dir = snapshot_download(
                repo_id, revision=cfg.revision, allow_patterns=HUB_PATTERNS
            )
            files = ModelFiles(
                tokenizer_file=tokenizer_file,
                config_file=cfg.config_file or str(Path(model_dir) / "config.json"),
                weight_files=safetensors_shards(model_dir),
                model_dir=model_dir,
            )
    except ModelLoadError:
        raise
    except Exception as e:
        logger.error(f"Failed to retrieve model files: {e}")
        raise ModelLoadError(f"Retrieving model files failed: {e}") from e

    logger.info(f"retrieved the files in {time.perf_counter() - start:.2f}s")
    return files


def load_tokenizer(tokenizer_file: str) -> PreTrainedTokenizerFast:
    """Load a fast tokenizer from a tokenizer.json file."""
    logger.info("Loading tokenizer...")
    try:
        return PreTrainedTokenizerFast(tokenizer_file=tokenizer_file)
    except Exception as e:
        raise ModelLoadError(f"Tokenizer loading failed: {e}") from e


def _load_from_weight_files(config: MistralConfig, files: ModelFiles, dtype, device, attn_implementation):
    model = AutoModelForCausalLM.from_config(
        config, dtype=dtype, attn_implementation=attn_implementation
    )
    model.to(device)

    expected = set(model.state_dict().keys())
    loaded = set()
    for path in files.weight_files:
        state_dict = load_file(path, device=str(device))
        model.load_state_dict(state_dict, strict=False)
        loaded.update(state_dict.keys())

    missing = expected - loaded
    if config.tie_word_embeddings:
        # lm_head shares the embedding matrix
        missing.discard("lm_head.weight")
    if missing:
        raise ModelLoadError(f"weight files are missing {len(missing)} tensors, e.g. {sorted(missing)[0]}")
    return model


def load_model(files: ModelFiles, cfg: InvocationConfig, device: torch.device):
    """
    Build the model and load its weights onto the device.

    Args:
        files: Local model files from retrieve_files()
        cfg: The parsed invocation
        device: Target device

    Returns:
        The model, in eval mode

    Raises:
        ModelLoadError: If the model cannot be built
    """
    start = time.perf_counter()
    dtype = select_dtype(device)
    attn_implementation = "flash_attention_2" if cfg.use_flash_attn else None
    logger.info(f"Loading model on {device} ({dtype})...")

    try:
        config = MistralConfig.from_json_file(files.config_file) if files.config_file else None

        if files.gguf_file:
            model = AutoModelForCausalLM.from_pretrained(
                os.path.dirname(files.gguf_file),
                gguf_file=os.path.basename(files.gguf_file),
                config=config,
                dtype=dtype,
                attn_implementation=attn_implementation,
            )
            model.to(device)
        elif files.model_dir:
            model = AutoModelForCausalLM.from_pretrained(
                files.model_dir,
                config=config,
                dtype=dtype,
                attn_implementation=attn_implementation,
            )
            model.to(device)
        else:
            if config is None:
                raise ModelLoadError("--weight-files needs --config-file")
            model = _load_from_weight_files(config, files, dtype, device, attn_implementation)
    except ModelLoadError:
        raise
    except Exception as e:
        logger.error(f"Failed to load model: {e}")
        raise ModelLoadError(f"Model loading failed: {e}") from e

    model.eval()
    logger.info(f"loaded the model in {time.perf_counter() - start:.2f}s")
    return model


def get_model_info(model) -> dict:
    """
    Get information about the loaded model.

    Args:
        model: The loaded model

    Returns:
        Dictionary with model information
    """
    try:
        num_params = sum(p.numel() for p in model.parameters())
        return {
            "device": str(model.device),
            "dtype": str(model.dtype),
            "num_parameters": num_params,
            "num_parameters_millions": round(num_params / 1_000_000, 2),
        }
    except Exception as e:
        logger.warning(f"Could not get model info: {e}")
        return {}
