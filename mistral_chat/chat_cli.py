"""
Interactive CLI chat interface.

Reads a line at the "> " prompt, streams the model's continuation and
reports throughput. Every turn starts from a fresh sampler and an empty
KV cache; nothing is carried over between turns.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Callable, Optional, Sequence

import torch
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .args import InvocationConfig, parse_args
from .config import config
from .generator import TextGeneration
from .model_loader import (
    get_model_info,
    load_model,
    load_tokenizer,
    log_cpu_capabilities,
    retrieve_files,
    select_device,
)

logger = logging.getLogger(__name__)

PROMPT = "> "
EXIT_COMMANDS = ("/exit", "/quit", "/q")
HELP_COMMANDS = ("/help", "/h")


class ChatCLI:
    """Interactive chat REPL."""

    def __init__(
        self,
        model,
        tokenizer,
        device: torch.device,
        cfg: InvocationConfig,
        console: Optional[Console] = None,
        read_input: Optional[Callable[[str], str]] = None,
    ):
        """
        Initialize the chat CLI.

        Args:
            model: The loaded language model
            tokenizer: The loaded tokenizer
            device: Device the model lives on
            cfg: The parsed invocation
            console: Rich console for output
            read_input: Function that shows a prompt and returns a line
        """
        self.model = model
        self.tokenizer = tokenizer
        self.device = device
        self.cfg = cfg
        self.console = console or Console()
        self._read_input = read_input

    def read_input(self, prompt: str) -> str:
        if self._read_input is None:
            # Line editing with in-memory history only
            from prompt_toolkit import PromptSession

            self._read_input = PromptSession().prompt
        return self._read_input(prompt)

    def new_pipeline(self) -> TextGeneration:
        return TextGeneration(
            self.model,
            self.tokenizer,
            self.device,
            seed=self.cfg.seed,
            temperature=self.cfg.temperature,
            top_p=self.cfg.top_p,
            top_k=self.cfg.top_k,
            repeat_penalty=self.cfg.repeat_penalty,
            repeat_last_n=self.cfg.repeat_last_n,
        )

    def print_help(self):
        """Print available commands."""
        self.console.print("\nAvailable commands:")
        self.console.print("  /help, /h       - Show this help message")
        self.console.print("  /exit, /quit    - Exit the chat (or press Ctrl-D)")
        self.console.print("  Ctrl-C          - Stop the current generation")
        self.console.print()

    def handle_command(self, command: str) -> bool:
        """
        Handle special commands.

        Args:
            command: The command string (including /)

        Returns:
            True if should exit, False otherwise
        """
        command = command.lower().strip()

        if command in EXIT_COMMANDS:
            return True

        if command in HELP_COMMANDS:
            self.print_help()
        else:
            self.console.print(f"Unknown command: {command}", markup=False)
            self.console.print("Type /help for available commands\n")
        return False

    def run_turn(self, prompt: str) -> Optional[str]:
        """
        Generate and stream one continuation.

        Returns:
            The streamed text, or None if generation failed
        """
        pipeline = self.new_pipeline()
        chunks = []
        try:
            for chunk in pipeline.run(prompt, self.cfg.sample_len):
                chunks.append(chunk)
                self.console.print(chunk, end="", markup=False, highlight=False, soft_wrap=True)
        except KeyboardInterrupt:
            self.console.print("\n[yellow]Generation interrupted[/yellow]")
            return "".join(chunks)
        except Exception as e:
            self.console.print(f"\n[red]Error generating response: {escape(str(e))}[/red]")
            logger.error(f"Generation error: {e}", exc_info=True)
            return None

        self.console.print()
        if pipeline.stats is not None:
            self.console.print(str(pipeline.stats), style="dim")
        return "".join(chunks)

    def run(self):
        """Start the interactive chat loop."""
        self.console.print("Type your message and press Enter. /help lists commands, Ctrl-D quits.\n")

        while True:
            try:
                user_input = self.read_input(PROMPT).strip()
            except KeyboardInterrupt:
                self.console.print("\nInterrupted. Type /exit to quit or continue chatting.\n")
                continue
            except EOFError:
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                if self.handle_command(user_input):
                    break
                continue

            self.run_turn(user_input)

        self.console.print("\nGoodbye!")


@contextmanager
def trace_session(enabled: bool):
    """Profile the enclosed block and write a Chrome trace-<ms>.json file."""
    if not enabled:
        yield
        return

    activities = [torch.profiler.ProfilerActivity.CPU]
    if torch.cuda.is_available():
        activities.append(torch.profiler.ProfilerActivity.CUDA)

    trace_file = f"trace-{int(time.time() * 1000)}.json"
    profiler = torch.profiler.profile(activities=activities)
    profiler.start()
    try:
        yield
    finally:
        profiler.stop()
        logger.info(f"Writing trace to {trace_file}")
        profiler.export_chrome_trace(trace_file)


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point for the chat CLI."""
    cfg = parse_args(argv)
    setup_logging(cfg.verbose)
    logger.debug(f"Configuration defaults: {config.summary()}")

    console = Console()

    try:
        log_cpu_capabilities()
        device = select_device(cfg.use_cpu)

        with trace_session(cfg.tracing):
            with console.status("[cyan]Loading model...", spinner="dots"):
                files = retrieve_files(cfg)
                model = load_model(files, cfg, device)
                tokenizer = load_tokenizer(files.tokenizer_file)

            model_info = get_model_info(model)
            if model_info:
                console.print(
                    f"Model loaded: {model_info.get('num_parameters_millions', '?')}M parameters, "
                    f"device {model_info.get('device', '?')}, dtype {model_info.get('dtype', '?')}\n"
                )

            chat = ChatCLI(model, tokenizer, device, cfg, console=console)
            if cfg.prompt:
                if chat.run_turn(cfg.prompt) is None:
                    sys.exit(1)
            else:
                chat.run()

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Exiting...[/yellow]")
        sys.exit(130)

    except Exception as e:
        logger.error(f"Failed to start chat: {e}", exc_info=cfg.verbose)
        console.print(f"\n[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
