"""CLI interface for interactive question answering."""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from nlquery.core.errors import NLQueryError
from nlquery.core.orchestrator import ConversationOrchestrator
from nlquery.lib.config import ConfigLoader
from nlquery.lib.logger import get_logger, setup_logging
from nlquery.models.response import OutputFormat
from nlquery.storage.knowledge_base import InMemoryKnowledgeBase
from nlquery.storage.snapshot_store import JsonFileSnapshotStore

logger = get_logger(__name__)

HELP_TEXT = """Commands:
  help        Show this help
  history     Show the questions asked in this conversation
  clear       Clear the conversation history
  new         Start a new conversation
  save        Save the conversation to disk
  load <id>   Load a saved conversation
  exit, quit  Leave"""


class CLI:
    """Interactive command-line front end for the conversation orchestrator."""

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        output_format: OutputFormat = OutputFormat.MARKDOWN,
    ):
        """Initialize CLI.

        Args:
            orchestrator: Orchestrator answering questions
            output_format: Rendering of answers (markdown, plain or json)
        """
        self.orchestrator = orchestrator
        self.output_format = output_format

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "CLI":
        """Build the CLI and its orchestrator from parsed arguments."""
        engine_config = ConfigLoader(config_dir=args.config_dir).engine

        kb_path = Path(args.kb)
        if kb_path.exists():
            knowledge_base = InMemoryKnowledgeBase.from_jsonl(kb_path)
        else:
            logger.warning(f"Knowledge base not found at {kb_path}, starting empty")
            knowledge_base = InMemoryKnowledgeBase()

        orchestrator = ConversationOrchestrator(
            knowledge_base,
            engine_config,
            snapshot_store=JsonFileSnapshotStore(args.snapshots),
        )
        return cls(orchestrator, OutputFormat(args.format))

    async def process(self, user_input: str) -> bool:
        """Handle one line of input.

        Args:
            user_input: Command or question

        Returns:
            False when the user asked to leave
        """
        command, _, argument = user_input.strip().partition(" ")
        command = command.lower()

        if command in ("exit", "quit"):
            print("\nGoodbye!")
            return False

        if command == "help":
            print(HELP_TEXT)
        elif command == "history":
            self._show_history()
        elif command == "clear":
            self.orchestrator.clear_history()
            print("Conversation history cleared.")
        elif command == "new":
            conversation_id = self.orchestrator.new_conversation()
            print(f"Started conversation {conversation_id}")
        elif command == "save":
            conversation_id = self.orchestrator.save_snapshot()
            print(f"Saved conversation {conversation_id}")
        elif command == "load":
            self._load(argument.strip())
        else:
            await self._ask(user_input.strip())

        return True

    async def _ask(self, question: str) -> None:
        response = await self.orchestrator.ask(question)
        print()
        print(self.orchestrator.synthesizer.to_output(response, self.output_format))
        print()

    def _show_history(self) -> None:
        turns = self.orchestrator.history()
        if not turns:
            print("No questions asked yet.")
            return

        for i, turn in enumerate(turns, 1):
            print(f"{i}. [{turn.timestamp:%H:%M:%S}] {turn.user_text}")

    def _load(self, conversation_id: str) -> None:
        if not conversation_id:
            print("Usage: load <id>")
            return

        if self.orchestrator.restore_snapshot(conversation_id):
            print(f"Loaded conversation {conversation_id} ({len(self.orchestrator.history())} turns)")
        else:
            print(f"No saved conversation named {conversation_id}")

    async def chat_loop(self) -> None:
        """Main interactive chat loop."""
        print("\nConversational Query Engine")
        print("=" * 50)
        print("Ask a question, or type 'help' for commands")
        print("=" * 50)
        print()

        conversation_id = self.orchestrator.new_conversation()
        logger.info(f"Started conversation {conversation_id}")

        while True:
            try:
                user_input = input("> ").strip()
                if not user_input:
                    continue

                if not await self.process(user_input):
                    break

            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            except NLQueryError as e:
                logger.warning(f"Error processing query: {e}")
                print(f"\nError: {e}")
                print("Please try again or type 'quit' to exit.\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ask multi-turn questions about a knowledge base",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  nlquery                                  # Interactive mode
  nlquery --kb data/knowledge-base.jsonl   # Custom knowledge base
  nlquery --format plain --debug           # Plain text with verbose logging
        """,
    )
    parser.add_argument(
        "--kb",
        default=str(Path("data") / "knowledge-base.jsonl"),
        help="Path to the JSONL knowledge base",
    )
    parser.add_argument(
        "--format",
        choices=[f.value for f in OutputFormat],
        default=OutputFormat.MARKDOWN.value,
        help="Answer output format",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode with verbose logging")
    parser.add_argument("--config-dir", default="config", help="Directory holding engine.yaml")
    parser.add_argument(
        "--snapshots",
        default=str(Path("data") / "conversations"),
        help="Directory for saved conversations",
    )
    return parser


async def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (default: sys.argv)

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    # Quiet mode unless debug
    setup_logging(log_level="DEBUG" if args.debug else "INFO", quiet=not args.debug)

    try:
        cli = CLI.from_args(args)
        await cli.chat_loop()
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=args.debug)
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1

    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
