"""
Main entry point for agent_toolchain.

    python -m agent_toolchain serve [--port 8000]   run the chat API
    python -m agent_toolchain chat [--model MODEL]  chat in the terminal

In the terminal chat, ``model <id>`` switches the model and ``exit`` quits.
"""

import argparse
import asyncio
import logging

import uvicorn
from dotenv import load_dotenv

from .agents import build_toolchain, create_default_agent
from .app import app
from .config import Settings
from .errors import ConfigurationError
from .messages import Role
from .service import MessageService


def print_message(message) -> None:
    if message.role is Role.AGENT_EVENT:
        print(f"  · {message.text}")
    elif message.role is Role.TOOL_CALL:
        call = message.call
        print(f"  → {call.name}({call.arguments})")
    elif message.role is Role.TOOL_RESULT:
        text = message.text or ""
        if len(text) > 200:
            text = text[:200] + "..."
        print(f"  ← {'error: ' if message.is_error else ''}{text}")
    elif message.role is Role.ASSISTANT:
        print(f"\n{message.agent or 'assistant'}: {message.text}\n")


async def chat(settings: Settings) -> None:
    toolchain = build_toolchain(settings)
    service = MessageService(create_default_agent(settings, toolchain), settings=settings)
    print(f"Chatting with {service.agent.model}. Type 'model <id>' to switch, 'exit' to quit.")
    try:
        while True:
            line = (await asyncio.to_thread(input, "> ")).strip()
            if not line:
                continue
            if line.lower() in ("exit", "quit"):
                break
            if line.startswith("model "):
                model = line[len("model "):].strip()
                try:
                    service.set_agent(create_default_agent(settings, toolchain, model))
                    print(f"Switched to {model}")
                except ConfigurationError as e:
                    print(f"Error: {e}")
                continue

            async for message in service.submit_stream(line):
                print_message(message)
            outcome = service.last_outcome
            if outcome is not None and not outcome.ok:
                print(f"Error ({type(outcome.error).__name__}): {outcome.error}")
    finally:
        await toolchain.close()


def main():
    """Main entry point for agent_toolchain."""
    parser = argparse.ArgumentParser(description="Agent toolchain - tool-using agents with delegation")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the chat API server")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the server on (default: 8000)",
    )

    chat_parser = subparsers.add_parser("chat", help="Chat in the terminal")
    chat_parser.add_argument("--model", help="Model to start with (default: AGENT_TOOLCHAIN_MODEL)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv()

    if args.command == "chat":
        settings = Settings.from_env()
        if args.model:
            settings.model = args.model
        try:
            asyncio.run(chat(settings))
        except (KeyboardInterrupt, EOFError):
            pass
        return

    port = getattr(args, "port", 8000)
    logging.getLogger(__name__).info(f"Starting chat server on http://localhost:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
