"""CLI entry point for EcoAI.

A terminal chat with one persona, going through the same entry point as
the WhatsApp webhook.  Personas and products come from a JSON seed file.

Usage:
    uv run python -m ecoai.main --seed seed.example.json
    uv run python -m ecoai.main --seed seed.example.json --owner demo-salon --debug
"""

from __future__ import annotations

import argparse
import logging
import random

from dotenv import load_dotenv

from ecoai.agent import Orchestrator
from ecoai.config import SEED_FILE
from ecoai.handlers import MessageHandler, Outcome
from ecoai.models import Persona
from ecoai.services.events import ALL_TENANTS, EventBus
from ecoai.services.store import InMemoryStore

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("ecoai").setLevel(logging.DEBUG if debug else logging.INFO)


def _random_phone() -> str:
    return "57300" + "".join(random.choices("0123456789", k=7))


def _choose_persona(store: InMemoryStore, owner_id: str | None) -> Persona:
    personas = store.list_personas()
    if not personas:
        raise SystemExit("The seed file has no personas.")
    if owner_id:
        for persona in personas:
            if persona.id == owner_id:
                return persona
        raise SystemExit(f"No persona with id {owner_id!r} in the seed file.")
    if len(personas) == 1:
        return personas[0]

    for index, persona in enumerate(personas, start=1):
        print(f"  {index}. {persona.bot_name} ({persona.agent_type}) [{persona.id}]")
    while True:
        choice = input("Choose a persona: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(personas):
            return personas[int(choice) - 1]


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="EcoAI CLI chat")
    parser.add_argument("--seed", default=SEED_FILE or "seed.example.json", help="JSON file with personas/products")
    parser.add_argument("--owner", help="Persona id to talk to")
    parser.add_argument("--phone", help="Customer phone number to simulate")
    parser.add_argument("--debug", action="store_true", help="Show all log messages and events")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    store = InMemoryStore.from_seed_file(args.seed)
    events = EventBus()
    if args.debug:
        events.subscribe(ALL_TENANTS, lambda tenant, name, payload: print(f"   [event] {name}"))

    persona = _choose_persona(store, args.owner)
    handler = MessageHandler(store, events, Orchestrator(store, events))
    phone = args.phone or _random_phone()

    print("\n" + "=" * 60)
    print(f"  EcoAI CLI - chatting with {persona.bot_name} ({persona.agent_type})")
    print("=" * 60)
    print(f"  You are customer {phone}.")
    print("  Commands: 'quit' to exit, 'new' to become a new customer.")
    print("=" * 60 + "\n")

    def print_reply(to: str, text: str, sender: Persona) -> None:
        print(f"\n{sender.bot_name}: {text}\n")

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break
        if user_input.lower() == "new":
            phone = _random_phone()
            print(f"\n>> You are now customer {phone}\n")
            continue

        try:
            outcome = handler.process_direct_message(phone, user_input, persona.id, print_reply)
            if outcome != Outcome.RESPONSE_SENT:
                print(f"   ({outcome.value})")
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n{persona.bot_name}: I'm sorry, something went wrong: {e}\n")


if __name__ == "__main__":
    main()
