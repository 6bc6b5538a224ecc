#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from assistant.services.actors import Actor, CompanyUser, Consultant, Hrm8User
from assistant.services.errors import AssistantError
from assistant.services.orchestrator import chat

# Actors matching scripts/seed_demo.py
DEMO_ACTORS: dict[str, Actor] = {
    "company-admin": CompanyUser("u-1", "dana@acme-robotics.com", "co-1", "ADMIN"),
    "company-user": CompanyUser("u-2", "sam@acme-robotics.com", "co-1", "USER"),
    "global-admin": Hrm8User("h-1", "morgan@hrm8.com", "GLOBAL_ADMIN"),
    "regional-admin": Hrm8User("h-2", "riley@hrm8.com", "REGIONAL_LICENSEE", "lic-1", ("r1", "r2")),
    "consultant": Consultant("c1", "priya@hrm8.com", "c1", "r1", "RECRUITER"),
}


async def _run(actor: Actor, message: str) -> None:
    try:
        result = await chat(actor, {"message": message})
    except AssistantError as exc:
        print(f"Chat failed: {exc.message}")
        raise SystemExit(1)

    print(f"Model: {result.model}")
    print("Tools used:")
    print(json.dumps([usage.to_dict() for usage in result.tools_used], indent=2))
    print("Answer:")
    print(result.answer)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask the HRM8 assistant one question from the CLI")
    parser.add_argument("actor", choices=sorted(DEMO_ACTORS.keys()))
    parser.add_argument("message")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    asyncio.run(_run(DEMO_ACTORS[args.actor], args.message))


if __name__ == "__main__":
    main()
