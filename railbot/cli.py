"""
Railbot CLI - Command-line interface for running bots against a game database.

Usage:
    railbot init-db                          Create the database tables
    railbot seed-demo --bots 2               Create a demo game on the demo map
    railbot take-turn <game_id> <player_id>  Run one bot turn
    railbot audit <game_id> <player_id>      Print the latest audit
    railbot serve                            Run the audit API
"""

import argparse
import asyncio
import json
import sys

from .config import RAILBOT_DB_PATH
from .logging_config import setup_logging


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Railbot - Bot players for a railroad-building game",
        prog="railbot",
    )
    parser.add_argument("--db", default=RAILBOT_DB_PATH, help="SQLite database file")
    parser.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init-db", help="Create the database tables")

    seed_parser = subparsers.add_parser("seed-demo", help="Create a demo game")
    seed_parser.add_argument("--game", default="demo", help="Game id")
    seed_parser.add_argument("--bots", type=int, default=1, help="Number of bot players")
    seed_parser.add_argument("--difficulty", default="medium", help="easy, medium or hard")
    seed_parser.add_argument("--archetype", default="backbone_builder", help="Bot archetype")
    seed_parser.add_argument("--no-human", action="store_true", help="Bots only")

    turn_parser = subparsers.add_parser("take-turn", help="Run one bot turn")
    turn_parser.add_argument("game_id")
    turn_parser.add_argument("player_id")
    turn_parser.add_argument("--map", help="Map JSON file (default: demo map)")
    turn_parser.add_argument("--seed", type=int, help="Random seed for scoring noise")

    audit_parser = subparsers.add_parser("audit", help="Print the latest audit of a bot")
    audit_parser.add_argument("game_id")
    audit_parser.add_argument("player_id")

    serve_parser = subparsers.add_parser("serve", help="Run the audit API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "init-db":
        cmd_init_db(args)
    elif args.command == "seed-demo":
        cmd_seed_demo(args)
    elif args.command == "take-turn":
        cmd_take_turn(args)
    elif args.command == "audit":
        cmd_audit(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


def _open_store(args):
    from .storage.database import SqliteGameStore

    store = SqliteGameStore(args.db)
    store.initialize()
    return store


def cmd_init_db(args):
    """Create the database tables."""
    _open_store(args)
    print(f"Database ready: {args.db}")


def cmd_seed_demo(args):
    """Create a demo game."""
    from .maps.demo import DEMO_CARDS, seed_demo_game
    from .storage.deck import InMemoryDemandDeck

    store = _open_store(args)
    deck = InMemoryDemandDeck(DEMO_CARDS)
    bots = tuple(
        (f"bot-{i}", args.difficulty, args.archetype)
        for i in range(1, args.bots + 1)
    )
    bot_ids = seed_demo_game(store, deck, args.game, bots=bots, human=None if args.no_human else "human-1")

    print(f"Game created: {args.game}")
    for bot_id in bot_ids:
        print(f"  bot: {bot_id} ({args.difficulty}, {args.archetype})")


def cmd_take_turn(args):
    """Run one bot turn."""
    import random
    from .bots.strategy_engine import AIStrategyEngine
    from .engine_core.map_grid import MapGrid
    from .engine_core.snapshot import normalize_row
    from .errors import RailbotError
    from .maps.demo import DEMO_CARDS, build_demo_grid
    from .storage.deck import InMemoryDemandDeck
    from .storage.notifier import LoggingNotifier

    store = _open_store(args)
    grid = MapGrid.load(args.map) if args.map else build_demo_grid()

    deck = InMemoryDemandDeck(DEMO_CARDS)
    rows = asyncio.run(store.fetch_game_rows(args.game_id))
    deck.mark_dealt(card for row in rows for card in normalize_row(row)["hand"])

    rng = random.Random(args.seed) if args.seed is not None else None
    engine = AIStrategyEngine(store, deck, LoggingNotifier(), grid, rng=rng)

    async def run():
        await engine.place_initial_train(args.game_id, args.player_id)
        audit = await engine.execute_turn(args.game_id, args.player_id)
        await store.end_turn(args.game_id, args.player_id)
        return audit

    try:
        audit = asyncio.run(run())
    except RailbotError as e:
        print(f"Error: {e}")
        sys.exit(1)

    plan = audit.selected_plan
    print(f"Turn {audit.turn_number}: {audit.execution_result.value}")
    if plan:
        for action in plan.actions:
            print(f"  {action.kind}: {action.params}")
    print(f"  attempts: {audit.attempts}, {audit.timing.total_ms:.1f}ms")


def cmd_audit(args):
    """Print the latest audit of a bot."""
    store = _open_store(args)
    audit = asyncio.run(store.latest_audit(args.game_id, args.player_id))
    if audit is None:
        print(f"No audit found for {args.player_id}")
        sys.exit(1)
    print(json.dumps(audit, indent=2))


def cmd_serve(args):
    """Run the audit API."""
    import uvicorn
    from .api.app import create_app

    uvicorn.run(create_app(_open_store(args)), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
