"""
Turn trigger - Starts a bot turn when the game hands the turn to a bot.

The trigger is the only entry point the game server needs:

    trigger = BotTurnTrigger(engine, store)
    await trigger.on_turn_change(game_id, current_player_id)

It is a no-op when bots are disabled, when the player is human, or
when a bot turn is already running for the game.
"""

from __future__ import annotations
import asyncio
from typing import TYPE_CHECKING

from .strategy_engine import AIStrategyEngine, StrategyAudit
from ..config import ai_bots_enabled
from ..errors import RailbotError
from ..logging_config import bot_logger, get_logger

if TYPE_CHECKING:
    from ..storage.interfaces import GameStore

logger = get_logger(__name__)


class BotTurnTrigger:
    """
    Gatekeeper between turn changes and the strategy engine.

    Usage:
        trigger = BotTurnTrigger(engine, store, delay_seconds=1.5)
        audit = await trigger.on_turn_change("g1", "bot-1")
    """

    def __init__(self, engine: AIStrategyEngine, store: GameStore, delay_seconds: float = 0.0):
        self.engine = engine
        self.store = store
        self.delay_seconds = delay_seconds
        self._pending: set[str] = set()

    def is_pending(self, game_id: str) -> bool:
        return game_id in self._pending

    async def on_turn_change(self, game_id: str, player_id: str) -> StrategyAudit | None:
        """Run the bot's turn if the current player is a bot; returns its audit."""
        if not ai_bots_enabled():
            return None
        if game_id in self._pending:
            logger.debug("Bot turn already pending for game %s", game_id)
            return None

        ai_player = await self.store.get_ai_player(game_id, player_id)
        if ai_player is None:
            return None

        log = bot_logger(__name__, game_id, player_id)
        self._pending.add(game_id)
        try:
            placed = await self.engine.place_initial_train(game_id, player_id)
            if placed is not None:
                log.info("Initial train placed at %s", placed[2])

            if self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)

            audit = await self.engine.execute_turn(game_id, player_id)
            await self.store.end_turn(game_id, player_id)
            return audit
        except RailbotError as e:
            log.error("Bot turn aborted: %s", e)
            return None
        finally:
            self._pending.discard(game_id)
