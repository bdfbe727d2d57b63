"""
Demo map - A small hand-built board for trying bots out.

    rows 0-11, cols 0-15

    Berlin (2,3)   Wien (2,12)        major cities
    Paris (8,3)    Milano (8,12)
    Lyon (6,2)     Cheese             medium city
    Ruhr (5,6)     Coal               small cities
    Bordeaux (11,1) Wine
    Torino (10,14) Steel

A mountain ridge runs down column 7 (alpine at 0,8), a lake covers
(5..6, 9..10) with a ferry from (4,9) to (7,9), and a river crosses a
few edges west of the Ruhr.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

from ..engine_core.map_grid import EVEN_ROW_OFFSETS, ODD_ROW_OFFSETS, Ferry, MapGrid, Milepost, TerrainType
from ..engine_core.state import Demand, DemandCard, point_key

if TYPE_CHECKING:
    from ..storage.database import SqliteGameStore
    from ..storage.deck import InMemoryDemandDeck

ROWS = 12
COLS = 16

MAJOR_CITIES = {
    "Berlin": (2, 3),
    "Wien": (2, 12),
    "Paris": (8, 3),
    "Milano": (8, 12),
}

# name -> (row, col, terrain, supplies)
OTHER_CITIES = {
    "Lyon": (6, 2, TerrainType.MEDIUM_CITY, ("Cheese",)),
    "Ruhr": (5, 6, TerrainType.SMALL_CITY, ("Coal",)),
    "Bordeaux": (11, 1, TerrainType.SMALL_CITY, ("Wine",)),
    "Torino": (10, 14, TerrainType.SMALL_CITY, ("Steel",)),
}

MOUNTAINS = [(0, 7), (1, 7), (2, 7), (3, 7), (1, 8)]
ALPINE = [(0, 8)]
LAKE = [(5, 9), (5, 10), (6, 9), (6, 10)]
FERRY_PORTS = ((4, 9), (7, 9))
RIVER = [((4, 5), (5, 5)), ((5, 5), (6, 5)), ((6, 5), (7, 5))]

DEMO_LOADS = {"Coal": 3, "Wine": 3, "Cheese": 3, "Steel": 3}

DEMO_CARDS = (
    DemandCard(1, (Demand("Berlin", "Coal", 12), Demand("Milano", "Wine", 18), Demand("Torino", "Cheese", 14))),
    DemandCard(2, (Demand("Paris", "Steel", 22), Demand("Wien", "Coal", 16), Demand("Lyon", "Wine", 9))),
    DemandCard(3, (Demand("Wien", "Wine", 24), Demand("Paris", "Coal", 11), Demand("Ruhr", "Cheese", 10))),
    DemandCard(4, (Demand("Milano", "Coal", 19), Demand("Berlin", "Cheese", 13), Demand("Bordeaux", "Steel", 26))),
    DemandCard(5, (Demand("Lyon", "Steel", 17), Demand("Berlin", "Wine", 15), Demand("Wien", "Cheese", 21))),
    DemandCard(6, (Demand("Torino", "Coal", 20), Demand("Paris", "Wine", 8), Demand("Milano", "Cheese", 12))),
    DemandCard(7, (Demand("Berlin", "Steel", 23), Demand("Lyon", "Coal", 9), Demand("Wien", "Wine", 25))),
    DemandCard(8, (Demand("Paris", "Cheese", 7), Demand("Torino", "Wine", 19), Demand("Ruhr", "Steel", 16))),
    DemandCard(9, (Demand("Milano", "Steel", 10), Demand("Bordeaux", "Coal", 21), Demand("Berlin", "Wine", 14))),
)


def _neighbour_cells(row: int, col: int) -> list[tuple[int, int]]:
    offsets = ODD_ROW_OFFSETS if row % 2 == 1 else EVEN_ROW_OFFSETS
    return [(row + dr, col + dc) for dr, dc in offsets]


def build_demo_grid() -> MapGrid:
    """Build the demo board."""
    cells: dict[tuple[int, int], Milepost] = {}

    for row in range(ROWS):
        for col in range(COLS):
            cells[(row, col)] = Milepost(row, col, TerrainType.CLEAR)

    for row, col in MOUNTAINS:
        cells[(row, col)] = Milepost(row, col, TerrainType.MOUNTAIN)
    for row, col in ALPINE:
        cells[(row, col)] = Milepost(row, col, TerrainType.ALPINE)
    for row, col in LAKE:
        cells[(row, col)] = Milepost(row, col, TerrainType.WATER)
    for row, col in FERRY_PORTS:
        cells[(row, col)] = Milepost(row, col, TerrainType.FERRY_PORT)

    for name, (row, col) in MAJOR_CITIES.items():
        cells[(row, col)] = Milepost(row, col, TerrainType.MAJOR_CITY, name, is_city_center=True)
        for r, c in _neighbour_cells(row, col):
            cells[(r, c)] = Milepost(r, c, TerrainType.MAJOR_CITY, name)

    for name, (row, col, terrain, supplies) in OTHER_CITIES.items():
        cells[(row, col)] = Milepost(row, col, terrain, name, supplies)

    ferries = [Ferry("Lake Ferry", point_key(*FERRY_PORTS[0]), point_key(*FERRY_PORTS[1]), 4)]
    crossings = {(point_key(*a), point_key(*b)): "river" for a, b in RIVER}
    return MapGrid(cells.values(), ferries, crossings)


def seed_demo_game(
    store: SqliteGameStore,
    deck: InMemoryDemandDeck,
    game_id: str = "demo",
    bots: tuple[tuple[str, str, str], ...] = (("bot-1", "medium", "backbone_builder"),),
    human: str | None = "human-1",
    hand_size: int = 3,
) -> list[str]:
    """
    Create a demo game with one human (optional) and some bots.

    bots: (player_id, difficulty, archetype) triples. Hands are drawn
    from the deck. Returns the bot player ids.
    """
    store.create_game(game_id, name="Demo")
    store.set_load_availability(game_id, DEMO_LOADS)

    if human:
        hand = [deck.draw_card().card_id for _ in range(hand_size)]
        store.add_player(game_id, human, "Human", hand=hand, position=MAJOR_CITIES["Paris"])

    for player_id, difficulty, archetype in bots:
        hand = [deck.draw_card().card_id for _ in range(hand_size)]
        store.add_player(
            game_id,
            player_id,
            f"Bot {player_id}",
            hand=hand,
            is_bot=True,
            ai_difficulty=difficulty,
            ai_archetype=archetype,
        )
    return [b[0] for b in bots]
