"""
Railbot - Autonomous bot players for a rail-network building game.

Each bot, once per turn:
- Captures an immutable snapshot of the game
- Enumerates candidate actions (feasible and rejected)
- Scores them under a skill level and archetype
- Replays the chosen plan against a simulation
- Applies it inside a single all-or-nothing unit of work
"""

__version__ = "0.1.0"
