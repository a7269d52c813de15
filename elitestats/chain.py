"""World-record chain reconstruction for a single (stage, level).

Entries are replayed day by day. Matching the current best time joins the
open node as a tied holder; beating it closes the node (the entrant is its
slayer) and opens a new one. Dateless entries never take part; resolve them
first if they should.
"""

from __future__ import annotations

import logging
from datetime import date
from itertools import groupby
from typing import Iterable, List, Mapping, Optional, Tuple

from .catalog import Level, Stage
from .errors import InternalInvariantViolation, InvalidInput
from .models import Player, TimeEntry, WorldRecord

logger = logging.getLogger(__name__)


def validate_entries(entries: Iterable[TimeEntry]) -> None:
    """Reject entries the engine must never compute on."""
    for e in entries:
        if e.time is None or e.time <= 0:
            raise InvalidInput(
                f"non-positive time {e.time} for player {e.player_id} on {e.stage.name}/{e.level.name}"
            )


def _player(players: Mapping[int, Player], player_id: int) -> Player:
    found = players.get(player_id)
    if found is None:
        return Player(id=player_id)
    return found


def build_chain(
    stage: Stage,
    level: Level,
    entries: Iterable[TimeEntry],
    players: Mapping[int, Player],
) -> List[WorldRecord]:
    """Return the ordered world-record nodes for ``stage``/``level``.

    Only entries of the requested slot carrying a date are considered.
    Raises :class:`InternalInvariantViolation` when the replay produces a
    chain the data cannot justify.
    """
    dated = [
        e for e in entries
        if e.stage == stage and e.level == level and e.date is not None
    ]
    validate_entries(dated)
    if not dated:
        return []

    dated.sort(key=lambda e: (e.date, e.time, e.player_id))
    chain: List[WorldRecord] = []
    current: Optional[WorldRecord] = None
    best: Optional[int] = None

    for day, group in groupby(dated, key=lambda e: e.date):
        day_entries = list(group)
        if best is None:
            best = day_entries[0].time
        for e in day_entries:
            if e.time > best:
                continue
            player = _player(players, e.player_id)
            if e.time == best:
                if current is None:
                    current = WorldRecord(stage, level, e.time)
                    current.add_holder(player, day, e.engine)
                    chain.append(current)
                elif current.add_holder(player, day, e.engine):
                    _check_holder_order(current)
                continue
            if current is None:
                raise InternalInvariantViolation(
                    f"slay by player {e.player_id} on {stage.name}/{level.name} with no open record"
                )
            if day < current.holders[-1].date:
                raise InternalInvariantViolation(
                    f"slay on {day} precedes last holder date on {stage.name}/{level.name}"
                )
            current.add_slayer(player, day)
            current = WorldRecord(stage, level, e.time)
            current.add_holder(player, day, e.engine)
            chain.append(current)
            best = e.time

    check_chain(chain)
    logger.debug("build_chain stage=%s level=%s entries=%d nodes=%d", stage.name, level.name, len(dated), len(chain))
    return chain


def _check_holder_order(node: WorldRecord) -> None:
    if len(node.holders) > 1 and node.holders[-1].date < node.holders[-2].date:
        raise InternalInvariantViolation(
            f"holder dates decrease on {node.stage.name}/{node.level.name} at time {node.time}"
        )


def check_chain(chain: List[WorldRecord]) -> None:
    """Node times must strictly decrease and each slay must close its node."""
    for previous, node in zip(chain, chain[1:]):
        if node.time >= previous.time:
            raise InternalInvariantViolation(
                f"chain time {node.time} does not improve on {previous.time} "
                f"for {node.stage.name}/{node.level.name}"
            )
        if previous.slay_date is None:
            raise InternalInvariantViolation(
                f"record {previous.time} on {node.stage.name}/{node.level.name} replaced without a slay"
            )


def find_ambiguous(chain: Iterable[WorldRecord], untied_slay: bool) -> List[WorldRecord]:
    """Nodes whose holder order cannot be settled at day granularity.

    With ``untied_slay`` the second and third holders are compared (who broke
    the untied status); otherwise the first two (who set the record).
    """
    index = 2 if untied_slay else 1
    found = [node for node in chain if node.check_ambiguous_holders(index)]
    for node in found:
        logger.warning(
            "ambiguous holders stage=%s level=%s time=%s date=%s",
            node.stage.name, node.level.name, node.time, node.holders[index].date,
        )
    return found


def last_tied_record(entries: Iterable[TimeEntry], as_of: Optional[date] = None) -> Tuple[Optional[TimeEntry], bool]:
    """Latest entry reaching the best time of a slot, and whether that time is untied.

    Returns ``(None, False)`` when the slot has no dated entry.
    """
    dated = [e for e in entries if e.date is not None and (as_of is None or e.date <= as_of)]
    if not dated:
        return None, False
    best = min(e.time for e in dated)
    at_best = [e for e in dated if e.time == best]
    latest = max(at_best, key=lambda e: (e.date, e.player_id))
    return latest, len({e.player_id for e in at_best}) == 1


__all__ = [
    "validate_entries",
    "build_chain",
    "check_chain",
    "find_ambiguous",
    "last_tied_record",
]
