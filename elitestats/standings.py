"""Longest-standing record statistics derived from world-record chains."""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from . import clock
from .errors import InvalidInput
from .models import Holder, Player, Standing, WorldRecord

logger = logging.getLogger(__name__)


class StandingType(Enum):
    UNTIED = "untied"
    UNTIED_EXCEPT_SELF = "untied_except_self"
    UNSLAYED = "unslayed"
    FIRST_UNSLAYED = "first_unslayed"
    UNSLAYED_EXCEPT_SELF = "unslayed_except_self"
    BETWEEN_TWO_TIMES = "between_two_times"


def parse_standing_type(raw) -> StandingType:
    if isinstance(raw, StandingType):
        return raw
    key = str(raw or "").strip().lower().replace("-", "_")
    for item in StandingType:
        if key in (item.value, item.name.lower(), item.value.replace("_", "")):
            return item
    raise InvalidInput(f"unknown standing type: {raw}")


def _untied_end(node: WorldRecord) -> Tuple[Optional[date], Optional[Player]]:
    if node.untied_slay_date is not None:
        return node.untied_slay_date, node.untied_slay_player
    return node.slay_date, node.slay_player


def _new(node: WorldRecord, holder: Holder) -> Standing:
    return Standing(node.stage, node.level, holder.date, holder.player, times=[node.time])


def _walk_untied(chain: List[WorldRecord], except_self: bool) -> List[Standing]:
    out: List[Standing] = []
    carry: Optional[Standing] = None
    for node in chain:
        if not node.is_untied:
            carry = None
            continue
        if carry is not None and carry.author.id == node.player.id:
            standing = carry
            standing.add_time(node.time)
        else:
            standing = _new(node, node.holders[0])
            out.append(standing)
        standing.end_date, standing.slayer = _untied_end(node)
        self_slain = (
            node.untied_slay_date is None
            and node.slay_player is not None
            and node.slay_player.id == node.player.id
        )
        carry = standing if except_self and self_slain else None
    return out


def _walk_unslayed(chain: List[WorldRecord], first_only: bool, except_self: bool) -> List[Standing]:
    out: List[Standing] = []
    carry: Dict[int, Standing] = {}
    for node in chain:
        holders = node.holders[:1] if first_only else node.holders
        next_carry: Dict[int, Standing] = {}
        for holder in holders:
            standing = carry.get(holder.player.id)
            if standing is not None:
                standing.add_time(node.time)
            else:
                standing = _new(node, holder)
                out.append(standing)
            standing.end_date = node.slay_date
            standing.slayer = node.slay_player
            if except_self and node.slay_player is not None and node.slay_player.id == holder.player.id:
                next_carry[holder.player.id] = standing
        carry = next_carry
    return out


def _walk_between(chain: List[WorldRecord]) -> List[Standing]:
    out: List[Standing] = []
    for node in chain:
        for i, holder in enumerate(node.holders):
            standing = _new(node, holder)
            if i + 1 < len(node.holders):
                standing.end_date = node.holders[i + 1].date
                standing.slayer = node.holders[i + 1].player
            else:
                standing.end_date = node.slay_date
                standing.slayer = node.slay_player
            out.append(standing)
    return out


def chain_standings(chain: List[WorldRecord], standing_type: StandingType) -> List[Standing]:
    """Standings of one (stage, level) chain, in chain order, without days."""
    if standing_type is StandingType.UNTIED:
        return _walk_untied(chain, except_self=False)
    if standing_type is StandingType.UNTIED_EXCEPT_SELF:
        return _walk_untied(chain, except_self=True)
    if standing_type is StandingType.UNSLAYED:
        return _walk_unslayed(chain, first_only=False, except_self=False)
    if standing_type is StandingType.FIRST_UNSLAYED:
        return _walk_unslayed(chain, first_only=True, except_self=False)
    if standing_type is StandingType.UNSLAYED_EXCEPT_SELF:
        return _walk_unslayed(chain, first_only=False, except_self=True)
    return _walk_between(chain)


def sort_standings(standings: List[Standing]) -> List[Standing]:
    return sorted(
        standings,
        key=lambda s: (-s.days, s.start_date, s.stage.value, s.level.value, s.author.id),
    )


def compute_standings(
    chains: Iterable[List[WorldRecord]],
    standing_type: StandingType,
    reference_date: Optional[date] = None,
    still_ongoing: bool = False,
) -> List[Standing]:
    """Standings of every chain, longest first.

    ``reference_date`` closes ongoing standings for the day count and
    defaults to today.
    """
    reference = reference_date or clock.today()
    result: List[Standing] = []
    for chain in chains:
        for standing in chain_standings(chain, standing_type):
            if still_ongoing and not standing.still_ongoing:
                continue
            result.append(standing.with_days(reference))
    logger.debug("compute_standings type=%s standings=%d", standing_type.value, len(result))
    return sort_standings(result)


__all__ = [
    "StandingType",
    "parse_standing_type",
    "chain_standings",
    "sort_standings",
    "compute_standings",
]
