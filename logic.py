import math
import random
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

Pos = str
Winner = str

ATTACK, MIDFIELD, DEFENSE = 'Attack', 'Midfield', 'Defense'
POSITIONS: List[Pos] = [ATTACK, MIDFIELD, DEFENSE]

TEAM_A, TEAM_B, DRAW, NOT_PLAYED = 'Team A', 'Team B', 'Draw', 'Not Played'
WINNERS: List[Winner] = [TEAM_A, TEAM_B, DRAW, NOT_PLAYED]

WIN_POINTS = 3
LOSS_POINTS = 1
DRAW_POINTS = 2

# Defenders are dealt first so they spread across both sides.
DEAL_ORDER: List[Pos] = [DEFENSE, MIDFIELD, ATTACK]

FORM_LENGTH = 5


class TeamConflict(ValueError):
    pass


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def points_awards(team_a: Sequence[int], team_b: Sequence[int], winner: Winner) -> Dict[int, int]:
    """Points each attendee earns from one match outcome.

    A player listed twice is only credited once; rosters are validated
    before they are stored, so that only matters for damaged rows.
    """
    if winner == TEAM_A:
        a_pts, b_pts = WIN_POINTS, LOSS_POINTS
    elif winner == TEAM_B:
        a_pts, b_pts = LOSS_POINTS, WIN_POINTS
    elif winner == DRAW:
        a_pts = b_pts = DRAW_POINTS
    else:
        return {}
    awards: Dict[int, int] = {}
    for pid in team_a:
        awards[pid] = a_pts
    for pid in team_b:
        awards.setdefault(pid, b_pts)
    return awards


def clamp_points(current: int, delta: int) -> int:
    return max(0, current + delta)


def check_rosters(team_a: Sequence[int], team_b: Sequence[int]) -> None:
    overlap = set(team_a) & set(team_b)
    if overlap:
        raise TeamConflict('Players cannot be on both teams: %s' % ', '.join(str(i) for i in sorted(overlap)))
    for label, team in (('Team A', team_a), ('Team B', team_b)):
        if len(set(team)) != len(team):
            raise TeamConflict(f'{label} lists the same player more than once')


def attendees_of(team_a: Sequence[int], team_b: Sequence[int]) -> List[int]:
    check_rosters(team_a, team_b)
    return list(team_a) + list(team_b)


def share_of(price: float, attendee_count: int) -> float:
    if attendee_count <= 0:
        return 0.0
    return price / attendee_count


def player_result(team_a: Sequence[int], winner: Winner, player_id: int) -> str:
    """W, D or L for a player who attended a decided match."""
    if winner == DRAW:
        return 'D'
    on_a = player_id in team_a
    if (winner == TEAM_A and on_a) or (winner == TEAM_B and not on_a):
        return 'W'
    return 'L'


def randomize_teams(attendees: List[Dict], locked_a: Optional[List[int]] = None,
                    locked_b: Optional[List[int]] = None,
                    rng: Optional[random.Random] = None) -> Tuple[List[int], List[int]]:
    """Deal attendees onto two sides, balancing sizes and positions.

    ``attendees`` are dicts with ``id`` and ``position``. Locked players keep
    their side and are never shuffled. Each position group is shuffled on its
    own, then dealt Defense, Midfield, Attack onto whichever side is not
    larger (ties go to Team A).
    """
    team_a = list(locked_a or [])
    team_b = list(locked_b or [])
    if not attendees:
        return team_a, team_b

    rng = rng or random.Random()
    locked = set(team_a) | set(team_b)
    by_id = {}
    for a in attendees:
        if a['id'] not in locked:
            by_id.setdefault(a['id'], a)

    groups: Dict[Pos, List[int]] = {pos: [] for pos in POSITIONS}
    for pid in by_id:
        groups.setdefault(by_id[pid]['position'], []).append(pid)
    for ids in groups.values():
        rng.shuffle(ids)

    def deal(ids: List[int]) -> None:
        for pid in ids:
            if len(team_a) <= len(team_b):
                team_a.append(pid)
            else:
                team_b.append(pid)

    for pos in DEAL_ORDER:
        deal(groups.pop(pos, []))
    for ids in groups.values():
        deal(ids)
    return team_a, team_b


def _match_sort_key(m):
    return (m.date, m.id)


def sort_matches(matches: Iterable) -> List:
    """Most recent first: date descending, then id descending."""
    return sorted(matches, key=_match_sort_key, reverse=True)


def _name_key(name: str):
    return (name.casefold(), name)


def sort_players_by_name(players: Iterable) -> List:
    return sorted(players, key=lambda p: _name_key(p.name))


def played(matches: Iterable) -> List:
    return [m for m in matches if m.winner != NOT_PLAYED]


def build_leaderboard(players: Iterable, matches: Iterable) -> List[Dict]:
    ranked = sorted(players, key=lambda p: (-p.points,) + _name_key(p.name))
    recent = sort_matches(played(matches))

    board = []
    for rank, p in enumerate(ranked, start=1):
        mine = [m for m in recent if p.id in m.team_a or p.id in m.team_b]
        results = [player_result(m.team_a, m.winner, p.id) for m in mine]
        count = len(mine)
        wins = results.count('W')
        board.append({
            'rank': rank,
            'playerId': p.id,
            'name': p.name,
            'points': p.points,
            'matchesPlayed': count,
            'avgPointsPerMatch': round_half_up(p.points / count, 1) if count else 0,
            'lastPlayedDate': mine[0].date if mine else None,
            'winRate': int(round_half_up(wins / count * 100)) if count else 0,
            'wins': wins,
            'draws': results.count('D'),
            'losses': results.count('L'),
            'form': list(reversed(results[:FORM_LENGTH])),
        })
    return board


def build_payment_matrix(players: Iterable, matches: Iterable, payments: Iterable) -> Dict:
    players = sort_players_by_name(players)
    payments = list(payments)
    unpaid: Dict[int, float] = {}
    for pay in payments:
        if not pay.paid:
            unpaid[pay.player_id] = unpaid.get(pay.player_id, 0.0) + pay.amount_owed
    return {
        'players': [{'id': p.id, 'name': p.name} for p in players],
        'matches': [{'id': m.id, 'date': m.date, 'time': m.time, 'price': m.price}
                    for m in sort_matches(played(matches))],
        'payments': [{'playerId': pay.player_id, 'matchId': pay.match_id,
                      'amountOwed': pay.amount_owed, 'paid': pay.paid} for pay in payments],
        'totals': [{'playerId': p.id, 'totalOwed': unpaid.get(p.id, 0.0)} for p in players],
    }


def recalculated_points(player_ids: Iterable[int], matches: Iterable) -> Dict[int, int]:
    """Points for every player rebuilt from scratch over all played matches."""
    totals = {pid: 0 for pid in player_ids}
    for m in played(matches):
        for pid, pts in points_awards(m.team_a, m.team_b, m.winner).items():
            if pid in totals:
                totals[pid] += pts
    return totals
