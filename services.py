"""Club operations over the record store."""
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import logic
from errors import ConflictError, NotFoundError, StoreError, ValidationError
from logic import NOT_PLAYED, POSITIONS, WINNERS, TeamConflict
from models import Match, Payment, Player
from utils import is_iso_date

logger = logging.getLogger(__name__)

UNSET = object()


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_bool(value) -> bool:
    return isinstance(value, bool)


def _is_str(value) -> bool:
    return isinstance(value, str)


def _is_id_list(value) -> bool:
    return isinstance(value, list) and all(_is_int(i) for i in value)


def _records(data: Dict, key: str) -> List[Dict]:
    rows = data.get(key, [])
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise ValidationError(f'{key} must be an array of objects')
    return rows


def _field(record: Dict, key: str, check, expected: str, default=UNSET):
    if key not in record:
        if default is UNSET:
            raise ValidationError(f'Snapshot record is missing {key!r}')
        return default
    value = record[key]
    if not check(value):
        raise ValidationError(f'{key} must be {expected}, got {value!r}')
    return value


class ClubService:
    """Facade over the record store for players, matches and payments."""

    def __init__(self, session):
        self.session = session

    @contextmanager
    def transaction(self):
        try:
            yield
            self.session.commit()
        except TeamConflict as e:
            self.session.rollback()
            raise ConflictError(str(e)) from e
        except IntegrityError as e:
            self.session.rollback()
            raise ConflictError(f'UNIQUE constraint failed: {e.orig}') from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception('Store failure, changes rolled back')
            raise StoreError('Failed to save changes') from e
        except Exception:
            self.session.rollback()
            raise

    # Players --------------------------------------------------------
    def list_players(self) -> List[Player]:
        return logic.sort_players_by_name(self.session.scalars(select(Player)).all())

    def get_player(self, player_id: int) -> Player:
        player = self.session.get(Player, player_id)
        if player is None:
            raise NotFoundError('Player not found')
        return player

    def _player_by_name(self, name: str) -> Optional[Player]:
        return self.session.scalars(select(Player).where(Player.name == name)).first()

    def _require_players(self, ids: Iterable[int]) -> List[Player]:
        players = []
        for pid in ids:
            player = self.session.get(Player, pid)
            if player is None:
                raise ConflictError(f'Player with ID {pid} not found')
            players.append(player)
        return players

    @staticmethod
    def _check_position(position) -> None:
        if position not in POSITIONS:
            raise ValidationError('Position must be Attack, Midfield, or Defense')

    @staticmethod
    def _clean_name(name, message: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(message)
        return name.strip()

    def create_player(self, name, position) -> Player:
        name = self._clean_name(name, 'Name is required')
        self._check_position(position)
        if self._player_by_name(name) is not None:
            raise ConflictError(f'UNIQUE constraint failed: a player named "{name}" already exists')

        player = Player(name=name, position=position, points=0, total_owed=0.0, paid=True)
        with self.transaction():
            self.session.add(player)
        logger.info('Created player %s "%s" (%s)', player.id, name, position)
        return player

    def update_player(self, player_id: int, name=UNSET, position=UNSET) -> Player:
        player = self.get_player(player_id)
        if name is not UNSET:
            name = self._clean_name(name, 'Name must be a non-empty string')
            if name != player.name:
                other = self._player_by_name(name)
                if other is not None and other.id != player.id:
                    raise ConflictError(f'UNIQUE constraint failed: a player named "{name}" already exists')
        if position is not UNSET:
            self._check_position(position)

        with self.transaction():
            if name is not UNSET:
                player.name = name
            if position is not UNSET:
                player.position = position
        return player

    def delete_player(self, player_id: int) -> None:
        """Drop a player from every roster, re-scoring the matches they played."""
        player = self.get_player(player_id)
        with self.transaction():
            affected: Set[int] = set()
            for match in self.session.scalars(select(Match)).all():
                if player_id not in match.team_a and player_id not in match.team_b:
                    continue
                new_a = [pid for pid in match.team_a if pid != player_id]
                new_b = [pid for pid in match.team_b if pid != player_id]
                affected |= self._reassign(match, new_a, new_b)
            self.session.execute(delete(Payment).where(Payment.player_id == player_id))
            self.session.delete(player)
            self.session.flush()
            affected.discard(player_id)
            self._recalculate_totals(affected)
        logger.info('Deleted player %s; %d teammates re-totalled', player_id, len(affected))

    # Matches --------------------------------------------------------
    def list_matches(self) -> List[Match]:
        return logic.sort_matches(self.session.scalars(select(Match)).all())

    def get_match(self, match_id: int) -> Match:
        match = self.session.get(Match, match_id)
        if match is None:
            raise NotFoundError('Match not found')
        return match

    @staticmethod
    def _check_match_fields(fields: Dict) -> None:
        if 'date' in fields and not is_iso_date(fields['date']):
            raise ValidationError('Date must be a YYYY-MM-DD string')
        if 'time' in fields and (not isinstance(fields['time'], str) or not fields['time'].strip()):
            raise ValidationError('Time is required')
        if 'price' in fields and (not _is_number(fields['price']) or fields['price'] < 0):
            raise ValidationError('Price must be a non-negative number')
        for key in ('location', 'pitch'):
            if key in fields and not isinstance(fields[key], str):
                raise ValidationError(f'{key.capitalize()} must be a string')

    def create_match(self, date, time, price, location=None, pitch=None) -> Match:
        fields = {'date': date, 'time': time, 'price': price,
                  'location': location or '', 'pitch': pitch or ''}
        self._check_match_fields(fields)
        fields['price'] = float(price)

        match = Match(team_a=[], team_b=[], winner=NOT_PLAYED, **fields)
        with self.transaction():
            self.session.add(match)
        logger.info('Created match %s on %s %s', match.id, date, time)
        return match

    def update_match(self, match_id: int, date=UNSET, time=UNSET, price=UNSET,
                     location=UNSET, pitch=UNSET) -> Match:
        match = self.get_match(match_id)
        changes = {k: v for k, v in (('date', date), ('time', time), ('price', price),
                                      ('location', location), ('pitch', pitch)) if v is not UNSET}
        self._check_match_fields(changes)
        if 'price' in changes:
            changes['price'] = float(changes['price'])

        with self.transaction():
            for key, value in changes.items():
                setattr(match, key, value)
            if 'price' in changes and match.winner != NOT_PLAYED:
                self._recalculate_payments(match)
                self._recalculate_totals(set(match.team_a) | set(match.team_b))
        return match

    def delete_match(self, match_id: int) -> None:
        match = self.get_match(match_id)
        with self.transaction():
            self._adjust_points(logic.points_awards(match.team_a, match.team_b, match.winner), -1)
            self._delete_payments(match.id)
            self.session.delete(match)
            self.session.flush()
            self._recalculate_all_totals()
        logger.info('Deleted match %s', match_id)

    def assign_teams(self, match_id: int, team_a: List[int], team_b: List[int]) -> Match:
        """Replace both rosters; a decided match is re-scored under the same winner."""
        match = self.get_match(match_id)
        team_a, team_b = list(team_a), list(team_b)
        try:
            logic.check_rosters(team_a, team_b)
        except TeamConflict as e:
            raise ConflictError(str(e)) from e
        self._require_players(team_a + team_b)

        with self.transaction():
            affected = self._reassign(match, team_a, team_b)
            self._recalculate_totals(affected)
        logger.info('Assigned teams for match %s: %d vs %d', match_id, len(team_a), len(team_b))
        return match

    def randomize_teams(self, match_id: int, attendees: List[int], locked_a: Iterable[int] = (),
                        locked_b: Iterable[int] = (), rng=None) -> Match:
        self.get_match(match_id)
        attendees = list(dict.fromkeys(attendees))
        if len(attendees) < 2:
            raise ValidationError('At least 2 players required for team randomization')
        pool = [{'id': p.id, 'position': p.position} for p in self._require_players(attendees)]
        team_a, team_b = logic.randomize_teams(pool, list(locked_a), list(locked_b), rng=rng)
        return self.assign_teams(match_id, team_a, team_b)

    def set_winner(self, match_id: int, winner) -> Match:
        match = self.get_match(match_id)
        if winner not in WINNERS:
            raise ValidationError("Winner must be 'Team A', 'Team B', 'Draw', or 'Not Played'")
        if winner != NOT_PLAYED and not (match.team_a or match.team_b):
            raise ValidationError('Cannot set winner without teams assigned')

        previous = match.winner
        with self.transaction():
            self._adjust_points(logic.points_awards(match.team_a, match.team_b, previous), -1)
            self._adjust_points(logic.points_awards(match.team_a, match.team_b, winner), +1)
            match.winner = winner
            if winner == NOT_PLAYED:
                self._delete_payments(match.id)
            else:
                self._recalculate_payments(match)
            self._recalculate_all_totals()
        logger.info('Match %s winner: %s -> %s', match_id, previous, winner)
        return match

    # Payments -------------------------------------------------------
    def list_payments(self) -> List[Payment]:
        return self.session.scalars(select(Payment).order_by(Payment.id)).all()

    def get_payment(self, player_id: int, match_id: int) -> Payment:
        payment = self.session.scalars(
            select(Payment).where(Payment.player_id == player_id, Payment.match_id == match_id)
        ).first()
        if payment is None:
            raise NotFoundError('Payment not found')
        return payment

    def set_payment_paid(self, player_id: int, match_id: int, paid) -> Payment:
        if not isinstance(paid, bool):
            raise ValidationError('paid must be a boolean')
        payment = self.get_payment(player_id, match_id)
        with self.transaction():
            payment.paid = paid
            self._recalculate_totals([player_id])
        return payment

    def mark_all_paid(self, player_id: int) -> int:
        self.get_player(player_id)
        with self.transaction():
            payments = self.session.scalars(select(Payment).where(Payment.player_id == player_id)).all()
            for payment in payments:
                payment.paid = True
            self._recalculate_totals([player_id])
        logger.info('Marked %d payments paid for player %s', len(payments), player_id)
        return len(payments)

    # Derived views --------------------------------------------------
    def leaderboard(self) -> List[Dict]:
        return logic.build_leaderboard(self.session.scalars(select(Player)).all(),
                                       self.session.scalars(select(Match)).all())

    def payment_matrix(self) -> Dict:
        return logic.build_payment_matrix(self.session.scalars(select(Player)).all(),
                                          self.session.scalars(select(Match)).all(),
                                          self.list_payments())

    # Maintenance ----------------------------------------------------
    def recalculate_points(self) -> List[Tuple[str, int, int]]:
        """Rebuild points from played matches; returns (name, old, new) per player."""
        players = self.list_players()
        fresh = logic.recalculated_points([p.id for p in players],
                                          self.session.scalars(select(Match)).all())
        report = []
        with self.transaction():
            for p in players:
                report.append((p.name, p.points, fresh[p.id]))
                p.points = fresh[p.id]
            self._recalculate_all_totals()
        return report

    def export_snapshot(self) -> Dict:
        return {
            'players': [p.to_dict() for p in self.list_players()],
            'matches': [m.to_dict() for m in self.list_matches()],
            'payments': [p.to_dict() for p in self.list_payments()],
        }

    def import_snapshot(self, data) -> Dict[str, int]:
        """Replace every record with the snapshot, keeping its ids."""
        if not isinstance(data, dict):
            raise ValidationError('Snapshot must be a JSON object')
        players = [self._imported_player(r) for r in _records(data, 'players')]
        matches = [self._imported_match(r) for r in _records(data, 'matches')]
        payments = [Payment(id=_field(r, 'id', _is_int, 'an integer'),
                            player_id=_field(r, 'playerId', _is_int, 'an integer'),
                            match_id=_field(r, 'matchId', _is_int, 'an integer'),
                            amount_owed=float(_field(r, 'amountOwed', _is_number, 'a number')),
                            paid=_field(r, 'paid', _is_bool, 'a boolean', default=False))
                    for r in _records(data, 'payments')]

        with self.transaction():
            self.session.execute(delete(Payment))
            self.session.execute(delete(Match))
            self.session.execute(delete(Player))
            self.session.add_all(players + matches + payments)
        counts = {'players': len(players), 'matches': len(matches), 'payments': len(payments)}
        logger.info('Imported snapshot: %s', counts)
        return counts

    def _imported_player(self, r: Dict) -> Player:
        position = _field(r, 'position', _is_str, 'a string')
        self._check_position(position)
        return Player(id=_field(r, 'id', _is_int, 'an integer'),
                      name=self._clean_name(_field(r, 'name', _is_str, 'a string'), 'Name is required'),
                      position=position,
                      points=_field(r, 'points', _is_int, 'an integer', default=0),
                      total_owed=float(_field(r, 'totalOwed', _is_number, 'a number', default=0.0)),
                      paid=_field(r, 'paid', _is_bool, 'a boolean', default=True))

    def _imported_match(self, r: Dict) -> Match:
        match_id = _field(r, 'id', _is_int, 'an integer')
        fields = {
            'date': _field(r, 'date', _is_str, 'a string'),
            'time': _field(r, 'time', _is_str, 'a string', default='19:00'),
            'price': _field(r, 'price', _is_number, 'a number'),
            'location': _field(r, 'location', _is_str, 'a string', default=''),
            'pitch': _field(r, 'pitch', _is_str, 'a string', default=''),
        }
        self._check_match_fields(fields)
        team_a = _field(r, 'teamA', _is_id_list, 'an array of player IDs', default=[])
        team_b = _field(r, 'teamB', _is_id_list, 'an array of player IDs', default=[])
        try:
            logic.check_rosters(team_a, team_b)
        except TeamConflict as e:
            raise ConflictError(f'Match {match_id}: {e}') from e
        winner = _field(r, 'winner', _is_str, 'a string', default=NOT_PLAYED)
        if winner not in WINNERS:
            raise ValidationError(f'Match {match_id} has an unknown winner {winner!r}')
        fields['price'] = float(fields['price'])
        return Match(id=match_id, team_a=list(team_a), team_b=list(team_b), winner=winner, **fields)

    # Rules plumbing -------------------------------------------------
    def _adjust_points(self, awards: Dict[int, int], sign: int) -> None:
        for pid, pts in awards.items():
            player = self.session.get(Player, pid)
            if player is not None:
                player.points = logic.clamp_points(player.points, sign * pts)

    def _reassign(self, match: Match, team_a: List[int], team_b: List[int]) -> Set[int]:
        """Swap rosters: undo the old rosters' points, credit the new ones, re-split."""
        old_a, old_b = list(match.team_a or []), list(match.team_b or [])
        if match.winner != NOT_PLAYED:
            self._adjust_points(logic.points_awards(old_a, old_b, match.winner), -1)
            self._adjust_points(logic.points_awards(team_a, team_b, match.winner), +1)
        match.team_a = list(team_a)
        match.team_b = list(team_b)
        self._recalculate_payments(match)
        return set(old_a) | set(old_b) | set(team_a) | set(team_b)

    def _delete_payments(self, match_id: int) -> None:
        self.session.execute(delete(Payment).where(Payment.match_id == match_id))

    def _recalculate_payments(self, match: Match) -> None:
        # A fresh split resets every attendee to unpaid.
        if match.winner == NOT_PLAYED:
            return
        attendees = logic.attendees_of(match.team_a, match.team_b)
        self._delete_payments(match.id)
        share = logic.share_of(match.price, len(attendees))
        for pid in attendees:
            self.session.add(Payment(player_id=pid, match_id=match.id, amount_owed=share, paid=False))

    def _recalculate_totals(self, player_ids: Iterable[int]) -> None:
        for pid in player_ids:
            player = self.session.get(Player, pid)
            if player is None:
                continue
            payments = self.session.scalars(select(Payment).where(Payment.player_id == pid)).all()
            total = sum((p.amount_owed for p in payments if not p.paid), 0.0)
            player.total_owed = total
            player.paid = total == 0

    def _recalculate_all_totals(self) -> None:
        self._recalculate_totals(self.session.scalars(select(Player.id)).all())
