from flask_sqlalchemy import SQLAlchemy

from logic import NOT_PLAYED

db = SQLAlchemy()

class Player(db.Model):
    __tablename__ = 'players'
    # AUTOINCREMENT keeps a per-table counter so ids are never reused.
    __table_args__ = {'sqlite_autoincrement': True}
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False, index=True)
    position = db.Column(db.String(20), nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0)
    total_owed = db.Column(db.Float, nullable=False, default=0.0)
    paid = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'position': self.position,
            'points': self.points, 'totalOwed': self.total_owed, 'paid': self.paid,
        }

class Match(db.Model):
    __tablename__ = 'matches'
    __table_args__ = {'sqlite_autoincrement': True}
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False, index=True)
    time = db.Column(db.String(10), nullable=False, default='19:00')
    price = db.Column(db.Float, nullable=False, default=0.0)
    location = db.Column(db.String(200), nullable=False, default='')
    pitch = db.Column(db.String(100), nullable=False, default='')
    team_a = db.Column(db.JSON, nullable=False, default=list)
    team_b = db.Column(db.JSON, nullable=False, default=list)
    winner = db.Column(db.String(20), nullable=False, default=NOT_PLAYED)

    def to_dict(self):
        return {
            'id': self.id, 'date': self.date, 'time': self.time, 'price': self.price,
            'location': self.location, 'pitch': self.pitch,
            'teamA': list(self.team_a or []), 'teamB': list(self.team_b or []),
            'winner': self.winner,
        }

class Payment(db.Model):
    __tablename__ = 'payments'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('players.id'), nullable=False, index=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False, index=True)
    amount_owed = db.Column(db.Float, nullable=False)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    __table_args__ = (
        db.UniqueConstraint('player_id', 'match_id', name='uq_payment_player_match'),
        {'sqlite_autoincrement': True},
    )

    def to_dict(self):
        return {
            'id': self.id, 'playerId': self.player_id, 'matchId': self.match_id,
            'amountOwed': self.amount_owed, 'paid': self.paid,
        }
