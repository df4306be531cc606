import os
import hmac
import json
import logging
from functools import wraps

import click
from flask import Flask, current_app, jsonify, request
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import HTTPException

from errors import ClubError, ValidationError
from forms import (LoginForm, MatchForm, MatchUpdateForm, PaymentForm, PlayerForm, PlayerUpdateForm,
                   WinnerForm, first_error, provided)
from models import db
from services import ClubService
from utils import auth_token

AUTH_COOKIE_NAME = 'bombers_fc_auth'
AUTH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30

def expected_token():
    password = current_app.config['CLUB_PASSWORD']
    if not password:
        return None
    secret = current_app.config['CLUB_AUTH_SECRET']
    return auth_token(password, password if secret is None else secret)

def same_secret(given, expected):
    given = '' if given is None else str(given)
    return hmac.compare_digest(given.encode(), expected.encode())

def require_auth(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        password = current_app.config['CLUB_PASSWORD']
        if not password:
            return f(*args, **kwargs)
        if same_secret(request.headers.get('X-Admin-Token'), password):
            return f(*args, **kwargs)
        if same_secret(request.cookies.get(AUTH_COOKIE_NAME), expected_token()):
            return f(*args, **kwargs)
        return jsonify(error='Unauthorized'), 401
    return wrapper

def club():
    return ClubService(db.session)

def json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body

def bind(form_cls, body=None):
    body = json_body() if body is None else body
    # null means "not sent"; arrays are read by the views themselves
    data = MultiDict({k: v for k, v in body.items() if v is not None and not isinstance(v, (list, dict))})
    form = form_cls(formdata=data)
    if not form.validate():
        raise ValidationError(first_error(form))
    return form

def id_list(body, key, required=True):
    value = body.get(key)
    if value is None and not required:
        return []
    if not isinstance(value, list):
        raise ValidationError(f'{key} must be an array of player IDs')
    return [i for i in value if isinstance(i, int) and not isinstance(i, bool)]

def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    default_db = os.path.join(app.instance_path, 'bombers_fc.db')
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL') or f'sqlite:///{default_db}',
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        CLUB_PASSWORD=os.environ.get('BOMBERS_FC_PASSWORD', ''),
        CLUB_AUTH_SECRET=os.environ.get('BOMBERS_FC_AUTH_SECRET'),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),
    )
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    if app.config['SQLALCHEMY_DATABASE_URI'] == f'sqlite:///{default_db}':
        os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)
    with app.app_context():
        db.create_all()

    @app.errorhandler(ClubError)
    def club_error(e):
        if e.status_code < 500:
            app.logger.warning('%s %s rejected: %s', request.method, request.path, e.message)
        return jsonify(error=e.message), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify(error=e.description), e.code

    @app.post('/api/auth/login')
    def login():
        password = app.config['CLUB_PASSWORD']
        if not password:
            return jsonify(error='Password protection is disabled. Set BOMBERS_FC_PASSWORD to enable it.'), 500
        form = bind(LoginForm)
        if not same_secret(form.password.data, password):
            return jsonify(error='Incorrect password'), 401
        resp = jsonify(ok=True)
        resp.set_cookie(AUTH_COOKIE_NAME, expected_token(), max_age=AUTH_COOKIE_MAX_AGE, path='/',
                        httponly=True, samesite='Lax', secure=not (app.debug or app.testing))
        return resp

    @app.get('/api/players')
    @require_auth
    def list_players():
        return jsonify([p.to_dict() for p in club().list_players()])

    @app.post('/api/players')
    @require_auth
    def create_player():
        form = bind(PlayerForm)
        player = club().create_player(form.name.data, form.position.data)
        return jsonify(player.to_dict()), 201

    @app.get('/api/players/<int:player_id>')
    @require_auth
    def get_player(player_id):
        return jsonify(club().get_player(player_id).to_dict())

    @app.put('/api/players/<int:player_id>')
    @require_auth
    def update_player(player_id):
        form = bind(PlayerUpdateForm)
        player = club().update_player(player_id, **provided(form))
        return jsonify(player.to_dict())

    @app.delete('/api/players/<int:player_id>')
    @require_auth
    def delete_player(player_id):
        club().delete_player(player_id)
        return jsonify(success=True)

    @app.get('/api/matches')
    @require_auth
    def list_matches():
        return jsonify([m.to_dict() for m in club().list_matches()])

    @app.post('/api/matches')
    @require_auth
    def create_match():
        form = bind(MatchForm)
        match = club().create_match(form.date.data, form.time.data, form.price.data,
                                    location=form.location.data, pitch=form.pitch.data)
        return jsonify(match.to_dict()), 201

    @app.get('/api/matches/<int:match_id>')
    @require_auth
    def get_match(match_id):
        return jsonify(club().get_match(match_id).to_dict())

    @app.put('/api/matches/<int:match_id>')
    @require_auth
    def update_match(match_id):
        form = bind(MatchUpdateForm)
        match = club().update_match(match_id, **provided(form))
        return jsonify(match.to_dict())

    @app.delete('/api/matches/<int:match_id>')
    @require_auth
    def delete_match(match_id):
        club().delete_match(match_id)
        return jsonify(success=True)

    @app.put('/api/matches/<int:match_id>/teams')
    @require_auth
    def assign_teams(match_id):
        body = json_body()
        match = club().assign_teams(match_id, id_list(body, 'teamA'), id_list(body, 'teamB'))
        return jsonify(match.to_dict())

    @app.post('/api/matches/<int:match_id>/randomize')
    @require_auth
    def randomize_teams(match_id):
        body = json_body()
        match = club().randomize_teams(match_id, id_list(body, 'attendees'),
                                       locked_a=id_list(body, 'teamA', required=False),
                                       locked_b=id_list(body, 'teamB', required=False))
        return jsonify(match.to_dict())

    @app.put('/api/matches/<int:match_id>/winner')
    @require_auth
    def set_winner(match_id):
        form = bind(WinnerForm)
        return jsonify(club().set_winner(match_id, form.winner.data).to_dict())

    @app.get('/api/payments')
    @require_auth
    def payment_matrix():
        return jsonify(club().payment_matrix())

    @app.put('/api/payments/<int:player_id>/<int:match_id>')
    @require_auth
    def set_payment_paid(player_id, match_id):
        form = bind(PaymentForm)
        return jsonify(club().set_payment_paid(player_id, match_id, form.paid.data).to_dict())

    @app.post('/api/payments/<int:player_id>/mark-all-paid')
    @require_auth
    def mark_all_paid(player_id):
        club().mark_all_paid(player_id)
        return jsonify(success=True)

    @app.get('/api/leaderboard')
    def leaderboard():
        return jsonify(club().leaderboard())

    @app.cli.command('recalculate-points')
    def recalculate_points_command():
        """Rebuild every player's points from the recorded outcomes."""
        report = club().recalculate_points()
        click.echo(f"{'Name':<20}{'Old':>6}{'New':>6}  Change")
        click.echo('-' * 42)
        for name, old, new in report:
            diff = new - old
            change = f'{diff:+d}' if diff else '0'
            click.echo(f'{name:<20}{old:>6}{new:>6}{change:>8}')
        click.echo(f'Recalculated points for {len(report)} players.')

    @app.cli.command('export-snapshot')
    @click.argument('output', type=click.File('w'))
    def export_snapshot_command(output):
        """Write players, matches and payments to OUTPUT as JSON."""
        json.dump(club().export_snapshot(), output, indent=2)

    @app.cli.command('import-snapshot')
    @click.argument('source', type=click.File('r'))
    def import_snapshot_command(source):
        """Replace all records with the JSON snapshot in SOURCE."""
        try:
            counts = club().import_snapshot(json.load(source))
        except (ValueError, ClubError) as e:
            raise click.ClickException(getattr(e, "message", str(e))) from e
        click.echo('Imported {players} players, {matches} matches, {payments} payments.'.format(**counts))

    return app

if __name__ == '__main__':
    create_app().run(debug=True)
