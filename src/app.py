"""
Flask web application for Oche darts tournaments.
"""
import os
import queue
import logging

from flask import Flask, jsonify, request, Response, stream_with_context

from oche.elimination import get_bracket, get_round_name
from oche.errors import NotFoundError, PropagationFailure, StateError, ValidationError
from oche.models import Match
from oche.services import Services
from oche.settings import SETTINGS_FILENAME, load_settings
from oche.storage import YamlStore

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('OCHE_DATA_DIR', os.path.join(BASE_DIR, 'data'))
STORE_FILENAME = 'oche.yaml'
HEARTBEAT_SECONDS = 15

_services = None


def get_services() -> Services:
    """Services backed by the YAML store in DATA_DIR, created on first use."""
    global _services
    if _services is None:
        settings = load_settings(os.path.join(DATA_DIR, SETTINGS_FILENAME))
        store = YamlStore(os.path.join(DATA_DIR, STORE_FILENAME),
                          lock_timeout=settings['lock_timeout_seconds'])
        _services = Services(store, settings)
        app.logger.info(f'Using data store {store.path}')
    return _services


def init_services(services: Services):
    """Replace the services (used by tests and embedding code)."""
    global _services
    _services = services


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _int_field(data: dict, name: str, required: bool = True):
    value = data.get(name)
    if value is None or value == '':
        if required:
            raise ValidationError(f'Missing {name}')
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({'error': str(e)}), 400


@app.errorhandler(NotFoundError)
def handle_not_found(e):
    return jsonify({'error': str(e)}), 404


@app.errorhandler(StateError)
def handle_state_error(e):
    return jsonify({'error': str(e)}), 409


@app.errorhandler(PropagationFailure)
def handle_propagation_failure(e):
    app.logger.error(f'Advancement failed: {e}')
    return jsonify({'error': str(e), 'match_id': e.match_id}), 503


# Roster

@app.route('/api/entrants', methods=['GET'])
def api_list_entrants():
    entrants = get_services().tournaments.list_entrants()
    return jsonify({'entrants': [e.to_dict() for e in entrants]})


@app.route('/api/entrants', methods=['POST'])
def api_create_entrant():
    entrant = get_services().tournaments.create_entrant(_json_body().get('name'))
    return jsonify({'success': True, 'entrant': entrant.to_dict()}), 201


# Tournaments

@app.route('/api/tournaments', methods=['GET'])
def api_list_tournaments():
    tournaments = get_services().tournaments.list_tournaments()
    return jsonify({'tournaments': [t.to_dict() for t in tournaments]})


@app.route('/api/tournaments', methods=['POST'])
def api_create_tournament():
    data = _json_body()
    tournament = get_services().tournaments.create_tournament(
        data.get('name'),
        best_of_legs=_int_field(data, 'best_of_legs', required=False),
        starting_score=_int_field(data, 'starting_score', required=False),
        created_by=data.get('created_by'),
    )
    return jsonify({'success': True, 'tournament': tournament.to_dict()}), 201


@app.route('/api/tournaments/<tournament_id>', methods=['GET'])
def api_get_tournament(tournament_id):
    tournament = get_services().tournaments.get_tournament(tournament_id)
    return jsonify({'tournament': tournament.to_dict()})


@app.route('/api/tournaments/<tournament_id>/registrations', methods=['GET'])
def api_list_registrations(tournament_id):
    registrations = get_services().tournaments.list_registrations(tournament_id)
    return jsonify({'registrations': [r.to_dict() for r in registrations]})


@app.route('/api/tournaments/<tournament_id>/registrations', methods=['POST'])
def api_register_entrant(tournament_id):
    data = _json_body()
    if not data.get('entrant_id'):
        raise ValidationError('Missing entrant_id')
    registration = get_services().tournaments.register_entrant(
        tournament_id, data['entrant_id'], seed=_int_field(data, 'seed', required=False))
    return jsonify({'success': True, 'registration': registration.to_dict()}), 201


@app.route('/api/tournaments/<tournament_id>/registrations/<entrant_id>', methods=['DELETE'])
def api_unregister_entrant(tournament_id, entrant_id):
    registration = get_services().tournaments.unregister_entrant(tournament_id, entrant_id)
    return jsonify({'success': True, 'registration': registration.to_dict()})


@app.route('/api/tournaments/<tournament_id>/seeds', methods=['POST'])
def api_update_seeds(tournament_id):
    seeds = _json_body().get('seeds')
    if not isinstance(seeds, dict):
        raise ValidationError('seeds must map entrant ids to seed numbers')
    parsed = {entrant_id: _int_field(seeds, entrant_id, required=False) for entrant_id in seeds}
    registrations = get_services().tournaments.update_seeds(tournament_id, parsed)
    return jsonify({'success': True, 'registrations': [r.to_dict() for r in registrations]})


@app.route('/api/tournaments/<tournament_id>/available-entrants', methods=['GET'])
def api_available_entrants(tournament_id):
    entrants = get_services().tournaments.available_entrants(tournament_id)
    return jsonify({'entrants': [e.to_dict() for e in entrants]})


# Bracket

@app.route('/api/tournaments/<tournament_id>/bracket', methods=['POST'])
def api_build_bracket(tournament_id):
    bracket = get_services().brackets.build(tournament_id)
    return jsonify({'success': True, 'bracket': bracket.to_dict()}), 201


@app.route('/api/tournaments/<tournament_id>/bracket', methods=['GET'])
def api_get_bracket(tournament_id):
    bracket = get_bracket(get_services().store, tournament_id)
    return jsonify({'bracket': bracket.to_dict()})


@app.route('/api/tournaments/<tournament_id>/repair', methods=['POST'])
def api_repair_bracket(tournament_id):
    """Re-run winner advancement for completed matches that did not propagate."""
    services = get_services()
    repaired = services.advancement.repair_tournament(tournament_id)
    still_pending = services.advancement.repair_pending()
    return jsonify({'success': True, 'repaired': repaired, 'pending': still_pending})


# Matches

@app.route('/api/matches/<match_id>', methods=['GET'])
def api_get_match(match_id):
    match = get_services().store.require(Match, match_id)
    data = match.to_dict()
    data['round_name'] = get_round_name(match.round)
    return jsonify({'match': data})


@app.route('/api/matches/<match_id>/assign', methods=['POST'])
def api_assign_match(match_id):
    match = get_services().scoring.assign_match(match_id, _json_body().get('scorer_id'))
    return jsonify({'success': True, 'match': match.to_dict()})


@app.route('/api/matches/<match_id>/unassign', methods=['POST'])
def api_unassign_match(match_id):
    match = get_services().scoring.unassign_match(match_id)
    return jsonify({'success': True, 'match': match.to_dict()})


@app.route('/api/matches/<match_id>/start', methods=['POST'])
def api_start_match(match_id):
    leg = get_services().scoring.start_match(match_id)
    return jsonify({'success': True, 'leg': leg.to_dict()})


@app.route('/api/matches/<match_id>/legs', methods=['POST'])
def api_start_leg(match_id):
    leg = get_services().scoring.start_leg(match_id)
    return jsonify({'success': True, 'leg': leg.to_dict()}), 201


@app.route('/api/matches/<match_id>/result', methods=['POST'])
def api_record_result(match_id):
    """Enter a match result directly instead of scoring it dart by dart."""
    data = _json_body()
    if not data.get('winner_id'):
        raise ValidationError('Missing winner_id')
    completion = get_services().scoring.complete_match(
        match_id, data['winner_id'],
        player1_legs_won=_int_field(data, 'player1_legs_won', required=False),
        player2_legs_won=_int_field(data, 'player2_legs_won', required=False),
    )
    return jsonify({'success': True, **completion.to_dict()})


@app.route('/api/matches/<match_id>/scoring', methods=['GET'])
def api_scoring_state(match_id):
    return jsonify(get_services().scoring.get_scoring_state(match_id))


@app.route('/api/scorers/<scorer_id>/matches', methods=['GET'])
def api_scorer_matches(scorer_id):
    matches = get_services().scoring.matches_for_scorer(scorer_id)
    return jsonify({'matches': [m.to_dict() for m in matches]})


# Scoring

@app.route('/api/legs/<leg_id>/turns', methods=['POST'])
def api_start_turn(leg_id):
    turn = get_services().scoring.start_turn(leg_id, _json_body().get('player_id'))
    return jsonify({'success': True, 'turn': turn.to_dict()}), 201


@app.route('/api/turns/<turn_id>/darts', methods=['POST'])
def api_record_dart(turn_id):
    data = _json_body()
    result = get_services().scoring.record_dart(
        turn_id,
        _int_field(data, 'position'),
        _int_field(data, 'multiplier'),
        _int_field(data, 'target'),
    )
    if result.advancement_pending:
        app.logger.error(f'Match {result.match.id} completed but winner not advanced yet')
    return jsonify({'success': True, **result.to_dict()}), 201


@app.route('/api/turns/<turn_id>/undo', methods=['POST'])
def api_undo_dart(turn_id):
    dart = get_services().scoring.undo_last_dart(turn_id)
    return jsonify({'success': True, 'removed': dart.to_dict()})


# Live updates

@app.route('/api/tournaments/<tournament_id>/live-stream')
def api_live_stream(tournament_id):
    """Server-Sent Events stream of entity changes in one tournament."""
    services = get_services()
    services.tournaments.get_tournament(tournament_id)
    events, unsubscribe = services.notifier.subscribe_queue(tournament_id)

    def generate():
        # Send immediate connected event so client shows "Live" status right away
        yield "event: connected\ndata: ok\n\n"
        try:
            while True:
                try:
                    event = events.get(timeout=HEARTBEAT_SECONDS)
                except queue.Empty:
                    # Heartbeat keeps the connection alive
                    yield ": heartbeat\n\n"
                    continue
                yield f"event: {event.entity}\ndata: {event.entity_id}\n\n"
        finally:
            unsubscribe()

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'X-Accel-Buffering': 'no',
        },
    )


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True)
