"""Public-facing routes for browsing events and following live scores."""

from flask import Blueprint, current_app, jsonify, request

from blueprints.responses import error_response
from models import db, Event, Match, current_time, parse_instant, to_local

public_bp = Blueprint("public", __name__, url_prefix="/public")

MAX_PER_PAGE = 100


def _event_view(event: Event) -> dict:
    tz_name = current_app.config["APP_TIMEZONE"]
    view = event.to_dict()
    view["start_at_local"] = to_local(event.start_at, tz_name).isoformat()
    view["end_at_local"] = to_local(event.end_at, tz_name).isoformat()
    return view


@public_bp.route("/events")
def events_listing():
    """Range-paginated event list for infinite scrolling clients."""
    per_page = request.args.get("per_page", current_app.config["EVENTS_PER_PAGE"], type=int)
    page = db.paginate(
        db.select(Event).order_by(Event.start_at.asc(), Event.id.asc()),
        page=request.args.get("page", 1, type=int),
        per_page=per_page,
        max_per_page=MAX_PER_PAGE,
        error_out=False,
    )
    return jsonify(
        {
            "events": [_event_view(event) for event in page.items],
            "page": page.page,
            "per_page": page.per_page,
            "total": page.total,
            "has_next": page.has_next,
        }
    )


@public_bp.route("/events/<int:event_id>")
def event_detail(event_id: int):
    event = db.get_or_404(Event, event_id)
    view = _event_view(event)
    view["teams"] = [team.to_dict() for team in event.teams]
    return jsonify({"event": view})


@public_bp.route("/events/<int:event_id>/matches")
def event_matches(event_id: int):
    """Matches of an event; with ``since`` only those changed after that instant.

    Clients poll this with the ``server_time`` of their previous response to
    pick up live score changes.
    """
    db.get_or_404(Event, event_id)
    try:
        since = parse_instant(request.args.get("since"))
    except ValueError:
        return error_response("since must be an ISO-8601 instant.", 400)

    server_time = current_time()
    query = db.select(Match).filter_by(event_id=event_id)
    if since is not None:
        query = query.where(Match.updated_at > since)
    matches = db.session.execute(query.order_by(Match.scheduled_at.asc(), Match.id.asc())).scalars().all()

    live = [match for match in matches if match.is_live]
    return jsonify(
        {
            "matches": [match.to_dict() for match in matches],
            "live_count": len(live),
            "server_time": server_time.isoformat(),
        }
    )
