import logging

from flask import (Blueprint, Response, current_app, jsonify, redirect, render_template,
                   request, session, stream_with_context, url_for)

from auth import request_token, session_identity
from errors import DonationError, StoreError, SubmissionInProgress, ValidationError
from form import ERROR, SUBMIT_SUCCESS, DonationFormController, FormState, StatusMessage
from listing import LOAD_ERROR, DonationListRenderer, SnapshotStream
from models import MONETARY_PURPOSES, DonationType, sort_donations, timestamp_of

logger = logging.getLogger(__name__)

pages = Blueprint("pages", __name__)
api = Blueprint("api", __name__)

STATE_KEY = "donation_form"


# ------------------------- #
# Helpers
# ------------------------- #
def _store():
    return current_app.extensions["donation_store"]


def _load_state():
    return FormState.from_dict(session.get(STATE_KEY))


def _save_state(state):
    session[STATE_KEY] = state.to_dict()


def _user_id(state=None, data=None):
    user_id, warning = session_identity(
        session,
        current_app.config["USER_ID_KEY"],
        current_app.extensions["identity_strategies"],
        id_token=request_token(request.headers, data),
    )
    if warning and state is not None:
        state.message = StatusMessage(warning, ERROR)
    return user_id


def _controller(state, user_id):
    return DonationFormController(
        _store(),
        state,
        user_id=user_id,
        guard=current_app.extensions["submission_guard"],
        success_seconds=current_app.config["SUCCESS_MESSAGE_SECONDS"],
    )


def _jsonable(record):
    data = dict(record)
    created = timestamp_of(record)
    data["timestamp"] = created.isoformat() if created else None
    return data


def _sse(event, text):
    lines = text.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


# ------------------------- #
# Form pages
# ------------------------- #
@pages.route("/", methods=["GET"])
def index():
    state = _load_state()
    _user_id(state)
    message = state.visible_message()
    _save_state(state)
    return render_template(
        "index.html",
        state=state,
        values=state.values,
        message=message,
        donation_types=list(DonationType),
        purposes=MONETARY_PURPOSES,
        dismiss_ms=int(current_app.config["SUCCESS_MESSAGE_SECONDS"] * 1000),
    )


@pages.route("/", methods=["POST"])
def submit():
    state = _load_state()
    controller = _controller(state, _user_id(state, request.form))
    controller.update(request.form)
    try:
        if request.form.get("donationType"):
            controller.select_type(request.form["donationType"])
    except ValidationError as e:
        state.message = StatusMessage(e.message, ERROR)
    else:
        controller.submit()
    _save_state(state)
    return redirect(url_for("pages.index"))


@pages.route("/type", methods=["POST"])
def select_type():
    state = _load_state()
    controller = _controller(state, _user_id(state, request.form))
    controller.update(request.form)
    try:
        controller.select_type(request.form.get("donationType"))
    except ValidationError as e:
        state.message = StatusMessage(e.message, ERROR)
    _save_state(state)
    return redirect(url_for("pages.index"))


# ------------------------- #
# Donation list
# ------------------------- #
@pages.route("/donations")
def donations():
    store = _store()
    view = DonationListRenderer(store).load()
    return render_template("donations.html", view=view, live=store.live)


@pages.route("/donations/stream")
def donations_stream():
    store = _store()
    renderer = DonationListRenderer(store)
    heartbeat = current_app.config.get("STREAM_HEARTBEAT_SECONDS", 15)
    template = current_app.jinja_env.get_template("_donation_list.html")

    def events():
        with SnapshotStream(store) as stream:
            try:
                for snapshot in stream.snapshots(heartbeat=heartbeat):
                    if snapshot is None:
                        yield ": keep-alive\n\n"
                        continue
                    yield _sse("snapshot", template.render(view=renderer.render_snapshot(snapshot)))
            except StoreError as e:
                logger.error(f"Donation stream failed: {e.reason}")
                yield _sse("failure", LOAD_ERROR)

    return Response(
        stream_with_context(events()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ------------------------- #
# JSON API
# ------------------------- #
@api.route("/donations", methods=["GET"])
def list_donations():
    try:
        records = _store().list_all()
    except StoreError as e:
        logger.error(f"Listing donations failed: {e.reason}")
        return jsonify({"message": LOAD_ERROR}), 502
    return jsonify([_jsonable(r) for r in sort_donations(records)])


@api.route("/donations", methods=["POST"])
def create_donation():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"message": "Request body must be a JSON object"}), 400

    state = FormState()
    # API callers without a session cookie pass their own anonymous id
    user_id = data.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        user_id = _user_id(data=data)
    controller = _controller(state, user_id.strip())
    controller.update(data)
    try:
        controller.select_type(data.get("donationType") or DonationType.MONETARY.value)
    except ValidationError as e:
        return jsonify({"message": e.message}), 400

    created = controller.submit()
    if created is None:
        error = controller.error
        if isinstance(error, ValidationError):
            status = 400
        elif isinstance(error, SubmissionInProgress):
            status = 409
        elif isinstance(error, StoreError):
            status = 502
        elif isinstance(error, DonationError):
            status = 401
        else:
            status = 500
        return jsonify({"message": state.message.text}), status

    return jsonify({"message": SUBMIT_SUCCESS, "donation": _jsonable(created)}), 201
