"""Flask web UI for DSLSight: live line state, credential prompts, report download."""

import json
import logging
import queue
import threading

from flask import Flask, Response, jsonify, render_template, request, send_file
from io import BytesIO

from .archive import create_archive
from .supervisor import STATE_READY, CredentialNotRequiredError

log = logging.getLogger("dslsight.web")

EVENT_QUEUE_SIZE = 10
KEEPALIVE_SECONDS = 15

app = Flask(__name__, template_folder="templates")

_supervisor = None
_device_title = ""
_shutdown = threading.Event()


def init_supervisor(supervisor, device_title=""):
    """Set the supervisor whose state is served."""
    global _supervisor, _device_title
    _supervisor = supervisor
    _device_title = device_title
    _shutdown.clear()


def shutdown():
    """End all open event streams."""
    _shutdown.set()


def _not_initialized():
    return jsonify({"error": "Not initialized"}), 503


@app.route("/")
def index():
    return render_template("index.html", device_title=_device_title)


@app.route("/health")
def health():
    """Simple health check endpoint."""
    if _supervisor is None:
        return {"status": "ok", "line_state": "waiting"}
    change = _supervisor.state()
    return {"status": "ok", "line_state": change.state}


@app.route("/api/state")
def api_state():
    if _supervisor is None:
        return _not_initialized()
    return jsonify(_supervisor.state().to_message())


def _event_stream(receiver):
    supervisor = _supervisor
    try:
        while not _shutdown.is_set():
            try:
                change = receiver.get(timeout=KEEPALIVE_SECONDS)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield "data: " + json.dumps(change.to_message()) + "\n\n"
    finally:
        if supervisor is not None:
            supervisor.unregister_receiver(receiver)


@app.route("/events")
def events():
    if _supervisor is None:
        return _not_initialized()

    receiver = queue.Queue(maxsize=EVENT_QUEUE_SIZE)
    try:
        admitted = _supervisor.register_receiver(receiver)
    except RuntimeError as e:
        log.warning("Event stream subscription failed: %s", e)
        return _not_initialized()
    if not admitted:
        log.warning("Event stream subscription refused")
        return jsonify({"error": "Could not subscribe"}), 500

    return Response(
        _event_stream(receiver),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.route("/download")
def download():
    if _supervisor is None:
        return _not_initialized()

    change = _supervisor.state()
    if change.state != STATE_READY:
        return jsonify({"error": "No data available"}), 404

    filename, data = create_archive(change)
    response = send_file(BytesIO(data), mimetype="application/zip",
                         as_attachment=True, download_name=filename)
    response.headers["Cache-Control"] = "no-cache"
    return response


def _set_credential(setter):
    if _supervisor is None:
        return _not_initialized()
    try:
        setter(request.form.get("data", ""))
    except CredentialNotRequiredError as e:
        return jsonify({"error": str(e)}), 403
    return "", 204


@app.route("/password", methods=["POST"])
def password():
    return _set_credential(_supervisor.set_password if _supervisor else None)


@app.route("/passphrase", methods=["POST"])
def passphrase():
    return _set_credential(_supervisor.set_passphrase if _supervisor else None)


@app.route("/encryption-passphrase", methods=["POST"])
def encryption_passphrase():
    return _set_credential(_supervisor.set_encryption_passphrase if _supervisor else None)
