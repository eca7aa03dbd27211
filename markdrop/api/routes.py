from __future__ import annotations

import json

from flask import Response, current_app, jsonify, request, stream_with_context

from markdrop.api import api_bp
from markdrop.errors import QueueStoreError, ValidationError
from markdrop.runtime import get_runtime
from markdrop.services.bookmarks import SubmitIntent


def _queue_payload(runtime) -> dict:
    items = runtime.store.list()
    stats = runtime.store.stats()
    return {"items": [item.as_dict() for item in items], "stats": stats.as_dict()}


@api_bp.errorhandler(QueueStoreError)
def _queue_unavailable(exc):
    current_app.logger.error("Retry queue unavailable: %s", exc)
    return jsonify({"error": str(exc), "queued": False}), 503


@api_bp.errorhandler(ValidationError)
def _invalid_payload(exc):
    return jsonify({"error": exc.message, "field": exc.field}), 400


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "markdrop"})


@api_bp.route("/session", methods=["GET"])
def session_info():
    runtime = get_runtime()
    return jsonify(
        {
            "token_configured": bool(getattr(runtime.service, "configured", True)),
            "queue_stats": runtime.store.stats().as_dict(),
        }
    )


@api_bp.route("/inspect", methods=["GET"])
def inspection_state():
    return jsonify(get_runtime().context.snapshot().as_dict())


@api_bp.route("/inspect", methods=["POST"])
def inspect_url():
    runtime = get_runtime()
    payload = request.get_json(silent=True) or {}
    title = payload.get("title")
    result = runtime.pipeline.inspect(
        str(payload.get("url") or ""),
        runtime.context,
        title=str(title) if title is not None else None,
    )
    return jsonify(result.as_dict())


@api_bp.route("/intent", methods=["POST"])
def set_intent():
    runtime = get_runtime()
    payload = request.get_json(silent=True) or {}
    intent = SubmitIntent.parse(payload.get("intent"), runtime.context.intent)
    runtime.context.set_intent(intent)
    return jsonify({"intent": intent.value})


@api_bp.route("/bookmarks", methods=["POST"])
def submit_bookmark():
    runtime = get_runtime()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("payload", "Expected a JSON object.")

    result = runtime.pipeline.submit(payload, runtime.context)
    if result.status == "sent":
        return jsonify(result.as_dict()), 201
    if result.status == "queued":
        return jsonify(result.as_dict()), 202
    return jsonify(result.as_dict()), 422


@api_bp.route("/queue", methods=["GET"])
def list_queue():
    return jsonify(_queue_payload(get_runtime()))


@api_bp.route("/queue/stats", methods=["GET"])
def queue_stats():
    return jsonify(get_runtime().store.stats().as_dict())


@api_bp.route("/queue/retry", methods=["POST"])
def retry_queue():
    result = get_runtime().retry_scheduler.retry_now()
    message = f"Retried queue: sent {result.sent}, remaining {result.remaining}"
    return jsonify({**result.as_dict(), "message": message})


@api_bp.route("/queue/<int:item_id>", methods=["DELETE"])
def remove_queue_item(item_id: int):
    removed = get_runtime().store.remove(item_id)
    return jsonify({"id": item_id, "removed": removed})


def iter_event_stream(notifier, keepalive: float, max_events: int | None = None):
    # Subscribing here ties the subscription to the life of the stream.
    subscription = notifier.subscribe()
    sent = 0
    try:
        yield "retry: 5000\n\n"
        while max_events is None or sent < max_events:
            event = subscription.get(timeout=keepalive)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield f"event: {event.kind}\ndata: {json.dumps(event.as_dict())}\n\n"
            sent += 1
    finally:
        subscription.close()


@api_bp.route("/queue/events", methods=["GET"])
def queue_events():
    runtime = get_runtime()
    keepalive = float(current_app.config.get("EVENT_KEEPALIVE_SECONDS", 15))
    return Response(
        stream_with_context(iter_event_stream(runtime.notifier, keepalive)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
