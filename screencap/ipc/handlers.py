"""IPC handlers for capture control, event queries and user actions.

Provides handlers for:
- Capture scheduler control (trigger, pause/resume, interval, state)
- Event queries (list, get, screenshots, categories, projects)
- User edits (relabel, dismiss, delete, caption/project override,
  confirm/reject addiction)
- Project normalization, queue status, connectivity test, service restart
"""

import logging
from typing import Any

from screencap.core.errors import ValidationError
from screencap.db.models import EVENT_STATUSES
from screencap.ipc.server import get_service_manager, handler

logger = logging.getLogger(__name__)


def _event_ids(params: dict[str, Any]) -> list[str]:
    ids = params.get("event_ids")
    if ids is None and params.get("event_id"):
        ids = [params["event_id"]]
    if not isinstance(ids, list) or not ids:
        raise ValidationError("Missing 'event_ids' parameter")
    return [str(i) for i in ids]


def _required(params: dict[str, Any], key: str) -> Any:
    if params.get(key) is None:
        raise ValidationError(f"Missing '{key}' parameter")
    return params[key]


def _changed(event_ids: list[str]) -> None:
    notifications = get_service_manager().notifications
    for event_id in event_ids:
        notifications.event_updated(event_id)
    notifications.events_changed(event_ids)


# ----------------------------------------------------------------------
# Capture
# ----------------------------------------------------------------------


@handler("capture.trigger")
def handle_capture_trigger(params: dict[str, Any]) -> dict[str, Any] | None:
    """Capture now.

    Params:
        project_progress: Record the capture as project progress (default False)
    """
    result = get_service_manager().capture_scheduler.trigger_capture(
        manual=True, project_progress=bool(params.get("project_progress", False))
    )
    if result is None:
        return None
    return {"action": result.action.value, "event_id": result.event_id, "requeued": result.requeued}


@handler("capture.pause")
def handle_capture_pause(params: dict[str, Any]) -> dict[str, Any]:
    scheduler = get_service_manager().capture_scheduler
    scheduler.pause()
    return scheduler.get_state()


@handler("capture.resume")
def handle_capture_resume(params: dict[str, Any]) -> dict[str, Any]:
    scheduler = get_service_manager().capture_scheduler
    scheduler.resume()
    return scheduler.get_state()


@handler("capture.set_interval")
def handle_capture_set_interval(params: dict[str, Any]) -> dict[str, Any]:
    """Params: seconds"""
    scheduler = get_service_manager().capture_scheduler
    scheduler.set_interval(int(_required(params, "seconds")))
    return scheduler.get_state()


@handler("capture.get_state")
def handle_capture_get_state(params: dict[str, Any]) -> dict[str, Any]:
    return get_service_manager().capture_scheduler.get_state()


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


@handler("events.list")
def handle_events_list(params: dict[str, Any]) -> list[dict[str, Any]]:
    """List events, newest first.

    Params:
        start, end: Epoch seconds bounding the range (optional)
        category, project, status: Filters (optional)
        include_dismissed: Include dismissed events (default False)
        limit, offset: Paging (default 100, 0)
    """
    status = params.get("status")
    if status is not None and status not in EVENT_STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    events = get_service_manager().store.list_events(
        start=params.get("start"),
        end=params.get("end"),
        category=params.get("category"),
        project=params.get("project"),
        status=status,
        include_dismissed=bool(params.get("include_dismissed", False)),
        limit=int(params.get("limit", 100)),
        offset=int(params.get("offset", 0)),
    )
    return [event.to_dict() for event in events]


@handler("events.get")
def handle_events_get(params: dict[str, Any]) -> dict[str, Any] | None:
    event = get_service_manager().store.get_event(str(_required(params, "event_id")))
    return event.to_dict() if event else None


@handler("events.screenshots")
def handle_events_screenshots(params: dict[str, Any]) -> list[dict[str, Any]]:
    screenshots = get_service_manager().store.get_screenshots(str(_required(params, "event_id")))
    return [s.to_dict() for s in screenshots]


@handler("events.categories")
def handle_events_categories(params: dict[str, Any]) -> list[str]:
    return get_service_manager().store.distinct_categories()


@handler("events.projects")
def handle_events_projects(params: dict[str, Any]) -> list[str]:
    return get_service_manager().store.distinct_projects()


# ----------------------------------------------------------------------
# User actions
# ----------------------------------------------------------------------


@handler("events.relabel")
def handle_events_relabel(params: dict[str, Any]) -> dict[str, Any]:
    """Params: event_ids, label"""
    ids = _event_ids(params)
    label = str(_required(params, "label")).strip()
    if not label:
        raise ValidationError("Label must not be empty")
    updated = get_service_manager().store.relabel_events(ids, label)
    _changed(ids)
    return {"updated": updated}


@handler("events.dismiss")
def handle_events_dismiss(params: dict[str, Any]) -> dict[str, Any]:
    ids = _event_ids(params)
    updated = get_service_manager().store.dismiss_events(ids)
    _changed(ids)
    return {"updated": updated}


@handler("events.delete")
def handle_events_delete(params: dict[str, Any]) -> dict[str, Any]:
    ids = _event_ids(params)
    store = get_service_manager().store
    deleted = [event_id for event_id in ids if store.delete_event(event_id)]
    get_service_manager().notifications.events_changed(deleted)
    return {"deleted": len(deleted)}


@handler("events.set_caption")
def handle_events_set_caption(params: dict[str, Any]) -> dict[str, Any]:
    """Params: event_id, caption (null clears)"""
    event_id = str(_required(params, "event_id"))
    caption = params.get("caption")
    updated = get_service_manager().store.set_caption(event_id, caption.strip() if caption else None)
    _changed([event_id])
    return {"updated": updated}


@handler("events.set_project")
def handle_events_set_project(params: dict[str, Any]) -> dict[str, Any]:
    """Params: event_id, project (null clears); the name is canonicalized."""
    manager = get_service_manager()
    event_id = str(_required(params, "event_id"))
    project = manager.normalizer.canonicalize(params.get("project"))
    updated = manager.store.set_project(event_id, project)
    manager.normalizer.invalidate()
    _changed([event_id])
    return {"updated": updated, "project": project}


@handler("addiction.confirm")
def handle_addiction_confirm(params: dict[str, Any]) -> dict[str, Any]:
    ids = _event_ids(params)
    updated = get_service_manager().store.confirm_addiction(ids)
    _changed(ids)
    return {"updated": updated}


@handler("addiction.reject")
def handle_addiction_reject(params: dict[str, Any]) -> dict[str, Any]:
    ids = _event_ids(params)
    updated = get_service_manager().store.reject_addiction(ids)
    _changed(ids)
    return {"updated": updated}


# ----------------------------------------------------------------------
# Maintenance
# ----------------------------------------------------------------------


@handler("projects.normalize")
def handle_projects_normalize(params: dict[str, Any]) -> dict[str, Any]:
    result = get_service_manager().normalizer.normalize()
    return {"updated_rows": result.updated_rows, "groups": result.groups}


@handler("queue.stats")
def handle_queue_stats(params: dict[str, Any]) -> dict[str, Any]:
    return get_service_manager().queue.stats()


@handler("classifier.test_connection")
def handle_test_connection(params: dict[str, Any]) -> dict[str, Any]:
    return get_service_manager().gateway.test_connection()


@handler("services.get_health")
def handle_get_service_health(params: dict[str, Any]) -> dict[str, Any]:
    return get_service_manager().get_status()


@handler("services.restart")
def handle_restart_service(params: dict[str, Any]) -> dict[str, Any]:
    """Params: service ('capture' or 'worker')"""
    service_name = _required(params, "service")
    if service_name not in ("capture", "worker"):
        raise ValidationError(f"Unknown service: {service_name}")
    success = get_service_manager().restart_service(service_name)
    return {"success": success, "service": service_name}
