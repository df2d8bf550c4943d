"""Reshape raw portal payloads into the items stored in DynamoDB."""

import json
from typing import Any, Dict, List, Tuple

from aulasync.log import get_logger

logger = get_logger(__name__)

_KEY_RENAMES = {"id": "Id", "messages": "Messages", "subject": "Subject"}


def capitalize_keys(obj: Any) -> Any:
    """Rename ``id``/``messages``/``subject`` keys recursively."""
    if isinstance(obj, list):
        return [capitalize_keys(item) for item in obj]
    if isinstance(obj, dict):
        return {_KEY_RENAMES.get(key, key): capitalize_keys(value) for key, value in obj.items()}
    return obj


def _html(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("html") or ""
    return ""


def transform_message(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Message Ids are stored as strings; the text comes from ``text.html``."""
    sender = raw.get("sender")
    if sender:
        sender_info = {
            "FullName": sender.get("fullName", ""),
            "Role": (sender.get("mailBoxOwner") or {}).get("portalRole", ""),
        }
    else:
        sender_info = raw.get("Sender") or {"FullName": "Unknown", "Role": "Unknown"}

    return {
        **raw,
        "Id": str(raw.get("id") or raw.get("Id")),
        "ThreadId": raw.get("threadId") or raw.get("ThreadId"),
        "MessageText": _html(raw.get("text")) or raw.get("MessageText", ""),
        "SentDate": raw.get("sendDateTime") or raw.get("SentDate"),
        "Sender": sender_info,
        "Attachments": raw.get("attachments") or raw.get("Attachments") or [],
    }


def transform_thread(raw: Dict[str, Any]) -> Dict[str, Any]:
    messages = raw.get("messages") or raw.get("Messages") or []
    return {
        **{k: v for k, v in raw.items() if k != "messages"},
        "Id": raw.get("id") or raw.get("Id"),
        "Subject": raw.get("subject") or raw.get("Subject"),
        "Messages": [transform_message(message) for message in messages],
    }


def transform_post(raw: Dict[str, Any]) -> Dict[str, Any]:
    owner = raw.get("ownerProfile") or {}
    return {
        **raw,
        "Id": raw.get("id") or raw.get("Id"),
        "Title": raw.get("title") or raw.get("Title", ""),
        "Content": _html(raw.get("content")) or raw.get("Content", ""),
        "Timestamp": raw.get("timestamp") or raw.get("Timestamp"),
        "Author": owner.get("fullName") or raw.get("Author", ""),
        "AuthorRole": owner.get("role") or raw.get("AuthorRole", ""),
        "Attachments": raw.get("attachments") or raw.get("Attachments") or [],
    }


def split_threads(threads: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Threads and messages live in separate tables."""
    thread_items = [{k: v for k, v in thread.items() if k != "Messages"} for thread in threads]
    messages = [message for thread in threads for message in thread.get("Messages") or []]
    return thread_items, messages


def flatten_weeks(weeks: List[Any], label: str) -> List[Dict[str, Any]]:
    """Flatten week lists (which may nest lists of items) and drop items without an Id."""
    items = []
    for week in weeks:
        for item in week if isinstance(week, list) else [week]:
            if not item or not isinstance(item, dict) or not item.get("Id"):
                logger.warning(
                    "Skipping %s item without Id field",
                    label,
                    extra={"context": {"item": json.dumps(item, default=str)[:200]}},
                )
                continue
            items.append(item)
    return items


def normalize_collection(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Apply the per-entity transforms to a raw data collection."""
    aula = raw.get("Aula") or {}
    meebook = raw.get("MeeBook") or {}

    def section(parent: Dict[str, Any], name: str, key: str) -> List[Any]:
        return (parent.get(name) or {}).get(key) or []

    return {
        "Aula": {
            "Overview": {"Overviews": capitalize_keys(section(aula, "Overview", "Overviews"))},
            "Messages": {"Threads": [transform_thread(t) for t in section(aula, "Messages", "Threads")]},
            "Calendar": {"CalendarEvents": capitalize_keys(section(aula, "Calendar", "CalendarEvents"))},
            "Posts": {"Posts": [transform_post(p) for p in section(aula, "Posts", "Posts")]},
            "Gallery": {"Albums": capitalize_keys(section(aula, "Gallery", "Albums"))},
        },
        "MeeBook": {
            "WorkPlan": {"Weeks": capitalize_keys(section(meebook, "WorkPlan", "Weeks"))},
            "BookList": {"Weeks": capitalize_keys(section(meebook, "BookList", "Weeks"))},
        },
    }
