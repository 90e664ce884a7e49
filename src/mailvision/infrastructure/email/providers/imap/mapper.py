from __future__ import annotations
from datetime import datetime
from email.header import decode_header, make_header
from typing import Any, Iterable, Optional

from mailvision.application.ports.mailbox_transport import BodyPart, MessageSummary
from mailvision.domain.events import FlagsChanged, FolderEvent, MessageExpunged, MessagesArrived


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _decode_header_value(value: Any) -> str:
    raw = _text(value).strip()
    if not raw:
        return ""
    # RFC 2047 encoded-words show up in subjects and filenames
    try:
        return str(make_header(decode_header(raw)))
    except (LookupError, ValueError):
        return raw


def _params(value: Any) -> dict[str, str]:
    """IMAP parameter list (k1, v1, k2, v2, ...) as a lowercase-keyed dict."""
    if not isinstance(value, (list, tuple)):
        return {}
    items = list(value)
    return {_text(k).lower(): _text(v) for k, v in zip(items[0::2], items[1::2])}


def _is_multipart(body: Any) -> bool:
    return isinstance(body, (list, tuple)) and len(body) > 0 and isinstance(body[0], list)


def _leaf(body: Any, specifier: str, top_level: bool) -> BodyPart:
    main = _text(body[0]).lower()
    sub = _text(body[1]).lower() if len(body) > 1 else ""
    params = _params(body[2]) if len(body) > 2 else {}
    encoding = None
    if len(body) > 5 and body[5]:
        encoding = _text(body[5]).lower()
    size = body[6] if len(body) > 6 and isinstance(body[6], int) else 0

    # Extension data follows the basic fields: text parts carry a line
    # count, message/rfc822 an envelope, body and line count
    if main == "text":
        ext = 8
    elif (main, sub) == ("message", "rfc822"):
        ext = 10
    else:
        ext = 7

    disposition = None
    disposition_params: dict[str, str] = {}
    # ext holds the MD5, the disposition comes right after it
    if len(body) > ext + 1 and isinstance(body[ext + 1], (list, tuple)) and body[ext + 1]:
        disposition = _text(body[ext + 1][0]).lower() or None
        if len(body[ext + 1]) > 1:
            disposition_params = _params(body[ext + 1][1])

    filename = disposition_params.get("filename") or params.get("name")

    return BodyPart(
        specifier=specifier,
        content_type=f"{main}/{sub}",
        filename=_decode_header_value(filename) or None,
        disposition=disposition,
        encoding=encoding,
        size=size,
        top_level=top_level,
    )


def _walk(body: Any, specifier: str, top_level: bool) -> list[BodyPart]:
    if _is_multipart(body):
        parts: list[BodyPart] = []
        for i, child in enumerate(body[0], start=1):
            child_spec = f"{specifier}.{i}" if specifier else str(i)
            parts.extend(_walk(child, child_spec, top_level=False))
        return parts
    return [_leaf(body, specifier or "1", top_level)]


def body_parts(bodystructure: Any) -> list[BodyPart]:
    """Flatten a BODYSTRUCTURE tree into its leaf parts with IMAP specifiers."""
    if not bodystructure:
        return []
    return _walk(bodystructure, "", top_level=True)


def fetch_to_summary(uid: int, data: dict) -> MessageSummary:
    envelope = data.get(b"ENVELOPE")
    internal_date: Optional[datetime] = data.get(b"INTERNALDATE")

    return MessageSummary(
        uid=uid,
        internal_date=internal_date,
        envelope_date=getattr(envelope, "date", None),
        subject=_decode_header_value(getattr(envelope, "subject", None)),
        body_parts=body_parts(data.get(b"BODYSTRUCTURE")),
    )


def _flags(payload: Any) -> tuple[str, ...]:
    if not isinstance(payload, (list, tuple)):
        return ()
    items = list(payload)
    for key, value in zip(items[0::2], items[1::2]):
        if _text(key).upper() == "FLAGS" and isinstance(value, (list, tuple)):
            return tuple(_text(f) for f in value)
    return ()


def untagged_to_events(responses: Iterable[Any]) -> list[FolderEvent]:
    """Map untagged IDLE/NOOP responses such as ``(3, b'EXISTS')`` to folder events."""
    events: list[FolderEvent] = []
    for response in responses or ():
        if not isinstance(response, tuple) or len(response) < 2 or not isinstance(response[0], int):
            continue

        index, kind = response[0], _text(response[1]).upper()
        if kind == "EXISTS":
            events.append(MessagesArrived(count=index))
        elif kind == "EXPUNGE":
            events.append(MessageExpunged(index=index))
        elif kind == "FETCH" and len(response) > 2:
            events.append(FlagsChanged(index=index, flags=_flags(response[2])))
    return events
