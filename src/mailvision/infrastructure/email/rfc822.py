from __future__ import annotations
import base64
import binascii
from email import policy
from email.errors import InvalidBase64CharactersDefect, InvalidBase64PaddingDefect, InvalidBase64LengthDefect
from email.parser import BytesParser

from mailvision.domain.errors import DecodeError

_BASE64_DEFECTS = (InvalidBase64CharactersDefect, InvalidBase64PaddingDefect, InvalidBase64LengthDefect)

def decode_inline_base64(raw: bytes) -> bytes:
    """Decode an inline image entity: headers, a blank line, then base64 lines."""
    text = raw.decode("ascii", errors="replace")

    body: list[str] = []
    in_body = False
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            in_body = True
            continue
        if in_body:
            body.append(stripped)

    try:
        data = base64.b64decode("".join(body), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"invalid base64 body: {e}") from e

    if not data:
        raise DecodeError("inline image body is empty")
    return data

def decode_attachment(raw: bytes) -> bytes:
    """Decode an attachment entity using its Content-Transfer-Encoding."""
    part = BytesParser(policy=policy.default).parsebytes(raw)
    if part.is_multipart():
        raise DecodeError("expected a leaf part, got multipart")

    payload = part.get_payload(decode=True)
    if payload is None:
        raise DecodeError("attachment has no payload")

    defects = [d for d in part.defects if isinstance(d, _BASE64_DEFECTS)]
    if defects:
        raise DecodeError(f"malformed base64 payload: {defects[0].__class__.__name__}")

    if not payload:
        raise DecodeError("attachment payload is empty")
    return payload
