"""Attachment encoding for outgoing messages.

Files are read on worker threads, one per file, and turned into inline
data URLs (``data:<mime>;base64,<payload>``) before a send is issued.
"""
import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Iterable, List, Union

from app.chat.models import new_id

DEFAULT_MIME_TYPE = "application/octet-stream"

PathLike = Union[str, Path]


def encode_bytes(name: str, payload: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> dict:
    """Build an attachment dict in the shape ``send_message`` expects."""
    encoded = base64.b64encode(payload).decode("ascii")
    return {
        "id": new_id(),
        "name": name,
        "type": mime_type,
        "size": len(payload),
        "data": f"data:{mime_type};base64,{encoded}",
    }


def encode_file(path: PathLike) -> dict:
    path = Path(path)
    mime_type = mimetypes.guess_type(path.name)[0] or DEFAULT_MIME_TYPE
    return encode_bytes(path.name, path.read_bytes(), mime_type)


async def encode_attachments(paths: Iterable[PathLike]) -> List[dict]:
    """Encode every file concurrently; order follows ``paths``."""
    return list(await asyncio.gather(
        *[asyncio.to_thread(encode_file, path) for path in paths]
    ))
