# common/net.py
import asyncio
import json
from typing import Any, Dict, Optional

# Simple newline-delimited JSON protocol helpers

def encode(obj: Dict[str, Any]) -> bytes:
    return (json.dumps(obj, separators=(",", ":")) + "\n").encode("utf-8")


def decode_line(line: bytes) -> Optional[Dict[str, Any]]:
    """Decode one protocol line; None for anything that is not a JSON object."""
    try:
        obj = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


async def send_json(writer: asyncio.StreamWriter, obj: Dict[str, Any]):
    writer.write(encode(obj))
    await writer.drain()


async def read_json(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    """Next well-formed message, skipping malformed lines; None at EOF."""
    while True:
        line = await reader.readline()
        if not line:
            return None
        if not line.strip():
            continue
        obj = decode_line(line)
        if obj is not None:
            return obj
