from __future__ import annotations

import asyncio
import gzip
from dataclasses import dataclass
from typing import Optional

GZIP_LEVEL = 6


@dataclass(frozen=True)
class PreparedRaw:
    """Storage form of an entry's raw text. At most one field is set."""

    raw_text: Optional[str] = None
    raw_compressed: Optional[bytes] = None


async def compress_text(text: str) -> bytes:
    return await asyncio.to_thread(gzip.compress, text.encode("utf-8"), GZIP_LEVEL)


async def decompress_text(blob: bytes) -> str:
    data = await asyncio.to_thread(gzip.decompress, bytes(blob))
    return data.decode("utf-8")


async def prepare_raw(raw_text: Optional[str], *, store_plaintext: bool) -> PreparedRaw:
    if not raw_text:
        return PreparedRaw()
    if store_plaintext:
        return PreparedRaw(raw_text=raw_text)
    return PreparedRaw(raw_compressed=await compress_text(raw_text))
