import hashlib
import zlib


def text_sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def short_tag(text: str, modulo: int = 999) -> int:
    """Stable small number (1..modulo) derived from ``text``."""
    return zlib.crc32(text.encode("utf-8")) % modulo + 1
