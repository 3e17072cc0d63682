# src/watermeter_nfc/utils/hexfmt.py


def fmt_hex(b: bytes | None) -> str:
    """Format bytes as spaced uppercase hex."""
    if not b:
        return "(empty)"
    return " ".join(f"{x:02X}" for x in b)


def fmt_ascii(b: bytes) -> str:
    return "".join(chr(x) if 32 <= x < 127 else "." for x in b)


def fmt_pages(data: bytes, first_page: int = 0, page_size: int = 4):
    """Yield one 'PP: HEX |ASCII|' line per page of data."""
    for i in range(0, len(data), page_size):
        chunk = data[i:i + page_size]
        yield f"{first_page + i // page_size:02d}: {fmt_hex(chunk)}   |{fmt_ascii(chunk)}|"
