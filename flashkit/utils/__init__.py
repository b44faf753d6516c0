import re
import sys
from typing import Union


def bytes_to_hex(data):
    # type: (Union[bytes, bytearray]) -> str
    return "".join(format(x, "02x") for x in bytearray(data))


def pad(data: bytes, multiple: int, filler: int = 0xFF) -> bytes:
    """Pads data up to the next multiple of <multiple> bytes."""
    remainder = len(data) % multiple
    if remainder == 0:
        return bytes(data)
    return bytes(data) + bytes([filler]) * (multiple - remainder)


def trim_trailing(data, filler: int = 0xFF) -> bytes:
    """Cuts off the run of <filler> bytes at the end of data (blank flash reads as 0xFF)."""
    end = len(data)
    while end > 0 and data[end - 1] == filler:
        end -= 1
    return bytes(data[:end])


def safe_filename(name: str) -> str:
    # keep the characters the ROM header names usually consist of
    return re.sub(r"[^0-9A-Za-z !()_\-.\[\]|&'`]", "-", name).strip()


def yesno(message):
    selection = input(f"[?] {message} [yes/no] ")
    sys.stdout.write(f"\033[F\033[K")

    while True:
        if selection.lower() in ['y', 'yes']:
            sys.stdout.write(f"[?] {message} [\033[1myes\033[0m/no] \n")
            return True
        elif selection.lower() in ['n', 'no']:
            sys.stdout.write(f"[?] {message} [yes/\033[1mno\033[0m] \n")
            return False
        else:
            selection = input(f"[?] {message} [yes/no] ")
