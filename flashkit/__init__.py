from typing import (
    TYPE_CHECKING,
    Tuple,
    NewType,
    Callable,
)

__version__ = "0.5"

Address = NewType("Address", int)  # byte address in the console address space
Offset = NewType("Offset", int)  # logical byte offset into the ROM image / flash chip
BankIndex = NewType("BankIndex", int)
Page = NewType("Page", int)

ProgressCallback = Callable[[int], None]
LogCallback = Callable[[str], None]

if TYPE_CHECKING:
    from flashkit.core import FlashKit

    # FlashKit core, port / device name, human readable description
    DeviceTuple = Tuple[FlashKit, str, str]
