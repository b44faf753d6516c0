# mapper.py
#
# Bank switching of the cartridge CPLD mapper. The console sees 4MB split
# into eight 512KB banks; bank 0 is hard wired to the first page of the
# flash chip and banks 1..7 each have a page register. Everything beyond the
# first 512KB of the chip is reached through the single movable bank 1.
#
# Copyright (c) 2024 The FlashKit Team. (MIT License)
#
# Permission is hereby granted, free of charge, to any person obtaining a copy of
# this software and associated documentation files (the "Software"), to deal in
# the Software without restriction, including without limitation the rights to
# use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies of
# the Software, and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
# - The above copyright notice and this permission notice shall be included in
#   all copies or substantial portions of the Software.
# - The Software is provided "as is", without warranty of any kind, express or
#   implied, including but not limited to the warranties of merchantability,
#   fitness for a particular purpose and noninfringement. In no event shall the
#   authors or copyright holders be liable for any claim, damages or other
#   liability, whether in an action of contract, tort or otherwise, arising from,
#   out of or in connection with the Software or the use or other dealings in the
#   Software.

from collections import namedtuple

from .exceptions import InvalidArgument, NotConnected, TransportError
from .utils.flashkit_logger import getFlashKitLogger

from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit.core import FlashKit
    from flashkit import Address, BankIndex, Offset, Page

BANK_WINDOW = 0x080000  # 512KB
BANK_COUNT = 8  # 4MB console address space
PAGE_COUNT = 16  # 8MB of flash visible to the mapper
MOVABLE_BANK = 1

# bank 0 has no register, it always shows page 0
BANK_REGISTERS = [
    None,
    0xA130F3,  # bank 1 -> $080000-$0FFFFF
    0xA130F5,  # bank 2 -> $100000-$17FFFF
    0xA130F7,  # bank 3 -> $180000-$1FFFFF
    0xA130F9,  # bank 4 -> $200000-$27FFFF
    0xA130FB,  # bank 5 -> $280000-$2FFFFF
    0xA130FD,  # bank 6 -> $300000-$37FFFF
    0xA130FF,  # bank 7 -> $380000-$3FFFFF
]

Translation = namedtuple("Translation", ["window", "bank", "page", "unlock_base", "address"])
Translation.__doc__ = """
Result of translating a logical flash offset:
    - window:      index of the 512KB page of the chip that holds the offset
    - bank:        console bank the page is visible through (0 or 1)
    - page:        page mapped into that bank
    - unlock_base: base address for the chip's command cycles, these are bank relative
    - address:     console address of the offset
"""


class BankMap(object):
    """
    Cached page numbers of all eight banks. Entry 0 is always page 0.
    The cache is only ever updated after the register write went through.
    """

    def __init__(self):
        self._pages = [0] * BANK_COUNT

    def __getitem__(self, bank):
        # type: (int) -> int
        return self._pages[bank]

    def __setitem__(self, bank, page):
        # type: (int, int) -> None
        if bank == 0 and page != 0:
            raise InvalidArgument("Bank 0 is fixed to the first page and cannot be changed.")
        self._pages[bank] = page

    def __iter__(self):
        return iter(self._pages)

    def __len__(self):
        return BANK_COUNT

    def reset(self):
        self._pages = [0] * BANK_COUNT

    def __repr__(self):
        return "BankMap(%s)" % ", ".join("%d:%d" % (b, p) for b, p in enumerate(self._pages))


class AddressTranslator(object):
    def __init__(self, core, bank_map=None):
        # type: (FlashKit, BankMap) -> None
        self.core = core
        self.logger = getFlashKitLogger()
        self.bank_map = bank_map if bank_map is not None else BankMap()

    @property
    def pages(self):
        # type: () -> List[int]
        return list(self.bank_map)

    @staticmethod
    def _check_bank_page(bankIndex, page):
        if bankIndex == 0:
            raise InvalidArgument("Bank 0 is fixed to the first page and cannot be changed.")
        if not 0 < bankIndex < BANK_COUNT:
            raise InvalidArgument("Bank index %r out of range 1..%d" % (bankIndex, BANK_COUNT - 1))
        if not 0 <= page < PAGE_COUNT:
            raise InvalidArgument("Page %r out of range 0..%d" % (page, PAGE_COUNT - 1))

    def mapPage(self, bankIndex, page):
        # type: (BankIndex, Page) -> None
        """
        Show <page> of the flash chip in bank <bankIndex> by writing the
        bank's page register.
        """
        self._check_bank_page(bankIndex, page)
        self.logger.debug("mapPage: bank %d -> page %d" % (bankIndex, page))
        self.core.writeByte(BANK_REGISTERS[bankIndex], page)
        self.bank_map[bankIndex] = page

    @staticmethod
    def locate(logicalOffset):
        # type: (Offset) -> Translation
        """
        Computes where a logical offset is visible without touching any
        register. Window 0 is always reachable through the fixed bank 0,
        every other window is routed through bank 1.
        """
        if not 0 <= logicalOffset < BANK_WINDOW * PAGE_COUNT:
            raise InvalidArgument("Offset 0x%X outside of the flash chip" % logicalOffset)

        window = logicalOffset // BANK_WINDOW
        in_window = logicalOffset % BANK_WINDOW
        if window == 0:
            return Translation(0, 0, 0, 0, in_window)
        return Translation(window, MOVABLE_BANK, window, BANK_WINDOW, BANK_WINDOW + in_window)

    def translate(self, logicalOffset):
        # type: (Offset) -> Translation
        """
        Like locate(), but also points bank 1 at the right page. The register
        is only written when the cached page differs.
        """
        translation = self.locate(logicalOffset)
        if translation.bank == MOVABLE_BANK and self.bank_map[MOVABLE_BANK] != translation.page:
            self.mapPage(MOVABLE_BANK, translation.page)
        return translation

    def readRegister(self, address):
        # type: (Address) -> int
        # registers sit on odd addresses, the link reads whole words
        aligned = address & ~1
        data = self.core.readMem(aligned, 2)
        return data[address & 1]

    def refreshFromHardware(self):
        # type: () -> bool
        """
        Reload the page cache from the bank registers. If the device can not
        be reached, every bank is assumed to show page 0.
        """
        self.bank_map.reset()
        try:
            pages = [self.readRegister(BANK_REGISTERS[bank]) for bank in range(1, BANK_COUNT)]
        except (NotConnected, TransportError) as e:
            self.logger.warning("refreshFromHardware: reading bank registers failed (%s), assuming page 0" % e)
            return False

        for bank, page in enumerate(pages, start=1):
            # registers are only 4 bit wide
            self.bank_map[bank] = page & (PAGE_COUNT - 1)
        self.logger.debug("refreshFromHardware: %r" % self.bank_map)
        return True
