# prober.py
#
# Detection of the installed ROM and battery RAM capacity. ROM size is found
# by looking for the point where the flash contents start to mirror, RAM by
# toggling cells until a write aliases back onto the first word.
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

from .exceptions import InvalidArgument
from .mapper import AddressTranslator, BANK_WINDOW, PAGE_COUNT
from .objects.capacity_report import CapacityReport
from .utils import trim_trailing
from .utils.flashkit_logger import getFlashKitLogger

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit.core import FlashKit
    from flashkit import Offset, ProgressCallback

RAM_BASE = 0x200000
RAM_SELECT = 0xA13000
RAM_ENABLE = 0xFFFF
ROM_ENABLE = 0x0000
RAM_PROBE_START = 256
RAM_PROBE_LIMIT = 0x100000

PROBE_BLOCK = 512
PROBE_START = 0x8000  # 32KB
READ_CHUNK = 0x8000

MAX_ROM_SIZE = BANK_WINDOW * PAGE_COUNT  # 8MB
CONSOLE_ROM_SIZE = 0x400000  # 4MB
RAM_ROM_SIZE = 0x200000  # ROM left below a fixed RAM aperture


class CapacityProber(object):
    def __init__(self, core, translator=None):
        # type: (FlashKit, Optional[AddressTranslator]) -> None
        self.core = core
        self.translator = translator if translator is not None else AddressTranslator(core)
        self.logger = getFlashKitLogger()

    def selectRam(self, enable=True):
        # type: (bool) -> None
        self.core.writeWord(RAM_SELECT, RAM_ENABLE if enable else ROM_ENABLE)

    def ramAvailable(self):
        # type: () -> bool
        """
        Checks whether the RAM window holds writable memory. The tested word
        is restored afterwards, the RAM window is left enabled.
        """
        self.selectRam(True)

        first_word = self.core.readWord(RAM_BASE)
        self.core.writeWord(RAM_BASE, first_word ^ 0xFFFF)
        readback = self.core.readWord(RAM_BASE)
        self.core.writeWord(RAM_BASE, first_word)

        # battery RAM is 8 bit wide and sits on the low byte
        available = (readback ^ 0xFFFF) & 0xFF == first_word & 0xFF
        self.logger.debug("ramAvailable: first word 0x%04X, readback 0x%04X -> %s" % (first_word, readback, available))
        return available

    def ramSize(self):
        # type: () -> int
        """
        Returns the size of the battery RAM in bytes (0 if there is none).
        Only every second byte of the RAM window is backed by memory, so the
        reported size is half the span of the window that did not alias.
        """
        if not self.ramAvailable():
            return 0

        first_word = self.core.readWord(RAM_BASE)
        size = RAM_PROBE_START
        while size < RAM_PROBE_LIMIT:
            address = RAM_BASE + size
            original = self.core.readWord(address)
            self.core.writeWord(address, original ^ 0xFFFF)
            readback = self.core.readWord(address)
            base_word = self.core.readWord(RAM_BASE)
            self.core.writeWord(address, original)

            if original & 0xFF != (readback ^ 0xFFFF) & 0xFF:
                self.logger.debug("ramSize: no memory at 0x%06X" % address)
                break
            if first_word & 0xFF != base_word & 0xFF:
                self.logger.debug("ramSize: 0x%06X aliases the first word" % address)
                break
            size *= 2

        return size // 2

    def readBlock(self, logicalOffset, length=PROBE_BLOCK):
        # type: (Offset, int) -> bytes
        translation = self.translator.translate(logicalOffset)
        return self.core.readMem(translation.address, length)

    def checkRomSize(self, baseAddr, maxLen):
        # type: (Offset, int) -> int
        """
        Reads a reference block at <baseAddr> and compares it to the blocks at
        baseAddr + 32KB, 64KB, ... The first identical block means the flash
        is mirrored from there on. Returns the length at which that happened,
        0 if it already mirrors at the first probe and <maxLen> if it never did.
        """
        reference = self.readBlock(baseAddr)

        length = PROBE_START
        while length < maxLen:
            if self.readBlock(baseAddr + length) == reference:
                self.logger.debug("checkRomSize: 0x%06X mirrors 0x%06X" % (baseAddr + length, baseAddr))
                return 0 if length == PROBE_START else length
            length *= 2

        return maxLen

    def ramWindowOverlapsRom(self):
        # type: () -> bool
        """
        Compares what the RAM window shows with RAM selected and with ROM
        selected. Different contents mean the RAM can be switched off to
        reveal more ROM. ROM stays selected afterwards.
        """
        self.selectRam(True)
        ram_view = self.core.readMem(RAM_BASE, PROBE_BLOCK)
        self.selectRam(False)
        rom_view = self.core.readMem(RAM_BASE, PROBE_BLOCK)
        return ram_view != rom_view

    def romSize(self):
        # type: () -> int
        ram_present = self.ramAvailable()
        switchable = self.ramWindowOverlapsRom()

        max_size = RAM_ROM_SIZE if ram_present and not switchable else CONSOLE_ROM_SIZE
        size = self.checkRomSize(0, max_size)
        self.logger.debug("romSize: lower probe (max 0x%X) -> 0x%X" % (max_size, size))
        if size != CONSOLE_ROM_SIZE:
            return size

        # upper half of the chip, only reachable through the mapper
        if self.readBlock(CONSOLE_ROM_SIZE) == self.readBlock(0):
            return CONSOLE_ROM_SIZE

        upper = self.checkRomSize(CONSOLE_ROM_SIZE, MAX_ROM_SIZE - CONSOLE_ROM_SIZE - RAM_ROM_SIZE)
        self.logger.debug("romSize: upper probe -> 0x%X" % upper)
        if upper < RAM_ROM_SIZE:
            return CONSOLE_ROM_SIZE + upper

        if self.readBlock(CONSOLE_ROM_SIZE + RAM_ROM_SIZE) == self.readBlock(CONSOLE_ROM_SIZE):
            return CONSOLE_ROM_SIZE + RAM_ROM_SIZE
        return MAX_ROM_SIZE

    def detect(self):
        # type: () -> CapacityReport
        rom_size = self.romSize()
        ram_size = self.ramSize()
        self.selectRam(False)
        return CapacityReport(rom_size, ram_size > 0, ram_size)

    def readRom(self, totalSizeHint, onProgress=None):
        # type: (int, Optional[ProgressCallback]) -> bytes
        """
        Dumps <totalSizeHint> bytes of flash window by window and cuts off the
        blank (0xFF) tail.
        """
        if not 0 <= totalSizeHint <= MAX_ROM_SIZE:
            raise InvalidArgument("ROM size 0x%X outside of 0..0x%X" % (totalSizeHint, MAX_ROM_SIZE))

        buff = bytearray(totalSizeHint)
        offset = 0
        while offset < totalSizeHint:
            chunk = min(READ_CHUNK, totalSizeHint - offset)
            translation = self.translator.translate(offset)
            buff[offset:offset + chunk] = self.core.readMem(translation.address, chunk)
            offset += chunk
            if onProgress is not None:
                onProgress(offset)

        rom = trim_trailing(buff)
        self.logger.debug("readRom: read 0x%X bytes, 0x%X after trimming" % (totalSizeHint, len(rom)))
        return rom
