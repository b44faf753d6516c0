# mx29gl128.py
#
# Command protocol of the Macronix MX29GL128E NOR flash as seen through the
# cartridge mapper: unlock cycles, sector erase, write buffer programming,
# single word programming and read back verification. All completion
# polling uses DQ7 data polling bounded by a wall-clock timeout.
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

import time

from .exceptions import BufferWriteTimeout, EraseTimeout, InvalidArgument, VerifyMismatch, WordWriteTimeout
from .mapper import AddressTranslator, BANK_WINDOW
from .utils.flashkit_logger import getFlashKitLogger
from .utils.packing import words

from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit.core import FlashKit
    from flashkit import Address, LogCallback, ProgressCallback

# The chip is 128Mbit but the mapper can only reach 8MB of it
TOTAL_CHIP_SIZE = 0x800000
SECTOR_SIZE = 0x20000  # 128KB
SECTOR_COUNT = TOTAL_CHIP_SIZE // SECTOR_SIZE
BUFFER_SIZE = 64  # bytes, 32 words

UNLOCK_ADDR1 = 0x555 * 2
UNLOCK_ADDR2 = 0x2AA * 2

CMD_UNLOCK1 = 0xAA
CMD_UNLOCK2 = 0x55
CMD_ERASE_SETUP = 0x80
CMD_SECTOR_ERASE = 0x30
CMD_WRITE_BUFFER_LOAD = 0x25
CMD_WRITE_BUFFER_CONFIRM = 0x29
CMD_UNLOCK_BYPASS = 0x20
CMD_UNLOCK_BYPASS_RESET1 = 0x90
CMD_UNLOCK_BYPASS_RESET2 = 0x00
CMD_RESET = 0xF0

DQ7 = 0x80

ERASE_TIMEOUT = 10.0  # seconds
WORD_TIMEOUT = 5.0
BUFFER_TIMEOUT = 5.0
ERASE_POLL_INTERVAL = 0.001

PROGRESS_WRITE_STEP = 0x1000
VERIFY_CHUNK = 0x1000
PROGRESS_VERIFY_STEP = 0x2000


class FlashDriver(object):
    """
    Erases, programs and verifies the flash chip. Every target address is a
    console address obtained from the AddressTranslator; the unlock cycles go
    to the bank relative command addresses of the window being used.
    """

    def __init__(self, core, translator=None, clock=time.monotonic, sleep=time.sleep):
        # type: (FlashKit, Optional[AddressTranslator], Callable[[], float], Callable[[float], None]) -> None
        self.core = core
        self.translator = translator if translator is not None else AddressTranslator(core)
        self.logger = getFlashKitLogger()
        self.clock = clock
        self.sleep = sleep

    @staticmethod
    def unlockBaseOf(address):
        # type: (Address) -> int
        return address - address % BANK_WINDOW

    def unlock(self, unlock_base):
        # type: (int) -> None
        self.core.writeWord(unlock_base + UNLOCK_ADDR1, CMD_UNLOCK1)
        self.core.writeWord(unlock_base + UNLOCK_ADDR2, CMD_UNLOCK2)

    def unlockBypass(self):
        """Enter unlock bypass mode (issued before erasing/programming)."""
        self.unlock(0)
        self.core.writeWord(UNLOCK_ADDR1, CMD_UNLOCK_BYPASS)

    def resetBypass(self):
        """Leave unlock bypass mode."""
        self.core.writeWord(0, CMD_UNLOCK_BYPASS_RESET1)
        self.core.writeWord(0, CMD_UNLOCK_BYPASS_RESET2)

    def reset(self):
        """Return the chip to read array mode."""
        self.core.writeWord(0, CMD_RESET)

    def _poll(self, address, ready, timeout, exception, interval=0):
        # type: (Address, Callable[[int], bool], float, type, float) -> int
        start = self.clock()
        while True:
            status = self.core.readWord(address)
            if ready(status):
                return status

            if self.clock() - start > timeout:
                self.logger.debug("_poll: giving up on 0x%06X, status 0x%04X" % (address, status))
                # leave the chip in read array mode for whatever comes next
                self.reset()
                raise exception(address, status)

            if interval:
                self.sleep(interval)

    def waitEraseReady(self, address):
        # type: (Address) -> None
        # DQ7 reads 1 once the erased sector reads back as 0xFFFF
        self._poll(address, lambda status: status & DQ7 == DQ7, ERASE_TIMEOUT, EraseTimeout, ERASE_POLL_INTERVAL)

    def waitWordReady(self, address, expected):
        # type: (Address, int) -> None
        self._poll(address, lambda status: status & DQ7 == expected & DQ7, WORD_TIMEOUT, WordWriteTimeout)

    def waitBufferReady(self, address, expected):
        # type: (Address, int) -> None
        self._poll(address, lambda status: status & DQ7 == expected & DQ7, BUFFER_TIMEOUT, BufferWriteTimeout)

    def eraseSector(self, sectorIndex):
        # type: (int) -> None
        if not 0 <= sectorIndex < SECTOR_COUNT:
            raise InvalidArgument("Sector index %r out of range 0..%d" % (sectorIndex, SECTOR_COUNT - 1))

        translation = self.translator.translate(sectorIndex * SECTOR_SIZE)
        unlock_base = translation.unlock_base

        self.unlock(unlock_base)
        self.core.writeWord(unlock_base + UNLOCK_ADDR1, CMD_ERASE_SETUP)
        self.unlock(unlock_base)
        self.core.writeWord(translation.address, CMD_SECTOR_ERASE)

        self.waitEraseReady(translation.address)
        self.logger.debug("eraseSector: erased sector %02d at 0x%06X" % (sectorIndex, sectorIndex * SECTOR_SIZE))

    def eraseAllSectors(self, onLog=None):
        # type: (Optional[LogCallback]) -> None
        for sector in range(SECTOR_COUNT):
            self.eraseSector(sector)
            if onLog is not None:
                onLog("Erased sector %02d at 0x%06X" % (sector, sector * SECTOR_SIZE))

    def writeBuffer(self, data, targetAddress):
        # type: (bytes, Address) -> None
        """
        Programs up to 32 words with a single Write-Buffer-Program sequence.
        The buffer commands go to the base of the 128KB sector containing
        <targetAddress>, the words themselves to their real addresses.
        """
        if len(data) % 2 != 0 or not 0 < len(data) <= BUFFER_SIZE:
            raise InvalidArgument(
                "Buffer writes must be even and <= %d bytes (got %d)." % (BUFFER_SIZE, len(data))
            )

        buffer_words = words(data)
        unlock_base = self.unlockBaseOf(targetAddress)
        sector_base = targetAddress & ~(SECTOR_SIZE - 1)

        self.unlock(unlock_base)
        self.core.writeWord(sector_base, CMD_WRITE_BUFFER_LOAD)
        self.core.writeWord(sector_base, len(buffer_words) - 1)
        for i, word in enumerate(buffer_words):
            self.core.writeWord(targetAddress + i * 2, word)
        self.core.writeWord(sector_base, CMD_WRITE_BUFFER_CONFIRM)

        # data polling reports on the last programmed word
        last_address = targetAddress + (len(buffer_words) - 1) * 2
        self.waitBufferReady(last_address, buffer_words[-1])

    def writeWord(self, targetAddress, value):
        # type: (Address, int) -> None
        self.unlock(self.unlockBaseOf(targetAddress))
        self.core.writeWord(targetAddress, value)
        self.waitWordReady(targetAddress, value)

    @staticmethod
    def checkImageSize(image):
        # type: (bytes) -> None
        if len(image) > TOTAL_CHIP_SIZE:
            raise InvalidArgument(
                "Image of 0x%X bytes does not fit into the 0x%X byte flash chip." % (len(image), TOTAL_CHIP_SIZE)
            )

    def writeRom(self, image, onProgress=None):
        # type: (bytes, Optional[ProgressCallback]) -> None
        """
        Programs <image> from offset 0. Full aligned 64 byte chunks go through
        the write buffer, everything else (bank ends, the image tail) word by
        word. A trailing odd byte is completed with 0xFF.
        """
        self.checkImageSize(image)
        rom_size = len(image)
        last_reported = 0
        addr = 0
        while addr < rom_size:
            page_offset = addr % BANK_WINDOW
            chunk = min(BUFFER_SIZE, BANK_WINDOW - page_offset, rom_size - addr)
            translation = self.translator.translate(addr)

            if chunk == BUFFER_SIZE and page_offset % BUFFER_SIZE == 0:
                self.writeBuffer(image[addr:addr + chunk], translation.address)
            else:
                for i in range(0, chunk, 2):
                    if addr + i + 1 < rom_size:
                        word = (image[addr + i] << 8) | image[addr + i + 1]
                    else:
                        word = (image[addr + i] << 8) | 0xFF
                    self.writeWord(translation.address + i, word)

            addr += chunk

            if addr % SECTOR_SIZE == 0:
                self.logger.debug("writeRom: flashed up to 0x%06X" % addr)
            if onProgress is not None and (addr - last_reported >= PROGRESS_WRITE_STEP or addr == rom_size):
                last_reported = addr
                onProgress(addr)

    def verifyRom(self, image, onProgress=None):
        # type: (bytes, Optional[ProgressCallback]) -> None
        self.checkImageSize(image)
        rom_size = len(image)
        last_reported = 0
        for addr in range(0, rom_size, VERIFY_CHUNK):
            translation = self.translator.translate(addr)
            read_len = min(VERIFY_CHUNK, rom_size - addr)
            data = self.core.readMem(translation.address, read_len)

            for i in range(read_len):
                if image[addr + i] != data[i]:
                    self.logger.debug("verifyRom: mismatch at 0x%06X" % (addr + i))
                    raise VerifyMismatch(addr + i, image[addr + i], data[i])

            done = addr + read_len
            if onProgress is not None and (done - last_reported >= PROGRESS_VERIFY_STEP or done == rom_size):
                last_reported = done
                onProgress(done)
