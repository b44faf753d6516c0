# core.py
#
# This file contains the main class of the framework. It owns the device
# link (the transport primitives are implemented by the subclasses such as
# SerialCore or testCore), the bank switching state of the cartridge and the
# top-level operations: capacity detection, erasing, writing/verifying and
# reading the ROM as well as reading and writing the battery RAM.
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

import logging
import time
from abc import ABCMeta, abstractmethod
from contextlib import contextmanager

from .exceptions import NotConnected, RamUnavailable, VerifyMismatch
from .mapper import AddressTranslator, BankMap, BANK_WINDOW
from .mx29gl128 import FlashDriver
from .objects.capacity_report import CapacityReport
from .objects.rom_header import RomHeader
from .prober import CapacityProber, RAM_BASE
from .utils import pad
from .utils.flashkit_logger import getFlashKitLogger

from typing import List, Optional, Any, TYPE_CHECKING, BinaryIO

if TYPE_CHECKING:
    from flashkit import Address, DeviceTuple, LogCallback, ProgressCallback

# The largest transfer handed to the transport in one go. The device takes
# the length in words as a 16 bit value.
MEM_BLOCK = 0x10000


class FlashKit(object, metaclass=ABCMeta):
    @property
    def log_level(self):
        return self._internal_loglevel

    @log_level.setter
    def log_level(self, new):
        levels = {"CRITICAL": logging.CRITICAL, "ERROR": logging.ERROR,
                  "WARNING": logging.WARNING, "INFO": logging.INFO,
                  "DEBUG": logging.DEBUG, "NOTSET": logging.NOTSET,
                  "WARN": logging.WARN}
        new = new.upper()
        self._internal_loglevel = new
        level = levels[new]
        if self.logger.hasHandlers() and level is not None:
            self.logger.setLevel(level)
            if len(self.logger.handlers) > 0:
                self.logger.handlers[0].setLevel(level)

    def __init__(
            self,
            log_level: str = "info",
            data_directory: str = ".",
            replay: bool = False,
            delay: int = 1,
            clock=time.monotonic,
            sleep=time.sleep,
    ) -> None:
        # get and store 'FlashKit' logger
        self.logger = getFlashKitLogger()

        self.interface = None  # port / device name which is used to connect, is set in cli
        self.data_directory = data_directory
        self.replay = replay

        # inter-command delay (ms) configured on the device after connecting
        self.delay = delay

        self.exit_requested = False  # Will be set to true when the framework wants to shut down
        self.running = False  # 'running' is True once the device link is established
        self.log_level = log_level

        # The bank map is owned by this core. Everything that addresses the
        # flash goes through the same translator so the cached page of the
        # movable bank always matches the register.
        self.translator = AddressTranslator(self, BankMap())
        self.flash = FlashDriver(self, self.translator, clock=clock, sleep=sleep)
        self.prober = CapacityProber(self, self.translator)

    def check_running(self):
        # type: () -> None
        """
        Check if the framework is running (i.e. the device link is open and
        exit_requested is not True). Raises NotConnected otherwise.
        """

        if self.exit_requested:
            self.shutdown()

        if not self.running:
            self.logger.warning("Not running. call connect() first!")
            raise NotConnected()

    @abstractmethod
    def device_list(self):
        # type: () -> List[DeviceTuple]
        pass

    def connect(self):
        # type: () -> bool
        if self.exit_requested:
            self.shutdown()

        if self.running:
            self.logger.warning("Already running. call shutdown() first!")
            return False

        if not self.interface:
            self.logger.warning("No serial device identifier is set")
            return False

        if not self.local_connect():
            return False

        self.logger.info(f"Connected to {self.interface}")
        self.running = True

        self.setDelay(self.delay)
        self.translator.refreshFromHardware()

        return True

    @abstractmethod
    def local_connect(self):
        return True

    def shutdown(self):
        # type: () -> None
        """
        Close the device link. Safe to call more than once.
        """
        self.exit_requested = True

        if self.running:
            self._teardownPort()

        self.running = False
        self.exit_requested = False
        self.logger.info("Shutdown complete.")

    @contextmanager
    def session(self):
        """
        Scoped device session:

            with core.session():
                core.writeRom(image)

        The link is released on every exit path, also if the body raises.
        """
        if not self.running and not self.connect():
            raise NotConnected("Device not detected.")
        try:
            yield self
        finally:
            self.shutdown()

    def __enter__(self):
        if not self.running and not self.connect():
            raise NotConnected("Device not detected.")
        return self

    def __exit__(self, exc_typ, exc_val, exc_tb):
        self.shutdown()

    """
    Transport primitives. The public methods check for a live session and
    delegate to the transport specific implementation.
    """

    def readWord(self, address):
        # type: (Address) -> int
        self.check_running()
        return self._readWord(address)

    def writeWord(self, address, value):
        # type: (Address, int) -> None
        self.check_running()
        self._writeWord(address, value & 0xFFFF)

    def writeByte(self, address, value):
        # type: (Address, int) -> None
        self.check_running()
        self._writeByte(address, value & 0xFF)

    def setDelay(self, ms):
        # type: (int) -> None
        self.check_running()
        self.logger.debug("setDelay: %d ms" % ms)
        self._setDelay(ms)

    def readMem(self, address, length, progress_log=None, bytes_done=0, bytes_total=0):
        # type: (Address, int, Optional[Any], int, int) -> bytes
        """
        Reads <length> bytes from the console address space starting at
        <address>. Nothing is remapped, the caller is responsible for the
        bank registers.

        Optional arguments for progress logs:
        - progress_log: An instance of ProgressLogger which will be updated during the read.
        - bytes_done:   Number of bytes that have already been read with earlier calls to
                        readMem() and belonging to the same transaction which is covered by progress_log.
        - bytes_total:  Total bytes that will be read within the transaction covered by progress_log.
        """

        self.logger.debug("readMem: reading 0x%x bytes at 0x%06x" % (length, address))
        self.check_running()

        outbuffer = bytearray()
        if bytes_total == 0:  # If no total bytes where given just use length
            bytes_total = length
        read_addr = address
        while len(outbuffer) < length:
            blocksize = min(length - len(outbuffer), MEM_BLOCK)
            outbuffer += self._readBlock(read_addr, blocksize)
            read_addr += blocksize
            if progress_log is not None:
                msg = "receiving data... %d / %d Bytes (%d%%)" % (
                    bytes_done + len(outbuffer),
                    bytes_total,
                    (bytes_done + len(outbuffer)) * 100 // bytes_total,
                )
                progress_log.status(msg)
        return bytes(outbuffer)

    def writeMem(self, address, data, progress_log=None, bytes_done=0, bytes_total=0):
        # type: (Address, bytes, Optional[Any], int, int) -> bool
        """
        Writes <data> to the console address space at the given address,
        word by word with auto increment. This is a plain bus write, flash
        needs to be programmed through self.flash.
        """

        self.logger.debug("writeMem: writing 0x%x bytes to 0x%06x" % (len(data), address))
        self.check_running()

        write_addr = address
        byte_counter = 0
        if bytes_total == 0:
            bytes_total = len(data)
        while byte_counter < len(data):
            blocksize = min(len(data) - byte_counter, MEM_BLOCK)
            self._writeBlock(write_addr, data[byte_counter:byte_counter + blocksize])
            write_addr += blocksize
            byte_counter += blocksize
            if progress_log is not None:
                msg = "sending data... %d / %d Bytes" % (
                    bytes_done + byte_counter,
                    bytes_total,
                )
                progress_log.status(msg)
        return True

    """
    Top-level operations
    """

    def detectCapacity(self):
        # type: () -> CapacityReport
        report = self.prober.detect()
        self.logger.info(str(report))
        return report

    def mapPage(self, bankIndex, page):
        # type: (int, int) -> None
        self.translator.mapPage(bankIndex, page)

    def eraseAll(self, onLog=None):
        # type: (Optional[LogCallback]) -> None
        self.flash.resetBypass()
        self.flash.unlockBypass()
        try:
            self.flash.eraseAllSectors(onLog)
        finally:
            self.flash.resetBypass()

    def writeRom(self, image, onProgress=None, onLog=None):
        # type: (bytes, Optional[ProgressCallback], Optional[LogCallback]) -> None
        """
        Erases the chip, programs <image> (padded with 0xFF to whole bank
        windows) and verifies it. Raises on the first timeout or mismatch.
        """
        self.flash.checkImageSize(image)
        rom = pad(image, BANK_WINDOW)
        self.logger.info("ROM size: %dK" % (len(rom) // 1024))

        self.flash.resetBypass()
        self.flash.unlockBypass()
        try:
            self.logger.info("Erasing sectors...")
            self.flash.eraseAllSectors(onLog)

            self.logger.info("Writing ROM...")
            t0 = time.time()
            self.flash.writeRom(rom, onProgress)
        finally:
            self.flash.resetBypass()
        self.logger.info("Write completed in %.1f sec" % (time.time() - t0))

        self.logger.info("Verifying ROM...")
        self.flash.verifyRom(rom, onProgress)
        self.logger.info("ROM write complete.")

    def verifyRom(self, image, onProgress=None):
        # type: (bytes, Optional[ProgressCallback]) -> None
        self.flash.verifyRom(image, onProgress)

    def readRom(self, sizeHint=None, sink=None, onProgress=None):
        # type: (Optional[int], Optional[BinaryIO], Optional[ProgressCallback]) -> bytes
        """
        Dumps the ROM. Without a size hint the capacity is detected first.
        The trimmed image is returned and, if given, written to <sink>.
        """
        if sizeHint is None:
            sizeHint = self.prober.romSize()
            self.prober.selectRam(False)

        rom = self.prober.readRom(sizeHint, onProgress)
        if sink is not None:
            sink.write(rom)
        return rom

    def ramSize(self):
        # type: () -> int
        size = self.prober.ramSize()
        if size == 0:
            raise RamUnavailable()
        return size

    def readRam(self, progress_log=None):
        # type: (Optional[Any]) -> bytes
        """
        Reads the whole battery RAM. Only the odd bytes of the RAM window are
        backed, so the dump is twice the RAM size. <progress_log> is updated
        after every block, see readMem().
        """
        dump_size = self.ramSize() * 2
        self.prober.selectRam(True)
        try:
            return self.readMem(RAM_BASE, dump_size, progress_log)
        finally:
            self.prober.selectRam(False)

    def writeRam(self, data, progress_log=None):
        # type: (bytes, Optional[Any]) -> int
        """
        Writes <data> to the RAM window (truncated to the RAM size) and reads
        it back. Returns the number of bytes written. Both transfers are
        reported as one transaction on <progress_log>.
        """
        copy_len = min(len(data), self.ramSize() * 2) & ~1
        data = bytes(data[:copy_len])

        self.prober.selectRam(True)
        try:
            self.writeMem(RAM_BASE, data, progress_log, 0, 2 * copy_len)
            readback = self.readMem(RAM_BASE, copy_len, progress_log, copy_len, 2 * copy_len)
        finally:
            self.prober.selectRam(False)

        # the even bytes are not backed by memory
        for i in range(1, copy_len, 2):
            if data[i] != readback[i]:
                raise VerifyMismatch(i, data[i], readback[i])
        return copy_len

    def romHeader(self):
        # type: () -> RomHeader
        self.prober.selectRam(False)
        return RomHeader.from_header_buffer(self.readMem(0, RomHeader.HEADER_SIZE))

    def romName(self):
        # type: () -> str
        return self.romHeader().name

    """
    Transport boundary, implemented by the cores
    """

    @abstractmethod
    def _readWord(self, address):
        # type: (Address) -> int
        pass

    @abstractmethod
    def _writeWord(self, address, value):
        # type: (Address, int) -> None
        pass

    @abstractmethod
    def _writeByte(self, address, value):
        # type: (Address, int) -> None
        pass

    @abstractmethod
    def _readBlock(self, address, length):
        # type: (Address, int) -> bytes
        pass

    @abstractmethod
    def _writeBlock(self, address, data):
        # type: (Address, bytes) -> None
        pass

    @abstractmethod
    def _setDelay(self, ms):
        # type: (int) -> None
        pass

    def _setupPort(self):
        raise NotImplementedError()

    def _teardownPort(self):
        raise NotImplementedError()
