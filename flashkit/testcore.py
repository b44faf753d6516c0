#!/usr/bin/env python3

# testcore.py
#
# A core without hardware. The cartridge (CPLD mapper, MX29GL128E command
# state machine and battery RAM) is simulated in memory, which makes it
# usable for the test-suite and for trying out the CLI with --device test.
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

from .core import FlashKit
from .mapper import BANK_COUNT, BANK_REGISTERS, BANK_WINDOW, PAGE_COUNT
from .mx29gl128 import (
    CMD_ERASE_SETUP,
    CMD_RESET,
    CMD_SECTOR_ERASE,
    CMD_UNLOCK1,
    CMD_UNLOCK2,
    CMD_UNLOCK_BYPASS,
    CMD_UNLOCK_BYPASS_RESET1,
    CMD_WRITE_BUFFER_CONFIRM,
    CMD_WRITE_BUFFER_LOAD,
    DQ7,
    SECTOR_SIZE,
    TOTAL_CHIP_SIZE,
)
from .prober import RAM_BASE, RAM_SELECT

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit import Address, DeviceTuple

CMD_PROGRAM = 0xA0
CONSOLE_SIZE = BANK_WINDOW * BANK_COUNT


class SimulatedCartridge(object):
    """
    Behaves like the bootleg cartridge on the console bus:

    - rom_size:     installed flash. Sizes that are no power of two are built
                    from power of two chips (6MB = 4MB + 2MB), every chip
                    mirrors on its own.
    - ram_size:     battery RAM in bytes, 0 for none. Only the odd byte of
                    every word in the RAM window is backed.
    - ram_fixed:    the RAM window can not be switched back to ROM.
    - busy_polls:   number of status reads an erase/program stays busy.
    - stuck:        erase/program never finish (for timeout tests).
    """

    def __init__(self, rom_size=TOTAL_CHIP_SIZE, ram_size=0, ram_fixed=False, busy_polls=1, stuck=False):
        self.rom_size = rom_size
        self.flash = bytearray(b"\xff" * rom_size)
        self.ram_size = ram_size
        self.ram = bytearray(ram_size)
        self.ram_fixed = ram_fixed
        self.ram_enabled = False

        # bank b shows page b after power on
        self.registers = list(range(BANK_COUNT))
        self.register_writes = []  # (bank, page) in the order they happened

        self.busy_polls = busy_polls
        self.stuck = stuck
        self._busy = 0
        self._busy_word = 0xFFFF

        self.state = "read"
        self.bypass = False
        self._buffer_sector = None
        self._buffer_left = 0
        self._buffer = []
        self._program_next = False

    def load(self, data, offset=0):
        # type: (bytes, int) -> None
        """Puts <data> into the flash as if it was programmed earlier."""
        self.flash[offset:offset + len(data)] = data

    """
    Address decoding
    """

    def physical(self, chip_offset):
        # type: (int) -> int
        base = 0
        size = self.rom_size
        while True:
            top = 1 << (size.bit_length() - 1)
            if chip_offset < base + top or top == size:
                return base + (chip_offset - base) % top
            base += top
            size -= top

    def _ram_visible(self, address):
        # type: (Address) -> bool
        if self.ram_size == 0 or not RAM_BASE <= address < CONSOLE_SIZE:
            return False
        return self.ram_enabled or self.ram_fixed

    def _ram_cell(self, address):
        # type: (Address) -> int
        return ((address - RAM_BASE) >> 1) % self.ram_size

    def _chip_offset(self, address):
        # type: (Address) -> int
        bank = address // BANK_WINDOW
        page = self.registers[bank] if bank else 0
        return page * BANK_WINDOW + address % BANK_WINDOW

    def _register_bank(self, address):
        # type: (Address) -> Optional[int]
        if address in BANK_REGISTERS:
            return BANK_REGISTERS.index(address)
        return None

    """
    Bus cycles
    """

    def read_byte(self, address):
        # type: (Address) -> int
        if address < CONSOLE_SIZE:
            if self._ram_visible(address):
                return self.ram[self._ram_cell(address)] if address & 1 else 0xFF
            return self.read_word(address & ~1) >> (0 if address & 1 else 8) & 0xFF

        bank = self._register_bank(address)
        if bank is not None:
            return self.registers[bank]
        return 0 if address in (RAM_SELECT, RAM_SELECT + 1) or address & ~0xF == 0xA130F0 else 0xFF

    def read_word(self, address):
        # type: (Address) -> int
        address &= ~1
        if address >= CONSOLE_SIZE or self._ram_visible(address):
            return (self.read_byte(address) << 8) | self.read_byte(address + 1)

        if self._busy:
            if not self.stuck:
                self._busy -= 1
            # DQ7 reads inverted until the operation is done
            return self._busy_word ^ DQ7

        offset = self.physical(self._chip_offset(address))
        return (self.flash[offset] << 8) | self.flash[offset + 1]

    def read(self, address, length):
        # type: (Address, int) -> bytes
        out = bytearray()
        end = address + length
        while address < end:
            if address >= CONSOLE_SIZE or self._ram_visible(address) or self._busy or address & 1:
                out.append(self.read_byte(address))
                address += 1
                continue

            # plain flash: copy up to the end of the bank window or the mirror
            offset = self.physical(self._chip_offset(address))
            chunk = min(end - address, BANK_WINDOW - address % BANK_WINDOW, len(self.flash) - offset)
            out += self.flash[offset:offset + chunk]
            address += chunk
        return bytes(out)

    def write_byte(self, address, value):
        # type: (Address, int) -> None
        bank = self._register_bank(address)
        if bank is not None:
            if bank != 0:
                self.registers[bank] = value % PAGE_COUNT
                self.register_writes.append((bank, self.registers[bank]))
            return

        if self._ram_visible(address):
            if address & 1:
                self.ram[self._ram_cell(address)] = value
            return

        if address < CONSOLE_SIZE:
            word = value if address & 1 else value << 8
            self._flash_cycle(address & ~1, word)

    def write_word(self, address, value):
        # type: (Address, int) -> None
        address &= ~1
        if address == RAM_SELECT:
            self.ram_enabled = bool(value & 1)
            return

        if self._register_bank(address + 1) is not None:
            self.write_byte(address + 1, value & 0xFF)
            return

        if self._ram_visible(address):
            self.ram[self._ram_cell(address)] = value & 0xFF
            return

        if address < CONSOLE_SIZE:
            self._flash_cycle(address, value)

    def write(self, address, data):
        # type: (Address, bytes) -> None
        for i in range(0, len(data) - 1, 2):
            self.write_word(address + i, (data[i] << 8) | data[i + 1])

    """
    MX29GL128E command state machine
    """

    @staticmethod
    def _command_address(chip_offset):
        # type: (int) -> int
        # only A10..A0 of the word address are decoded for command cycles
        return (chip_offset >> 1) & 0x7FF

    def _program(self, chip_offset, value):
        # type: (int, int) -> None
        offset = self.physical(chip_offset)
        # programming can only clear bits
        self.flash[offset] &= value >> 8
        self.flash[offset + 1] &= value & 0xFF
        self._set_busy(value)

    def _erase(self, chip_offset):
        # type: (int) -> None
        offset = self.physical(chip_offset) & ~(SECTOR_SIZE - 1)
        end = min(offset + SECTOR_SIZE, len(self.flash))
        self.flash[offset:end] = b"\xff" * (end - offset)
        self._set_busy(0xFFFF)

    def _set_busy(self, data_word):
        # type: (int) -> None
        # data polling reports on the word that is being written
        self._busy = self.busy_polls
        self._busy_word = data_word

    def _flash_cycle(self, address, value):
        # type: (Address, int) -> None
        chip_offset = self._chip_offset(address)
        command_address = self._command_address(chip_offset)
        data = value & 0xFF
        state = self.state
        self.state = "read"

        if self._program_next:
            self._program_next = False
            self._program(chip_offset, value)
            return

        if state == "read":
            if data == CMD_UNLOCK1 and command_address == 0x555:
                self.state = "unlock1"
            elif data == CMD_UNLOCK_BYPASS_RESET1:
                self.state = "bypass_reset"
            elif data == CMD_PROGRAM and self.bypass:
                self._program_next = True
            elif data == CMD_RESET:
                self._busy = 0

        elif state == "unlock1":
            if data == CMD_UNLOCK2 and command_address == 0x2AA:
                self.state = "unlocked"

        elif state == "unlocked":
            if command_address == 0x555 and data == CMD_ERASE_SETUP:
                self.state = "erase_setup"
            elif command_address == 0x555 and data == CMD_UNLOCK_BYPASS:
                self.bypass = True
            elif command_address == 0x555 and data == CMD_PROGRAM:
                self._program_next = True
            elif data == CMD_WRITE_BUFFER_LOAD and chip_offset % SECTOR_SIZE == 0:
                self._buffer_sector = chip_offset
                self.state = "buffer_count"
            else:
                # word program right after the unlock cycles
                self._program(chip_offset, value)

        elif state == "erase_setup":
            if data == CMD_UNLOCK1 and command_address == 0x555:
                self.state = "erase_unlock1"

        elif state == "erase_unlock1":
            if data == CMD_UNLOCK2 and command_address == 0x2AA:
                self.state = "erase_unlocked"

        elif state == "erase_unlocked":
            if data == CMD_SECTOR_ERASE:
                self._erase(chip_offset)

        elif state == "buffer_count":
            if chip_offset == self._buffer_sector:
                self._buffer_left = value + 1
                self._buffer = []
                self.state = "buffer_load"

        elif state == "buffer_load":
            # words outside the selected sector abort the buffer write
            if chip_offset & ~(SECTOR_SIZE - 1) == self._buffer_sector:
                self._buffer.append((chip_offset, value))
                self._buffer_left -= 1
                self.state = "buffer_load" if self._buffer_left else "buffer_confirm"

        elif state == "buffer_confirm":
            if data == CMD_WRITE_BUFFER_CONFIRM and chip_offset == self._buffer_sector:
                for offset, word in self._buffer:
                    self._program(offset, word)
            self._buffer = []

        elif state == "bypass_reset":
            if data == 0x00:
                self.bypass = False


class testCore(FlashKit):
    def __init__(self, log_level="info", data_directory=".", replay=False, cartridge=None, **kwargs):
        super(testCore, self).__init__(log_level, data_directory, replay, **kwargs)
        self.cartridge = cartridge if cartridge is not None else SimulatedCartridge()
        self.delay_ms = None

    def device_list(self):
        # type: () -> List[DeviceTuple]
        """
        Get a list of connected devices
        """

        if self.exit_requested:
            self.shutdown()

        if self.running:
            self.logger.warning("Already running. Call shutdown() first!")
            return []

        # the simulated cartridge is always there
        device_list = [(self, "test", "Simulated cartridge")]

        return device_list

    def local_connect(self):
        return True

    def _readWord(self, address):
        return self.cartridge.read_word(address)

    def _writeWord(self, address, value):
        self.cartridge.write_word(address, value)

    def _writeByte(self, address, value):
        self.cartridge.write_byte(address, value)

    def _readBlock(self, address, length):
        return self.cartridge.read(address, length)

    def _writeBlock(self, address, data):
        self.cartridge.write(address, data)

    def _setDelay(self, ms):
        self.delay_ms = ms

    def _teardownPort(self):
        return True
