#!/usr/bin/env python3

# serialcore.py
#
# Core for the USB serial programmer. Every bus cycle is a short command
# sent over the virtual COM port, reads answer with big endian words.
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

import serial
from serial.tools import list_ports

from .core import FlashKit
from .exceptions import TransportError
from .utils import bytes_to_hex
from .utils.packing import p16, u16

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit import Address, DeviceTuple

CMD_ADDR = 0x00
CMD_LEN = 0x01
CMD_RD = 0x02
CMD_WR = 0x03
CMD_DELAY = 0x05

PAR_DEV_ID = 0x08
PAR_MODE8 = 0x10
PAR_SINGLE = 0x20
PAR_INC = 0x40

DEVICE_ID_LEN = 2


class SerialCore(FlashKit):
    def __init__(
            self,
            log_level="info",
            data_directory=".",
            replay=False,
            baudrate=115200,
            timeout=1.0,
            **kwargs
    ):
        super(SerialCore, self).__init__(log_level, data_directory, replay, **kwargs)
        self.baudrate = baudrate
        self.timeout = timeout
        self.s_serial = None  # type: Optional[serial.Serial]

    def device_list(self):
        # type: () -> List[DeviceTuple]
        """
        Get a list of serial ports that answer the device id request.
        """

        if self.exit_requested:
            self.shutdown()

        if self.running:
            self.logger.warning("Already running. Call shutdown() first!")
            return []

        device_list = []
        for port in list_ports.comports():
            self.interface = port.device
            try:
                self._setupPort()
                device_id = self.readDeviceId()
            except (serial.SerialException, TransportError) as e:
                self.logger.debug("device_list: %s is no programmer (%s)" % (port.device, e))
                continue
            finally:
                self._teardownPort()
                self.interface = None

            self.logger.debug("device_list: %s answered with id 0x%04x" % (port.device, device_id))
            device_list.append((self, port.device, "%s (%s)" % (port.device, port.description)))

        if len(device_list) == 0:
            self.logger.info("No programmer found on any serial port")

        return device_list

    def local_connect(self):
        # type: () -> bool
        try:
            self._setupPort()
            device_id = self.readDeviceId()
        except (serial.SerialException, TransportError) as e:
            self.logger.warning("local_connect: Could not open %s: %s" % (self.interface, e))
            self._teardownPort()
            return False
        self.logger.debug("local_connect: device id 0x%04x" % device_id)
        return True

    def _setupPort(self):
        # type: () -> bool
        self.s_serial = serial.Serial(self.interface, self.baudrate, timeout=self.timeout, write_timeout=self.timeout)
        self.s_serial.reset_input_buffer()
        return True

    def _teardownPort(self):
        if self.s_serial is not None:
            self.s_serial.close()
            self.s_serial = None
        return True

    """
    Wire protocol
    """

    def _send(self, data):
        # type: (bytes) -> None
        try:
            self.s_serial.write(data)
        except serial.SerialException as e:
            raise TransportError("write to %s failed: %s" % (self.interface, e))

    def _recv(self, length):
        # type: (int) -> bytes
        try:
            data = self.s_serial.read(length)
        except serial.SerialException as e:
            raise TransportError("read from %s failed: %s" % (self.interface, e))
        if len(data) != length:
            raise TransportError(
                "short read from %s: got %d of %d bytes (%s)" % (self.interface, len(data), length, bytes_to_hex(data))
            )
        return data

    @staticmethod
    def encodeAddress(address):
        # type: (Address) -> bytes
        # the programmer counts in words
        word_address = address >> 1
        return bytes([
            CMD_ADDR, (word_address >> 16) & 0xFF,
            CMD_ADDR, (word_address >> 8) & 0xFF,
            CMD_ADDR, word_address & 0xFF,
        ])

    @staticmethod
    def encodeLength(length):
        # type: (int) -> bytes
        words = length >> 1
        return bytes([CMD_LEN, (words >> 8) & 0xFF, CMD_LEN, words & 0xFF])

    def readDeviceId(self):
        # type: () -> int
        self._send(bytes([CMD_RD | PAR_SINGLE | PAR_DEV_ID]))
        return u16(self._recv(DEVICE_ID_LEN))

    def _readWord(self, address):
        self._send(self.encodeAddress(address) + bytes([CMD_RD | PAR_SINGLE]))
        return u16(self._recv(2))

    def _writeWord(self, address, value):
        self._send(self.encodeAddress(address) + bytes([CMD_WR | PAR_SINGLE]) + p16(value))

    def _writeByte(self, address, value):
        # 8 bit writes strobe the low byte lane, i.e. the odd address of the word
        self._send(self.encodeAddress(address) + bytes([CMD_WR | PAR_SINGLE | PAR_MODE8, value]))

    def _readBlock(self, address, length):
        # odd lengths read one more byte, the link only moves words
        words_len = (length + 1) & ~1
        self._send(self.encodeAddress(address) + self.encodeLength(words_len) + bytes([CMD_RD | PAR_INC]))
        return self._recv(words_len)[:length]

    def _writeBlock(self, address, data):
        if len(data) % 2 != 0:
            data = bytes(data) + b"\xff"
        self._send(self.encodeAddress(address) + self.encodeLength(len(data)) + bytes([CMD_WR | PAR_INC]) + bytes(data))

    def _setDelay(self, ms):
        self._send(bytes([CMD_DELAY, ms & 0xFF]))
