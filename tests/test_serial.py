import os
import shutil
import tempfile
import unittest
from unittest import mock

import serial

from flashkit.exceptions import TransportError
from flashkit.serial_hooks import hook, ReplaySerial, TraceToFileHook
from flashkit.serialcore import SerialCore


class FakePort(object):
    """Serial port that records writes and answers reads from a fixed buffer."""

    def __init__(self, answer=b""):
        self.answer = bytearray(answer)
        self.sent = bytearray()
        self.closed = False

    def write(self, data):
        self.sent += data
        return len(data)

    def read(self, length):
        data = bytes(self.answer[:length])
        del self.answer[:length]
        return data

    def reset_input_buffer(self):
        pass

    def close(self):
        self.closed = True


CONNECT_TRACE = [
    "# device id",
    "TX 2a",
    "RX 0001",
    "TX 0501",
] + [
    line
    for bank in range(1, 8)
    for line in ("TX 00500098007%x0100010142" % (0x8 + bank), "RX 000%x" % bank)
]


class TestEncoding(unittest.TestCase):

    def test_address_is_sent_in_words(self):
        self.assertEqual(SerialCore.encodeAddress(0xA130F2), bytes.fromhex("005000980079"))
        self.assertEqual(SerialCore.encodeAddress(0x80000), bytes.fromhex("000400000000"))

    def test_length_is_sent_in_words(self):
        self.assertEqual(SerialCore.encodeLength(2), bytes.fromhex("01000101"))
        self.assertEqual(SerialCore.encodeLength(0x10000), bytes.fromhex("01800100"))


class TestSerialCore(unittest.TestCase):

    def setUp(self):
        self.core = SerialCore(log_level='warning')
        self.core.interface = "/dev/null"

    def attach(self, answer=b""):
        port = FakePort(answer)
        self.core.s_serial = port
        return port

    def test_read_word(self):
        port = self.attach(b"\xbe\xef")
        self.assertEqual(self.core._readWord(0x100), 0xBEEF)
        self.assertEqual(bytes(port.sent), bytes.fromhex("00000000008022"))

    def test_write_word_and_byte(self):
        port = self.attach()
        self.core._writeWord(0xAAA, 0xAA)
        self.core._writeByte(0xA130F3, 5)
        self.assertEqual(bytes(port.sent), bytes.fromhex("00000005005523 00aa") + bytes.fromhex("00500098007933 05"))

    def test_read_block_odd_length(self):
        port = self.attach(b"\x01\x02\x03\x04")
        self.assertEqual(self.core._readBlock(0, 3), b"\x01\x02\x03")
        self.assertEqual(bytes(port.sent), bytes.fromhex("000000000000 01000102 42"))

    def test_write_block_pads_odd_data(self):
        port = self.attach()
        self.core._writeBlock(0x200000, b"\x11\x22\x33")
        self.assertEqual(bytes(port.sent), bytes.fromhex("001000000000 01000102 43 112233ff"))

    def test_set_delay(self):
        port = self.attach()
        self.core._setDelay(3)
        self.assertEqual(bytes(port.sent), b"\x05\x03")

    def test_short_read(self):
        self.attach(b"\x12")
        with self.assertRaises(TransportError):
            self.core.readDeviceId()

    def test_serial_exception(self):
        port = self.attach()
        port.write = mock.Mock(side_effect=serial.SerialException("unplugged"))
        with self.assertRaises(TransportError):
            self.core._setDelay(1)

    def test_device_list(self):
        info = mock.Mock(device="/dev/ttyACM0", description="FlashKit MD")
        with mock.patch("flashkit.serialcore.list_ports.comports", return_value=[info]), \
                mock.patch("flashkit.serialcore.serial.Serial", return_value=FakePort(b"\x00\x01")):
            devices = self.core.device_list()
        self.assertEqual(devices, [(self.core, "/dev/ttyACM0", "/dev/ttyACM0 (FlashKit MD)")])
        self.assertIsNone(self.core.interface)

    def test_device_list_skips_silent_ports(self):
        info = mock.Mock(device="/dev/ttyS0", description="n/a")
        with mock.patch("flashkit.serialcore.list_ports.comports", return_value=[info]), \
                mock.patch("flashkit.serialcore.serial.Serial", return_value=FakePort()):
            self.assertEqual(self.core.device_list(), [])


class TestTraceAndReplay(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.trace = os.path.join(self.tmp, "trace.log")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def write_trace(self, lines):
        with open(self.trace, "w") as f:
            f.write("\n".join(lines) + "\n")

    def test_trace_then_replay(self):
        core = SerialCore(log_level='warning')
        core.s_serial = TraceToFileHook(FakePort(b"\x12\x34"), core, filename=self.trace)
        self.assertEqual(core.readDeviceId(), 0x1234)
        core._teardownPort()

        with open(self.trace) as f:
            self.assertEqual(f.read(), "TX 2a\nRX 1234\n")

        core.s_serial = ReplaySerial(None, core, filename=self.trace)
        self.assertEqual(core.readDeviceId(), 0x1234)

    def test_replay_mismatch(self):
        self.write_trace(["TX 2a", "RX 1234"])
        core = SerialCore(log_level='warning')
        core.s_serial = ReplaySerial(None, core, filename=self.trace)
        with self.assertRaises(AssertionError):
            core._setDelay(1)

    def test_replay_recorded_exception(self):
        self.write_trace(["TX 2a", "EX 'device reports readiness to read but returned no data'"])
        core = SerialCore(log_level='warning')
        core.s_serial = ReplaySerial(None, core, filename=self.trace)
        with self.assertRaises(TransportError):
            core.readDeviceId()

    def test_replay_missing_answer(self):
        self.write_trace(["TX 2a", "TX 0501"])
        core = SerialCore(log_level='warning')
        core.s_serial = ReplaySerial(None, core, filename=self.trace)
        with self.assertRaises(TransportError):
            core.readDeviceId()

    def test_replay_session(self):
        class ReplayCore(SerialCore):
            pass

        self.write_trace(CONNECT_TRACE + [
            "TX 00000000008022",
            "RX 4d41",
            "TX 0050009800793305",
        ])
        hook(ReplayCore, ReplaySerial, filename=self.trace)

        core = ReplayCore(log_level='warning', replay=True)
        device = core.device_list()[0]
        self.assertEqual(device[1], "ReplayDevice")
        core.interface = device[1]

        with core.session():
            self.assertEqual(core.translator.pages, [0, 1, 2, 3, 4, 5, 6, 7])
            self.assertEqual(core.readWord(0x100), 0x4D41)
            core.mapPage(1, 5)
            self.assertEqual(core.translator.pages[1], 5)
            self.assertEqual(core.s_serial.index, len(core.s_serial.log))

        self.assertIsNone(core.s_serial)
        self.assertFalse(core.running)


if __name__ == '__main__':
    unittest.main()
