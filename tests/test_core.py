import io
import unittest
from unittest import mock

from flashkit.exceptions import InvalidArgument, NotConnected, RamUnavailable
from flashkit.mapper import BANK_WINDOW
from flashkit.mx29gl128 import TOTAL_CHIP_SIZE
from flashkit.objects.capacity_report import CapacityReport
from flashkit.testcore import SimulatedCartridge, testCore

from .dummy_core_test import DummyCoreTest, distinct_blocks, pattern


def header_image(domestic, overseas, region):
    header = bytearray(b"\x00" * 0x200)
    header[0x100:0x110] = b"SEGA MEGA DRIVE "
    header[0x120:0x120 + len(domestic)] = domestic
    header[0x150:0x150 + len(overseas)] = overseas
    header[0x1F0:0x1F3] = region
    return bytes(header)


class TestWriteRom(DummyCoreTest):

    def test_write_rom_pads_and_verifies(self):
        self.cartridge.load(b"\x00" * 0x100000)
        image = pattern(0x1000) + b"\x77"
        log = []
        progress = []
        self.reference.writeRom(image, progress.append, log.append)

        self.assertEqual(bytes(self.cartridge.flash[:len(image)]), image)
        # padded with 0xFF up to the end of the first bank window
        self.assertEqual(bytes(self.cartridge.flash[len(image):BANK_WINDOW]), b"\xff" * (BANK_WINDOW - len(image)))
        # every sector got erased before programming
        self.assertEqual(bytes(self.cartridge.flash[BANK_WINDOW:0x100000]), b"\xff" * BANK_WINDOW)
        self.assertEqual(len(log), 64)
        self.assertEqual(progress[-1], BANK_WINDOW)
        self.assertFalse(self.cartridge.bypass)

    def test_oversized_image_leaves_chip_untouched(self):
        self.cartridge.load(b"\x00" * 0x40)
        with mock.patch.object(self.reference, "writeWord") as write:
            with self.assertRaises(InvalidArgument):
                self.reference.writeRom(b"\x11" * (TOTAL_CHIP_SIZE + 2))
            write.assert_not_called()
        self.assertEqual(self.cartridge.register_writes, [])
        self.assertEqual(bytes(self.cartridge.flash[:0x40]), b"\x00" * 0x40)

    def test_erase_all_leaves_bypass(self):
        self.cartridge.load(b"\x00" * 0x40)
        self.reference.eraseAll()
        self.assertEqual(bytes(self.cartridge.flash[:0x40]), b"\xff" * 0x40)
        self.assertFalse(self.cartridge.bypass)

    def test_verify_rom(self):
        image = pattern(0x800)
        self.cartridge.load(image)
        self.reference.verifyRom(image)


class TestReadRom(DummyCoreTest):

    def make_cartridge(self):
        cartridge = SimulatedCartridge(rom_size=0x100000)
        cartridge.load(distinct_blocks(0x100000))
        # blank flash reads as 0xFF, keep the last byte from being trimmed
        cartridge.flash[-1] = 0x34
        return cartridge

    def test_read_rom_detects_size(self):
        rom = self.reference.readRom()
        self.assertEqual(len(rom), 0x100000)
        self.assertEqual(rom, bytes(self.cartridge.flash))

    def test_read_rom_to_sink(self):
        self.cartridge.flash[0x1FFFF] = 0x12
        sink = io.BytesIO()
        rom = self.reference.readRom(0x20000, sink)
        self.assertEqual(sink.getvalue(), rom)
        self.assertEqual(rom, bytes(self.cartridge.flash[:0x20000]))

    def test_detect_capacity(self):
        self.assertEqual(self.reference.detectCapacity(), CapacityReport(0x100000, False, 0))

    def test_no_ram(self):
        with self.assertRaises(RamUnavailable):
            self.reference.readRam()
        with self.assertRaises(RamUnavailable):
            self.reference.writeRam(b"\x00" * 16)


class TestRam(DummyCoreTest):

    def make_cartridge(self):
        return SimulatedCartridge(rom_size=0x200000, ram_size=8192)

    def test_ram_size(self):
        self.assertEqual(self.reference.ramSize(), 8192)

    def test_write_and_read_ram(self):
        data = pattern(20000)
        written = self.reference.writeRam(data)

        self.assertEqual(written, 16384)
        self.assertEqual(bytes(self.cartridge.ram), data[1:16384:2])
        self.assertFalse(self.cartridge.ram_enabled)

        dump = self.reference.readRam()
        self.assertEqual(len(dump), 16384)
        self.assertEqual(dump[1::2], data[1:16384:2])
        self.assertEqual(dump[0::2], b"\xff" * 8192)
        self.assertFalse(self.cartridge.ram_enabled)

    def test_ram_progress(self):
        progress = mock.Mock()
        self.reference.writeRam(pattern(0x4000), progress)
        messages = [c[0][0] for c in progress.status.call_args_list]
        # write and read back are one transaction
        self.assertEqual(messages, [
            "sending data... 16384 / 32768 Bytes",
            "receiving data... 32768 / 32768 Bytes (100%)",
        ])

        progress.reset_mock()
        self.reference.readRam(progress)
        progress.status.assert_called_once_with("receiving data... 16384 / 16384 Bytes (100%)")

    def test_odd_length_write(self):
        self.assertEqual(self.reference.writeRam(b"\x00\x42\x00"), 2)
        self.assertEqual(self.cartridge.ram[0], 0x42)


class TestHeader(DummyCoreTest):

    def test_rom_name(self):
        self.cartridge.load(header_image(b"SONIC THE HEDGEHOG", b"SONIC THE HEDGEHOG", b"JUE"))
        header = self.reference.romHeader()
        self.assertEqual(header.domestic_name, "SONIC THE HEDGEHOG")
        self.assertEqual(header.region, "W")
        self.assertEqual(self.reference.romName(), "SONIC THE HEDGEHOG (W)")

    def test_overseas_name_fallback(self):
        self.cartridge.load(header_image(b"\x8a\x8b", b"PULSEMAN", b"J  "))
        self.assertEqual(self.reference.romName(), "PULSEMAN (J)")

    def test_blank_header(self):
        self.assertEqual(self.reference.romName(), "Unknown (X)")


class TestSession(unittest.TestCase):

    def make_core(self):
        core = testCore(log_level='warning')
        core.interface = "test"
        return core

    def test_not_connected(self):
        core = testCore(log_level='warning')
        with self.assertRaises(NotConnected):
            core.readWord(0)
        with self.assertRaises(NotConnected):
            core.writeRom(b"\x00\x00")

    def test_session_releases_on_error(self):
        core = self.make_core()
        with self.assertRaises(RamUnavailable):
            with core.session():
                self.assertTrue(core.running)
                core.readRam()
        self.assertFalse(core.running)

    def test_context_manager(self):
        core = self.make_core()
        with core as c:
            self.assertIs(c, core)
            self.assertEqual(c.delay_ms, 1)
        self.assertFalse(core.running)

    def test_session_without_device(self):
        core = testCore(log_level='warning')
        with self.assertRaises(NotConnected):
            with core.session():
                pass

    def test_double_connect(self):
        core = self.make_core()
        self.assertTrue(core.connect())
        self.assertFalse(core.connect())
        core.shutdown()
        core.shutdown()
        self.assertFalse(core.running)


if __name__ == '__main__':
    unittest.main()
