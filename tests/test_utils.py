import unittest

from flashkit.exceptions import VerifyMismatch
from flashkit.objects.capacity_report import CapacityReport
from flashkit.objects.rom_header import RomHeader
from flashkit.utils import bytes_to_hex, pad, safe_filename, trim_trailing
from flashkit.utils.packing import p16, u16, words


class TestUtils(unittest.TestCase):

    def test_pad(self):
        self.assertEqual(pad(b"\x01\x02\x03", 4), b"\x01\x02\x03\xff")
        self.assertEqual(pad(b"\x01\x02", 2), b"\x01\x02")
        self.assertEqual(len(pad(b"\x00", 0x80000)), 0x80000)

    def test_trim_trailing(self):
        self.assertEqual(trim_trailing(b"\x00\xff\x01\xff\xff"), b"\x00\xff\x01")
        self.assertEqual(trim_trailing(b"\xff" * 10), b"")

    def test_words(self):
        self.assertEqual(words(b"\x12\x34\xab\xcd"), [0x1234, 0xABCD])
        with self.assertRaises(ValueError):
            words(b"\x12")

    def test_packing(self):
        self.assertEqual(p16(0xAA), b"\x00\xaa")
        self.assertEqual(u16(b"\x4d\x41"), 0x4D41)
        self.assertEqual(bytes_to_hex(b"\x2a\x05"), "2a05")

    def test_safe_filename(self):
        self.assertEqual(safe_filename("SONIC/KNUCKLES "), "SONIC-KNUCKLES")


class TestObjects(unittest.TestCase):

    def test_capacity_report(self):
        report = CapacityReport(0x400000, False, 0)
        self.assertEqual(str(report), "ROM size: 4096K, RAM size: none")
        self.assertEqual(report["rom_size"], 0x400000)
        self.assertNotEqual(report, CapacityReport(0x400000, True, 512))

    def test_region_codes(self):
        header = bytearray(b"\x00" * RomHeader.HEADER_SIZE)
        for code, region in ((b"U ", "U"), (b"E ", "E"), (b"4\x00", "U"), (b"JU", "W"), (b"Z ", "X")):
            header[0x1F0:0x1F2] = code
            self.assertEqual(RomHeader.parse_region(header), region)

    def test_short_header(self):
        with self.assertRaises(ValueError):
            RomHeader.from_header_buffer(b"\x00" * 0x100)

    def test_verify_mismatch_message(self):
        e = VerifyMismatch(0x1234, 0xAB, 0xCD)
        self.assertEqual(str(e), "Verify error at 0x001234: wrote AB, read CD")


if __name__ == '__main__':
    unittest.main()
