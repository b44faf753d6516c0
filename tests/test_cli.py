import logging
import os
import shutil
import tempfile
import unittest
from argparse import Namespace
from unittest import mock

from flashkit.cli import FlashKitCLI, auto_int, parse_args
from flashkit.objects.capacity_report import CapacityReport
from flashkit.testcore import SimulatedCartridge

from .dummy_core_test import DummyCoreTest, FakeClock, distinct_blocks, pattern


class TestAutoInt(unittest.TestCase):

    def test_auto_int(self):
        self.assertEqual(auto_int("0x10"), 16)
        self.assertEqual(auto_int("010"), 10)
        self.assertEqual(auto_int("0"), 0)


class TestParseArgs(unittest.TestCase):

    def test_defaults(self):
        with mock.patch("sys.argv", ["flashkit", "--device", "test", "-c", "probe; banks"]):
            args, unknown = parse_args()
        self.assertEqual(args.device, "test")
        self.assertEqual(args.baudrate, 115200)
        self.assertEqual(args.delay, 1)
        self.assertEqual(args.commands, "probe; banks")
        self.assertEqual(unknown, [])


class CLITest(DummyCoreTest):

    def make_cartridge(self):
        return SimulatedCartridge(rom_size=0x100000, ram_size=8192)

    def setUp(self):
        super(CLITest, self).setUp()
        self.tmp = tempfile.mkdtemp()
        args = Namespace(data_directory=self.tmp, verbose=False, trace=None, save=None, replay=None,
                         device="test", delay=1, baudrate=115200)
        with mock.patch("sys.argv", ["flashkit"]):
            self.cli = FlashKitCLI(args, core=self.reference)

    def tearDown(self):
        super(CLITest, self).tearDown()
        shutil.rmtree(self.tmp)

    def run_command(self, line):
        return self.cli.onecmd_plus_hooks(line)

    def path(self, name):
        return os.path.join(self.tmp, name)


class TestCommands(CLITest):

    def test_probe(self):
        self.cartridge.load(distinct_blocks(0x100000))
        self.run_command("probe")
        self.assertEqual(self.cli.capacity, CapacityReport(0x100000, True, 8192))

    def test_probe_shortcut(self):
        self.cartridge.load(distinct_blocks(0x100000))
        self.run_command("detect")
        self.assertIsNotNone(self.cli.capacity)

    def test_map(self):
        self.run_command("map 2 5")
        self.assertEqual(self.cartridge.registers[2], 5)
        self.assertEqual(self.reference.translator.pages[2], 5)

    def test_map_fixed_bank(self):
        self.run_command("map 0 5")
        self.assertEqual(self.cartridge.register_writes, [])

    def test_readrom(self):
        image = pattern(0x10000)
        self.cartridge.load(image)
        self.run_command("readrom -s 0x10000 -f %s" % self.path("dump.bin"))
        with open(self.path("dump.bin"), "rb") as f:
            self.assertEqual(f.read(), image.rstrip(b"\xff"))

    def test_writerom_and_verify(self):
        image = pattern(0x2000)
        with open(self.path("game.bin"), "wb") as f:
            f.write(image)
        self.run_command("writerom -y %s" % self.path("game.bin"))
        self.assertEqual(bytes(self.cartridge.flash[:0x2000]), image)

        self.cartridge.flash[0x10] ^= 0x01
        with mock.patch.object(self.reference, "verifyRom", wraps=self.reference.verifyRom) as verify:
            self.run_command("verify %s" % self.path("game.bin"))
        self.assertEqual(verify.call_count, 1)

    def test_erase(self):
        self.cartridge.load(b"\x00" * 0x100)
        self.run_command("erase -y")
        self.assertEqual(bytes(self.cartridge.flash[:0x100]), b"\xff" * 0x100)

    def test_ram_commands(self):
        data = pattern(0x4000)
        with open(self.path("save.srm"), "wb") as f:
            f.write(data)
        self.run_command("writeram %s" % self.path("save.srm"))
        self.assertEqual(bytes(self.cartridge.ram), data[1::2])

        self.run_command("readram -f %s" % self.path("dump.srm"))
        with open(self.path("dump.srm"), "rb") as f:
            dump = f.read()
        self.assertEqual(dump[1::2], data[1::2])

    def test_exit(self):
        self.assertTrue(self.run_command("exit"))
        self.assertFalse(self.reference.running)


class TestCommandErrors(CLITest):

    def make_cartridge(self):
        return SimulatedCartridge(rom_size=0x100000, stuck=True)

    def make_core(self, cartridge, **kwargs):
        self.clock = FakeClock()
        return super(TestCommandErrors, self).make_core(cartridge, clock=self.clock, sleep=self.clock.sleep)

    def logged_errors(self, line):
        with self.assertLogs("FlashKit", level="ERROR") as cm:
            self.run_command(line)
        return [record.getMessage() for record in cm.records if record.levelno == logging.ERROR]

    def test_verify_mismatch(self):
        image = pattern(0x100)
        self.cartridge.load(image)
        self.cartridge.flash[0x10] ^= 0x01
        with open(self.path("game.bin"), "wb") as f:
            f.write(image)

        errors = self.logged_errors("verify %s" % self.path("game.bin"))
        self.assertEqual(len(errors), 1)
        self.assertIn("0x000010", errors[0])

    def test_erase_timeout(self):
        errors = self.logged_errors("erase -y")
        self.assertEqual(len(errors), 1)
        self.assertIn("Flash erase", errors[0])
        self.assertFalse(self.cartridge.bypass)

    def test_writerom_timeout(self):
        with open(self.path("game.bin"), "wb") as f:
            f.write(pattern(0x100))
        errors = self.logged_errors("writerom -y %s" % self.path("game.bin"))
        self.assertEqual(len(errors), 1)
        self.assertIn("Flash erase", errors[0])
        self.assertFalse(self.cartridge.bypass)


if __name__ == '__main__':
    unittest.main()
