import struct
import unittest

from flashkit.testcore import testCore, SimulatedCartridge


def distinct_blocks(size, block=512):
    """Test image in which every <block> sized block is different."""
    return b"".join(struct.pack(">I", k) * (block // 4) for k in range(size // block))


def pattern(size):
    return bytes((i * 7 + (i >> 9)) & 0xFF for i in range(size))


class FakeClock(object):
    """Clock that advances by <step> seconds whenever it is read."""

    def __init__(self, step=0.5):
        self.now = 0.0
        self.step = step
        self.sleeps = []

    def __call__(self):
        self.now += self.step
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)


class DummyCoreTest(unittest.TestCase):

    def make_cartridge(self):
        return SimulatedCartridge()

    def make_core(self, cartridge, **kwargs):
        return testCore(log_level='warning', data_directory='/tmp', cartridge=cartridge, **kwargs)

    def setUp(self):
        self.cartridge = self.make_cartridge()
        t = self.make_core(self.cartridge)
        dev = t.device_list()[0]
        reference = dev[0]
        reference.interface = dev[1]
        self.assertTrue(reference.connect(), 'Connect failed')
        self.reference = reference

    def tearDown(self):
        self.reference.shutdown()
