from typing import Any


class CapacityReport(object):
    rom_size = 0
    ram_present = False
    ram_size = 0

    def __init__(self, rom_size, ram_present, ram_size):
        self.rom_size = rom_size
        self.ram_present = ram_present
        self.ram_size = ram_size

    @staticmethod
    def format_size(size):
        # type: (int) -> str
        if size < 1024:
            return "%dB" % size
        return "%dK" % (size // 1024)

    def __str__(self):
        return "ROM size: %s, RAM size: %s" % (
            self.format_size(self.rom_size),
            self.format_size(self.ram_size) if self.ram_present else "none",
        )

    def __eq__(self, other):
        if not isinstance(other, CapacityReport):
            return NotImplemented
        return vars(self) == vars(other)

    def __getitem__(self, item):
        # type: (str) -> Any
        return vars(self)[item]
