from typing import Any, Optional


class RomHeader(object):
    """
    The 512 byte header at the start of a cartridge image. Only the fields
    needed to name a dump are decoded.
    """

    HEADER_SIZE = 0x200
    DOMESTIC_NAME = 0x120
    OVERSEAS_NAME = 0x150
    NAME_LENGTH = 48
    REGION = 0x1F0

    domestic_name = None
    overseas_name = None
    region = "X"

    def __init__(self, domestic_name, overseas_name, region):
        self.domestic_name = domestic_name
        self.overseas_name = overseas_name
        self.region = region

    @property
    def name(self):
        # type: () -> str
        name = self.domestic_name or self.overseas_name or "Unknown"
        return "%s (%s)" % (name, self.region)

    @staticmethod
    def parse_name(buff, offset):
        # type: (bytes, int) -> Optional[str]
        field = bytes(buff[offset:offset + RomHeader.NAME_LENGTH])
        field = field.split(b"\x00", 1)[0].rstrip(b" ")
        if not field:
            return None

        name = ""
        for c in field.decode("latin-1"):
            if c in "/:":
                c = "-"
            # anything but the usual title characters means this is no name
            if not (c.isascii() and (c.isalnum() or c in " !()_-.[]|&'`")):
                return None
            name += c

        if not name.strip():
            return None
        return name

    @staticmethod
    def parse_region(buff):
        # type: (bytes) -> str
        val = buff[RomHeader.REGION]
        second = buff[RomHeader.REGION + 1]
        if val != second and second not in (0x20, 0x00):
            return "W"

        if val in b"FC":
            return "W"
        if val in b"UW4" or val == 4:
            return "U"
        if val in b"JB1" or val == 1:
            return "J"
        if val in b"EA8" or val == 8:
            return "E"
        return "X"

    @staticmethod
    def from_header_buffer(buff):
        # type: (bytes) -> RomHeader
        if len(buff) < RomHeader.HEADER_SIZE:
            raise ValueError("ROM header needs %d bytes, got %d" % (RomHeader.HEADER_SIZE, len(buff)))
        return RomHeader(
            RomHeader.parse_name(buff, RomHeader.DOMESTIC_NAME),
            RomHeader.parse_name(buff, RomHeader.OVERSEAS_NAME),
            RomHeader.parse_region(buff),
        )

    def __getitem__(self, item):
        # type: (str) -> Any
        return vars(self)[item]
