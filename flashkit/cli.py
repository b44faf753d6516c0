#!/usr/bin/env python3

# cli.py
#
# This file is meant to be executed by the user in order to start
# an interactive CLI. It creates an instance of the framework and
# enters a command loop which is implemented using cmd2.
# Commands entered by the user are automatically matched
# to functions starting with do_* and executed accordingly.
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

import argparse
import hashlib
import os
import sys
from curses.ascii import isprint

import cmd2

from .exceptions import FlashKitError
from .mapper import BANK_REGISTERS, BANK_WINDOW
from .utils import pad, safe_filename, yesno
from .utils.logging_formatter import CustomFormatter
from .utils.progress_logger import ProgressLogger
from .utils.flashkit_logger import getFlashKitLogger
from .serialcore import SerialCore
from .testcore import testCore

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from flashkit.core import FlashKit
    from flashkit import DeviceTuple


def auto_int(x):
    """ Convert a string (either decimal number or hex number) into an integer.
    """

    # remove leading zeros as this doesn't work with int()
    # but only for integers (023), not for hex (0x23)
    if not ('x' in x):
        x = x.lstrip('0') or '0'
    return int(x, 0)


def read(path, count=-1, skip=0):
    r"""read(path, count=-1, skip=0) -> bytes

    Open file, return content.
    """
    path = os.path.expanduser(os.path.expandvars(path))
    with open(path, 'rb') as fd:
        if skip:
            fd.seek(skip)
        return fd.read(count)


class FlashKitCLI(cmd2.Cmd):
    def __init__(self, main_args, core: 'FlashKit' = None):
        # get and store 'FlashKit' logger
        self.logger = getFlashKitLogger()

        # create progress logger
        self.progress_log = None

        # result of the last probe command
        self.capacity = None

        # set prompt
        self.prompt = '> '

        # Prints an intro banner once upon application startup
        banner = r"   ______         __   __ ___ __     __  _______" + "\n" \
                 + r"  / __/ /__ ____ / /  / //_(_) /_   /  |/  / _ \ " + "\n" \
                 + r" / _// / _ `(_-</ _ \/ ,< / / __/  / /|_/ / // /" + "\n" \
                 + r"/_/ /_/\_,_/___/_//_/_/|_/_/\__/  /_/  /_/____/" + "\n" + "\n" \
                 + "type <help -v> for usage information!"

        self.intro = CustomFormatter.blue + banner + CustomFormatter.reset

        # History file
        if main_args.data_directory is not None:
            data_directory = main_args.data_directory
        else:
            data_directory = os.path.expanduser("~") + "/.flashkit"
        if not os.path.exists(data_directory):
            os.mkdir(data_directory)

        # Define shortcuts for commands (before call to super())
        shortcuts = dict(cmd2.DEFAULT_SHORTCUTS)
        shortcuts.update({
            'bye': 'exit',
            'verbosity': 'loglevel', 'log_level': 'loglevel',
            'detect': 'probe', 'info': 'probe',
            'dump': 'readrom', 'romdump': 'readrom',
            'flash': 'writerom', 'program': 'writerom',
            'hd': 'hexdump', 'readmem': 'hexdump',
            'sram': 'readram', 'save': 'readram',
            'name': 'header'})

        super().__init__(shortcuts=shortcuts, persistent_history_file=data_directory + "/_flashkit.hist")

        # Aliases have to be used instead of shortcuts
        # When the alias is equal with the beginning
        # of a command name. Has to be called after super().
        self.runcmds_plus_hooks(["alias create q quit > /dev/null",
                                 "alias create pages banks > /dev/null"],
                                add_to_history=False)

        # Settings
        if main_args.verbose:
            log_level = "debug"
        else:
            log_level = "info"

        if main_args.trace:
            from .serial_hooks import hook
            from flashkit import serial_hooks
            hook(SerialCore, getattr(serial_hooks, main_args.trace))
        elif main_args.save:
            from .serial_hooks import hook, TraceToFileHook
            hook(SerialCore, TraceToFileHook, filename=main_args.save)

        # Connection method passed in constructor (scripts, tests)
        if core is not None:
            self.flashkit = core
            return
        # Connection methods for replay script
        elif main_args.replay:
            connection_methods = self._get_connection_methods_replay(main_args, log_level, data_directory)
        # Connection methods for normal operation
        else:
            connection_methods = self._get_connection_methods_normal(main_args, log_level, data_directory)

        devices = []  # type: List[DeviceTuple]
        for connection_method in connection_methods:
            devices.extend(connection_method.device_list())

        device = None  # type: Optional[DeviceTuple]
        if len(devices) == 0:
            self.logger.critical("No programmer found.")
            exit(-1)

        if main_args.replay:
            # There should only be one device that was created when --replay was passed
            device = devices[0]
        elif main_args.device:
            matching_devices = [dev for dev in devices if dev[1] == main_args.device]
            if len(matching_devices) > 1:
                self.logger.critical("Found multiple matching devices")
                exit(-1)
            elif len(matching_devices) == 1:
                self.logger.info("Found device is: {}".format(matching_devices[0][2]))
                device = matching_devices[0]
            else:
                self.logger.critical("No matching devices found")
                exit(-1)
        elif len(devices) == 1:
            device = devices[0]
        else:
            i = self.options("Please specify device:", [d[2] for d in devices])
            device = devices[i]

        # Setup device
        self.flashkit = device[0]
        self.flashkit.interface = device[1]

        # Connect to device
        if not self.flashkit.connect():
            self.logger.critical("No connection to target device.")
            exit(-1)

        self.logger.info("Starting commandLoop for {}".format(self.flashkit.interface))

    def _get_connection_methods_replay(self, main_args, log_level, data_directory):
        from .serial_hooks import hook, ReplaySerial

        hook(SerialCore, ReplaySerial, filename=main_args.replay)
        return [SerialCore(log_level=log_level, data_directory=data_directory, replay=True, delay=main_args.delay)]

    def _get_connection_methods_normal(self, main_args, log_level, data_directory):
        if main_args.device == "test":
            return [testCore(log_level=log_level, data_directory=data_directory, delay=main_args.delay)]
        return [SerialCore(log_level=log_level, data_directory=data_directory,
                           baudrate=main_args.baudrate, delay=main_args.delay)]

    """
    $$$$$$$$$$$$$$$$$
    $ CUSTOM CUSTOM $
    $$$$$$$$$$$$$$$$$
    """

    # noinspection PyUnusedLocal
    @staticmethod
    def hexdump(data: bytes, begin: int = 0):
        red = "\x1b[31m"
        green = "\x1b[32m"
        blue = "\x1b[34m"
        reset = "\x1b[0m"
        dump = ''
        for i, byte in enumerate(data):
            if i % 16 == 0:
                dump += '{:08x}: '.format(i + begin)
            abyte = '{:02x} '.format(byte)
            if byte == 0x00:
                dump += f'{red}{abyte}{reset}'
            elif byte == 0xff:
                dump += f'{green}{abyte}{reset}'
            elif not isprint(byte):
                dump += f'{blue}{abyte}{reset}'
            else:
                dump += f'{reset}{abyte}{reset}'
            if i % 4 == 3:
                dump += ' '
            if i % 16 == 15 or i == len(data) - 1:
                line = data[i - i % 16:i + 1]
                dump += ' |' + ''.join(chr(c) if 32 <= c < 127 else '.' for c in line) + '|\n'
        sys.stdout.write(dump)

    @staticmethod
    def options(message: str, choices: [str]) -> int:
        option_string = f"[?] {message}\n "
        for i, choice in enumerate(choices):
            option_string += f"\t{i + 1}) {choice}\n"
        option_string += "Choice [1]\n"

        while True:
            selection = input(option_string)
            if selection == "":
                return 0
            try:
                num = int(selection)
            except ValueError:
                continue
            if 0 < num <= len(choices):
                return num - 1

    @staticmethod
    def format_size(size: int) -> str:
        if size < 1024:
            return "%dB" % size
        return "%dK" % (size // 1024)

    def printMD5(self, data: bytes):
        self.logger.info("MD5: " + hashlib.md5(data).hexdigest().upper())

    def progress(self, message, rate=0.1):
        return ProgressLogger(self.logger, message, rate)

    """
    ###################################################################################
    ###                              Start of commands                              ###
    ###################################################################################
    """

    # noinspection PyUnusedLocal
    def do_exit(self, args):
        """Exit the program."""
        self.flashkit.shutdown()
        # in all Cmd2 commands (functions starting with
        # do_*), `return True` exits the command loop.
        # So if you just want to return that a command
        # exited successfully, return `None` instead.
        return True

    loglevel_parser = argparse.ArgumentParser()
    loglevel_parser.add_argument('level', help='New log level (CRITICAL, DEBUG, ERROR, INFO, NOTSET, WARN, WARNING)')

    @cmd2.with_argparser(loglevel_parser)
    def do_loglevel(self, args):
        """Change the verbosity of log messages."""
        log_levels = ["CRITICAL", "DEBUG", "ERROR", "INFO", "NOTSET", "WARN", "WARNING"]

        loglevel = args.level
        if loglevel.upper() in log_levels:
            self.flashkit.log_level = loglevel
            self.logger.info("New log level: " + str(self.flashkit.log_level))
            return None
        else:
            self.logger.warning("Not a valid log level: " + loglevel)
            return False

    delay_parser = argparse.ArgumentParser()
    delay_parser.add_argument('ms', type=auto_int, help='Delay between two bus cycles in milliseconds.')

    @cmd2.with_argparser(delay_parser)
    def do_delay(self, args):
        """Set the inter-command delay of the programmer."""
        try:
            self.flashkit.setDelay(args.ms)
        except FlashKitError as e:
            self.logger.error(str(e))
            return False
        self.flashkit.delay = args.ms
        return None

    def do_probe(self, _):
        """Detect the installed ROM and RAM size."""
        try:
            self.capacity = self.flashkit.detectCapacity()
        except FlashKitError as e:
            self.logger.error(str(e))
            return False
        self.logger.info("ROM size : " + self.format_size(self.capacity.rom_size))
        if self.capacity.ram_present:
            self.logger.info("RAM size : " + self.format_size(self.capacity.ram_size))
        else:
            self.logger.info("RAM      : not detected")
        return None

    def do_header(self, _):
        """Show the name and region from the ROM header."""
        try:
            header = self.flashkit.romHeader()
        except FlashKitError as e:
            self.logger.error(str(e))
            return False
        self.logger.info("Domestic name : %s" % header.domestic_name)
        self.logger.info("Overseas name : %s" % header.overseas_name)
        self.logger.info("Region        : %s" % header.region)
        return None

    def do_banks(self, _):
        """Show which page of the flash every bank currently shows."""
        for bank, page in enumerate(self.flashkit.translator.pages):
            register = BANK_REGISTERS[bank]
            self.logger.info("bank %d (%s) -> page %2d" % (
                bank, "fixed   " if register is None else "0x%06X" % register, page))
        return None

    map_parser = argparse.ArgumentParser()
    map_parser.add_argument('bank', type=auto_int, help='Bank 1..7 (bank 0 is fixed).')
    map_parser.add_argument('page', type=auto_int, help='Page 0..15 of the flash chip.')

    @cmd2.with_argparser(map_parser)
    def do_map(self, args):
        """Show a page of the flash chip in one of the banks."""
        try:
            self.flashkit.mapPage(args.bank, args.page)
        except FlashKitError as e:
            self.logger.warning(str(e))
            return False
        return None

    hexdump_parser = argparse.ArgumentParser()
    hexdump_parser.add_argument('-l', '--length', type=auto_int, default=256, help='Length of the hexdump (default: %(default)s).')
    hexdump_parser.add_argument('-r', '--rom', action='store_true', help='Interpret the address as offset into the flash chip and map it.')
    hexdump_parser.add_argument('address', type=auto_int, help='Start address of the hexdump.')

    @cmd2.with_argparser(hexdump_parser)
    def do_hexdump(self, args):
        """Display a hexdump of a specified region of the console address space."""
        try:
            address = args.address
            if args.rom:
                address = self.flashkit.translator.translate(args.address).address
            dump = self.flashkit.readMem(address, args.length)
        except FlashKitError as e:
            self.logger.warning(str(e))
            return False

        self.hexdump(dump, begin=args.address)
        return None

    readrom_parser = argparse.ArgumentParser()
    readrom_parser.add_argument('-s', '--size', type=auto_int, help='Number of bytes to read (default: detected ROM size).')
    readrom_parser.add_argument('-f', '--file', help='Filename of the dump (default: derived from the ROM header).')
    readrom_parser.add_argument('--overwrite', action='store_true')

    @cmd2.with_argparser(readrom_parser)
    def do_readrom(self, args):
        """Dumps the ROM into a file, blank flash at the end is cut off."""
        self.progress_log = None
        try:
            filename = args.file
            if filename is None:
                filename = safe_filename(self.flashkit.romName()) + ".bin"
            if os.path.exists(filename) and not (args.overwrite or yesno("Update '%s'?" % os.path.abspath(filename))):
                return False

            size = args.size
            if size is None:
                size = self.flashkit.detectCapacity().rom_size
            self.logger.info("ROM size : " + self.format_size(size))

            self.progress_log = self.progress("Reading ROM")
            with open(filename, "wb") as f:
                rom = self.flashkit.readRom(size, f, self.progress_log.bytes_callback(size, "receiving"))
            self.progress_log.success("Read %d bytes" % len(rom))
        except FlashKitError as e:
            if self.progress_log is not None:
                self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False

        self.printMD5(rom)
        self.logger.info("ROM dump saved in '%s'!" % os.path.abspath(filename))
        return None

    writerom_parser = argparse.ArgumentParser()
    writerom_parser.add_argument('-y', '--yes', action='store_true', help='Do not ask before erasing the chip.')
    writerom_parser.add_argument('file', help='ROM image to program.')

    @cmd2.with_argparser(writerom_parser)
    def do_writerom(self, args):
        """Erases the flash chip, programs a ROM image and verifies it."""
        rom = read(args.file)
        if not (args.yes or yesno("Erase the whole chip and write '%s'?" % args.file)):
            return False

        self.progress_log = self.progress("Writing ROM")
        try:
            # the image is programmed padded to whole bank windows
            total = len(pad(rom, BANK_WINDOW))
            self.flashkit.writeRom(rom, self.progress_log.bytes_callback(total, "sending"))
        except FlashKitError as e:
            self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False
        self.progress_log.success("Written and verified %d bytes" % len(rom))
        self.printMD5(rom)
        return None

    verify_parser = argparse.ArgumentParser()
    verify_parser.add_argument('file', help='ROM image to compare the flash with.')

    @cmd2.with_argparser(verify_parser)
    def do_verify(self, args):
        """Compares the flash contents with a ROM image."""
        rom = read(args.file)
        self.progress_log = self.progress("Verifying ROM")
        try:
            self.flashkit.verifyRom(rom, self.progress_log.bytes_callback(len(rom), "comparing"))
        except FlashKitError as e:
            self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False
        self.progress_log.success("Flash matches '%s'" % args.file)
        return None

    erase_parser = argparse.ArgumentParser()
    erase_parser.add_argument('-y', '--yes', action='store_true', help='Do not ask before erasing the chip.')

    @cmd2.with_argparser(erase_parser)
    def do_erase(self, args):
        """Erases all sectors of the flash chip."""
        if not (args.yes or yesno("Erase the whole chip?")):
            return False

        self.progress_log = self.progress("Erasing")
        try:
            self.flashkit.eraseAll(self.progress_log.status)
        except FlashKitError as e:
            self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False
        self.progress_log.success("Chip erased")
        return None

    readram_parser = argparse.ArgumentParser()
    readram_parser.add_argument('-f', '--file', help='Filename of the RAM dump (default: derived from the ROM header).')
    readram_parser.add_argument('--overwrite', action='store_true')

    @cmd2.with_argparser(readram_parser)
    def do_readram(self, args):
        """Saves the battery RAM into a file."""
        self.progress_log = None
        try:
            filename = args.file
            if filename is None:
                filename = safe_filename(self.flashkit.romName()) + ".srm"
            if os.path.exists(filename) and not (args.overwrite or yesno("Update '%s'?" % os.path.abspath(filename))):
                return False

            self.progress_log = self.progress("Reading RAM")
            ram = self.flashkit.readRam(self.progress_log)
        except FlashKitError as e:
            if self.progress_log is not None:
                self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False

        self.progress_log.success()
        self.logger.info("RAM size : " + self.format_size(len(ram) // 2))
        with open(filename, "wb") as f:
            f.write(ram)
        self.printMD5(ram)
        self.logger.info("RAM dump saved in '%s'!" % os.path.abspath(filename))
        return None

    writeram_parser = argparse.ArgumentParser()
    writeram_parser.add_argument('file', help='RAM dump to restore.')

    @cmd2.with_argparser(writeram_parser)
    def do_writeram(self, args):
        """Writes a file into the battery RAM and verifies it."""
        ram = read(args.file)
        self.progress_log = self.progress("Writing RAM")
        try:
            written = self.flashkit.writeRam(ram, self.progress_log)
        except FlashKitError as e:
            self.progress_log.failure(str(e))
            self.logger.error(str(e))
            return False
        self.progress_log.success()
        self.logger.info("Written %d bytes to the RAM." % written)
        self.printMD5(ram[:written])
        return None


def parse_args():
    parser = argparse.ArgumentParser()
    parser.add_argument("-d", "--data-directory", help="Set data directory. Default: ~/.flashkit")
    parser.add_argument("-v", "--verbose", help="Set log level to DEBUG", action="store_true")
    parser.add_argument("--device", help="Serial port of the programmer, or 'test' for a simulated cartridge")
    parser.add_argument("-b", "--baudrate", type=int, default=115200, help="Baudrate of the serial port (default: %(default)s)")
    parser.add_argument("--delay", type=int, default=1, help="Inter-command delay of the programmer in ms (default: %(default)s)")
    parser.add_argument("--trace", help="Trace the serial connection (e.g. PrintTrace)")
    parser.add_argument("-c", "--commands", help="CLI command to run before prompting, separated by ';' (used for easier testing)")
    parser.add_argument("--replay", help="Intercept and replace every communication with the programmer with the one in the specified file")
    parser.add_argument("--save", help="Store a trace into the file that can be used with --replay")
    return parser.parse_known_args()


def flashkit_entry_point():
    arg, unknown_args = parse_args()
    sys.argv = sys.argv[:1] + unknown_args
    cli = FlashKitCLI(arg)
    if arg.commands:
        cli.runcmds_plus_hooks([command.strip() for command in arg.commands.split(";")])
    sys.exit(cli.cmdloop())


if __name__ == "__main__":
    flashkit_entry_point()
