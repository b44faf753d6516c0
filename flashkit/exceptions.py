# exceptions.py
#
# Errors raised by the framework. Every hardware protocol error is fatal to
# the top-level operation that raised it.
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


class FlashKitError(Exception):
    pass


class NotConnected(FlashKitError):
    """Raised when a hardware operation is attempted without a live session."""

    def __init__(self, message="Not running. call connect() first!"):
        super(NotConnected, self).__init__(message)


class TransportError(FlashKitError):
    """The device link failed (port vanished, short read, ...)."""
    pass


class InvalidArgument(FlashKitError, ValueError):
    pass


class FlashTimeout(FlashKitError, TimeoutError):
    """
    Completion polling exceeded its wall-clock bound.

    - address: console address that was polled
    - status:  last status word read from that address (or None)
    """

    operation = "Flash operation"

    def __init__(self, address, status=None):
        self.address = address
        self.status = status
        message = "%s timeout at 0x%06X" % (self.operation, address)
        if status is not None:
            message += " (last status 0x%04X)" % status
        super(FlashTimeout, self).__init__(message)


class EraseTimeout(FlashTimeout):
    operation = "Flash erase"


class WordWriteTimeout(FlashTimeout):
    operation = "Flash write"


class BufferWriteTimeout(FlashTimeout):
    operation = "Flash buffer write"


class VerifyMismatch(FlashKitError):
    def __init__(self, address, expected, actual):
        self.address = address
        self.expected = expected
        self.actual = actual
        super(VerifyMismatch, self).__init__(
            "Verify error at 0x%06X: wrote %02X, read %02X" % (address, expected, actual)
        )


class RamUnavailable(FlashKitError):
    def __init__(self, message="RAM is not detected"):
        super(RamUnavailable, self).__init__(message)
