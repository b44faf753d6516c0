import binascii

from .exceptions import TransportError

from typing import Any, List, TYPE_CHECKING, Type

if TYPE_CHECKING:
    import serial
    from flashkit.core import FlashKit


class SerialHook(object):
    """
    Stands in for the serial port of a core. Every write and read is passed
    to the hook functions; with replace set the real port is not used at
    all and the *_replace functions provide the traffic.
    """

    def __init__(self, port, core, **kwargs):
        # type: (serial.Serial, FlashKit, Any) -> None
        self.port = port
        self.core = core
        self.replace = False

    def write(self, data):
        self.send_hook(data)
        if self.replace:
            return self.send_replace(data)
        try:
            return self.port.write(data)
        except Exception as e:
            self.send_exception(e)
            raise

    def read(self, length):
        if not self.replace:
            data = self.port.read(length)
        else:
            data = self.recv_replace(length)
        self.recv_hook(data)
        return data

    def reset_input_buffer(self):
        if not self.replace:
            self.port.reset_input_buffer()

    def close(self):
        if self.port is not None:
            self.port.close()

    def send_hook(self, data):
        raise NotImplementedError("send_hook not implemented")

    def recv_hook(self, data):
        raise NotImplementedError("recv_hook not implemented")

    def send_replace(self, data):
        raise NotImplementedError("send_replace not implemented")

    def recv_replace(self, length):
        raise NotImplementedError("recv_replace not implemented")

    def send_exception(self, e):
        raise NotImplementedError("send_exception not implemented")


class TraceToFileHook(SerialHook):
    def __init__(self, port, core, filename="/tmp/flashkit_serial.log"):
        # type: (serial.Serial, FlashKit, str) -> None
        SerialHook.__init__(self, port, core)
        self.filename = filename
        self.log = []  # type: List[str]
        self.closed = False

    def _append(self, line):
        self.core.logger.debug(line.rstrip("\n"))
        self.log.append(line)

    def send_hook(self, data):
        self._append("TX {}\n".format(binascii.hexlify(data).decode()))

    def recv_hook(self, data):
        self._append("RX {}\n".format(binascii.hexlify(data).decode()))

    def send_exception(self, e):
        self._append("EX '{}'\n".format(e))

    def close(self):
        if not self.closed:
            SerialHook.close(self)
            with open(self.filename, "a") as f:
                f.writelines(self.log)
            self.closed = True


class PrintTrace(SerialHook):

    def send_hook(self, data):
        print("Sent: {}".format(binascii.hexlify(data).decode()))

    def recv_hook(self, data):
        print("Recv: {}".format(binascii.hexlify(data).decode()))

    def send_exception(self, e):
        print("Exception: {}".format(e))


class ReplaySerial(PrintTrace):
    """
    Replays a file written by TraceToFileHook. Sent bytes have to match the
    recorded TX lines, reads are answered with the recorded RX lines.
    """

    def __init__(self, port, core, filename="/tmp/flashkit_serial.log"):
        SerialHook.__init__(self, port, core)
        self.replace = True
        with open(filename) as f:
            self.log = [line for line in f.readlines() if line.strip() and not line.startswith("#")]
        self.index = 0

    def send_hook(self, data):
        pass

    def recv_hook(self, data):
        pass

    def _next(self):
        if self.index >= len(self.log):
            raise TransportError("replay: trace exhausted after %d lines" % self.index)
        direction, encoded_data = self.log[self.index].split(" ", 1)
        return direction, encoded_data.strip()

    def send_replace(self, data):
        direction, encoded_data = self._next()
        assert direction == "TX", "Sent {}, but the trace expects {} {}".format(
            binascii.hexlify(data).decode(), direction, encoded_data)
        log_data = binascii.unhexlify(encoded_data)
        assert data == log_data, "Got {}, expected {}".format(binascii.hexlify(data).decode(), encoded_data)
        self.index += 1
        if self.index < len(self.log) and self.log[self.index].startswith("EX"):
            self.index += 1
            raise TransportError(self.log[self.index - 1].split(" ", 1)[1].strip())
        return len(data)

    def recv_replace(self, length):
        direction, encoded_data = self._next()
        if direction != "RX":
            # nothing was received here when recording
            return b""
        self.index += 1
        return binascii.unhexlify(encoded_data)[:length]

    def close(self):
        pass


def hook(core, serial_hook, **hookkwargs):
    # type: (Type[FlashKit], Type[SerialHook], Any) -> None

    def wrap_port_setup(orig_func):
        def wrapped_port_setup(self, *args, **kwargs):
            if not self.replay:
                status = orig_func(self, *args, **kwargs)
            else:
                self.s_serial = None
                status = True
            self.s_serial = serial_hook(self.s_serial, core=self, **hookkwargs)
            return status

        return wrapped_port_setup

    core._setupPort = wrap_port_setup(core._setupPort)

    def wrap_teardown_port(orig_func):
        def wrapped_teardown_port(self, *args, **kwargs):
            if not self.replay:
                return orig_func(self, *args, **kwargs)
            if self.s_serial is not None:
                self.s_serial.close()
                self.s_serial = None
            return True

        return wrapped_teardown_port

    core._teardownPort = wrap_teardown_port(core._teardownPort)

    def wrap_device_list(orig_func):
        def wrapped_device_list(self, *args, **kwargs):
            if not self.replay:
                return orig_func(self, *args, **kwargs)
            else:
                return [(self, "ReplayDevice", "ReplayDevice")]

        return wrapped_device_list

    core.device_list = wrap_device_list(core.device_list)
