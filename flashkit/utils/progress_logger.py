import time

from flashkit.utils.logging_formatter import CustomFormatter


class ProgressLogger(object):
    """
    Single console line that is rewritten while a long running transfer is
    going on (dump, program, verify, erase). The line is emitted on the
    PROGRESS level, so the formatter moves the cursor back over the previous
    one instead of scrolling.

        with ProgressLogger(logger, "Reading ROM") as progress:
            core.readRom(size, onProgress=progress.bytes_callback(size, "receiving"))
    """

    spinner = ['|', '/', '-', '\\']

    def __init__(self, logger, msg, rate=0.1):
        self._logger = logger
        self._msg = msg
        self._stopped = False
        # minimum seconds between two updates, the serial link reports often
        self.rate = rate
        self.last_status = 0
        self.spinner_index = 0

    def _log(self, status, mark=None):
        if self._stopped:
            return

        if mark is None:
            mark = self.spinner[self.spinner_index]
            self.spinner_index = (self.spinner_index + 1) % len(self.spinner)

        msg = f'{CustomFormatter.blue}[{mark}]{CustomFormatter.reset} ' + self._msg
        if status:
            msg += ': ' + status
        self._logger.log(CustomFormatter.PROGRESS, msg)

    def status(self, status):
        now = time.time()
        if (now - self.last_status) > self.rate:
            self.last_status = now
            self._log(status)

    def bytes_callback(self, bytes_total, verb="transferring"):
        """
        Returns a function usable as onProgress callback of the flash
        operations. It is called with the number of bytes done so far.
        """

        def update(bytes_done):
            percent = bytes_done * 100 // bytes_total if bytes_total else 100
            self.status("%s data... %d / %d Bytes (%d%%)" % (verb, bytes_done, bytes_total, percent))

        return update

    def success(self, status='Done'):
        self._log(status, '+')
        self._stopped = True

    def failure(self, status='Failed'):
        self._log(status, '-')
        self._stopped = True

    def __enter__(self):
        return self

    def __exit__(self, exc_typ, exc_val, exc_tb):
        # no-ops if success() or failure() was already called
        if exc_typ is None:
            self.success()
        else:
            self.failure(str(exc_val))
