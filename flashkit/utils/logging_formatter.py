import logging


class CustomFormatter(logging.Formatter):
    """
    Prefixes every record with a coloured level marker. Records on the
    PROGRESS level replace the previous console line ("\\033[F" moves the
    cursor up, "\\033[K" clears the line). Without colours, e.g. when the
    output goes to a file, progress lines are printed one after another.
    """

    PROGRESS = 60

    red = "\x1b[31m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    blue = "\x1b[34m"
    reset = "\x1b[0m"

    PREFIXES = {
        logging.DEBUG: (yellow, "[.]"),
        logging.INFO: (blue, "[*]"),
        logging.WARNING: (yellow, "[*]"),
        logging.ERROR: (red, "[!]"),
        logging.CRITICAL: (red, "[!]"),
    }

    def __init__(self, colours=True):
        super(CustomFormatter, self).__init__("%(message)s")
        self.colours = colours

    def format(self, record):
        message = super(CustomFormatter, self).format(record)
        if record.levelno == self.PROGRESS:
            return "\033[F\033[K" + message if self.colours else message

        colour, prefix = self.PREFIXES.get(record.levelno, ("", ""))
        if not self.colours:
            return "%s %s" % (prefix, message) if prefix else message
        if record.levelno == logging.CRITICAL:
            return f"{colour}{prefix} {message}{self.reset}"
        return f"{colour}{prefix}{self.reset} {message}"


logging.addLevelName(CustomFormatter.PROGRESS, "PROGRESS")
