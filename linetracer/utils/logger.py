"""Console logging with the coloured `[ Component ] : LEVEL - message` prefix."""

import logging
import sys

LEVEL_COLORS = {
    "DEBUG": "96",
    "INFO": "92",
    "WARNING": "93",
    "ERROR": "91",
    "CRITICAL": "91",
}


class ComponentFormatter(logging.Formatter):
    """Renders records as `[ component ] : LEVEL - message`.

    The component is the `component` attribute passed through `extra`, or the
    last dotted part of the logger name.
    """

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record):
        component = getattr(record, "component", None) or record.name.rsplit(".", 1)[-1]
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        if not self.color:
            return f"[ {component} ] : {record.levelname} - {message}"
        code = LEVEL_COLORS.get(record.levelname, "97")
        return (f"\033[1;97m[ {component} ] :\033[0m "
                f"\033[1;{code}m{record.levelname}\033[0m - {message}")


def setup_logging(level="INFO", color=None):
    """Install the component formatter on the root logger and return it."""
    if color is None:
        color = sys.stderr.isatty()
    handler = logging.StreamHandler()
    handler.setFormatter(ComponentFormatter(color=color))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level if isinstance(level, int) else str(level).upper())
    # bleak is chatty at DEBUG
    logging.getLogger("bleak").setLevel(logging.WARNING)
    return root
