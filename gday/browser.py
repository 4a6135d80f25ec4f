"""Best-effort launching of the user's web browser."""

import logging
import webbrowser

logger = logging.getLogger(__name__)


def attempt_open(url: str) -> bool:
    """Try to open ``url`` in the default browser.

    Never raises; a False return only means the user has to open the URL
    themselves.
    """
    try:
        opened = webbrowser.open(url, new=1, autoraise=True)
    except (webbrowser.Error, OSError) as e:
        logger.debug(f"Could not launch browser: {e}")
        return False
    if not opened:
        logger.debug("No usable browser found")
    return bool(opened)
