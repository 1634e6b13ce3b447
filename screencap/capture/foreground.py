"""
Foreground App and Window Snapshot

Captures what the user is looking at when a screenshot is taken:
- Bundle ID and name of the frontmost application
- Title, display and fullscreen state of its front window
- The active tab URL and title when the app is a supported browser

macOS only; on other platforms capture_foreground() returns None.
"""

import logging
import subprocess
import sys
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SAFARI_BUNDLE_IDS = frozenset({"com.apple.Safari", "com.apple.SafariTechnologyPreview"})

# Chromium browsers share Chrome's AppleScript dictionary
CHROMIUM_BROWSERS = {
    "com.google.Chrome": "Google Chrome",
    "com.google.Chrome.beta": "Google Chrome Beta",
    "com.microsoft.edgemac": "Microsoft Edge",
    "com.brave.Browser": "Brave Browser",
    "company.thebrowser.Browser": "Arc",
    "com.vivaldi.Vivaldi": "Vivaldi",
}

_APPLESCRIPT_TIMEOUT = 3


@dataclass
class ForegroundSnapshot:
    """Frontmost app and window at one instant."""

    captured_at: float
    bundle_id: str | None
    app_name: str | None
    window_title: str | None = None
    display_id: str | None = None
    is_fullscreen: bool = False
    pid: int | None = None
    url: str | None = None
    page_title: str | None = None
    url_source: str | None = None


def _run_applescript(script: str) -> str | None:
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=_APPLESCRIPT_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        logger.debug("AppleScript timed out")
        return None
    except OSError as e:
        logger.debug(f"Failed to run AppleScript: {e}")
        return None

    if result.returncode != 0:
        # Usually Automation permission has not been granted
        logger.debug(f"AppleScript failed: {result.stderr.strip()}")
        return None
    return result.stdout.strip()


def _split_url_title(output: str | None) -> tuple[str | None, str | None]:
    if not output or "|||" not in output:
        return None, None
    url, _, title = output.partition("|||")
    return url.strip() or None, title.strip() or None


def get_browser_url(bundle_id: str | None) -> tuple[str | None, str | None, str | None]:
    """
    Read the active tab of a supported browser.

    Returns:
        Tuple of (url, page_title, provider name)
    """
    if bundle_id in SAFARI_BUNDLE_IDS:
        script = """
        tell application id "%s"
            if (count of windows) > 0 then
                return (URL of front document) & "|||" & (name of front document)
            end if
        end tell
        """ % bundle_id
        url, title = _split_url_title(_run_applescript(script))
        return url, title, "safari"

    if bundle_id in CHROMIUM_BROWSERS:
        script = """
        tell application "%s"
            if (count of windows) > 0 then
                set theTab to active tab of front window
                return (URL of theTab) & "|||" & (title of theTab)
            end if
        end tell
        """ % CHROMIUM_BROWSERS[bundle_id]
        url, title = _split_url_title(_run_applescript(script))
        return url, title, "chromium"

    return None, None, None


def _get_frontmost_app() -> tuple[str | None, str | None, int | None]:
    try:
        from AppKit import NSWorkspace
    except ImportError:
        logger.error("AppKit not available")
        return None, None, None

    frontmost = NSWorkspace.sharedWorkspace().frontmostApplication()
    if frontmost is None:
        return None, None, None
    return (
        frontmost.bundleIdentifier(),
        frontmost.localizedName(),
        frontmost.processIdentifier(),
    )


def _display_at_point(x: float, y: float) -> tuple[int | None, tuple[float, float] | None]:
    from Quartz import CGDisplayBounds, CGGetActiveDisplayList

    _err, displays, count = CGGetActiveDisplayList(16, None, None)
    for display_id in list(displays or [])[:count]:
        bounds = CGDisplayBounds(display_id)
        if (
            bounds.origin.x <= x < bounds.origin.x + bounds.size.width
            and bounds.origin.y <= y < bounds.origin.y + bounds.size.height
        ):
            return display_id, (bounds.size.width, bounds.size.height)
    return None, None


def _get_front_window(pid: int | None) -> tuple[str | None, str | None, bool]:
    """Title, display id and fullscreen flag of the process's front window."""
    if pid is None:
        return None, None, False

    try:
        from Quartz import (
            CGWindowListCopyWindowInfo,
            kCGNullWindowID,
            kCGWindowListExcludeDesktopElements,
            kCGWindowListOptionOnScreenOnly,
        )
    except ImportError:
        logger.warning("Quartz framework not available for window info")
        return None, None, False

    options = kCGWindowListOptionOnScreenOnly | kCGWindowListExcludeDesktopElements
    for window in CGWindowListCopyWindowInfo(options, kCGNullWindowID) or []:
        if window.get("kCGWindowOwnerPID") != pid or window.get("kCGWindowLayer", -1) != 0:
            continue

        title = window.get("kCGWindowName") or None
        bounds = window.get("kCGWindowBounds") or {}
        width = bounds.get("Width", 0)
        height = bounds.get("Height", 0)
        display_id, display_size = _display_at_point(
            bounds.get("X", 0) + width / 2, bounds.get("Y", 0) + height / 2
        )
        is_fullscreen = display_size is not None and (width, height) == display_size
        return title, str(display_id) if display_id is not None else None, is_fullscreen

    return None, None, False


def capture_foreground(now: float | None = None) -> ForegroundSnapshot | None:
    """
    Snapshot the frontmost app and window.

    Returns:
        ForegroundSnapshot, or None when not on macOS or nothing is focused
    """
    if sys.platform != "darwin":
        return None

    captured_at = now if now is not None else time.time()
    try:
        bundle_id, app_name, pid = _get_frontmost_app()
        if bundle_id is None and app_name is None:
            return None
        window_title, display_id, is_fullscreen = _get_front_window(pid)
    except Exception as e:
        logger.error(f"Failed to read foreground app: {e}")
        return None

    url, page_title, url_source = get_browser_url(bundle_id)

    return ForegroundSnapshot(
        captured_at=captured_at,
        bundle_id=bundle_id,
        app_name=app_name,
        window_title=window_title,
        display_id=display_id,
        is_fullscreen=is_fullscreen,
        pid=pid,
        url=url,
        page_title=page_title,
        url_source=url_source,
    )


if __name__ == "__main__":
    import fire

    def current():
        """Show the current foreground snapshot."""
        snapshot = capture_foreground()
        return snapshot.__dict__ if snapshot else {"error": "No foreground app"}

    fire.Fire({"current": current})
