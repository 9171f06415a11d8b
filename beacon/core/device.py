"""beacon.core.device

Device description attached to every batch.

A host embedding beacon in a web backend knows its client's user agent and passes it
in; a standalone process describes itself.
"""

from __future__ import annotations

import locale
import platform
import re
from dataclasses import dataclass

from beacon import SDK_NAME, __version__
from beacon.core.config import DeviceConfig

_BROWSERS: list[tuple[str, str]] = [
    ("Edge", r"Edg(?:e|A|iOS)?/([\d.]+)"),
    ("Opera", r"(?:OPR|Opera)/([\d.]+)"),
    ("Firefox", r"(?:Firefox|FxiOS)/([\d.]+)"),
    ("Chrome", r"(?:Chrome|CriOS)/([\d.]+)"),
    ("Safari", r"Version/([\d.]+).*Safari/"),
    ("IE", r"(?:MSIE |Trident/.*rv:)([\d.]+)"),
]

_PLATFORMS: list[tuple[str, str]] = [
    ("Android", r"Android"),
    ("iOS", r"iPhone|iPad|iPod"),
    ("Windows", r"Windows"),
    ("macOS", r"Mac OS X|Macintosh"),
    ("ChromeOS", r"CrOS"),
    ("Linux", r"Linux|X11"),
]


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    user_agent: str
    language: str
    screen_size: str
    browser: str
    browser_version: str
    platform: str
    device_type: str

    def to_context(self) -> dict[str, str]:
        return {
            "userAgent": self.user_agent,
            "language": self.language,
            "screenSize": self.screen_size,
            "browser": self.browser,
            "browserVersion": self.browser_version,
            "platform": self.platform,
            "deviceType": self.device_type,
        }


def default_user_agent() -> str:
    return f"{SDK_NAME}/{__version__} Python/{platform.python_version()} ({platform.system()} {platform.release()})"


def parse_browser(user_agent: str) -> tuple[str, str]:
    for name, pattern in _BROWSERS:
        m = re.search(pattern, user_agent)
        if m:
            return name, m.group(1)
    if user_agent.startswith(SDK_NAME):
        return "Python", platform.python_version()
    return "Unknown", ""


def parse_platform(user_agent: str) -> str:
    for name, pattern in _PLATFORMS:
        if re.search(pattern, user_agent):
            return name
    return platform.system() or "Unknown"


def classify_device(user_agent: str) -> str:
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if "mobi" in ua or "iphone" in ua or "ipod" in ua:
        return "mobile"
    return "desktop"


def describe_device(config: DeviceConfig | None = None) -> DeviceInfo:
    config = config or DeviceConfig()
    ua = config.user_agent or default_user_agent()
    browser, version = parse_browser(ua)
    language = config.language or (locale.getlocale()[0] or "en_US").replace("_", "-")
    return DeviceInfo(
        user_agent=ua,
        language=language,
        screen_size=config.screen_size or "0x0",
        browser=browser,
        browser_version=version,
        platform=parse_platform(ua),
        device_type=classify_device(ua),
    )
