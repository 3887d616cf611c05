# app/services/profile/user_agent_parser.py
"""
User-Agent parsing for visitor device summaries.

Pattern tables are ordered: the first match wins, so more specific
signatures sit before the generic ones they contain (Edge before Chrome,
"windows nt 10" before "windows").
"""

from typing import Any, Protocol

from app.models.domain.profile_domain import DeviceInfo

BROWSER_PATTERNS: list[tuple[str, str]] = [
    ("edg/", "Edge"),
    ("chrome/", "Chrome"),
    ("firefox/", "Firefox"),
    ("safari/", "Safari"),
    ("opera/", "Opera"),
    ("postman", "Postman"),
    ("curl", "curl"),
    ("wget", "wget"),
    ("httpie", "HTTPie"),
    ("insomnia", "Insomnia"),
    ("linkedinapp", "LinkedIn App"),
    ("msie", "Internet Explorer"),
    ("trident", "Internet Explorer"),
]

OS_PATTERNS: list[tuple[str, str]] = [
    ("windows nt 10", "Windows 10"),
    ("windows nt 6.3", "Windows 8.1"),
    ("windows nt 6.2", "Windows 8"),
    ("windows nt 6.1", "Windows 7"),
    ("windows", "Windows"),
    ("iphone", "iOS"),
    ("ipad", "iPadOS"),
    ("mac os x", "macOS"),
    ("macintosh", "macOS"),
    ("android", "Android"),
    ("ubuntu", "Ubuntu"),
    ("fedora", "Fedora"),
    ("debian", "Debian"),
    ("linux", "Linux"),
]

MOBILE_PATTERNS = ("mobile", "iphone", "ipod", "android", "blackberry", "windows phone", "opera mini")
TABLET_PATTERNS = ("ipad", "tablet", "kindle")

BOT_PATTERNS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "facebookexternalhit",
    "whatsapp",
    "telegram",
)

RECRUITER_TOOL_PATTERNS = (
    "linkedinapp",
    "linkedin",
    "greenhouse",
    "lever",
    "workday",
    "workable",
    "applicantstack",
    "jobvite",
    "smartrecruiters",
    "icims",
    "bullhorn",
    "taleo",
)

DEVELOPER_TOOL_PATTERNS = (
    "postman",
    "curl",
    "wget",
    "httpie",
    "insomnia",
    "restclient",
    "httpclient",
)


class UserAgentParserProtocol(Protocol):
    def parse(self, user_agent: str) -> tuple[DeviceInfo, bool]: ...


def _first_match(ua_lower: str, patterns: list[tuple[str, str]]) -> str:
    for pattern, name in patterns:
        if pattern in ua_lower:
            return name
    return "Unknown"


class UserAgentParser:
    """Heuristic User-Agent parser; no external database of signatures."""

    def parse(self, user_agent: str) -> tuple[DeviceInfo, bool]:
        """
        Parse a User-Agent string.

        Returns:
            (device summary, is_bot)
        """
        ua_lower = (user_agent or "").lower()
        is_bot = self.is_bot(user_agent)

        device_info = DeviceInfo(
            browser=_first_match(ua_lower, BROWSER_PATTERNS),
            os=_first_match(ua_lower, OS_PATTERNS),
            device_type=self._device_type(ua_lower),
            is_bot=is_bot,
        )
        return device_info, is_bot

    def _device_type(self, ua_lower: str) -> str:
        # Tablets first: iPad and Android tablets also advertise "mobile" in places
        if any(pattern in ua_lower for pattern in TABLET_PATTERNS):
            return "tablet"
        if any(pattern in ua_lower for pattern in MOBILE_PATTERNS):
            return "mobile"
        if self.is_developer_tool(ua_lower):
            return "tool"
        return "desktop"

    def is_bot(self, user_agent: str) -> bool:
        ua_lower = (user_agent or "").lower()
        return any(pattern in ua_lower for pattern in BOT_PATTERNS)

    def is_recruiter_tool(self, user_agent: str) -> bool:
        ua_lower = (user_agent or "").lower()
        return any(pattern in ua_lower for pattern in RECRUITER_TOOL_PATTERNS)

    def is_developer_tool(self, user_agent: str) -> bool:
        ua_lower = (user_agent or "").lower()
        return any(pattern in ua_lower for pattern in DEVELOPER_TOOL_PATTERNS)

    def get_detailed_info(self, user_agent: str) -> dict[str, Any]:
        device_info, is_bot = self.parse(user_agent)
        return {
            "browser": device_info.browser,
            "os": device_info.os,
            "device_type": device_info.device_type,
            "is_bot": is_bot,
            "is_recruiter_tool": self.is_recruiter_tool(user_agent),
            "is_developer_tool": self.is_developer_tool(user_agent),
            "is_mobile": device_info.device_type == "mobile",
            "is_tablet": device_info.device_type == "tablet",
        }
