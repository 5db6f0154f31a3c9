"""User-agent based device classification."""
from __future__ import annotations

import re
from typing import Literal, Optional

DeviceClass = Literal["mobile", "desktop"]

MOBILE_PATTERN = re.compile(r"mobile|android|iphone", re.IGNORECASE)


def classify_device(user_agent: Optional[str]) -> DeviceClass:
    if user_agent and MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"
