"""
Semantic version increment helper
"""

import re
from dataclasses import dataclass

_SEMVER = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


@dataclass
class VersionInfo:
    major: int = 1
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, version: str) -> "VersionInfo":
        """Parse 'x.y.z'; anything else yields 1.0.0"""
        match = _SEMVER.match((version or "").strip())
        if not match:
            return cls()
        return cls(*(int(part) for part in match.groups()))

    @staticmethod
    def is_valid(version: str) -> bool:
        """True only for a bare 'x.y.z'"""
        return bool(version) and _SEMVER.fullmatch(version) is not None

    def increment_major(self) -> str:
        self.major += 1
        self.minor = 0
        self.patch = 0
        return str(self)

    def increment_minor(self) -> str:
        self.minor += 1
        self.patch = 0
        return str(self)

    def increment_patch(self) -> str:
        self.patch += 1
        return str(self)

    def bump(self, part: str) -> str:
        """Increment 'major', 'minor' or 'patch'"""
        handlers = {
            "major": self.increment_major,
            "minor": self.increment_minor,
            "patch": self.increment_patch,
        }
        if part not in handlers:
            raise ValueError(f"Unknown version part: {part}")
        return handlers[part]()

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"
