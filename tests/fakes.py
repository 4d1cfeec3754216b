"""Fake file selectors and capability probes for testing.

These stand in for the interactive file dialog and the runtime capability
check so upgrade paths can be driven deterministically:
- Each selector answer is fixed at construction time
- Calls are counted so tests can assert which step was reached
"""
from pathlib import Path
from typing import Optional


def always_available(directory: Path) -> bool:
    return True


def never_available(directory: Path) -> bool:
    return False


class FakeFileSelector:
    """Selector with canned answers; ``None`` means the user cancelled."""

    def __init__(self, existing: Optional[Path] = None, new: Optional[Path] = None) -> None:
        self.existing = existing
        self.new = new
        self.existing_calls = 0
        self.new_calls = 0

    def choose_existing(self) -> Optional[Path]:
        self.existing_calls += 1
        return self.existing

    def choose_new(self) -> Optional[Path]:
        self.new_calls += 1
        return self.new


class CancellingFileSelector(FakeFileSelector):
    """User closes both dialogs."""

    def __init__(self) -> None:
        super().__init__(existing=None, new=None)


class ExplodingFileSelector(FakeFileSelector):
    """Selector whose dialog crashes with an unexpected error."""

    def choose_existing(self) -> Optional[Path]:
        self.existing_calls += 1
        raise RuntimeError("dialog crashed")
