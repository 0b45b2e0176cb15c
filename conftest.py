import shutil

import pytest


def pytest_configure(config):
    """Register tool-aware pytest markers."""
    config.addinivalue_line("markers", "needs_ffmpeg: requires the ffmpeg binary on PATH")


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests whose external tools are not installed."""
    has_ffmpeg = shutil.which("ffmpeg") is not None

    for item in items:
        if item.get_closest_marker("needs_ffmpeg") and not has_ffmpeg:
            item.add_marker(pytest.mark.skip(reason="Requires ffmpeg on PATH"))
