"""Tests for the directory release source and the throttling wrapper."""

from __future__ import annotations

import threading

from scaffold_sync.fetch import (
    DirectoryReleaseSource,
    Downloaded,
    Malformed,
    NotFound,
    ReleaseFound,
    ThrottledSource,
    Unreachable,
)

# ---------------------------------------------------------------------------
# DirectoryReleaseSource
# ---------------------------------------------------------------------------


class TestDirectoryReleaseSource:
    """Tests for DirectoryReleaseSource."""

    def test_versions(self, releases):
        releases.add("v1.0.0", {"a.md": "a"})
        releases.add("v1.10.0", {"a.md": "a"})
        (releases.root / "not a version").mkdir()
        assert sorted(releases.source.versions()) == ["v1.0.0", "v1.10.0"]

    def test_latest_is_highest_version(self, releases):
        releases.add("v1.9.0", {"a.md": "a"})
        releases.add("v1.10.0", {"a.md": "a", "docs/b.md": "b"})

        result = releases.source.get_latest()

        assert isinstance(result, ReleaseFound)
        assert result.release.version == "v1.10.0"
        assert result.release.paths == ["a.md", "docs/b.md"]

    def test_missing_root_unreachable(self, tmp_path):
        source = DirectoryReleaseSource(tmp_path / "nowhere")
        assert isinstance(source.get_latest(), Unreachable)
        assert isinstance(source.get_version("v1"), Unreachable)

    def test_empty_root_not_found(self, releases):
        assert isinstance(releases.source.get_latest(), NotFound)

    def test_unknown_version_not_found(self, releases):
        releases.add("v1.0.0", {"a.md": "a"})
        assert isinstance(releases.source.get_version("v2.0.0"), NotFound)

    def test_invalid_version_malformed(self, releases):
        assert isinstance(releases.source.get_version("../etc"), Malformed)

    def test_download_copies_files(self, releases, tmp_path):
        releases.add("v1.0.0", {"a.md": b"a\r\n", "docs/b.md": "b"})
        release = releases.source.get_version("v1.0.0").release

        result = releases.source.download(release, tmp_path / "dest")

        assert isinstance(result, Downloaded)
        assert result.paths == ["a.md", "docs/b.md"]
        assert (tmp_path / "dest" / "a.md").read_bytes() == b"a\r\n"

    def test_download_missing_file_not_found(self, releases, tmp_path):
        releases.add("v1.0.0", {"a.md": "a"})
        release = releases.source.get_version("v1.0.0").release
        (releases.root / "v1.0.0" / "a.md").unlink()
        assert isinstance(
            releases.source.download(release, tmp_path / "dest"), NotFound
        )


# ---------------------------------------------------------------------------
# ThrottledSource
# ---------------------------------------------------------------------------


class FakeClock:
    """Manual clock; sleeping advances it."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestThrottledSource:
    """Tests for ThrottledSource."""

    def test_first_request_not_delayed(self, releases):
        releases.add("v1", {"a.md": "a"})
        clock = FakeClock()
        throttled = ThrottledSource(releases.source, 1.0, clock, clock.sleep)

        throttled.get_latest()

        assert clock.sleeps == []

    def test_back_to_back_requests_spaced(self, releases):
        releases.add("v1", {"a.md": "a"})
        clock = FakeClock()
        throttled = ThrottledSource(releases.source, 1.0, clock, clock.sleep)

        throttled.get_latest()
        clock.now += 0.25
        throttled.get_version("v1")

        assert clock.sleeps == [0.75]

    def test_no_delay_after_interval(self, releases):
        releases.add("v1", {"a.md": "a"})
        clock = FakeClock()
        throttled = ThrottledSource(releases.source, 1.0, clock, clock.sleep)

        throttled.get_latest()
        clock.now += 5
        throttled.get_latest()

        assert clock.sleeps == []

    def test_results_passed_through(self, releases, tmp_path):
        releases.add("v1", {"a.md": "a"})
        throttled = ThrottledSource(releases.source, 0.0)
        release = throttled.get_version("v1").release
        assert isinstance(throttled.download(release, tmp_path / "d"), Downloaded)

    def test_calls_never_overlap(self):
        active = []
        overlaps = []

        class SlowSource:
            def get_latest(self):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
                threading.Event().wait(0.01)
                active.pop()
                return NotFound(identifier="latest")

        throttled = ThrottledSource(SlowSource(), 0.0)
        threads = [
            threading.Thread(target=throttled.get_latest) for _ in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
