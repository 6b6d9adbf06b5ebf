"""
Tests for the recordings conversion maintenance script.
"""

import asyncio

from scripts.convert_recordings import convert_all, main, pending_recordings


class TestPendingRecordings:
    def test_skips_webm_with_existing_mp4(self, temp_dir):
        """Only recordings without a converted sibling are listed."""
        (temp_dir / "2024-05-01T10-00-00_zoom.webm").write_bytes(b"a")
        (temp_dir / "2024-05-01T10-00-00_zoom.mp4").write_bytes(b"b")
        (temp_dir / "2024-05-02T09-30-00_teams.webm").write_bytes(b"c")
        (temp_dir / "2024-05-02T09-30-00_teams.json").write_text("{}")

        pending = pending_recordings(temp_dir)

        assert [p.name for p in pending] == ["2024-05-02T09-30-00_teams.webm"]

    def test_empty_directory(self, temp_dir):
        """An empty directory has nothing to convert."""
        assert pending_recordings(temp_dir) == []


class TestConvertAll:
    def test_dry_run_touches_nothing(self, temp_dir):
        """Dry run counts files without creating any mp4."""
        webm = temp_dir / "2024-05-02T09-30-00_meet.webm"
        webm.write_bytes(b"data")

        stats = asyncio.run(convert_all(None, [webm], dry_run=True))

        assert stats == {"ok": 1, "failed": 0}
        assert not webm.with_suffix(".mp4").exists()


class TestMain:
    def test_missing_directory_fails(self, temp_dir):
        """A nonexistent recordings directory exits with status 1."""
        assert main([str(temp_dir / "missing")]) == 1

    def test_dry_run_succeeds_without_ffmpeg(self, temp_dir):
        """Dry run works even when ffmpeg cannot be found."""
        (temp_dir / "2024-05-02T09-30-00_meet.webm").write_bytes(b"data")
        assert main(["--dry-run", str(temp_dir)]) == 0
