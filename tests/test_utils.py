"""Tests for smokecore/utils.py: artifact writes and quiet temp-file removal."""
import json
from pathlib import Path

from smokecore.schemas import SmokeRun
from smokecore.utils import remove_quietly, write_artifact


class TestRemoveQuietly:
    def test_removes_file(self, tmp_path):
        path = tmp_path / 'scratch.step'
        path.write_text('ISO-10303-21;')
        remove_quietly(path)
        assert not path.exists()

    def test_missing_file(self, tmp_path):
        remove_quietly(tmp_path / 'missing.step')

    def test_unlink_error_is_swallowed(self, monkeypatch, tmp_path):
        path = tmp_path / 'locked.step'
        path.write_text('ISO-10303-21;')

        def unlink(self, missing_ok=False):
            raise PermissionError(13, 'Permission denied', str(self))

        monkeypatch.setattr(Path, 'unlink', unlink)
        remove_quietly(path)
        monkeypatch.undo()
        assert path.exists()


class TestWriteArtifact:
    def test_replaces_existing_file(self, tmp_path):
        path = tmp_path / 'smoke.json'
        path.write_text('stale')
        write_artifact(path, SmokeRun(ok=True, summary={}, mode='mock'))
        assert json.loads(path.read_text()) == {'ok': True, 'summary': {}, 'mode': 'mock'}
        assert [p.name for p in tmp_path.iterdir()] == ['smoke.json']
