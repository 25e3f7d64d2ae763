from __future__ import annotations

import datetime as dt

from typer.testing import CliRunner

from minisocial.cli import app
from minisocial.models import Channel, VerificationCode
from minisocial.storage import SnapshotFile, Store

runner = CliRunner()


def test_stats_on_fresh_snapshot(tmp_path):
    data = tmp_path / "data.json"
    result = runner.invoke(app, ["stats", "--data", str(data)])
    assert result.exit_code == 0
    assert "users" in result.stdout
    assert data.exists()


def test_sweep_codes_removes_expired(tmp_path):
    data = tmp_path / "data.json"
    store = Store(snapshot=SnapshotFile(str(data)))
    past = dt.datetime(2020, 1, 1, tzinfo=dt.timezone.utc)
    with store.transaction() as tx:
        tx.put(
            VerificationCode(
                id=tx.allocate_id(VerificationCode),
                user_id=1,
                channel=Channel.EMAIL,
                code_hash="x",
                created_at=past,
                expires_at=past,
            )
        )

    result = runner.invoke(app, ["sweep-codes", "--data", str(data)])
    assert result.exit_code == 0
    assert "Removed 1" in result.stdout
    assert Store(snapshot=SnapshotFile(str(data))).all(VerificationCode) == []
