"""Tests for installation history storage."""

from __future__ import annotations

import pytest

from claudedeploy.storage.history import InstallationHistory
from claudedeploy.storage.models import InstallKind, InstallStatus


class TestInstallationHistory:
    @pytest.mark.asyncio
    async def test_start_and_finish(self, tmp_path):
        async with InstallationHistory(str(tmp_path / "test.db")) as history:
            record = await history.start(
                InstallKind.REMOTE,
                {"host": "example.com", "password": "pw", "providers": [{"name": "openai", "api_key": "sk-1"}]},
            )
            assert record.status is InstallStatus.PENDING

            await history.finish(record, InstallStatus.SUCCESS)

            records = await history.recent(limit=5)
            assert len(records) == 1
            assert records[0].id == record.id
            assert records[0].status is InstallStatus.SUCCESS
            assert records[0].kind is InstallKind.REMOTE
            assert "password" not in records[0].config
            assert records[0].config["providers"][0]["api_key"] == "***"

    @pytest.mark.asyncio
    async def test_recent_ordering(self, tmp_path):
        async with InstallationHistory(str(tmp_path / "test2.db")) as history:
            ids = []
            for i in range(5):
                record = await history.start(InstallKind.LOCAL, {"n": i})
                ids.append(record.id)

            records = await history.recent(limit=3)
            assert len(records) == 3
            # Most recent first
            assert records[0].id == ids[4]
            assert records[2].id == ids[2]

    @pytest.mark.asyncio
    async def test_failed_message(self, tmp_path):
        async with InstallationHistory(str(tmp_path / "test3.db")) as history:
            record = await history.start(InstallKind.LOCAL, {})
            await history.finish(record, InstallStatus.FAILED, "npm is not available")

            records = await history.recent(limit=1)
            assert records[0].status is InstallStatus.FAILED
            assert records[0].message == "npm is not available"

    @pytest.mark.asyncio
    async def test_not_opened(self, tmp_path):
        history = InstallationHistory(str(tmp_path / "test4.db"))
        with pytest.raises(RuntimeError):
            await history.recent()
