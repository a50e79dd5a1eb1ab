"""
Tests for the bundled examples.
"""

import pytest

from examples.cascade_example import FlakyAdapter, main
from lifecycle_toolkit.soft_delete import MemoryEntityStore


class TestCascadeExample:
    """Test the cascade walkthrough."""

    @pytest.mark.asyncio
    async def test_flaky_adapter_fails_only_while_unavailable(self):
        store = MemoryEntityStore([])
        sections = FlakyAdapter("section")
        store.register_adapter("section", sections)
        sections.insert({"id": 1, "project_id": 1})

        sections.available = False
        with pytest.raises(ConnectionError, match="section table unavailable"):
            await store.adapter("section").find_many({"project_id": 1})

        sections.available = True
        assert [r["id"] for r in await sections.find_many({"project_id": 1})] == [1]

    @pytest.mark.asyncio
    async def test_walkthrough(self, capsys):
        await main()
        output = capsys.readouterr().out

        assert "ACTION=CASCADE_FAILED" in output
        assert "ENTITY=section" in output
        assert "Cascade complete: False" in output
        assert "After re-deleting: complete=True" in output
        assert "Remaining projects: [2]" in output
