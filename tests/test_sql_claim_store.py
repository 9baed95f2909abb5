"""Tests for the SQL claim store implementation using unittest."""

import os
import tempfile
import unittest

try:
    from claimy.sql.sql_claim_store import SqlClaimStore
    import aiosqlite  # noqa: F401
    SQL_AVAILABLE = True
except ImportError:
    SQL_AVAILABLE = False

from claimy.claim_store import ClaimStore
from tests.abstract_claim_store_base import AbstractClaimStoreTestBase, claim_input


@unittest.skipIf(not SQL_AVAILABLE, "SQL dependencies not available")
class TestSqlClaimStore(AbstractClaimStoreTestBase):
    """Test SQL claim store implementation."""

    def setUp(self):
        """Set up test fixtures"""
        super().setUp()
        # Create a temporary SQLite database
        self.temp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
        self.temp_db.close()
        self.database_url = f"sqlite+aiosqlite:///{self.temp_db.name}"

    def tearDown(self):
        """Clean up test fixtures"""
        super().tearDown()
        if os.path.exists(self.temp_db.name):
            os.unlink(self.temp_db.name)

    async def create_store(self) -> ClaimStore:
        return SqlClaimStore(database_url=self.database_url)

    async def test_claims_survive_reopen(self):
        claim = await self.store.create(claim_input())
        async with await self.create_store() as reopened:
            self.assertEqual(await reopened.get_claim(claim.claim_id), claim)
