"""
Unit Tests — session_scope
═══════════════════════════

Coverage targets:
  ✅ One session and one transaction per block
  ✅ An exception inside the block reaches the transaction's __aexit__ (rollback)
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from docvault.db import session as db_session


def _factory() -> tuple[MagicMock, MagicMock]:
    session = MagicMock()
    session.begin.return_value.__aexit__ = AsyncMock(return_value=False)

    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__  = AsyncMock(return_value=False)
    return factory, session


@pytest.mark.unit
class TestSessionScope:

    async def test_yields_session_inside_transaction(self):
        factory, session = _factory()

        async with db_session.session_scope(factory) as db:
            assert db is session

        factory.assert_called_once_with()
        session.begin.assert_called_once_with()
        session.begin.return_value.__aexit__.assert_awaited_once_with(None, None, None)

    async def test_exception_is_passed_to_transaction(self):
        factory, session = _factory()

        with pytest.raises(RuntimeError, match="write failed"):
            async with db_session.session_scope(factory):
                raise RuntimeError("write failed")

        exc_type = session.begin.return_value.__aexit__.await_args.args[0]
        assert exc_type is RuntimeError

    def test_store_is_the_only_session_entry_point(self):
        assert not hasattr(db_session, "get_db")
