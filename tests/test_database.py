import pytest

from disaster_training.database import async_session_maker, session_scope
from disaster_training.models.database_models import User


async def test_session_scope_commits(make_user):
    user = await make_user("Volunteer")

    async with session_scope() as session:
        stored = await session.get(User, user.id)
        stored.organization = "Red Cross"

    async with async_session_maker() as session:
        assert (await session.get(User, user.id)).organization == "Red Cross"


async def test_session_scope_rolls_back_on_error(make_user):
    user = await make_user("Volunteer")

    with pytest.raises(RuntimeError):
        async with session_scope() as session:
            stored = await session.get(User, user.id)
            stored.organization = "Never saved"
            await session.flush()
            raise RuntimeError("boom")

    async with async_session_maker() as session:
        assert (await session.get(User, user.id)).organization == "Volunteer Org"
