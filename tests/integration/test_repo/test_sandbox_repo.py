from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.core.sandbox.slug import generate_unique_slug
from sandboxer.models.sandbox import Sandbox, SandboxStatus
from sandboxer.repos.sandbox import SandboxRepository
from tests.factories.sandbox import SandboxCreateFactory


async def _create(repo: SandboxRepository, user_id: str, slug: str, **overrides) -> Sandbox:
    sandbox_id = uuid4()
    return await repo.create(
        SandboxCreateFactory.build(**overrides),
        sandbox_id=sandbox_id,
        user_id=user_id,
        slug=slug,
        repo_name=f"{slug}-{sandbox_id.hex[:12]}",
        flavor_id="python",
        resource_tier_id="starter",
        addon_ids=["code-server"],
    )


@pytest.mark.integration
class TestSandboxRepository:
    """Integration tests for SandboxRepository."""

    @pytest.fixture
    def sandbox_repo(self, db_session: AsyncSession) -> SandboxRepository:
        return SandboxRepository(db_session)

    async def test_create_and_get(self, sandbox_repo: SandboxRepository) -> None:
        """Test creating a sandbox record and reading it back."""
        created = await _create(sandbox_repo, "user-create", "demo")
        assert created.status == SandboxStatus.CREATED
        assert created.container_id is None
        assert created.addon_ids == ["code-server"]

        fetched = await sandbox_repo.get_by_id(created.id)
        assert fetched is not None
        assert fetched.slug == "demo"

        # Scoped lookup hides other users' records
        assert await sandbox_repo.get_by_id(created.id, user_id="someone-else") is None
        assert await sandbox_repo.get_by_id(created.id, user_id="user-create") is not None

    async def test_slug_unique_per_user(self, sandbox_repo: SandboxRepository, db_session: AsyncSession) -> None:
        """The same slug may exist once per user."""
        await _create(sandbox_repo, "user-a", "demo")
        await _create(sandbox_repo, "user-b", "demo")
        await db_session.commit()

        with pytest.raises(IntegrityError):
            await _create(sandbox_repo, "user-a", "demo")
        await db_session.rollback()

    async def test_slug_lookup(self, sandbox_repo: SandboxRepository) -> None:
        """Test slug availability and lookup."""
        await _create(sandbox_repo, "user-slug", "taken")
        assert not await sandbox_repo.is_slug_available("user-slug", "taken")
        assert await sandbox_repo.is_slug_available("user-slug", "free")
        assert await sandbox_repo.is_slug_available("other-user", "taken")

        found = await sandbox_repo.get_by_slug("user-slug", "taken")
        assert found is not None
        assert found.user_id == "user-slug"

    async def test_list_and_filter(self, sandbox_repo: SandboxRepository) -> None:
        """Test listing by owner and status."""
        first = await _create(sandbox_repo, "user-list", "one")
        await _create(sandbox_repo, "user-list", "two")
        await _create(sandbox_repo, "other-user", "three")
        await sandbox_repo.set_status(first.id, SandboxStatus.STARTING)

        sandboxes = await sandbox_repo.list_by_user("user-list")
        assert {s.slug for s in sandboxes} == {"one", "two"}

        starting = await sandbox_repo.list_by_user("user-list", [SandboxStatus.STARTING])
        assert [s.id for s in starting] == [first.id]

        assert len(await sandbox_repo.list_all()) == 3
        assert len(await sandbox_repo.list_all([SandboxStatus.CREATED])) == 2

    async def test_count_by_status(self, sandbox_repo: SandboxRepository) -> None:
        """Every status is present in the counts, including zeros."""
        first = await _create(sandbox_repo, "user-count", "one")
        await _create(sandbox_repo, "user-count", "two")
        await sandbox_repo.set_status(first.id, SandboxStatus.ERROR, "[engine.failure] start: boom")

        counts = await sandbox_repo.count_by_status("user-count")
        assert counts[SandboxStatus.CREATED] == 1
        assert counts[SandboxStatus.ERROR] == 1
        assert counts[SandboxStatus.RUNNING] == 0
        assert set(counts) == set(SandboxStatus)

    async def test_error_message_lives_with_error_status(self, sandbox_repo: SandboxRepository) -> None:
        """The message is stored for error and cleared on any other status."""
        created = await _create(sandbox_repo, "user-error", "demo")

        with pytest.raises(ValueError):
            await sandbox_repo.set_status(created.id, SandboxStatus.ERROR)

        errored = await sandbox_repo.set_status(created.id, SandboxStatus.ERROR, "[engine.failure] start: boom")
        assert errored is not None
        assert errored.error_message == "[engine.failure] start: boom"

        recovered = await sandbox_repo.set_status(created.id, SandboxStatus.STARTING, "ignored")
        assert recovered is not None
        assert recovered.error_message is None

        assert await sandbox_repo.set_status(uuid4(), SandboxStatus.RUNNING) is None

    async def test_bind_container(self, sandbox_repo: SandboxRepository) -> None:
        """Container id, name and URLs are written together."""
        created = await _create(sandbox_repo, "user-bind", "demo")

        with pytest.raises(ValueError):
            await sandbox_repo.bind_container(created.id, "abc", "")

        bound = await sandbox_repo.bind_container(
            created.id,
            "abc123",
            "sandboxer-demo",
            {"homepage": "http://demo.localhost", "opencode": "http://demo-api.localhost"},
        )
        assert bound is not None
        assert bound.container_id == "abc123"
        assert bound.container_name == "sandboxer-demo"
        assert bound.opencode_url == "http://demo-api.localhost"
        assert bound.code_server_url is None

    async def test_update_urls(self, sandbox_repo: SandboxRepository) -> None:
        created = await _create(sandbox_repo, "user-urls", "demo")
        updated = await sandbox_repo.update_urls(created.id, {"vnc": "http://demo-vnc.localhost"})
        assert updated is not None
        assert updated.vnc_url == "http://demo-vnc.localhost"
        assert updated.urls["vnc"] == "http://demo-vnc.localhost"

    async def test_touch_and_delete(self, sandbox_repo: SandboxRepository) -> None:
        """Test touching and deleting records."""
        created = await _create(sandbox_repo, "user-touch", "demo")
        assert created.last_accessed_at is None

        assert await sandbox_repo.touch(created.id)
        fetched = await sandbox_repo.get_by_id(created.id)
        assert fetched is not None
        assert fetched.last_accessed_at is not None

        assert await sandbox_repo.delete(created.id)
        assert await sandbox_repo.get_by_id(created.id) is None
        assert not await sandbox_repo.delete(created.id)
        assert not await sandbox_repo.touch(created.id)


@pytest.mark.integration
class TestGenerateUniqueSlug:
    """Slug generation against the sandboxes table."""

    @pytest.fixture
    def sandbox_repo(self, db_session: AsyncSession) -> SandboxRepository:
        return SandboxRepository(db_session)

    async def test_free_slug(self, sandbox_repo: SandboxRepository) -> None:
        assert await generate_unique_slug(sandbox_repo, "user-1", "My Project") == "my-project"

    async def test_collisions_get_numeric_suffix(self, sandbox_repo: SandboxRepository) -> None:
        """Taken slugs get -2, -3, ... appended."""
        await _create(sandbox_repo, "user-1", "my-project")
        assert await generate_unique_slug(sandbox_repo, "user-1", "My Project") == "my-project-2"

        await _create(sandbox_repo, "user-1", "my-project-2")
        assert await generate_unique_slug(sandbox_repo, "user-1", "My Project") == "my-project-3"

        # Other users are unaffected
        assert await generate_unique_slug(sandbox_repo, "user-2", "My Project") == "my-project"

    async def test_suffix_stays_within_bound(self, sandbox_repo: SandboxRepository) -> None:
        """The base is trimmed to make room for the suffix."""
        base = "x" * 48
        await _create(sandbox_repo, "user-1", base)
        slug = await generate_unique_slug(sandbox_repo, "user-1", base)
        assert slug == "x" * 46 + "-2"
