"""End-to-end tests for the Authorizer facade."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from rebaccore import (
    DOCUMENT_SCHEMA,
    Authorizer,
    AuthzConfig,
    DocumentPermissions,
    InvalidRelation,
    MemoryTupleStore,
    ObjectType,
    OwnershipError,
    ParentCycleError,
    build_authorizer,
    format_doc_id,
    format_group_member,
    format_user_id,
)
from rebaccore.store.redis_store import RedisTupleStore


class TestIdentifiers:
    def test_user_id_keeps_provider_prefix(self) -> None:
        assert str(format_user_id("auth0|123")) == "user:auth0|123"

    def test_doc_id(self) -> None:
        assert str(format_doc_id("99")) == "doc:99"

    def test_group_member(self) -> None:
        assert str(format_group_member("eng")) == "group:eng#member"


class TestScenarios:
    """Acceptance scenarios for document sharing."""

    @pytest.mark.asyncio
    async def test_owner_can_share(self, authz: Authorizer) -> None:
        """Test only the owner may share a document."""
        await authz.create_document("alice", "1")
        assert await authz.can_share("alice", "1")
        assert not await authz.can_share("bob", "1")

    @pytest.mark.asyncio
    async def test_group_folder_grant_reaches_document(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.assign_group_to_folder("eng", "10")
        await authz.add_user_to_group("carol", "eng")
        await authz.create_document("alice", "99", parent_id="10")
        assert await authz.can_read("carol", "99")
        assert not await authz.can_write("carol", "99")

    @pytest.mark.asyncio
    async def test_recycled_folder_id_starts_clean(self, authz: Authorizer, store: MemoryTupleStore) -> None:
        await authz.create_folder("alice", "10")
        await authz.share_folder("10", "bob")
        await authz.assign_group_to_folder("eng", "10")
        await authz.create_document("alice", "99", parent_id="10")

        await authz.delete_folder("10")
        assert await authz.read_tuples("folder:10") == []

        await authz.create_folder("dora", "10")
        assert await authz.read_tuples("folder:10") == [
            {"user": "user:dora", "relation": "owner", "object": "folder:10"}
        ]
        assert not await authz.can_view_folder("bob", "10")
        assert not await authz.can_read("bob", "99")
        assert len(store) == 2


class TestSharingProperties:
    """Tests for grant, revoke, inheritance and group indirection."""

    @pytest.mark.asyncio
    async def test_owner_reads_and_writes(self, authz: Authorizer) -> None:
        await authz.create_document("auth0|alice", "1")
        perms = await authz.document_permissions("auth0|alice", "1")
        assert perms == DocumentPermissions(can_read=True, can_write=True, can_share=True, can_change_owner=True)

    @pytest.mark.asyncio
    async def test_unshare_revokes(self, authz: Authorizer) -> None:
        await authz.create_document("alice", "1")
        await authz.share_document("1", "bob")
        assert await authz.can_read("bob", "1")
        await authz.unshare_document("1", "bob")
        assert not await authz.can_read("bob", "1")

    @pytest.mark.asyncio
    async def test_move_drops_inherited_access(self, authz: Authorizer) -> None:
        """Test re-parenting keeps no stale access from the old folder."""
        await authz.create_folder("alice", "f1")
        await authz.create_folder("alice", "f2")
        await authz.create_document("alice", "d", parent_id="f1")
        await authz.share_folder("f1", "bob")
        assert await authz.can_read("bob", "d")

        await authz.move_document("d", "f2")
        assert not await authz.can_read("bob", "d")

        await authz.share_folder("f2", "bob")
        assert await authz.can_read("bob", "d")

    @pytest.mark.asyncio
    async def test_move_out_of_folder(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "f1")
        await authz.create_document("dora", "d", parent_id="f1")
        await authz.move_document("d", None)
        assert not await authz.can_write("alice", "d")
        assert await authz.can_write("dora", "d")

    @pytest.mark.asyncio
    async def test_group_membership_removal(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.create_document("alice", "99", parent_id="10")
        await authz.assign_group_to_folder("eng", "10")
        await authz.add_user_to_group("carol", "eng")
        assert await authz.can_read("carol", "99")

        await authz.remove_user_from_group("carol", "eng")
        assert not await authz.can_read("carol", "99")
        assert await authz.read_tuples("folder:10") == [
            {"user": "user:alice", "relation": "owner", "object": "folder:10"},
            {"user": "group:eng#member", "relation": "viewer", "object": "folder:10"},
        ]

    @pytest.mark.asyncio
    async def test_duplicate_share_is_single_tuple(self, authz: Authorizer) -> None:
        await authz.create_document("alice", "1")
        await authz.share_document("1", "bob")
        await authz.share_document("1", "bob")
        assert len(await authz.read_tuples("doc:1")) == 2
        assert await authz.documents_readable_by("bob") == ["1"]


class TestOwnership:
    @pytest.mark.asyncio
    async def test_transfer_document(self, authz: Authorizer) -> None:
        await authz.create_document("alice", "1")
        await authz.transfer_document_ownership("1", "bob")
        assert await authz.can_change_owner("bob", "1")
        assert not await authz.can_read("alice", "1")

    @pytest.mark.asyncio
    async def test_transfer_folder(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.transfer_folder_ownership("10", "bob")
        assert await authz.is_folder_owner("bob", "10")
        assert not await authz.is_folder_owner("alice", "10")

    @pytest.mark.asyncio
    async def test_last_owner_cannot_be_unshared(self, authz: Authorizer) -> None:
        await authz.create_document("alice", "1")
        with pytest.raises(OwnershipError):
            await authz.unshare_document("1", "alice", "owner")

    @pytest.mark.asyncio
    async def test_co_owner_can_be_unshared(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.share_folder("10", "bob", "owner")
        await authz.unshare_folder("10", "alice", "owner")
        assert not await authz.is_folder_owner("alice", "10")
        assert await authz.can_create_file("bob", "10")

    @pytest.mark.asyncio
    async def test_folder_owner_cannot_share_nested_document(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.create_document("bob", "99", parent_id="10")
        perms = await authz.document_permissions("alice", "99")
        assert perms.can_read and perms.can_write
        assert not perms.can_share and not perms.can_change_owner

    @pytest.mark.asyncio
    async def test_invalid_share_permission(self, authz: Authorizer) -> None:
        await authz.create_document("alice", "1")
        with pytest.raises(InvalidRelation):
            await authz.share_document("1", "bob", "editor")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_create_existing_id_rejected(self, authz: Authorizer) -> None:
        """Test creating over a live id cannot add a second owner."""
        await authz.create_document("alice", "1")
        with pytest.raises(OwnershipError, match="already has an owner"):
            await authz.create_document("mallory", "1")
        assert not await authz.can_read("mallory", "1")
        assert await authz.read_tuples("doc:1") == [{"user": "user:alice", "relation": "owner", "object": "doc:1"}]

    @pytest.mark.asyncio
    async def test_delete_group_keeps_last_folder_owner(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.assign_group_to_folder("eng", "10", "owner")
        await authz.unshare_folder("10", "alice", "owner")

        with pytest.raises(OwnershipError):
            await authz.delete_group("eng")
        assert await authz.read_tuples("folder:10") == [
            {"user": "group:eng#member", "relation": "owner", "object": "folder:10"}
        ]

    @pytest.mark.asyncio
    async def test_concurrent_owner_unshares_keep_one(self, fake_redis) -> None:
        """Test racing owner removals on a shared Redis store leave an owner."""
        authz = build_authorizer(AuthzConfig(), store=RedisTupleStore(client=fake_redis))
        await authz.create_document("alice", "1")
        await authz.share_document("1", "bob", "owner")

        results = await asyncio.gather(
            authz.unshare_document("1", "alice", "owner"),
            authz.unshare_document("1", "bob", "owner"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, OwnershipError) for r in results) == 1
        owners = [t for t in await authz.read_tuples("doc:1") if t["relation"] == "owner"]
        assert len(owners) == 1


class TestMalformedIds:
    """Tests for checks and listings given ids that cannot form a reference."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "a#b", "bad user"])
    @pytest.mark.parametrize(
        "method",
        [
            "can_read",
            "can_write",
            "can_share",
            "can_change_owner",
            "can_create_file",
            "can_view_folder",
            "is_folder_owner",
        ],
    )
    async def test_checks_deny(self, authz: Authorizer, method: str, bad: str, caplog) -> None:
        await authz.create_folder("alice", "10")
        await authz.create_document("alice", "1", parent_id="10")
        check = getattr(authz, method)
        target = "10" if method in ("can_create_file", "can_view_folder", "is_folder_owner") else "1"
        with caplog.at_level("WARNING"):
            assert await check(bad, target) is False
            assert await check("alice", bad) is False
        assert "malformed id" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "a#b", "bad user"])
    async def test_listings_empty(self, authz: Authorizer, bad: str) -> None:
        assert await authz.documents_readable_by(bad) == []
        assert await authz.folders_viewable_by(bad) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "a#b", "bad user"])
    async def test_document_permissions_empty(self, authz: Authorizer, bad: str) -> None:
        await authz.create_document("alice", "1")
        assert await authz.document_permissions(bad, "1") == DocumentPermissions()
        assert await authz.document_permissions("alice", bad) == DocumentPermissions()

    @pytest.mark.asyncio
    async def test_mutations_still_raise(self, authz: Authorizer) -> None:
        with pytest.raises(InvalidRelation):
            await authz.share_document("1", "bad user")


class TestFolders:
    @pytest.mark.asyncio
    async def test_create_file_inherits(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "root")
        await authz.create_folder("bob", "child", parent_id="root")
        assert await authz.can_create_file("alice", "child")
        assert not await authz.can_create_file("bob", "root")

    @pytest.mark.asyncio
    async def test_move_folder_into_descendant(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "a")
        await authz.create_folder("alice", "b", parent_id="a")
        with pytest.raises(ParentCycleError):
            await authz.move_folder("a", "b")

    @pytest.mark.asyncio
    async def test_listing(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.create_folder("alice", "11", parent_id="10")
        await authz.create_document("alice", "2", parent_id="11")
        await authz.create_document("bob", "3")
        await authz.share_folder("10", "carol")

        assert await authz.folders_viewable_by("carol") == ["10", "11"]
        assert await authz.documents_readable_by("carol") == ["2"]
        assert await authz.documents_readable_by("alice") == ["2"]


class TestGroups:
    @pytest.mark.asyncio
    async def test_members(self, authz: Authorizer) -> None:
        await authz.add_user_to_group("zed", "eng")
        await authz.add_user_to_group("amy", "eng")
        await authz.mutations.grant("group:core#member", "member", "group:eng")
        assert await authz.get_group_members("eng") == ["amy", "zed"]

    @pytest.mark.asyncio
    async def test_delete_group_revokes_grants(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.assign_group_to_folder("eng", "10")
        await authz.add_user_to_group("carol", "eng")
        await authz.delete_group("eng")

        assert await authz.get_group_members("eng") == []
        assert not await authz.can_view_folder("carol", "10")
        assert await authz.read_tuples("folder:10") == [
            {"user": "user:alice", "relation": "owner", "object": "folder:10"}
        ]

    @pytest.mark.asyncio
    async def test_remove_group_from_folder(self, authz: Authorizer) -> None:
        await authz.create_folder("alice", "10")
        await authz.assign_group_to_folder("eng", "10")
        await authz.add_user_to_group("carol", "eng")
        await authz.remove_group_from_folder("eng", "10")
        assert not await authz.can_view_folder("carol", "10")


class TestBuildAuthorizer:
    """Tests for wiring from configuration."""

    @pytest.mark.asyncio
    async def test_defaults(self) -> None:
        authz = build_authorizer(AuthzConfig())
        assert isinstance(authz.mutations.store, MemoryTupleStore)
        await authz.create_document("alice", "1")
        assert await authz.can_read("alice", "1")
        await authz.close()

    def test_limits_from_config(self) -> None:
        authz = build_authorizer(AuthzConfig(max_depth=7))
        assert authz.evaluator.max_depth == 7
        assert authz.mutations.max_depth == 7

    def test_schema_from_file(self, tmp_path) -> None:
        path = tmp_path / "schema.json"
        path.write_text(json.dumps(DOCUMENT_SCHEMA), encoding="utf-8")
        authz = build_authorizer(AuthzConfig(schema_path=str(path)))
        assert authz.evaluator.schema.has_type(ObjectType.DOC)

    def test_config_from_env(self) -> None:
        with patch.dict("os.environ", {"REBAC_MAX_DEPTH": "9"}, clear=True):
            authz = build_authorizer()
        assert authz.evaluator.max_depth == 9
