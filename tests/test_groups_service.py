import unittest
from unittest import mock

from studious.core.errors import (
    AlreadyMember, BackendError, GroupNotFound, InvalidInviteCode, MemberNotFound,
)
from studious.database.storage import SupabaseStorage
from studious.modules.groups import service as groups_service
from studious.modules.groups.schemas import GroupCreate, GroupJoin, GroupUpdate
from studious.modules.groups.service import INVITE_CODE_ALPHABET, GroupService, generate_invite_code
from tests.fakes import EPOCH, FakeAPIError, FakeSupabase


def group_row(group_id="G1", invite_code="ABC123", created_by="U1", **extra):
    row = {
        "id": group_id,
        "name": "Algorithms",
        "description": None,
        "avatar_url": None,
        "created_by": created_by,
        "invite_code": invite_code,
        "created_at": EPOCH.isoformat(),
    }
    row.update(extra)
    return row


class GroupServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = FakeSupabase()
        self.db.unique = {"groups": "invite_code"}
        self.db.seed("profiles", {"id": "U1", "email": "ada@example.com", "full_name": "Ada"})
        self.service = GroupService(self.db, SupabaseStorage(self.db, "group-avatars"))

    def test_invite_codes_use_upper_case_letters_and_digits(self) -> None:
        code = generate_invite_code(6)
        self.assertEqual(len(code), 6)
        self.assertTrue(set(code) <= set(INVITE_CODE_ALPHABET))

    def test_create_adds_creator_as_admin(self) -> None:
        group = self.service.create_group(GroupCreate(name="  Algorithms  "), "U1")

        self.assertEqual(group.name, "Algorithms")
        self.assertEqual(group.created_by, "U1")
        self.assertEqual(len(group.invite_code), 6)
        [membership] = self.db.tables["group_members"]
        self.assertEqual((membership["group_id"], membership["user_id"], membership["role"]), (group.id, "U1", "admin"))

    def test_create_retries_on_invite_code_collision(self) -> None:
        self.db.seed("groups", group_row("G0", invite_code="AAAAAA"))
        with mock.patch.object(groups_service, "generate_invite_code", side_effect=["AAAAAA", "BBBBBB"]):
            group = self.service.create_group(GroupCreate(name="Algorithms"), "U1")
        self.assertEqual(group.invite_code, "BBBBBB")
        self.assertEqual(self.db.log.count(("groups", "insert")), 2)

    def test_create_gives_up_after_repeated_collisions(self) -> None:
        self.db.seed("groups", group_row("G0", invite_code="AAAAAA"))
        with mock.patch.object(groups_service, "generate_invite_code", return_value="AAAAAA"):
            with self.assertRaises(BackendError):
                self.service.create_group(GroupCreate(name="Algorithms"), "U1")
        self.assertEqual(self.db.log.count(("groups", "insert")), groups_service.INVITE_CODE_ATTEMPTS)
        self.assertNotIn("group_members", self.db.tables)

    def test_get_group(self) -> None:
        self.db.seed("groups", group_row())
        self.assertEqual(self.service.get_group_by_id("G1").name, "Algorithms")
        with self.assertRaises(GroupNotFound):
            self.service.get_group_by_id("G9")

    def test_list_groups_only_returns_memberships(self) -> None:
        self.db.seed("groups", group_row("G1"), group_row("G2", invite_code="XYZ789"))
        self.db.seed("group_members", {"id": "gm1", "group_id": "G2", "user_id": "U2", "role": "member"})
        self.assertEqual([g.id for g in self.service.list_groups("U2")], ["G2"])
        self.assertEqual(self.service.list_groups("U3"), [])

    def test_update_group(self) -> None:
        self.db.seed("groups", group_row())
        updated = self.service.update_group("G1", GroupUpdate(name=" Graphs ", description="BFS and DFS"))
        self.assertEqual((updated.name, updated.description), ("Graphs", "BFS and DFS"))
        with self.assertRaises(GroupNotFound):
            self.service.update_group("G9", GroupUpdate(name="x"))

    def test_join_is_case_insensitive(self) -> None:
        self.db.seed("groups", group_row())
        membership = self.service.join_group(GroupJoin(invite_code=" abc123 ").invite_code, "U2")
        self.assertEqual((membership.group_id, membership.role), ("G1", "member"))

    def test_join_distinguishes_unknown_code_from_existing_member(self) -> None:
        self.db.seed("groups", group_row())
        self.db.seed("group_members", {"id": "gm1", "group_id": "G1", "user_id": "U1", "role": "admin"})

        with self.assertRaises(InvalidInviteCode):
            self.service.join_group("ZZZZZZ", "U2")
        with self.assertRaises(AlreadyMember):
            self.service.join_group("abc123", "U1")

    def test_join_race_maps_unique_violation_to_already_member(self) -> None:
        self.db.seed("groups", group_row())
        self.db.errors[("group_members", "insert")] = [FakeAPIError("duplicate key value", code="23505")]
        with self.assertRaises(AlreadyMember):
            self.service.join_group("ABC123", "U2")

    def test_backend_failures_become_friendly_errors(self) -> None:
        self.db.errors[("groups", "select")] = [FakeAPIError("network connection lost")]
        with self.assertRaises(BackendError) as ctx:
            self.service.join_group("ABC123", "U2")
        self.assertEqual(ctx.exception.message, "Network error. Please check your connection and try again.")

    def test_delete_cascades_in_order(self) -> None:
        self.db.seed("groups", group_row())
        self.db.seed("group_members", {"id": "gm1", "group_id": "G1", "user_id": "U1", "role": "admin"})
        self.db.seed("messages", {"id": "m1", "group_id": "G1"}, {"id": "m2", "group_id": "G2"})
        self.db.seed("shared_resources", {"id": "r1", "group_id": "G1"})

        self.assertTrue(self.service.delete_group("G1"))

        deletes = [table for table, op in self.db.log if op == "delete"]
        self.assertEqual(deletes, ["messages", "shared_resources", "group_members", "groups"])
        self.assertEqual([m["id"] for m in self.db.tables["messages"]], ["m2"])
        self.assertEqual(self.db.tables["groups"], [])

    def test_members_include_profiles(self) -> None:
        self.db.seed("group_members", {"id": "gm1", "group_id": "G1", "user_id": "U1", "role": "admin"})
        [member] = self.service.list_members("G1")
        self.assertEqual(member.user.display_name, "Ada")

    def test_toggle_member_role(self) -> None:
        self.db.seed("group_members", {"id": "gm2", "group_id": "G1", "user_id": "U2", "role": "member"})
        self.assertEqual(self.service.toggle_member_role("G1", "gm2").role, "admin")
        self.assertEqual(self.service.toggle_member_role("G1", "gm2").role, "member")
        with self.assertRaises(MemberNotFound):
            self.service.toggle_member_role("G1", "gm9")

    def test_remove_member(self) -> None:
        self.db.seed("group_members", {"id": "gm2", "group_id": "G1", "user_id": "U2", "role": "member"})
        self.assertTrue(self.service.remove_member("G1", "U2"))
        self.assertFalse(self.service.remove_member("G1", "U2"))

    def test_avatar_upload_stores_cache_busted_url(self) -> None:
        self.db.seed("groups", group_row())
        with mock.patch.object(groups_service.time, "time", return_value=1700000000.0):
            group = self.service.update_avatar("G1", "me.JPG", b"\xff\xd8", "image/jpeg")

        path = "G1_1700000000000.JPG"
        content, options = self.db.storage.files[("group-avatars", path)]
        self.assertEqual(content, b"\xff\xd8")
        self.assertEqual(options, {"upsert": "true", "content-type": "image/jpeg"})
        self.assertEqual(
            group.avatar_url,
            f"https://project.supabase.co/storage/v1/object/public/group-avatars/{path}?t=1700000000000",
        )


if __name__ == "__main__":
    unittest.main()
