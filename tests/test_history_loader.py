import asyncio
import unittest

from studious.core.errors import ConversationLoadError, StaleLoadError
from studious.modules.chat.cache import SessionCache
from studious.modules.chat.history import HistoryLoader, is_group_admin
from tests.fakes import FakeChatRepository, FakeClock, make_group, make_member


class HistoryLoaderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache = SessionCache(clock=self.clock.now)
        self.repo = FakeChatRepository()
        self.repo.add_group(make_group("G1", created_by="U1"), [
            make_member("U1", role="member"),
            make_member("U2", role="admin"),
            make_member("U3"),
        ])
        self.loader = HistoryLoader(self.repo, self.cache, limit=3)

    async def test_loads_most_recent_window_oldest_first(self) -> None:
        for index in range(5):
            self.repo.add_message(f"m{index}", t=index)

        history = await self.loader.load("G1", "U3")

        self.assertEqual([m.id for m in history.messages], ["m2", "m3", "m4"])
        self.assertEqual(len(history.members), 3)

    async def test_excludes_messages_deleted_for_everyone(self) -> None:
        self.repo.add_message("m1", t=1)
        self.repo.add_message("m2", t=2, deleted_at="2024-01-01T00:00:05+00:00")
        history = await self.loader.load("G1", "U3")
        self.assertEqual([m.id for m in history.messages], ["m1"])

    async def test_hidden_markers_are_scoped_to_the_viewer(self) -> None:
        self.repo.add_message("m1", t=1)
        self.repo.hidden.add(("m1", "U2"))

        self.assertEqual((await self.loader.load("G1", "U2")).hidden_message_ids, {"m1"})
        self.assertEqual((await self.loader.load("G1", "U3")).hidden_message_ids, set())

    async def test_writes_all_fields_to_cache(self) -> None:
        self.repo.add_message("m1", t=1)
        self.repo.hidden.add(("m1", "U3"))

        await self.loader.load("G1", "U3")

        snapshot = self.cache.get("G1")
        self.assertIsNotNone(snapshot)
        self.assertEqual(snapshot.group.id, "G1")
        self.assertEqual([m.id for m in snapshot.messages], ["m1"])
        self.assertEqual(len(snapshot.members), 3)
        self.assertEqual(snapshot.hidden_message_ids, {"m1"})

    async def test_admin_by_role_or_creator(self) -> None:
        self.assertTrue((await self.loader.load("G1", "U1")).is_admin)
        self.assertTrue((await self.loader.load("G1", "U2")).is_admin)
        self.assertFalse((await self.loader.load("G1", "U3")).is_admin)

    async def test_any_failed_fetch_fails_the_load_without_caching(self) -> None:
        for method in ("get_group", "list_recent_messages", "list_members", "list_hidden_message_ids"):
            with self.subTest(method=method):
                self.repo.fail = {method}
                with self.assertRaises(ConversationLoadError) as ctx:
                    await self.loader.load("G1", "U3")
                self.assertEqual(ctx.exception.conversation_id, "G1")
                self.assertIsNone(self.cache.get("G1"))

    async def test_missing_group_is_a_load_error(self) -> None:
        with self.assertRaises(ConversationLoadError):
            await self.loader.load("nope", "U3")
        self.assertIsNone(self.cache.get("nope"))

    async def test_fetches_run_concurrently(self) -> None:
        gate = asyncio.Event()
        self.repo.gates["get_group"] = gate
        task = asyncio.create_task(self.loader.load("G1", "U3"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        # Every fetch started before the first one finished
        self.assertEqual(
            set(self.repo.calls),
            {"get_group", "list_recent_messages", "list_members", "list_hidden_message_ids"},
        )
        gate.set()
        await task

    async def test_stale_result_is_discarded(self) -> None:
        self.repo.add_message("m1", t=1)
        with self.assertRaises(StaleLoadError):
            await self.loader.load("G1", "U3", is_current=lambda: False)
        self.assertIsNone(self.cache.get("G1"))


class IsGroupAdminTests(unittest.TestCase):
    def test_creator_counts_as_admin_whatever_the_role(self) -> None:
        group = make_group(created_by="U1")
        self.assertTrue(is_group_admin(group, [make_member("U1", role="member")], "U1"))
        self.assertTrue(is_group_admin(group, [], "U1"))

    def test_member_role(self) -> None:
        group = make_group(created_by="U1")
        members = [make_member("U2", role="admin"), make_member("U3")]
        self.assertTrue(is_group_admin(group, members, "U2"))
        self.assertFalse(is_group_admin(group, members, "U3"))
        self.assertFalse(is_group_admin(group, members, "U4"))


if __name__ == "__main__":
    unittest.main()
