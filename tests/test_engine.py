import unittest

from studious.config import Settings
from studious.core.errors import DeletionNotPermitted, MessageNotFound, NotGroupMember
from studious.modules.chat.engine import ChatEngine, ViewerSession
from tests.fakes import FakeChangeFeed, FakeChatRepository, FakeClock, make_group, make_member


class ViewerSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.config = Settings(chat_history_limit=50)
        self.repo = FakeChatRepository()
        self.repo.add_group(make_group("G1", created_by="U1"), [make_member("U1"), make_member("U2")])
        self.repo.add_message("m1", sender_id="U1", t=1)
        self.repo.add_message("m2", sender_id="U2", t=2)
        self.session = ViewerSession("U1", self.repo, FakeChangeFeed(), config=self.config, clock=self.clock.now)
        self.addAsyncCleanup(self.session.close)

    async def test_require_member(self) -> None:
        member = await self.session.require_member("G1")
        self.assertEqual(member.user_id, "U1")
        with self.assertRaises(NotGroupMember):
            await self.session.require_member("G2")

    async def test_load_conversation_uses_cache_while_live(self) -> None:
        async with self.session.open_conversation("G1"):
            history = await self.session.load_conversation("G1")
            self.assertEqual([m.id for m in history.messages], ["m1", "m2"])
            self.assertTrue(history.is_admin)
            self.assertEqual(self.repo.calls.count("get_group"), 1)

            self.clock.advance(301)
            await self.session.load_conversation("G1")
            self.assertEqual(self.repo.calls.count("get_group"), 2)

    async def test_load_conversation_reloads_without_live_feed(self) -> None:
        other = ViewerSession("U2", self.repo, FakeChangeFeed(), config=self.config, clock=self.clock.now)
        self.addAsyncCleanup(other.close)
        await self.session.load_conversation("G1")
        await self.session.send_message("G1", "mine")
        await other.send_message("G1", "theirs")
        self.clock.advance(60)

        history = await self.session.load_conversation("G1")

        self.assertEqual([m.content for m in history.messages][2:], ["mine", "theirs"])
        self.assertEqual(len(history.messages), 4)
        self.assertEqual(self.repo.calls.count("get_group"), 2)

    async def test_send_message_inserts_row(self) -> None:
        message = await self.session.send_message("G1", "hi")
        self.assertEqual(message.sender_id, "U1")
        self.assertEqual(self.repo.rows[-1]["content"], "hi")

    async def test_send_message_appends_to_cached_history(self) -> None:
        await self.session.load_conversation("G1")
        message = await self.session.send_message("G1", "hi")
        cached = self.session.cache.get("G1")
        self.assertEqual([m.id for m in cached.messages], ["m1", "m2", message.id])

    async def test_hide_updates_cached_markers(self) -> None:
        await self.session.load_conversation("G1")
        await self.session.hide_for_me("m2")
        self.assertEqual(self.session.cache.get("G1").hidden_message_ids, {"m2"})
        history = await self.session.load_conversation("G1")
        self.assertEqual(history.hidden_message_ids, {"m2"})

    async def test_delete_for_everyone_updates_cached_message(self) -> None:
        await self.session.load_conversation("G1")
        deleted = await self.session.delete_for_everyone("m1")
        self.assertTrue(deleted.is_deleted)
        cached = self.session.cache.get("G1")
        self.assertEqual([m.id for m in cached.messages], ["m1", "m2"])
        self.assertTrue(cached.messages[0].is_deleted)

    async def test_delete_rejections(self) -> None:
        with self.assertRaises(DeletionNotPermitted):
            await self.session.delete_for_everyone("m2")
        with self.assertRaises(MessageNotFound):
            await self.session.delete_for_everyone("nope")
        with self.assertRaises(MessageNotFound):
            await self.session.hide_for_me("nope")

    async def test_non_members_cannot_hide_or_delete(self) -> None:
        outsider = ViewerSession("U9", self.repo, FakeChangeFeed(), config=self.config, clock=self.clock.now)
        self.addAsyncCleanup(outsider.close)
        with self.assertRaises(NotGroupMember):
            await outsider.hide_for_me("m1")
        with self.assertRaises(NotGroupMember):
            await outsider.delete_for_everyone("m1")
        self.assertEqual(self.repo.hidden, set())
        self.assertNotIn("soft_delete_message", self.repo.calls)

    async def test_delete_from_stale_copy_keeps_first_timestamp(self) -> None:
        other = ViewerSession("U1", self.repo, FakeChangeFeed(), config=self.config, clock=self.clock.now)
        self.addAsyncCleanup(other.close)
        await self.session.load_conversation("G1")
        first = await other.delete_for_everyone("m1")

        again = await self.session.delete_for_everyone("m1")

        self.assertEqual(again.deleted_at, first.deleted_at)
        self.assertEqual(self.repo.calls.count("soft_delete_message"), 1)
        self.assertTrue(self.session.cache.get("G1").messages[0].is_deleted)


class ChatEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine = ChatEngine(FakeChatRepository(), FakeChangeFeed(), config=Settings(), max_viewers=2)
        self.addAsyncCleanup(self.engine.close)

    async def test_one_session_per_viewer(self) -> None:
        self.assertIs(await self.engine.viewer("U1"), await self.engine.viewer("U1"))
        self.assertIsNot(await self.engine.viewer("U1"), await self.engine.viewer("U2"))

    async def test_least_recently_used_session_is_evicted(self) -> None:
        first = await self.engine.viewer("U1")
        first.cache.put("G1", messages=[])
        await self.engine.viewer("U2")
        await self.engine.viewer("U1")
        await self.engine.viewer("U3")

        self.assertIs(await self.engine.viewer("U1"), first)
        self.assertEqual(len(first.cache), 1)

    async def test_evicted_session_is_closed(self) -> None:
        first = await self.engine.viewer("U1")
        first.cache.put("G1", messages=[])
        await self.engine.viewer("U2")
        await self.engine.viewer("U3")

        self.assertEqual(len(first.cache), 0)
        self.assertIsNot(await self.engine.viewer("U1"), first)

    async def test_end_viewer(self) -> None:
        first = await self.engine.viewer("U1")
        await self.engine.end_viewer("U1")
        await self.engine.end_viewer("U1")
        self.assertIsNot(await self.engine.viewer("U1"), first)


if __name__ == "__main__":
    unittest.main()
