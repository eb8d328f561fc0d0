import unittest
from types import SimpleNamespace

from studious.modules.chat.repository import ChatRepository
from tests.fakes import at, message_row


class RecordingQuery:
    """Async PostgREST builder that records the chain and answers with canned rows."""

    def __init__(self, client: "RecordingClient", table: str) -> None:
        self.client = client
        self.chain = [("table", (table,))]

    def __getattr__(self, name: str):
        def step(*args, **kwargs):
            self.chain.append((name, args))
            return self
        return step

    async def execute(self):
        self.client.queries.append(self.chain)
        return SimpleNamespace(data=self.client.data)


class RecordingClient:
    def __init__(self, data=None) -> None:
        self.data = data if data is not None else []
        self.queries = []

    def table(self, name: str) -> RecordingQuery:
        return RecordingQuery(self, name)


class ChatRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def test_soft_delete_only_matches_live_rows_of_the_sender(self) -> None:
        client = RecordingClient([message_row("m1", deleted_at=at(9).isoformat())])
        repository = ChatRepository(client)

        row = await repository.soft_delete_message("m1", "U1", at(9))

        self.assertEqual(row["id"], "m1")
        chain = client.queries[0]
        self.assertEqual(chain[1], ("update", ({"content": None, "deleted_at": at(9).isoformat()},)))
        self.assertIn(("eq", ("id", "m1")), chain)
        self.assertIn(("eq", ("sender_id", "U1")), chain)
        self.assertIn(("is_", ("deleted_at", "null")), chain)

    async def test_soft_delete_without_match_returns_none(self) -> None:
        repository = ChatRepository(RecordingClient([]))
        self.assertIsNone(await repository.soft_delete_message("m1", "U1", at(9)))

    async def test_recent_messages_come_back_oldest_first(self) -> None:
        client = RecordingClient([message_row("m2", t=2), message_row("m1", t=1)])
        messages = await ChatRepository(client).list_recent_messages("G1", 2)

        self.assertEqual([m.id for m in messages], ["m1", "m2"])
        chain = client.queries[0]
        self.assertIn(("order", ("created_at",)), chain)
        self.assertIn(("limit", (2,)), chain)


if __name__ == "__main__":
    unittest.main()
