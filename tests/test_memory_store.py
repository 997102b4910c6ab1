import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import InMemoryChatStore, group_chatroom_procedure
from chat_store import CHATROOM_MEMBERS, CHATROOM_ROLES, CHATROOMS, StoreError


class TestInMemoryChatStore(unittest.TestCase):
    def test_batch_insert_is_atomic(self) -> None:
        store = InMemoryChatStore()
        store.insert(CHATROOM_MEMBERS, [{"chatroom_id": "c1", "user_id": "u1"}])
        with self.assertRaises(StoreError) as ctx:
            store.insert(
                CHATROOM_MEMBERS,
                [{"chatroom_id": "c1", "user_id": "u2"}, {"chatroom_id": "c1", "user_id": "u1"}],
            )
        self.assertEqual(ctx.exception.code, "23505")
        self.assertEqual([r["user_id"] for r in store.rows(CHATROOM_MEMBERS)], ["u1"])

    def test_team_rooms_unique_per_team(self) -> None:
        store = InMemoryChatStore()
        store.insert(CHATROOMS, [{"id": "c1", "type": "team", "team_id": "t1"}])
        with self.assertRaises(StoreError) as ctx:
            store.insert(CHATROOMS, [{"id": "c2", "type": "team", "team_id": "t1"}])
        self.assertEqual(ctx.exception.code, "23505")

    def test_group_rooms_do_not_collide_on_team(self) -> None:
        store = InMemoryChatStore()
        store.insert(CHATROOMS, [{"id": "c1", "type": "group"}, {"id": "c2", "type": "group"}])
        self.assertEqual(len(store.rows(CHATROOMS)), 2)

    def test_select_one_multiple_rows(self) -> None:
        store = InMemoryChatStore()
        store.insert(CHATROOM_MEMBERS, [{"chatroom_id": "c1", "user_id": "u1"}, {"chatroom_id": "c1", "user_id": "u2"}])
        with self.assertRaises(StoreError) as ctx:
            store.select_one(CHATROOM_MEMBERS, {"chatroom_id": "c1"})
        self.assertEqual(ctx.exception.code, "PGRST116")
        self.assertIsNone(store.select_one(CHATROOM_MEMBERS, {"chatroom_id": "missing"}))

    def test_upsert_merges_on_conflict_target(self) -> None:
        store = InMemoryChatStore()
        key = ("chatroom_id", "user_id")
        store.upsert(CHATROOM_ROLES, [{"chatroom_id": "c1", "user_id": "u1", "role": "member"}], on_conflict=key)
        store.upsert(CHATROOM_ROLES, [{"chatroom_id": "c1", "user_id": "u1", "role": "owner"}], on_conflict=key)
        rows = store.rows(CHATROOM_ROLES)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["role"], "owner")

    def test_select_columns(self) -> None:
        store = InMemoryChatStore()
        store.insert(CHATROOM_MEMBERS, [{"chatroom_id": "c1", "user_id": "u1"}])
        self.assertEqual(store.select(CHATROOM_MEMBERS, {"chatroom_id": "c1"}, columns=["user_id"]), [{"user_id": "u1"}])

    def test_unknown_procedure_reports_schema_cache(self) -> None:
        store = InMemoryChatStore()
        with self.assertRaises(StoreError) as ctx:
            store.rpc("create_group_chatroom", {})
        self.assertEqual(ctx.exception.code, "PGRST202")
        self.assertIn("schema cache", ctx.exception.message)

    def test_group_procedure(self) -> None:
        store = InMemoryChatStore()
        store.register_procedure("create_group_chatroom", group_chatroom_procedure("u1"))
        chatroom_id = store.rpc("create_group_chatroom", {"p_name": None, "p_participants": ["u2", "u1"]})
        self.assertEqual(store.rows(CHATROOMS)[0]["id"], chatroom_id)
        self.assertEqual(sorted(r["user_id"] for r in store.rows(CHATROOM_MEMBERS)), ["u1", "u2"])

    def test_unknown_table(self) -> None:
        store = InMemoryChatStore()
        with self.assertRaises(StoreError) as ctx:
            store.select("messages", {})
        self.assertEqual(ctx.exception.code, "42P01")


if __name__ == "__main__":
    unittest.main()
