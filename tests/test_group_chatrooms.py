import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)
TESTS = os.path.dirname(os.path.abspath(__file__))
if TESTS not in sys.path:
    sys.path.insert(0, TESTS)

from app.stores import InMemoryChatStore, group_chatroom_procedure
from chat_store import CHATROOM_MEMBERS, CHATROOM_ROLES, CHATROOMS, StoreError
from chatrooms import (
    ClientGroupProvisioner,
    GroupChatroomError,
    ProcedureGroupProvisioner,
    provision_group_chatroom,
)

from test_team_chatrooms import FaultyStore


def _roles(store):
    return {r["user_id"]: r["role"] for r in store.rows(CHATROOM_ROLES)}


class TestProcedurePath(unittest.TestCase):
    def test_procedure_receives_sanitized_arguments(self) -> None:
        store = InMemoryChatStore()
        captured = {}

        def _procedure(_store, params):
            captured.update(params)
            return "c-123"

        store.register_procedure("create_group_chatroom", _procedure)
        chatroom_id = provision_group_chatroom(store, "u1", ["u2", "u1", "u2", "u3"], name="  Study  ")
        self.assertEqual(chatroom_id, "c-123")
        self.assertEqual(captured, {"p_name": "Study", "p_participants": ["u2", "u3"]})
        self.assertEqual(store.rows(CHATROOMS), [])

    def test_blank_name_sent_as_null(self) -> None:
        store = InMemoryChatStore()
        captured = {}
        store.register_procedure("create_group_chatroom", lambda _s, p: captured.update(p) or "c-1")
        provision_group_chatroom(store, "u1", ["u2"], name="   ")
        self.assertIsNone(captured["p_name"])

    def test_server_side_creation(self) -> None:
        store = InMemoryChatStore()
        store.register_procedure("create_group_chatroom", group_chatroom_procedure("u1"))
        chatroom_id = provision_group_chatroom(store, "u1", ["u2", "u3"])
        self.assertEqual(store.rows(CHATROOMS)[0]["id"], chatroom_id)
        self.assertEqual(_roles(store), {"u1": "owner", "u2": "member", "u3": "member"})

    def test_missing_identifier_is_hard_failure(self) -> None:
        store = InMemoryChatStore()
        store.register_procedure("create_group_chatroom", lambda _s, _p: None)
        with self.assertRaises(GroupChatroomError):
            provision_group_chatroom(store, "u1", ["u2"])
        self.assertEqual(store.rows(CHATROOMS), [])

    def test_other_procedure_errors_are_reraised(self) -> None:
        store = InMemoryChatStore()

        def _denied(_store, _params):
            raise StoreError("42501", "permission denied for function")

        store.register_procedure("create_group_chatroom", _denied)
        with self.assertRaises(StoreError) as ctx:
            provision_group_chatroom(store, "u1", ["u2"])
        self.assertEqual(ctx.exception.code, "42501")
        self.assertEqual(store.rows(CHATROOMS), [])


class TestClientFallback(unittest.TestCase):
    def test_fallback_when_procedure_missing(self) -> None:
        store = InMemoryChatStore()
        chatroom_id = provision_group_chatroom(store, "u1", ["u1", "u2", "u3"], name=None)
        rooms = store.rows(CHATROOMS)
        self.assertEqual(len(rooms), 1)
        self.assertEqual(rooms[0]["id"], chatroom_id)
        self.assertEqual(rooms[0]["type"], "group")
        self.assertEqual(rooms[0]["name"], "Group chat")
        self.assertFalse(rooms[0]["archived"])
        self.assertEqual(sorted(r["user_id"] for r in store.rows(CHATROOM_MEMBERS)), ["u1", "u2", "u3"])
        self.assertEqual(_roles(store), {"u1": "owner", "u2": "member", "u3": "member"})

    def test_fallback_trims_name(self) -> None:
        store = InMemoryChatStore()
        provision_group_chatroom(store, "u1", ["u2"], name="  Friends  ")
        self.assertEqual(store.rows(CHATROOMS)[0]["name"], "Friends")

    def test_role_failure_removes_everything(self) -> None:
        store = FaultyStore()
        store.failures[("upsert", CHATROOM_ROLES)] = StoreError("42501", "permission denied")
        with self.assertRaises(StoreError) as ctx:
            provision_group_chatroom(store, "u1", ["u2", "u3"])
        self.assertEqual(ctx.exception.code, "42501")
        self.assertEqual(store.rows(CHATROOMS), [])
        self.assertEqual(store.rows(CHATROOM_MEMBERS), [])
        self.assertEqual(store.rows(CHATROOM_ROLES), [])

    def test_membership_failure_removes_room(self) -> None:
        store = FaultyStore()
        store.failures[("insert", CHATROOM_MEMBERS)] = StoreError("23503", "violates foreign key constraint")
        with self.assertRaises(StoreError):
            provision_group_chatroom(store, "u1", ["u2"])
        self.assertEqual(store.rows(CHATROOMS), [])

    def test_cleanup_failures_do_not_mask_original_error(self) -> None:
        store = FaultyStore()
        store.failures[("upsert", CHATROOM_ROLES)] = StoreError("42501", "permission denied")
        store.failures[("delete", CHATROOM_MEMBERS)] = StoreError("08006", "connection failure")
        with self.assertRaises(StoreError) as ctx:
            provision_group_chatroom(store, "u1", ["u2"])
        self.assertEqual(ctx.exception.code, "42501")
        self.assertEqual(store.rows(CHATROOMS), [])
        self.assertEqual(len(store.rows(CHATROOM_MEMBERS)), 2)

    def test_room_insert_failure_needs_no_cleanup(self) -> None:
        store = FaultyStore()
        store.failures[("insert", CHATROOMS)] = StoreError("42501", "permission denied")
        with self.assertRaises(StoreError):
            provision_group_chatroom(store, "u1", ["u2"])
        self.assertNotIn(("delete", CHATROOMS), store.calls)


class TestStrategySelection(unittest.TestCase):
    def test_probe_is_injectable(self) -> None:
        store = InMemoryChatStore()

        def _denied(_store, _params):
            raise StoreError("42501", "permission denied for function")

        store.register_procedure("create_group_chatroom", _denied)
        chatroom_id = provision_group_chatroom(store, "u1", ["u2"], is_unavailable=lambda exc: True)
        self.assertEqual(store.rows(CHATROOMS)[0]["id"], chatroom_id)

    def test_custom_strategies(self) -> None:
        calls = []

        class _Recorder:
            def __init__(self, result):
                self.result = result

            def provision(self, store, owner_id, name, participant_ids):
                calls.append((owner_id, name, participant_ids))
                if isinstance(self.result, Exception):
                    raise self.result
                return self.result

        chatroom_id = provision_group_chatroom(
            InMemoryChatStore(),
            "u1",
            ["u2", "u1"],
            name="Crew",
            primary=_Recorder(StoreError("42883", "function create_group_chatroom does not exist")),
            fallback=_Recorder("c-9"),
        )
        self.assertEqual(chatroom_id, "c-9")
        self.assertEqual(calls, [("u1", "Crew", ["u2"]), ("u1", "Crew", ["u2"])])

    def test_strategies_share_interface(self) -> None:
        for strategy in (ProcedureGroupProvisioner(), ClientGroupProvisioner()):
            self.assertTrue(callable(getattr(strategy, "provision")))


if __name__ == "__main__":
    unittest.main()
