import unittest
from unittest.mock import MagicMock, patch

from conduit.exceptions import DocumentExistsError, StoreTimeoutError
from conduit.security import hash_password
from conduit.store import InMemoryDocumentStore, MutateInSpec, Query, QueryResult
from conduit.users import User, UserRepository


def _user(user_id, name):
    return User(
        id=user_id,
        username=name,
        email=f"{name}@example.com",
        password_digest=hash_password("password", rounds=4),
        bio=f"{name} bio",
        image=f"{name}.png",
    )


class UserRepositoryMockStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = MagicMock()
        self.users = UserRepository(self.store)
        self.current_user = _user("current-user-id", "currentuser")
        self.other_user = _user("other-user-id", "otheruser")

    @patch("conduit.users.uuid4", return_value="unique-id")
    def test_save_assigns_generated_id(self, _):
        user = User(username="testuser", email="test@example.com", password_digest="password")

        self.users.save(user)

        self.store.upsert.assert_called_once_with(
            "users",
            "unique-id",
            {
                "username": "testuser",
                "email": "test@example.com",
                "password_digest": "password",
                "bio": None,
                "image": None,
                "following": [],
            },
        )
        self.assertEqual(user.id, "unique-id")

    @patch("conduit.users.uuid4", return_value="unique-id")
    def test_save_keeps_existing_id(self, mock_uuid):
        self.users.save(self.current_user)

        mock_uuid.assert_not_called()
        key = self.store.upsert.call_args.args[1]
        self.assertEqual(key, "current-user-id")
        self.assertEqual(self.current_user.id, "current-user-id")

    @patch("conduit.users.uuid4", return_value="unique-id")
    def test_save_propagates_store_failure(self, _):
        user = User(username="testuser", email="test@example.com", password_digest="password")
        self.store.upsert.side_effect = StoreTimeoutError("upsert timed out")

        with self.assertRaises(StoreTimeoutError):
            self.users.save(user)
        self.assertIsNone(user.id)

    @patch("conduit.users.uuid4", return_value="unique-id")
    def test_save_treats_empty_id_as_set(self, mock_uuid):
        user = User(id="", username="testuser", email="test@example.com")

        self.users.save(user)

        mock_uuid.assert_not_called()
        self.assertEqual(self.store.upsert.call_args.args[1], "")
        self.assertEqual(user.id, "")

    @patch("conduit.users.uuid4", return_value="unique-id")
    def test_create_releases_email_when_upsert_fails(self, _):
        user = User(username="testuser", email="test@example.com")
        self.store.upsert.side_effect = StoreTimeoutError("upsert timed out")

        with self.assertRaises(StoreTimeoutError):
            self.users.create(user)

        self.store.insert.assert_called_once_with(
            "users_by_email", "test@example.com", {"user_id": "unique-id"}
        )
        self.store.remove.assert_called_once_with("users_by_email", "test@example.com")
        self.assertIsNone(user.id)

    def test_find_by_email_returns_user(self):
        email = "test@example.com"
        self.store.query.return_value = QueryResult(
            rows=[
                {
                    "_default": {
                        "username": "testuser",
                        "email": email,
                        "password_digest": "password",
                    },
                    "id": "user-id",
                }
            ]
        )

        user = self.users.find_by_email(email)

        self.assertIsInstance(user, User)
        self.assertEqual(user.id, "user-id")
        self.assertEqual(user.email, email)
        self.assertEqual(user.following, [])
        self.store.query.assert_called_once_with(
            Query(collection="users", where={"email": email}, limit=1)
        )

    def test_find_by_email_returns_none_without_rows(self):
        self.store.query.return_value = QueryResult(rows=[])

        self.assertIsNone(self.users.find_by_email("nonexistent@example.com"))

    def test_find_by_email_propagates_store_failure(self):
        self.store.query.side_effect = StoreTimeoutError("query timed out")

        with self.assertRaises(StoreTimeoutError):
            self.users.find_by_email("test@example.com")

    def test_follow_appends_other_id_with_one_mutation(self):
        self.users.follow(self.current_user, self.other_user)

        self.store.mutate_in.assert_called_once()
        collection, key, specs = self.store.mutate_in.call_args.args
        self.assertEqual(collection, "users")
        self.assertEqual(key, "current-user-id")
        self.assertEqual(len(specs), 1)
        self.assertIsInstance(specs[0], MutateInSpec)
        self.assertEqual(specs[0].path, "following")
        self.assertEqual(specs[0].param, '"other-user-id"')
        self.store.upsert.assert_not_called()
        self.assertEqual(self.current_user.following, ["other-user-id"])

    def test_unfollow_removes_other_id_with_one_mutation(self):
        self.current_user.following = ["other-user-id", "someone-else"]

        self.users.unfollow(self.current_user, self.other_user)

        self.store.lookup_in.assert_not_called()
        self.store.mutate_in.assert_called_once()
        collection, key, specs = self.store.mutate_in.call_args.args
        self.assertEqual((collection, key), ("users", "current-user-id"))
        self.assertEqual(specs, [MutateInSpec.array_remove("following", "other-user-id")])
        self.assertEqual(self.current_user.following, ["someone-else"])

    def test_follow_requires_saved_users(self):
        unsaved = User(username="new", email="new@example.com")

        with self.assertRaises(ValueError):
            self.users.follow(self.current_user, unsaved)
        self.store.mutate_in.assert_not_called()


class UserRepositoryInMemoryTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDocumentStore()
        self.users = UserRepository(self.store)
        self.alice = self.users.save(_user(None, "alice"))
        self.bob = self.users.save(_user(None, "bob"))

    def test_save_then_find(self):
        found = self.users.find(self.alice.id)
        self.assertEqual(found, self.alice)
        self.assertIsNone(self.users.find("missing"))

    def test_find_by_email_matches_only_that_user(self):
        found = self.users.find_by_email("bob@example.com")
        self.assertEqual(found.id, self.bob.id)
        self.assertEqual(found.username, "bob")

    def test_follow_leaves_other_fields_untouched(self):
        self.users.follow(self.alice, self.bob)

        stored = self.store.get("users", self.alice.id)
        self.assertEqual(stored["following"], [self.bob.id])
        self.assertEqual(stored["bio"], "alice bio")
        self.assertEqual(stored["image"], "alice.png")
        self.assertEqual(stored["password_digest"], self.alice.password_digest)

    def test_follow_does_not_deduplicate(self):
        self.users.follow(self.alice, self.bob)
        self.users.follow(self.alice, self.bob)

        stored = self.store.get("users", self.alice.id)
        self.assertEqual(stored["following"], [self.bob.id, self.bob.id])

    def test_is_following_and_unfollow(self):
        self.assertFalse(self.users.is_following(self.alice, self.bob))
        self.users.follow(self.alice, self.bob)
        self.assertTrue(self.users.is_following(self.alice, self.bob))
        self.assertFalse(self.users.is_following(self.bob, self.alice))

        self.users.unfollow(self.alice, self.bob)

        self.assertFalse(self.users.is_following(self.alice, self.bob))
        self.assertEqual(self.alice.following, [])
        self.assertEqual(self.store.get("users", self.alice.id)["following"], [])

    def test_unfollow_when_not_following_is_noop(self):
        self.users.unfollow(self.alice, self.bob)
        self.assertEqual(self.store.get("users", self.alice.id)["following"], [])

    def test_create_reserves_email(self):
        carol = self.users.create(_user(None, "carol"))

        self.assertEqual(self.users.find(carol.id).email, "carol@example.com")
        with self.assertRaises(DocumentExistsError):
            self.users.create(_user(None, "carol"))
        carols = [
            user_id
            for user_id, document in self.store.collections["users"].items()
            if document["email"] == "carol@example.com"
        ]
        self.assertEqual(carols, [carol.id])

    def test_unfollow_keeps_follows_that_landed_in_between(self):
        carol = self.users.save(_user(None, "carol"))
        self.users.follow(self.alice, self.bob)
        # A follow from another request that this copy of alice never saw.
        self.users.follow(self.users.find(self.alice.id), carol)

        self.users.unfollow(self.alice, self.bob)

        self.assertEqual(self.store.get("users", self.alice.id)["following"], [carol.id])

    def test_authenticate(self):
        self.assertEqual(
            self.users.authenticate("alice@example.com", "password").id, self.alice.id
        )
        self.assertIsNone(self.users.authenticate("alice@example.com", "wrong"))
        self.assertIsNone(self.users.authenticate("nobody@example.com", "password"))


if __name__ == "__main__":
    unittest.main()
