import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from google.api_core import exceptions as google_exceptions

from coverlink.db import (
    Base,
    FirestoreRepository,
    InMemoryRepository,
    PostgresRepository,
    profile_from_document,
)
from coverlink.exceptions import PersistenceError
from coverlink.types import AuditEvent, CoverLinkingRequestState, ReviewTicket

from coverlink_testing_utils import PHONE, make_profile

SECONDARY = "+254733333333"


class InMemoryRepositoryTests(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryRepository()

    def test_primary_and_secondary_lookup(self):
        self.repo.add_profile(make_profile(secondary_phone_numbers=[SECONDARY]))
        self.assertEqual(self.repo.get_user_profile_by_phone_number(PHONE).id, "profile-1")
        self.assertEqual(
            self.repo.get_user_profile_by_phone_number(SECONDARY).id, "profile-1"
        )
        self.assertIsNone(self.repo.get_user_profile_by_phone_number("+254799999999"))

    def test_primary_number_wins(self):
        self.repo.add_profile(
            make_profile("+254744444444", id="owner-2", secondary_phone_numbers=[PHONE])
        )
        self.repo.add_profile(make_profile(id="owner-1"))
        self.assertEqual(self.repo.get_user_profile_by_phone_number(PHONE).id, "owner-1")

    def test_suspended_profiles_are_hidden_unless_requested(self):
        self.repo.add_profile(make_profile(suspended=True))
        self.assertIsNone(self.repo.get_user_profile_by_phone_number(PHONE))
        self.assertIsNotNone(
            self.repo.get_user_profile_by_phone_number(PHONE, include_suspended=True)
        )

    def test_reset(self):
        self.repo.add_profile(make_profile())
        self.repo.save_cover_autolinking_event(AuditEvent("M1", PHONE))
        self.repo.reset()
        self.assertEqual(self.repo.profiles, {})
        self.assertEqual(self.repo.events, [])


class PostgresRepositoryTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres repository.
    """

    def setUp(self):
        self.repo = PostgresRepository("sqlite+pysqlite:///:memory:")

    def test_requires_database_url(self):
        with self.assertRaises(ValueError):
            PostgresRepository("")

    def test_profile_lookup_by_primary_and_secondary_phone(self):
        self.repo.add_profile(make_profile(secondary_phone_numbers=[SECONDARY]))

        by_primary = self.repo.get_user_profile_by_phone_number(PHONE)
        by_secondary = self.repo.get_user_profile_by_phone_number(SECONDARY)

        self.assertEqual(by_primary, make_profile(secondary_phone_numbers=[SECONDARY]))
        self.assertEqual(by_secondary.id, "profile-1")
        self.assertIsNone(self.repo.get_user_profile_by_phone_number("+254799999999"))

    def test_suspended_profile(self):
        self.repo.add_profile(make_profile(suspended=True))
        self.assertIsNone(self.repo.get_user_profile_by_phone_number(PHONE))
        self.assertTrue(
            self.repo.get_user_profile_by_phone_number(PHONE, True).suspended
        )

    def test_save_and_list_events(self):
        event = AuditEvent("M1", PHONE)
        self.assertEqual(self.repo.save_cover_autolinking_event(event), event.id)
        self.repo.save_cover_autolinking_event(AuditEvent("M2", "+254788888888"))

        events = self.repo.list_cover_autolinking_events(PHONE)

        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].id, event.id)
        self.assertEqual(events[0].member_number, "M1")
        self.assertEqual(events[0].status, event.status)
        self.assertEqual(len(self.repo.list_cover_autolinking_events()), 2)

    def test_duplicate_event_id_raises_persistence_error(self):
        event = AuditEvent("M1", PHONE)
        self.repo.save_cover_autolinking_event(event)
        with self.assertRaises(PersistenceError):
            self.repo.save_cover_autolinking_event(event)

    def test_save_and_list_notifications(self):
        ticket = ReviewTicket(
            payer_slade_code=1001,
            member_number="M4",
            phone_number=PHONE,
            error_message="payer not recognized",
            first_name="Jane",
            last_name="Wanjiru",
        )
        self.repo.save_cover_linking_notification(ticket)

        pending = self.repo.list_cover_linking_notifications(
            CoverLinkingRequestState.PENDING
        )
        approved = self.repo.list_cover_linking_notifications(
            CoverLinkingRequestState.APPROVED
        )

        self.assertEqual(approved, [])
        self.assertEqual(len(pending), 1)
        self.assertEqual(pending[0].id, ticket.id)
        self.assertEqual(pending[0].state, CoverLinkingRequestState.PENDING)
        self.assertEqual(pending[0].payer_slade_code, 1001)
        self.assertEqual(pending[0].error_message, "payer not recognized")
        self.assertFalse(pending[0].read)

    def test_list_errors_raise_persistence_error(self):
        Base.metadata.drop_all(self.repo.engine)
        with self.assertRaises(PersistenceError):
            self.repo.list_cover_autolinking_events()
        with self.assertRaises(PersistenceError):
            self.repo.list_cover_linking_notifications()


class FirestoreRepositoryTests(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.repo = FirestoreRepository(
            self.client, service_name="onboarding", environment="testing"
        )

    def _snapshot(self, doc_id, doc):
        snapshot = MagicMock()
        snapshot.id = doc_id
        snapshot.to_dict.return_value = doc
        return snapshot

    def test_collection_names_are_suffixed(self):
        self.assertEqual(self.repo.profiles_collection, "user_profiles_onboarding_testing")
        self.assertEqual(
            self.repo.events_collection, "cover_autolinking_events_onboarding_testing"
        )
        self.assertEqual(
            self.repo.notifications_collection,
            "cover_linking_notifications_onboarding_testing",
        )
        bare = FirestoreRepository(self.client)
        self.assertEqual(bare.profiles_collection, "user_profiles")

    def test_profile_lookup_falls_back_to_secondary_numbers(self):
        query = self.client.collection.return_value.where.return_value.limit.return_value
        query.get.side_effect = [
            [],
            [
                self._snapshot(
                    "abc",
                    {
                        "verifiedUIDS": ["uid-7"],
                        "pushTokens": ["tok"],
                        "userBioData": {"firstName": "Otieno", "lastName": "Achieng"},
                        "secondaryPhoneNumbers": [SECONDARY],
                        "suspended": False,
                    },
                )
            ],
        ]

        profile = self.repo.get_user_profile_by_phone_number(SECONDARY, timeout=5)

        self.assertEqual(profile.id, "abc")
        self.assertEqual(profile.verified_uids, ["uid-7"])
        self.assertEqual((profile.first_name, profile.last_name), ("Otieno", "Achieng"))
        self.client.collection.assert_called_with("user_profiles_onboarding_testing")
        filters = [
            c.kwargs["filter"]
            for c in self.client.collection.return_value.where.call_args_list
        ]
        self.assertEqual(
            [(f.field_path, f.op_string) for f in filters],
            [("primaryPhone", "=="), ("secondaryPhoneNumbers", "array-contains")],
        )
        query.get.assert_called_with(timeout=5)

    def test_profile_lookup_error(self):
        query = self.client.collection.return_value.where.return_value.limit.return_value
        query.get.side_effect = google_exceptions.ServiceUnavailable("down")
        with self.assertRaises(PersistenceError):
            self.repo.get_user_profile_by_phone_number(PHONE)

    def test_save_event_writes_camel_case_document(self):
        timestamp = datetime(2024, 5, 1, tzinfo=timezone.utc)
        event = AuditEvent("M1", PHONE, id="event-1", timestamp=timestamp)

        self.assertEqual(self.repo.save_cover_autolinking_event(event, timeout=3), "event-1")

        self.client.collection.assert_called_with(
            "cover_autolinking_events_onboarding_testing"
        )
        document = self.client.collection.return_value.document
        document.assert_called_with("event-1")
        document.return_value.set.assert_called_once_with(
            {
                "id": "event-1",
                "coverLinkingEventTime": timestamp,
                "coverStatus": "coverlinking completed",
                "memberNumber": "M1",
                "phoneNumber": PHONE,
            },
            timeout=3,
        )

    def test_save_notification_writes_camel_case_document(self):
        ticket = ReviewTicket(
            payer_slade_code=1001,
            member_number="M4",
            phone_number=PHONE,
            error_message="bad",
            id="ticket-1",
        )
        self.repo.save_cover_linking_notification(ticket)

        doc = self.client.collection.return_value.document.return_value.set.call_args.args[0]
        self.assertEqual(doc["payerSladeCode"], 1001)
        self.assertEqual(doc["state"], "PENDING")
        self.assertEqual(doc["errorMessage"], "bad")
        self.assertEqual(doc["timeStamp"], ticket.timestamp)
        self.assertFalse(doc["read"])

    def test_write_error_raises_persistence_error(self):
        document = self.client.collection.return_value.document.return_value
        document.set.side_effect = google_exceptions.DeadlineExceeded("slow")
        with self.assertRaises(PersistenceError):
            self.repo.save_cover_autolinking_event(AuditEvent("M1", PHONE))


class ProfileFromDocumentTests(unittest.TestCase):
    def test_defaults_for_missing_fields(self):
        profile = profile_from_document({"id": "p", "primaryPhone": PHONE})
        self.assertEqual(profile.id, "p")
        self.assertEqual(profile.primary_phone, PHONE)
        self.assertEqual(profile.verified_uids, [])
        self.assertEqual(profile.first_name, "")
        self.assertFalse(profile.suspended)


if __name__ == "__main__":
    unittest.main()
