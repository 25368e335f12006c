import base64
import json
import unittest

from fastapi.testclient import TestClient

from coverlink.app import create_app
from coverlink.db import InMemoryRepository
from coverlink.dependencies import get_cover_linking_service, get_queue_client
from coverlink.queue import InMemoryMessageQueue
from coverlink.service import CoverLinkingService

from coverlink_testing_utils import PHONE, FakeEdiClient, make_profile, slader


def push_envelope(topic, data, *, encode=True):
    raw = json.dumps(data).encode("utf-8")
    return {
        "message": {
            "data": base64.b64encode(raw).decode("ascii") if encode else data,
            "attributes": {"topicID": topic} if topic else {},
            "messageId": "1",
        },
        "subscription": "projects/test/subscriptions/coverlink",
    }


class CoverLinkingApiTests(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryRepository()
        self.repo.add_profile(make_profile())
        self.queue = InMemoryMessageQueue()
        self.edi = FakeEdiClient(
            [slader("1001", "M1")],
            link_status=422,
            link_body={"error": "payer not recognized"},
        )
        self.service = CoverLinkingService(
            edi=self.edi,
            profiles=self.repo,
            events=self.repo,
            review_queue=self.repo,
        )

        app = create_app()
        app.dependency_overrides[get_queue_client] = lambda: self.queue
        app.dependency_overrides[get_cover_linking_service] = lambda: self.service
        self.client = TestClient(app)

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_request_cover_linking_is_queued(self):
        response = self.client.post(
            "/api/covers/link",
            json={"phoneNumber": PHONE, "uid": "uid-1", "pushToken": ["t1"]},
        )

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {"topic": "covers.link", "status": "queued"})
        message = self.queue.dequeue(block=False)
        self.assertEqual(message.topic, "covers.link")
        self.assertEqual(
            message.data, {"phoneNumber": PHONE, "uid": "uid-1", "pushToken": ["t1"]}
        )

    def test_request_edi_member_cover_linking_is_queued(self):
        response = self.client.post(
            "/api/covers/link_edi_member",
            json={"phoneNumber": PHONE, "memberNumber": "M9", "payerSladeCode": 2002},
        )

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()["topic"], "edi.covers.link")
        self.assertEqual(self.queue.dequeue(block=False).data["payerSladeCode"], 2002)

    def test_invalid_payload_is_rejected(self):
        response = self.client.post("/api/covers/link", json={"uid": "uid-1"})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.queue.items, [])

    def test_pubsub_link_cover(self):
        response = self.client.post(
            "/api/pubsub",
            json=push_envelope(
                "covers.link", {"phoneNumber": PHONE, "uid": "uid-1", "pushToken": []}
            ),
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "success"})
        self.assertEqual(len(self.repo.tickets), 1)
        self.assertEqual(len(self.repo.events), 1)

    def test_pubsub_edi_member_cover(self):
        response = self.client.post(
            "/api/pubsub",
            json=push_envelope(
                "edi.covers.link",
                {"phoneNumber": PHONE, "memberNumber": "M9", "payerSladeCode": 2002},
            ),
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.edi.link_calls[0]["uid"], "uid-1")
        self.assertEqual(self.repo.events, [])

    def test_pubsub_unknown_topic(self):
        response = self.client.post(
            "/api/pubsub", json=push_envelope("covers.unlink", {"phoneNumber": PHONE})
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("unknown topic", response.json()["detail"])

    def test_pubsub_missing_topic(self):
        response = self.client.post("/api/pubsub", json=push_envelope(None, {}))
        self.assertEqual(response.status_code, 400)

    def test_pubsub_undecodable_data(self):
        response = self.client.post(
            "/api/pubsub", json=push_envelope("covers.link", "%%%", encode=False)
        )
        self.assertEqual(response.status_code, 400)

    def test_pubsub_service_error_answers_400(self):
        response = self.client.post(
            "/api/pubsub",
            json=push_envelope(
                "edi.covers.link",
                {
                    "phoneNumber": "+254799999999",
                    "memberNumber": "M9",
                    "payerSladeCode": 2002,
                },
            ),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("failed to fetch user profile", response.json()["detail"])


if __name__ == "__main__":
    unittest.main()
