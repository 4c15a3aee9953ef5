import unittest
from unittest import mock

import requests

from batchhopper.models import BatchAssignment, InProgress, Init
from batchhopper.remote import WorkerClient, WorkerProtocolError


def fake_response(status_code: int = 200, payload: object = None, text: str = "") -> mock.Mock:
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class WorkerClientTest(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.client = WorkerClient(timeout=3, session=self.session)

    def test_fetch_status(self) -> None:
        self.session.get.return_value = fake_response(payload={"InProgress": {"batch_size": 8, "completed": 2}})
        status = self.client.fetch_status("http://w1/")
        self.assertEqual(status, InProgress(batch_size=8, completed=2))
        self.session.get.assert_called_once_with("http://w1/update", timeout=3)

    def test_fetch_status_init(self) -> None:
        self.session.get.return_value = fake_response(payload="Init")
        self.assertEqual(self.client.fetch_status("http://w1"), Init())

    def test_connection_error(self) -> None:
        self.session.get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(WorkerProtocolError):
            self.client.fetch_status("http://w1")

    def test_invalid_json(self) -> None:
        self.session.get.return_value = fake_response(payload=ValueError("no json"))
        with self.assertRaises(WorkerProtocolError):
            self.client.fetch_status("http://w1")

    def test_malformed_status(self) -> None:
        self.session.get.return_value = fake_response(payload={"Unknown": {}})
        with self.assertRaises(WorkerProtocolError):
            self.client.fetch_status("http://w1")

    def test_send_assignment(self) -> None:
        self.session.post.return_value = fake_response()
        assignment = BatchAssignment(job_name="job-a", device_name="http://w1", batch_size=10, batch_number=0)
        self.client.send_assignment("http://w1", assignment)
        self.session.post.assert_called_once_with(
            "http://w1/new",
            json={"job_name": "job-a", "device_name": "http://w1", "batch_size": 10, "batch_number": 0},
            timeout=3,
        )

    def test_send_assignment_http_error(self) -> None:
        self.session.post.return_value = fake_response(status_code=500, text="boom")
        assignment = BatchAssignment(job_name="job-a", device_name="http://w1", batch_size=10, batch_number=0)
        with self.assertRaisesRegex(WorkerProtocolError, "HTTP 500 boom"):
            self.client.send_assignment("http://w1", assignment)


if __name__ == "__main__":
    unittest.main()
