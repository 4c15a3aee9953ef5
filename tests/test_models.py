import unittest

from batchhopper.models import (
    BatchAssignment,
    BatchComplete,
    InProgress,
    Init,
    parse_keyboard,
    parse_worker_status,
)


def keyboard_payload(score: float, count: int = 47) -> dict:
    return {
        "score": score,
        "keys": [{"lower": "a", "upper": "A"} for _ in range(count)],
    }


class WorkerStatusTest(unittest.TestCase):
    def test_init(self) -> None:
        self.assertEqual(parse_worker_status("Init"), Init())

    def test_in_progress(self) -> None:
        status = parse_worker_status({"InProgress": {"batch_size": 100, "completed": 40}})
        self.assertEqual(status, InProgress(batch_size=100, completed=40))

    def test_batch_complete(self) -> None:
        status = parse_worker_status({"BatchComplete": {"keyboards": [keyboard_payload(2.5)]}})
        assert isinstance(status, BatchComplete)
        self.assertEqual(len(status.keyboards), 1)
        self.assertEqual(status.keyboards[0].score, 2.5)
        self.assertEqual(len(status.keyboards[0].keys), 47)

    def test_rejects_unknown_tag(self) -> None:
        with self.assertRaises(ValueError):
            parse_worker_status({"Paused": {}})
        with self.assertRaises(ValueError):
            parse_worker_status("Done")

    def test_rejects_bad_in_progress_counts(self) -> None:
        with self.assertRaises(ValueError):
            parse_worker_status({"InProgress": {"batch_size": -1, "completed": 0}})


class KeyboardTest(unittest.TestCase):
    def test_requires_47_keys(self) -> None:
        with self.assertRaises(ValueError):
            parse_keyboard(keyboard_payload(1.0, count=46))

    def test_requires_single_characters(self) -> None:
        payload = keyboard_payload(1.0)
        payload["keys"][3] = {"lower": "ab", "upper": "A"}
        with self.assertRaises(ValueError):
            parse_keyboard(payload)

    def test_rejects_non_finite_score(self) -> None:
        with self.assertRaises(ValueError):
            parse_keyboard(keyboard_payload(float("nan")))


class BatchAssignmentTest(unittest.TestCase):
    def test_payload_fields(self) -> None:
        assignment = BatchAssignment(job_name="job-a", device_name="http://w1", batch_size=10, batch_number=3)
        self.assertEqual(
            assignment.to_payload(),
            {"job_name": "job-a", "device_name": "http://w1", "batch_size": 10, "batch_number": 3},
        )


if __name__ == "__main__":
    unittest.main()
