import unittest
from unittest.mock import MagicMock

from dat_backend.queue import InMemoryWriteQueue, SlugWriteJob
from dat_backend.worker import process_next


class WorkerTests(unittest.TestCase):
    def setUp(self):
        self.queue = InMemoryWriteQueue()
        self.canonicalizer = MagicMock()
        self.canonicalizer.auto_canonicalize.return_value = True

    def test_process_next_applies_job(self):
        self.queue.enqueue(SlugWriteJob(old="old-name", next="new-name"))

        processed = process_next(
            canonicalizer=self.canonicalizer, queue=self.queue, block=False, max_attempts=3
        )

        self.assertTrue(processed)
        self.canonicalizer.auto_canonicalize.assert_called_once_with("old-name", "new-name")
        self.assertEqual(len(self.queue), 0)

    def test_process_next_no_jobs(self):
        processed = process_next(
            canonicalizer=self.canonicalizer, queue=self.queue, block=False, max_attempts=3
        )
        self.assertFalse(processed)
        self.canonicalizer.auto_canonicalize.assert_not_called()

    def test_failed_job_is_requeued_until_attempts_run_out(self):
        self.canonicalizer.auto_canonicalize.side_effect = RuntimeError("sheets down")
        self.queue.enqueue(SlugWriteJob(old="old-name", next="new-name"))

        with self.assertLogs("dat_backend.worker", level="ERROR"):
            process_next(
                canonicalizer=self.canonicalizer, queue=self.queue, block=False, max_attempts=2
            )
        self.assertEqual(len(self.queue), 1)
        self.assertEqual(self.queue.items[0].attempts, 1)

        with self.assertLogs("dat_backend.worker", level="ERROR"):
            process_next(
                canonicalizer=self.canonicalizer, queue=self.queue, block=False, max_attempts=2
            )
        self.assertEqual(len(self.queue), 0)
        self.assertEqual(self.canonicalizer.auto_canonicalize.call_count, 2)

    def test_job_json_carries_attempts(self):
        job = SlugWriteJob.from_json(b'{"old": "a", "next": "b", "attempts": 2}')
        self.assertEqual((job.old, job.next, job.attempts), ("a", "b", 2))
        self.assertEqual(SlugWriteJob.from_json(job.to_json()), job)


if __name__ == "__main__":
    unittest.main()
