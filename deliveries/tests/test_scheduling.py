import threading

from django.test import SimpleTestCase

from deliveries.scheduling import ThreadingScheduler


class ThreadingSchedulerTests(SimpleTestCase):
    def test_task_repeats_until_cancelled(self):
        calls = []
        done = threading.Event()

        def task():
            calls.append(1)
            if len(calls) >= 3:
                done.set()

        timer = ThreadingScheduler().schedule(0.01, task)
        self.assertTrue(done.wait(2))
        timer.cancel()
        timer.join(1)

        self.assertFalse(timer.is_alive())
        self.assertTrue(timer.cancelled)
        self.assertGreaterEqual(len(calls), 3)

    def test_failing_task_stops_its_timer(self):
        def task():
            raise RuntimeError("boom")

        with self.assertLogs("deliveries.scheduling", level="ERROR"):
            timer = ThreadingScheduler().schedule(0.01, task)
            timer.join(2)

        self.assertTrue(timer.cancelled)
        self.assertFalse(timer.is_alive())
