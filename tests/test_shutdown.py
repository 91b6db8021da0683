"""Tests for shutdown coordination"""

import asyncio
import os
import signal
import unittest

from stproxy.shutdown import ShutdownCoordinator


class ShutdownCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_trigger_fires_once(self):
        coordinator = ShutdownCoordinator()
        self.assertTrue(coordinator.trigger("first"))
        self.assertFalse(coordinator.trigger("second"))
        self.assertTrue(coordinator.is_set)
        self.assertEqual(coordinator.reason, "first")
        self.assertEqual(coordinator.ignored_requests, 1)

    async def test_run_waits_for_all_lifecycles(self):
        coordinator = ShutdownCoordinator()
        finished = []

        async def lifecycle(name, delay):
            await coordinator.event.wait()
            await asyncio.sleep(delay)
            finished.append(name)

        task = asyncio.create_task(coordinator.run(lifecycle("http", 0.05), lifecycle("ssdp", 0.01)))
        await asyncio.sleep(0.01)
        self.assertFalse(task.done())

        coordinator.trigger("test")
        await asyncio.wait_for(task, timeout=2)
        self.assertEqual(sorted(finished), ["http", "ssdp"])

    async def test_failing_lifecycle_triggers_shutdown_and_reraises(self):
        coordinator = ShutdownCoordinator()
        drained = []

        async def failing():
            raise RuntimeError("boom")

        async def waiting():
            await coordinator.event.wait()
            drained.append(True)

        with self.assertRaises(RuntimeError):
            await asyncio.wait_for(coordinator.run(failing(), waiting()), timeout=2)

        self.assertEqual(drained, [True])
        self.assertEqual(coordinator.reason, "lifecycle failure")

    async def test_signals_fire_event_once(self):
        coordinator = ShutdownCoordinator()
        coordinator.install_signal_handlers()
        try:
            self.assertEqual(set(coordinator.installed_signals), {signal.SIGINT, signal.SIGTERM})

            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(coordinator.event.wait(), timeout=2)
            self.assertEqual(coordinator.reason, "SIGTERM")

            os.kill(os.getpid(), signal.SIGTERM)
            for _ in range(50):
                if coordinator.ignored_requests:
                    break
                await asyncio.sleep(0.01)
            self.assertEqual(coordinator.ignored_requests, 1)
        finally:
            coordinator.remove_signal_handlers()
        self.assertEqual(coordinator.installed_signals, [])


if __name__ == "__main__":
    unittest.main()
