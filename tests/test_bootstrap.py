#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Unit tests for component wiring and the service runner."""

import os
import shutil
import tempfile
import threading
import unittest
from unittest import mock

from queue_worker import bootstrap
from queue_worker.exceptions import TransportError
from queue_worker.utils.config_manager import ConfigManager
from queue_worker.workers.base import BaseWorker, WorkerState
from queue_worker.workers.consumer import ConsumerWorker
from queue_worker.workers.producer import ProducerWorker


class IdleWorker(BaseWorker):
    """Blocks until shut down, or returns right away when ``exit_immediately``."""

    name = "idle"

    def __init__(self, exit_immediately=False):
        super().__init__()
        self.exit_immediately = exit_immediately

    def _run(self):
        if not self.exit_immediately:
            self._stop_event.wait()


class CrashingWorker(BaseWorker):

    name = "crashing"

    def _run(self):
        raise RuntimeError("boom")


class TestWorkerState(unittest.TestCase):
    """A loop that ends on its own reports STOPPED."""

    def test_loop_returning_marks_worker_stopped(self):
        worker = IdleWorker(exit_immediately=True)
        worker.start()
        self.assertTrue(worker.wait(1.0))
        self.assertEqual(worker.state, WorkerState.STOPPED)
        self.assertFalse(worker.is_running)

    def test_crashed_loop_marks_worker_stopped(self):
        worker = CrashingWorker()
        with self.assertLogs(worker.logger, level="ERROR"):
            worker.start()
            self.assertTrue(worker.wait(1.0))
        self.assertEqual(worker.state, WorkerState.STOPPED)
        worker.shutdown()
        self.assertEqual(worker.state, WorkerState.STOPPED)


class TestServiceRunner(unittest.TestCase):
    """Test cases for ServiceRunner."""

    def test_stop_shuts_down_workers_then_runs_cleanups_in_reverse(self):
        order = []
        workers = [IdleWorker(), IdleWorker()]
        runner = bootstrap.ServiceRunner(
            workers,
            cleanups=[lambda: order.append("database"), lambda: order.append("broker")],
            stop_timeout=1.0,
        )
        runner.start()
        self.assertTrue(all(worker.is_running for worker in workers))
        runner.stop()

        self.assertTrue(all(worker.wait(0) for worker in workers))
        self.assertEqual(order, ["broker", "database"])

    def test_run_returns_after_shutdown_request(self):
        worker = IdleWorker()
        cleanup = mock.Mock()
        runner = bootstrap.ServiceRunner([worker], cleanups=[cleanup], stop_timeout=1.0)
        timer = threading.Timer(0.1, runner.request_shutdown)
        timer.start()
        try:
            runner.run(poll_interval=0.01, install_signals=False)
        finally:
            timer.cancel()
        self.assertTrue(worker.wait(0))
        cleanup.assert_called_once_with()

    def test_run_returns_when_every_worker_exits(self):
        worker = IdleWorker(exit_immediately=True)
        runner = bootstrap.ServiceRunner([worker], stop_timeout=1.0)
        with self.assertLogs("queue_worker.bootstrap", level="WARNING"):
            runner.run(poll_interval=0.01, install_signals=False)

    def test_signal_handler_requests_shutdown(self):
        runner = bootstrap.ServiceRunner([])
        runner._signal_handler(15, None)
        self.assertTrue(runner._shutdown.is_set())

    def test_close_quietly_logs_failures(self):
        def broken_close():
            raise RuntimeError("boom")

        cleanup = bootstrap.close_quietly("broker", broken_close)
        with self.assertLogs("queue_worker.bootstrap", level="ERROR") as logs:
            cleanup()
        self.assertIn("Error closing broker: boom", logs.output[0])


class TestBuildRunner(unittest.TestCase):
    """Test cases for build_runner."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.config = ConfigManager({
            "database": {"path": os.path.join(self.test_dir, "users.db")},
            "producer": {"interval": 0.5},
        })

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    @mock.patch("queue_worker.bootstrap.build_broker")
    def test_serve_builds_one_broker_per_worker(self, build_broker):
        build_broker.side_effect = lambda config: mock.Mock()
        runner = bootstrap.build_runner(self.config, producer=True, consumer=True)

        self.assertEqual(build_broker.call_count, 2)
        consumer, producer = runner.workers
        self.assertIsInstance(consumer, ConsumerWorker)
        self.assertIsInstance(producer, ProducerWorker)
        self.assertIsNot(consumer.broker, producer.broker)
        self.assertEqual(producer.interval, 0.5)

        for cleanup in reversed(runner.cleanups):
            cleanup()
        consumer.broker.close.assert_called_once_with()
        producer.broker.close.assert_called_once_with()

    @mock.patch("queue_worker.bootstrap.build_broker")
    def test_producer_only_skips_the_database(self, build_broker):
        build_broker.side_effect = lambda config: mock.Mock()
        with mock.patch("queue_worker.bootstrap.build_connection_pool") as build_pool:
            runner = bootstrap.build_runner(self.config, producer=True)
        build_pool.assert_not_called()
        self.assertEqual(len(runner.workers), 1)

    @mock.patch("queue_worker.bootstrap.build_broker")
    def test_failure_releases_what_was_built(self, build_broker):
        consumer_broker = mock.Mock()
        build_broker.side_effect = [consumer_broker, TransportError("unreachable")]
        with mock.patch("queue_worker.bootstrap.build_connection_pool") as build_pool:
            with self.assertRaises(TransportError):
                bootstrap.build_runner(self.config, producer=True, consumer=True)

        consumer_broker.close.assert_called_once_with()
        build_pool.return_value.close.assert_called_once_with()

    def test_build_connection_pool_applies_migrations(self):
        pool = bootstrap.build_connection_pool(self.config)
        try:
            repository = bootstrap.build_user_repository(pool)
            self.assertEqual(repository.list(), [])
        finally:
            pool.close()

    def test_build_broker_maps_configuration(self):
        self.config.set("rabbitmq.queue_name", "users")
        broker = bootstrap.build_broker(self.config, connect=False)
        self.assertEqual(broker.queue_name, "users")
        self.assertEqual(broker.exchange, "worker_exchange")
        self.assertEqual(broker.username, "guest")
        self.assertFalse(broker.is_connected)


if __name__ == '__main__':
    unittest.main()
