"""
Tests for rtupoll.scheduler module
"""
import threading
import time
import unittest

from rtupoll.config import Settings
from rtupoll.devices import DeviceSpec
from rtupoll.exceptions import ResponseTimeoutError, SinkError, TransportError
from rtupoll.rtu import RtuClient
from rtupoll.scheduler import PollingScheduler, SchedulerState
from rtupoll.sink import ResultSink

from fakes import StubSession, coil_response, register_response


def make_device(slave, function_code=3, count=2, port='/dev/ttyTEST'):
    return DeviceSpec(port, 9600, 8, 'N', 1, slave, function_code, 100, count)


def record_drains(scheduler):
    """Wrap scheduler._drain, recording (reason, new state) for each state change"""
    seen = []
    drain = scheduler._drain

    def recording_drain(reason):
        before = scheduler.state
        drain(reason)
        if scheduler.state is not before:
            seen.append((reason, scheduler.state))

    scheduler._drain = recording_drain
    return seen


class RecordingSink(ResultSink):
    """Keeps written records in memory, optionally failing for some labels"""

    def __init__(self, fail_for=()):
        self.records = []
        self.fail_for = set(fail_for)

    def write(self, label1, label2, start_address, formatted_value):
        if label2 in self.fail_for:
            raise SinkError(f"cannot store {label2}")
        self.records.append((label1, label2, start_address, formatted_value))


class ScriptedFactory:
    """Session factory handing out StubSessions scripted per slave"""

    def __init__(self, scripts, unreachable=()):
        self.scripts = scripts
        self.unreachable = set(unreachable)
        self.sessions = []

    def __call__(self, device):
        if device.slave in self.unreachable:
            raise TransportError("could not open port", device.port)
        session = StubSession(self.scripts.get(device.slave, ()), device.port)
        self.sessions.append(session)
        return session


class TestPollingRound(unittest.TestCase):
    """Test cases for a single polling round"""

    def setUp(self):
        self.settings = Settings(interval=0.01, max_attempts=1)
        self.devices = [make_device(1), make_device(2), make_device(3, function_code=1, count=3)]
        self.scripts = {
            1: [register_response(1, 0x03, [10, 20])],
            2: [register_response(2, 0x03, [30, 40])],
            3: [coil_response(3, [True, False, True])],
        }

    def make_scheduler(self, factory, sink, **kwargs):
        return PollingScheduler(
            self.devices, sink, settings=kwargs.pop('settings', self.settings),
            session_factory=factory, **kwargs
        )

    def test_all_devices_polled_in_order(self):
        sink = RecordingSink()
        stats = self.make_scheduler(ScriptedFactory(self.scripts), sink).run_round()
        self.assertEqual(sink.records, [
            ('/dev/ttyTEST', '1', '100', '10,20'),
            ('/dev/ttyTEST', '2', '100', '30,40'),
            ('/dev/ttyTEST', '3', '100', 'true,false,true'),
        ])
        self.assertEqual((stats.polled, stats.succeeded, stats.failed), (3, 3, 0))

    def test_unreachable_device_does_not_stop_round(self):
        """A device whose port cannot be opened is skipped, the others still reach the sink"""
        sink = RecordingSink()
        factory = ScriptedFactory(self.scripts, unreachable={2})
        with self.assertLogs('rtupoll.scheduler', level='ERROR') as logs:
            stats = self.make_scheduler(factory, sink).run_round()
        self.assertEqual([r[1] for r in sink.records], ['1', '3'])
        self.assertEqual((stats.succeeded, stats.failed), (2, 1))
        self.assertIn('TransportError', logs.output[0])

    def test_timeout_does_not_stop_round(self):
        sink = RecordingSink()
        self.scripts[1] = [ResponseTimeoutError("No response", '/dev/ttyTEST')]
        with self.assertLogs('rtupoll.scheduler', level='ERROR'):
            self.make_scheduler(ScriptedFactory(self.scripts), sink).run_round()
        self.assertEqual([r[1] for r in sink.records], ['2', '3'])

    def test_sink_error_does_not_stop_round(self):
        sink = RecordingSink(fail_for={'1'})
        with self.assertLogs('rtupoll.scheduler', level='ERROR'):
            stats = self.make_scheduler(ScriptedFactory(self.scripts), sink).run_round()
        self.assertEqual([r[1] for r in sink.records], ['2', '3'])
        self.assertEqual(stats.failed, 1)

    def test_unexpected_error_is_contained(self):
        class BrokenSink(RecordingSink):
            def write(self, *args):
                raise RuntimeError("bug")

        with self.assertLogs('rtupoll.scheduler', level='ERROR'):
            stats = self.make_scheduler(ScriptedFactory(self.scripts), BrokenSink()).run_round()
        self.assertEqual(stats.failed, 3)

    def test_sessions_closed_on_every_path(self):
        self.scripts[2] = [ResponseTimeoutError("No response", '/dev/ttyTEST')]
        factory = ScriptedFactory(self.scripts)
        with self.assertLogs('rtupoll.scheduler', level='ERROR'):
            self.make_scheduler(factory, RecordingSink(fail_for={'3'})).run_round()
        self.assertEqual(len(factory.sessions), 3)
        self.assertTrue(all(session.close_calls == 1 for session in factory.sessions))

    def test_configured_labels(self):
        sink = RecordingSink()
        settings = Settings(interval=0.01, max_attempts=1, label1='plant', label2='line-2')
        self.make_scheduler(ScriptedFactory(self.scripts), sink, settings=settings).run_round()
        self.assertEqual({(r[0], r[1]) for r in sink.records}, {('plant', 'line-2')})

    def test_stop_between_devices(self):
        """A stop request after the first device drains the round"""
        stop_event = threading.Event()
        sink = RecordingSink()

        class StoppingSink(RecordingSink):
            def write(self, *args):
                sink.write(*args)
                stop_event.set()

        scheduler = self.make_scheduler(ScriptedFactory(self.scripts), StoppingSink(),
                                        stop_event=stop_event)
        drains = record_drains(scheduler)
        with self.assertLogs('rtupoll.scheduler', level='INFO') as logs:
            scheduler.run()
        self.assertEqual(len(sink.records), 1)
        self.assertEqual(drains, [('between devices', SchedulerState.DRAINING)])
        self.assertTrue(any('draining' in line for line in logs.output))
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)

    def test_stop_during_last_device(self):
        """A stop request while the last device is polled drains at the round boundary"""
        stop_event = threading.Event()
        sink = RecordingSink()

        class StoppingSink(RecordingSink):
            def write(self, *args):
                sink.write(*args)
                if len(sink.records) == 3:
                    stop_event.set()

        scheduler = self.make_scheduler(ScriptedFactory(self.scripts), StoppingSink(),
                                        stop_event=stop_event)
        drains = record_drains(scheduler)
        with self.assertLogs('rtupoll.scheduler', level='INFO') as logs:
            scheduler.run()
        self.assertEqual(len(sink.records), 3)
        self.assertEqual(scheduler.rounds_completed, 1)
        self.assertEqual(drains, [('after round', SchedulerState.DRAINING)])
        self.assertTrue(any('after round' in line for line in logs.output))
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)

    def test_stop_on_final_round_still_drains(self):
        self.devices = self.devices[:1]
        stop_event = threading.Event()

        class StoppingSink(RecordingSink):
            def write(self, *args):
                stop_event.set()

        scheduler = self.make_scheduler(ScriptedFactory(self.scripts), StoppingSink(),
                                        stop_event=stop_event, max_rounds=1)
        drains = record_drains(scheduler)
        with self.assertLogs('rtupoll.scheduler', level='INFO'):
            scheduler.run()
        self.assertEqual(drains, [('after round', SchedulerState.DRAINING)])
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)


class TestSchedulerLifecycle(unittest.TestCase):
    """Test cases for the run loop and shutdown"""

    def setUp(self):
        self.devices = [make_device(1)]
        self.factory = ScriptedFactory({})

    def test_initial_state(self):
        scheduler = PollingScheduler(self.devices, RecordingSink(), session_factory=self.factory)
        self.assertEqual(scheduler.state, SchedulerState.IDLE)
        self.assertEqual(scheduler.interval, 3.0)

    def test_max_rounds(self):
        factory = ScriptedFactory({1: [register_response(1, 0x03, [1, 2])] * 3})
        sink = RecordingSink()
        scheduler = PollingScheduler(self.devices, sink, settings=Settings(interval=0.01),
                                     session_factory=factory, max_rounds=3)
        drains = record_drains(scheduler)
        scheduler.run()
        self.assertEqual(scheduler.rounds_completed, 3)
        self.assertEqual(drains, [])
        self.assertEqual(len(factory.sessions), 3)
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)

    def test_stop_before_run(self):
        scheduler = PollingScheduler(self.devices, RecordingSink(), session_factory=self.factory)
        scheduler.stop()
        drains = record_drains(scheduler)
        with self.assertLogs('rtupoll.scheduler', level='INFO'):
            scheduler.run()
        self.assertEqual(drains, [('before round', SchedulerState.DRAINING)])
        self.assertEqual(scheduler.rounds_completed, 0)
        self.assertEqual(self.factory.sessions, [])
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)

    def test_stop_during_delay(self):
        """Shutdown during the inter-round wait returns well before the interval"""
        settings = Settings(interval=30.0, max_attempts=1)
        client = RtuClient(max_attempts=1)
        scheduler = PollingScheduler(self.devices, RecordingSink(), settings=settings,
                                     client=client, session_factory=self.factory)
        drains = record_drains(scheduler)
        worker = threading.Thread(target=scheduler.run, daemon=True)

        with self.assertLogs('rtupoll.scheduler', level='INFO'):
            worker.start()
            deadline = time.monotonic() + 5.0
            while scheduler.rounds_completed < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            # Give the worker time to enter the inter-round wait
            time.sleep(0.2)
            started = time.monotonic()
            scheduler.stop()
            worker.join(5.0)

        self.assertFalse(worker.is_alive())
        self.assertLess(time.monotonic() - started, 2.0)
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)
        self.assertEqual(scheduler.rounds_completed, 1)
        self.assertEqual(drains, [('during delay', SchedulerState.DRAINING)])

    def test_default_client_shares_stop_event(self):
        stop_event = threading.Event()
        scheduler = PollingScheduler(self.devices, RecordingSink(), stop_event=stop_event,
                                     session_factory=self.factory)
        self.assertIs(scheduler.client.cancel, stop_event)
        self.assertEqual(scheduler.client.max_attempts, 3)


if __name__ == '__main__':
    unittest.main()
