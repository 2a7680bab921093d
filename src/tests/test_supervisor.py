"""
Tests for the lifecycle supervisor: bootstrap, shutdown paths and exit codes.
"""

import io
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import textwrap
import threading
import unittest
from unittest import mock

from config import EXIT_FAILURE
from lifecycle.supervisor import (
    LifecycleContext, LifecycleSupervisor, ShutdownReason, SupervisorState,
    discover_config_file,
)
from lifecycle.errors import ConfigFileNotFound
from storage.types import WriteBufferMode

SRC_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class FakeServer:
    """Server double recording the calls made by the supervisor"""

    def __init__(self, stop_after_polls=None, on_start=None, on_stop=None):
        self.stop_after_polls = stop_after_polls
        self.on_start = on_start
        self.on_stop = on_stop
        self.start_args = None
        self.polls = 0
        self.stop_calls = 0

    def start(self, server_options, db_options, path):
        self.start_args = (server_options, db_options, path)
        if self.on_start:
            self.on_start()

    def stop(self):
        self.stop_calls += 1
        if self.on_stop:
            self.on_stop()

    def is_stop_requested(self):
        self.polls += 1
        return self.stop_after_polls is not None and self.polls >= self.stop_after_polls


class SupervisorTestCase(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()
        self.search_paths = [
            os.path.join(self.temp_dir, 'local.conf'),
            os.path.join(self.temp_dir, 'system.conf'),
        ]
        self.server = FakeServer(stop_after_polls=3)

    def tearDown(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_supervisor(self) -> LifecycleSupervisor:
        return LifecycleSupervisor(lambda: self.server, poll_interval=0.01,
                                   config_search_paths=self.search_paths)

    def run_supervisor(self, *argv):
        """Run a supervisor, returning (supervisor, exit code, stdout, stderr)"""
        supervisor = self.make_supervisor()
        with mock.patch('sys.stdout', new_callable=io.StringIO) as out, \
                mock.patch('sys.stderr', new_callable=io.StringIO) as err:
            code = supervisor.run(list(argv))
        return supervisor, code, out.getvalue(), err.getvalue()

    def write_file(self, path, content):
        with open(path, 'w') as f:
            f.write(content)
        return path


class TestBootstrap(SupervisorTestCase):
    """Test cases for configuration bootstrap"""

    def test_help(self):
        """Test --help prints versions and parameters and exits 0"""
        supervisor, code, out, _ = self.run_supervisor('--help')

        self.assertEqual(code, 0)
        self.assertIn('kvserver version: 0.9.0-0', out)
        self.assertIn('Data format version:', out)
        self.assertIn('--db.path', out)
        self.assertIsNone(self.server.start_args)
        self.assertIs(supervisor.state, SupervisorState.BOOTSTRAPPING)

    def test_generate_doc(self):
        """Test --generate-doc prints the markdown table and exits 0"""
        _, code, out, _ = self.run_supervisor('--generate-doc')

        self.assertEqual(code, 0)
        self.assertIn('| `db.storage.compression` |', out)
        self.assertIsNone(self.server.start_args)

    def test_missing_mandatory(self):
        """Test that a missing db.path is listed and nothing is started"""
        _, code, _, err = self.run_supervisor('--foreground')

        self.assertEqual(code, EXIT_FAILURE)
        self.assertEqual(err.strip(), 'Missing mandatory parameter: [db.path]')
        self.assertIsNone(self.server.start_args)

    def test_unknown_enum_value(self):
        """Test that an unknown hashing algorithm aborts startup"""
        _, code, _, err = self.run_supervisor(
            '--foreground', '--db.path=/tmp/db', '--db.storage.hashing=sha1')

        self.assertEqual(code, EXIT_FAILURE)
        self.assertIn('sha1', err)
        self.assertIn('db.storage.hashing', err)
        self.assertIsNone(self.server.start_args)

    def test_unknown_command_line_parameter(self):
        """Test that the full pass rejects unknown arguments"""
        _, code, _, err = self.run_supervisor('--foreground', '--db.path=/tmp/db', '--bogus=1')

        self.assertEqual(code, EXIT_FAILURE)
        self.assertIn('bogus', err)

    def test_explicit_config_file_not_found(self):
        """Test an explicit --configfile that does not exist"""
        missing = os.path.join(self.temp_dir, 'missing.conf')
        _, code, _, err = self.run_supervisor('--configfile', missing, '--foreground')

        self.assertEqual(code, EXIT_FAILURE)
        self.assertIn(missing, err)

    def test_undecodable_config_file(self):
        """Test a config file that is not UTF-8 is a diagnostic, not a crash"""
        path = os.path.join(self.temp_dir, 'latin1.conf')
        with open(path, 'wb') as f:
            f.write(b'db.path = /tmp/\xff\xfe\n')

        supervisor, code, _, err = self.run_supervisor('--configfile', path, '--foreground')

        self.assertEqual(code, EXIT_FAILURE)
        self.assertIn(f'{path}:1', err)
        self.assertIsNone(self.server.start_args)
        self.assertIs(supervisor.state, SupervisorState.BOOTSTRAPPING)

    def test_config_file_and_overrides(self):
        """Test file values, command-line overrides and the adaptive default"""
        self.write_file(self.search_paths[1], textwrap.dedent("""\
            # system-wide configuration
            db.path /tmp/from-file
            server.port 9000
            db.storage.compression disabled
            some.future.option 1
            db.log.level silent
        """))

        supervisor, code, _, _ = self.run_supervisor('--foreground', '--server.port=9100')

        self.assertEqual(code, 0)
        server_options, db_options, path = self.server.start_args
        self.assertEqual(path, '/tmp/from-file')
        self.assertEqual(server_options.port, 9100)
        self.assertEqual(db_options.compression.name, 'NONE')
        self.assertIs(db_options.write_buffer_mode, WriteBufferMode.ADAPTIVE)
        self.assertEqual(supervisor.configuration['configfile'], self.search_paths[1])

    def test_relative_db_path(self):
        """Test that a relative db.path resolves against the launch directory"""
        launch_dir = os.getcwd()
        _, code, _, _ = self.run_supervisor(
            '--foreground', '--db.path=data/db', '--db.log.level=silent')

        self.assertEqual(code, 0)
        self.assertEqual(self.server.start_args[2], os.path.join(launch_dir, 'data', 'db'))


class TestConfigDiscovery(unittest.TestCase):
    """Test cases for configuration file discovery"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.local = os.path.join(self.temp_dir, 'local.conf')
        self.system = os.path.join(self.temp_dir, 'system.conf')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def touch(self, path):
        open(path, 'w').close()

    def test_none_found(self):
        """Test that no candidate is not an error"""
        self.assertEqual(discover_config_file('', [self.local, self.system]), '')

    def test_system_wide_fallback(self):
        """Test the system-wide file is used when the local one is absent"""
        self.touch(self.system)
        self.assertEqual(discover_config_file('', [self.local, self.system]), self.system)

    def test_local_first(self):
        """Test the local file wins when both exist"""
        self.touch(self.local)
        self.touch(self.system)
        self.assertEqual(discover_config_file('', [self.local, self.system]), self.local)

    def test_explicit(self):
        """Test an explicit path skips the search"""
        explicit = os.path.join(self.temp_dir, 'explicit.conf')
        self.touch(explicit)
        self.touch(self.local)
        self.assertEqual(discover_config_file(explicit, [self.local]), explicit)

        with self.assertRaises(ConfigFileNotFound):
            discover_config_file(os.path.join(self.temp_dir, 'nope.conf'), [self.local])


class TestShutdown(SupervisorTestCase):
    """Test cases for the running and stopping states"""

    ARGS = ('--foreground', '--db.path=/tmp/db', '--db.log.level=silent')

    def test_server_requested_stop(self):
        """Test that the server's own stop request stops it once"""
        supervisor, code, _, _ = self.run_supervisor(*self.ARGS)

        self.assertEqual(code, 0)
        self.assertEqual(self.server.stop_calls, 1)
        self.assertIs(supervisor.context.reason, ShutdownReason.SERVER_REQUESTED)
        self.assertIs(supervisor.state, SupervisorState.STOPPED)

    def test_termination_signal(self):
        """Test that SIGTERM stops the server once, even if repeated while stopping"""
        pid = os.getpid()
        self.server = FakeServer(
            on_start=lambda: threading.Timer(0.05, os.kill, (pid, signal.SIGTERM)).start(),
            on_stop=lambda: os.kill(pid, signal.SIGTERM),
        )
        previous = signal.getsignal(signal.SIGTERM)

        supervisor, code, _, _ = self.run_supervisor(*self.ARGS)

        self.assertEqual(code, 0)
        self.assertEqual(self.server.stop_calls, 1)
        self.assertIs(supervisor.context.reason, ShutdownReason.USER_SIGNAL)
        self.assertEqual(supervisor.context.stop_flag.signum, signal.SIGTERM)
        self.assertIs(supervisor.state, SupervisorState.STOPPED)
        self.assertEqual(signal.getsignal(signal.SIGTERM), previous)

    def test_shutdown_is_idempotent(self):
        """Test that a second shutdown does not stop the server again"""
        supervisor = self.make_supervisor()
        supervisor.server = self.server
        supervisor.context.state = SupervisorState.RUNNING

        supervisor.shutdown()
        supervisor.shutdown()

        self.assertEqual(self.server.stop_calls, 1)
        self.assertIs(supervisor.state, SupervisorState.STOPPED)

    def test_first_reason_wins(self):
        """Test that the shutdown reason is recorded once"""
        context = LifecycleContext()
        self.assertTrue(context.request_stop(ShutdownReason.SERVER_REQUESTED))
        self.assertFalse(context.request_stop(ShutdownReason.USER_SIGNAL))
        self.assertIs(context.reason, ShutdownReason.SERVER_REQUESTED)

    def test_reasons_recorded_by_supervisor(self):
        """Test that only graceful stop reasons exist; faults never reach the loop"""
        self.assertEqual([reason.name for reason in ShutdownReason],
                         ['USER_SIGNAL', 'SERVER_REQUESTED'])

    def test_server_start_failure(self):
        """Test that a server failing to start ends with a failure code"""
        def fail():
            raise OSError("address in use")
        self.server = FakeServer(on_start=fail)

        supervisor, code, _, _ = self.run_supervisor(*self.ARGS)

        self.assertEqual(code, EXIT_FAILURE)
        self.assertEqual(self.server.stop_calls, 0)
        self.assertIs(supervisor.state, SupervisorState.CONFIGURED)


class TestFatalFault(unittest.TestCase):
    """Test that a fault signal bypasses the graceful stop"""

    def test_fault_during_run(self):
        """Test a native fault while polling: trace on stderr, no call to stop"""
        temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, temp_dir, True)
        marker = os.path.join(temp_dir, 'stopped')

        script = textwrap.dedent(f"""
            import ctypes, resource
            from lifecycle.supervisor import LifecycleSupervisor

            resource.setrlimit(resource.RLIMIT_CORE, (0, 0))

            class CrashingServer:
                polls = 0
                def start(self, server_options, db_options, path):
                    pass
                def stop(self):
                    open({marker!r}, 'w').close()
                def is_stop_requested(self):
                    self.polls += 1
                    if self.polls == 3:
                        ctypes.string_at(0)
                    return False

            LifecycleSupervisor(CrashingServer, poll_interval=0.01, config_search_paths=[]).run(
                ['--foreground', '--db.path', {temp_dir!r}, '--db.log.level', 'silent'])
        """)
        env = dict(os.environ, PYTHONPATH=SRC_DIR)
        result = subprocess.run([sys.executable, '-c', script], env=env,
                                capture_output=True, timeout=30)

        self.assertEqual(result.returncode, -signal.SIGSEGV)
        self.assertIn(b'Fatal Python error: Segmentation fault', result.stderr)
        self.assertIn(b'is_stop_requested', result.stderr)
        self.assertIn(b'wait_for_stop', result.stderr)
        self.assertFalse(os.path.exists(marker))


if __name__ == '__main__':
    unittest.main()
