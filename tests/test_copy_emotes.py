import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

import copy_emotes
from core.models import Item, TransferPlan, TransferResult, TransferState


def pending_state() -> TransferState:
    plan = TransferPlan("src", "dst", "Target", (Item("i1", "a", "m1"),), total=1, skipped=0)
    return TransferState(plan=plan)


class TestLoadConfig(unittest.TestCase):
    def test_start_requires_ids_and_token(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            copy_emotes.load_config("start", {"SOURCE_SET_ID": "src"})
        self.assertIn("TARGET_SET_ID", str(ctx.exception))
        self.assertIn("SEVENTV_TOKEN", str(ctx.exception))

    def test_resume_needs_nothing(self) -> None:
        self.assertEqual(copy_emotes.load_config("resume", {}), {})

    def test_collects_values(self) -> None:
        config = copy_emotes.load_config("start", {
            "SOURCE_SET_ID": "src",
            "TARGET_SET_ID": "dst",
            "TARGET_SET_NAME": "Main",
            "SEVENTV_TOKEN": "tok",
        })
        self.assertEqual(config["TARGET_SET_NAME"], "Main")
        self.assertEqual(config["SEVENTV_TOKEN"], "tok")


class TestRunCommand(unittest.TestCase):
    def test_auto_resumes_pending_process(self) -> None:
        process = Mock()
        process.pending_process.return_value = pending_state()
        process.resume.return_value = TransferResult(success=True)

        result = copy_emotes.run_command(process, "auto", {})

        self.assertTrue(result.success)
        process.resume.assert_called_once_with(None)
        process.start.assert_not_called()

    def test_auto_starts_when_nothing_pending(self) -> None:
        process = Mock()
        process.pending_process.return_value = None
        process.start.return_value = TransferResult(success=True)
        env = {"SOURCE_SET_ID": "src", "TARGET_SET_ID": "dst", "SEVENTV_TOKEN": "tok"}

        with patch.dict(os.environ, env, clear=True):
            copy_emotes.run_command(process, "auto", {})

        process.start.assert_called_once_with("src", "dst", "", "tok")

    def test_start(self) -> None:
        process = Mock()
        config = {"SOURCE_SET_ID": "src", "TARGET_SET_ID": "dst",
                  "TARGET_SET_NAME": "Main", "SEVENTV_TOKEN": "tok"}

        copy_emotes.run_command(process, "start", config)

        process.start.assert_called_once_with("src", "dst", "Main", "tok")


class TestLock(unittest.TestCase):
    def test_second_lock_fails_until_released(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            lock_file = Path(tmp) / ".copy.lock"
            fd = copy_emotes.acquire_lock(lock_file)
            self.assertIsNotNone(fd)
            self.assertIsNone(copy_emotes.acquire_lock(lock_file))

            copy_emotes.release_lock(fd, lock_file)
            self.assertFalse(lock_file.exists())

            fd = copy_emotes.acquire_lock(lock_file)
            self.assertIsNotNone(fd)
            copy_emotes.release_lock(fd, lock_file)


class TestMain(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.env = patch.dict(os.environ, {"DATA_DIR": self._tmp.name}, clear=True)
        self.env.start()
        patcher = patch("copy_emotes.setup_logging")
        patcher.start()
        self.addCleanup(patcher.stop)
        patcher = patch("copy_emotes.install_stop_handlers")
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self) -> None:
        self.env.stop()
        self._tmp.cleanup()

    def test_unknown_command(self) -> None:
        with patch("sys.stderr"):
            self.assertEqual(copy_emotes.main(["bogus"]), 2)

    def test_missing_config_exits_with_failure(self) -> None:
        self.assertEqual(copy_emotes.main(["start"]), 1)
        self.assertTrue((Path(self._tmp.name) / "copy_status.json").exists())

    def test_resume_failure_exit_code(self) -> None:
        process = Mock()
        process.resume.return_value = TransferResult.failure("No saved process to resume")
        with patch("copy_emotes.build_process", return_value=process):
            self.assertEqual(copy_emotes.main(["resume"]), 1)

    def test_start_success(self) -> None:
        process = Mock()
        process.start.return_value = TransferResult(success=True)
        os.environ.update({"SOURCE_SET_ID": "src", "TARGET_SET_ID": "dst", "SEVENTV_TOKEN": "tok"})
        with patch("copy_emotes.build_process", return_value=process):
            self.assertEqual(copy_emotes.main(["start"]), 0)
        process.start.assert_called_once_with("src", "dst", "", "tok")
        self.assertFalse((Path(self._tmp.name) / ".copy.lock").exists())

    def test_build_process_wires_components(self) -> None:
        from core.config import TransferConfig
        from core.transfer_engine import TransferProcess

        process = copy_emotes.build_process(Path(self._tmp.name), TransferConfig())
        self.assertIsInstance(process, TransferProcess)
        self.assertIsNone(process.pending_process())


if __name__ == "__main__":
    unittest.main()
