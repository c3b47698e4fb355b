from __future__ import annotations

import tempfile
from pathlib import Path
from unittest import TestCase
from unittest.mock import patch

from fakes import ACCOUNT, CONTRACT, PRIVATE_KEY, FakeChainClient
from fastapi.testclient import TestClient

from usage_commit import cli
from usage_commit.engine import BatchSubmissionEngine


class TestParseArgs(TestCase):
    def test_run(self):
        args = cli.parse_args(["-l", "debug", "run", "-r", "records.json", "--strict"])
        self.assertEqual(args.command, "run")
        self.assertEqual(args.records, Path("records.json"))
        self.assertTrue(args.strict)
        self.assertFalse(args.fixed)
        self.assertEqual(args.log_level, "debug")

    def test_serve_defaults(self):
        args = cli.parse_args(["serve"])
        self.assertEqual((args.host, args.port), ("0.0.0.0", 8000))

    def test_command_required(self):
        with self.assertRaises(SystemExit):
            cli.parse_args([])


class TestMain(TestCase):
    def test_config_error_is_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            with patch.dict("os.environ", {"CONTRACT_ADDRESS": "", "DEPLOYER_PRIVATE_KEY": "", "SECRETS_FILE": "", "USAGE_COMMIT_CONFIG": ""}), \
                    patch.object(cli, "setup_logging"):
                code = cli.main(["run", "-r", str(Path(tmp) / "records.json")])
        self.assertEqual(code, cli.EXIT_FATAL)


class TestServe(TestCase):
    def test_config_file_reaches_the_service(self):
        seen = []

        async def connect(settings, **kw):
            seen.append(settings)
            return BatchSubmissionEngine(settings, FakeChainClient(), ACCOUNT)

        def run_service(target, **kw):
            # what uvicorn does with the import string: import the app and run its lifespan
            from usage_commit.app import app

            self.assertEqual(target, "usage_commit.app:app")
            with TestClient(app) as client:
                self.assertEqual(client.get("/health").status_code, 200)

        env = {
            "RPC_URL": "http://node:8545",
            "CONTRACT_ADDRESS": CONTRACT,
            "DEPLOYER_PRIVATE_KEY": PRIVATE_KEY,
            "SECRETS_FILE": "",
            "BATCH_SIZE": "",
        }
        with tempfile.TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "serve.toml"
            cfg.write_text("[batch]\nsize = 7\n")
            with patch.dict("os.environ", env), \
                    patch.object(cli, "setup_logging"), \
                    patch("uvicorn.run", side_effect=run_service), \
                    patch("usage_commit.app.connect_engine", side_effect=connect):
                code = cli.main(["-c", str(cfg), "serve"])

        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].batch_size, 7)
