"""Tests for CLI entrypoint wiring."""

from __future__ import annotations

from copy import deepcopy
import io
import unittest
from unittest.mock import MagicMock, patch

from agent_bridge.__main__ import main
from agent_bridge.config import DEFAULT_CONFIG


def _config(**stream: str) -> dict:
    config = deepcopy(DEFAULT_CONFIG)
    config["stream"].update(stream)
    config["model"]["api_key"] = "gemini-key"
    return config


class MainEntrypointTests(unittest.TestCase):
    """Validate top-level main() behavior."""

    def test_version_flag_prints_and_returns(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as stdout, patch(
            "agent_bridge.__main__.uvicorn"
        ) as uvicorn_mock:
            main(["--version"])
        self.assertTrue(stdout.getvalue().startswith("agent-bridge "))
        uvicorn_mock.run.assert_not_called()

    def test_missing_stream_settings_exit_with_message(self) -> None:
        with patch("agent_bridge.__main__.load_dotenv"), patch(
            "agent_bridge.__main__.load_config", return_value=_config()
        ), patch("agent_bridge.__main__.configure_logging"), patch(
            "sys.stderr", new_callable=io.StringIO
        ) as stderr, patch("agent_bridge.__main__.uvicorn") as uvicorn_mock:
            with self.assertRaises(SystemExit) as ctx:
                main([])
        self.assertEqual(ctx.exception.code, 2)
        self.assertIn("STREAM_API_KEY", stderr.getvalue())
        self.assertIn("AGENT_BRIDGE_CHANNEL_ID", stderr.getvalue())
        uvicorn_mock.run.assert_not_called()

    def test_missing_model_key_exits(self) -> None:
        config = _config(api_key="k", api_secret="s", channel_id="writing")
        config["model"]["api_key"] = ""
        with patch("agent_bridge.__main__.load_dotenv"), patch(
            "agent_bridge.__main__.load_config", return_value=config
        ), patch("agent_bridge.__main__.configure_logging"), patch(
            "sys.stderr", new_callable=io.StringIO
        ) as stderr, patch("agent_bridge.__main__.uvicorn") as uvicorn_mock:
            with self.assertRaises(SystemExit):
                main([])
        self.assertIn("GEMINI_API_KEY", stderr.getvalue())
        uvicorn_mock.run.assert_not_called()

    def test_main_serves_app_factory(self) -> None:
        config = _config(api_key="k", api_secret="s", channel_id="writing")
        service = MagicMock()
        with patch("agent_bridge.__main__.load_dotenv") as dotenv_mock, patch(
            "agent_bridge.__main__.load_config", return_value=config
        ), patch("agent_bridge.__main__.configure_logging") as logging_mock, patch(
            "agent_bridge.__main__.StreamChatService.from_credentials",
            return_value=service,
        ) as service_factory, patch(
            "agent_bridge.__main__.create_app"
        ) as create_app_mock, patch("agent_bridge.__main__.uvicorn") as uvicorn_mock:
            main(["--port", "9100"])

            dotenv_mock.assert_called_once()
            logging_mock.assert_called_once_with(config["logging"])
            # The Stream client is only built once uvicorn calls the factory.
            service_factory.assert_not_called()

            run_call = uvicorn_mock.run.call_args
            self.assertEqual(
                run_call.kwargs,
                {"factory": True, "host": "127.0.0.1", "port": 9100, "log_level": "warning"},
            )
            app = run_call.args[0]()

        self.assertIs(app, create_app_mock.return_value)
        service_factory.assert_called_once_with(
            "k",
            "s",
            channel_type="messaging",
            channel_id="writing",
            user_id="ai-writing-assistant",
        )
        agent, passed_service = create_app_mock.call_args.args
        self.assertIs(passed_service, service)
        self.assertEqual(agent.conversation.window, 20)
        self.assertTrue(create_app_mock.call_args.kwargs["verify_signatures"])


if __name__ == "__main__":
    unittest.main()
