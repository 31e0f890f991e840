"""Unit tests for the command-line interface."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx
import pytest
import typer
import yaml
from rich.console import Console
from typer.testing import CliRunner

from kanuni import __version__
from kanuni.api import CompletionTimeoutError
from kanuni.auth import AuthenticationError, CredentialStore
from kanuni.cli import app
from kanuni.cli.batch import expand_patterns, follow_until_finished
from kanuni.cli.render import format_size
from kanuni.cli.runtime import (
    EXIT_AUTH,
    EXIT_FAILURE,
    EXIT_TIMEOUT,
    Session,
    report_error,
)
from kanuni.config import default_config_path
from kanuni.errors import ApiAuthenticationError, KanuniError
from kanuni.streaming import (
    BatchProgressEvent,
    ConnectivityError,
    StreamError,
    SubscriptionError,
)


if TYPE_CHECKING:
    from pathlib import Path

    import respx

    from kanuni.auth import StoredCredentials


API_URL = "http://kanuni.test/api/v1"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def logged_in(
    isolated_environment: Path,
    api_key_credentials: StoredCredentials,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Store an API key and point the CLI at the mocked endpoint."""
    CredentialStore(isolated_environment / "auth.json").save(api_key_credentials)
    monkeypatch.setenv("KANUNI_API__ENDPOINT", API_URL)
    monkeypatch.setenv("KANUNI_API__MAX_RETRIES", "0")


# ---------------------------------------------------------------------------
# Root command
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"kanuni version {__version__}" in result.output

    def test_verbose_and_quiet_conflict(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["-V", "-q", "config", "path"])
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output

    def test_missing_config_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(
            app,
            ["--config", str(tmp_path / "nope.yaml"), "config", "path"],
        )
        assert result.exit_code == EXIT_FAILURE
        assert "Error:" in result.output


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------


class TestReportError:
    """Tests for mapping errors onto exit codes."""

    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (AuthenticationError("Not authenticated"), EXIT_AUTH),
            (ApiAuthenticationError("Authentication failed"), EXIT_AUTH),
            (CompletionTimeoutError("an-1", 30), EXIT_TIMEOUT),
            (KanuniError("Something broke"), EXIT_FAILURE),
        ],
    )
    def test_exit_codes(self, exc: KanuniError, code: int) -> None:
        console = Console(record=True, width=120)
        with pytest.raises(typer.Exit) as exc_info:
            report_error(console, exc)
        assert exc_info.value.exit_code == code
        assert exc.message in console.export_text()

    def test_hint_is_printed(self) -> None:
        console = Console(record=True, width=120)
        with pytest.raises(typer.Exit):
            report_error(console, KanuniError("Nope", hint="Try this instead."))
        assert "Hint: Try this instead." in console.export_text()


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


class TestConfigCommands:
    def test_path_defaults_to_app_dir(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["config", "path"])
        assert result.exit_code == 0
        assert result.stdout.strip() == str(default_config_path())

    def test_set_then_show(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["config", "set", "batch.concurrency", "4"])
        assert result.exit_code == 0, result.output
        assert "batch.concurrency = 4" in result.output

        result = runner.invoke(app, ["config", "show", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["batch"]["concurrency"] == 4

    def test_show_yaml(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert yaml.safe_load(result.stdout)["stream"]["enabled"] is True

    def test_set_invalid_value(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["config", "set", "batch.concurrency", "99"])
        assert result.exit_code == EXIT_FAILURE
        assert not default_config_path().exists()

    def test_reset(self, runner: CliRunner) -> None:
        runner.invoke(app, ["config", "set", "output.color", "false"])
        result = runner.invoke(app, ["config", "reset", "--yes"])
        assert result.exit_code == 0
        assert "Configuration reset." in result.output
        assert not default_config_path().exists()


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------


class TestAuthCommands:
    def test_status_logged_out(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["auth", "status"])
        assert result.exit_code == 1
        assert "Not logged in" in result.output

    @pytest.mark.usefixtures("logged_in")
    def test_status_with_api_key(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["auth", "status"])
        assert result.exit_code == 0
        assert "API key" in result.output
        assert "kanuni_live_...9z8y" in result.output
        assert "secretkey" not in result.output

    def test_login_with_malformed_key(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["auth", "login", "--api-key", "not-a-key"])
        assert result.exit_code == EXIT_AUTH
        assert "Invalid API key format" in result.output

    @pytest.mark.usefixtures("logged_in")
    def test_logout(self, runner: CliRunner, isolated_environment: Path) -> None:
        result = runner.invoke(app, ["auth", "logout"])
        assert result.exit_code == 0
        assert "Logged out." in result.output
        assert not (isolated_environment / "auth.json").exists()


# ---------------------------------------------------------------------------
# document
# ---------------------------------------------------------------------------


class TestDocumentCommands:
    @pytest.mark.usefixtures("logged_in")
    @pytest.mark.respx(base_url=API_URL)
    def test_list_json(self, runner: CliRunner, respx_mock: respx.MockRouter) -> None:
        route = respx_mock.get("/documents").mock(
            return_value=httpx.Response(
                200,
                json={
                    "documents": [
                        {
                            "id": "abcdef01-0000",
                            "filename": "lease.pdf",
                            "created_at": "2026-03-01T12:00:00Z",
                        },
                    ],
                    "total": 1,
                },
            ),
        )

        result = runner.invoke(app, ["document", "list", "--format", "json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["documents"][0]["filename"] == "lease.pdf"
        assert route.calls.last.request.headers["Authorization"] == (
            "Bearer kanuni_live_secretkey9z8y"
        )

    @pytest.mark.usefixtures("logged_in")
    @pytest.mark.respx(base_url=API_URL)
    def test_rejected_credentials_exit_code(
        self,
        runner: CliRunner,
        respx_mock: respx.MockRouter,
    ) -> None:
        respx_mock.get("/documents").mock(return_value=httpx.Response(401))
        result = runner.invoke(app, ["document", "list"])
        assert result.exit_code == EXIT_AUTH
        assert "kanuni auth login" in result.output

    def test_info_rejects_short_prefix(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["document", "info", "abc"])
        assert result.exit_code == EXIT_FAILURE
        assert "too short" in result.output


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


class TestAnalyzeCommand:
    def test_needs_file_or_document_id(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["analyze"])
        assert result.exit_code != 0

    def test_rejects_both_file_and_document_id(
        self,
        runner: CliRunner,
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "a.pdf"
        path.write_bytes(b"x")
        result = runner.invoke(
            app,
            ["analyze", str(path), "--document-id", "abcdef01"],
        )
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [(None, "-"), (512, "512 B"), (2048, "2.0 KB"), (5 * 1024**2, "5.0 MB")],
    )
    def test_format_size(self, size: int | None, expected: str) -> None:
        assert format_size(size) == expected

    def test_expand_patterns(self, tmp_path: Path) -> None:
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "a.pdf").write_bytes(b"a")
        (tmp_path / "docs" / "b.txt").write_bytes(b"b")
        (tmp_path / "docs" / "c.png").write_bytes(b"c")
        (tmp_path / "top.docx").write_bytes(b"d")

        paths = expand_patterns(["docs/*", "**/*.docx", "docs/a.pdf"])

        assert [p.name for p in paths] == ["a.pdf", "b.txt", "top.docx"]


class TricklingTracker:
    """Delivers one non-terminal batch event per second, forever."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timeouts: list[float | None] = []

    def clock(self) -> float:
        return self.now

    def is_tracking(self, entity_id: str) -> bool:
        return True

    async def wait_for_update(
        self,
        entity_id: str,
        *,
        seen: int,
        timeout: float | None,  # noqa: ASYNC109
    ) -> list[BatchProgressEvent]:
        self.timeouts.append(timeout)
        self.now += 1
        return [
            BatchProgressEvent(
                batch_id=entity_id,
                total_files=10,
                completed_files=seen + 1,
            ),
        ]


class TestFollowUntilFinished:
    async def test_deadline_bounds_the_whole_follow(self) -> None:
        tracker = TricklingTracker()
        reported: list[object] = []

        finished = await follow_until_finished(
            tracker,  # type: ignore[arg-type]
            "batch-1",
            timeout=3,
            on_event=reported.append,
            clock=tracker.clock,
        )

        assert finished is False
        assert tracker.timeouts == [3, 2, 1]
        assert len(reported) == 3


class ClosableTracker:
    def __init__(self) -> None:
        self.disconnected = False

    async def disconnect(self) -> None:
        self.disconnected = True


class TestSessionFollow:
    """Tests for falling back to polling when the stream misbehaves."""

    @pytest.mark.parametrize(
        "error",
        [
            ConnectivityError("Failed to open progress stream"),
            SubscriptionError("not connected"),
        ],
    )
    async def test_stream_errors_fall_back_to_polling(
        self,
        error: StreamError,
    ) -> None:
        tracker = ClosableTracker()
        session = Session(
            settings=None,  # type: ignore[arg-type]
            credentials=None,  # type: ignore[arg-type]
            api=None,  # type: ignore[arg-type]
            tracker=tracker,  # type: ignore[arg-type]
        )

        async def track() -> None:
            raise error

        assert await session.follow(track()) is False
        assert session.tracker is None
        assert tracker.disconnected

    async def test_successful_subscription(self) -> None:
        session = Session(
            settings=None,  # type: ignore[arg-type]
            credentials=None,  # type: ignore[arg-type]
            api=None,  # type: ignore[arg-type]
            tracker=ClosableTracker(),  # type: ignore[arg-type]
        )

        async def track() -> None:
            return None

        assert await session.follow(track()) is True
        assert session.tracker is not None
