import pytest
from typer.testing import CliRunner

from tlon_mcp import cli
from tlon_mcp.errors import SessionError, SessionErrorKind

runner = CliRunner()


@pytest.fixture
def quiet_logging(monkeypatch):
    # CliRunner swaps stderr for a stream it closes afterwards; keep structlog off it.
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


def test_show_config_masks_code(isolated_env):
    result = runner.invoke(cli.app, ["show-config"])
    assert result.exit_code == 0
    assert "~zod" in result.output
    assert "lidlut-tabwed-pillex-ridrup" not in result.output


def test_check_connection_success(isolated_env, quiet_logging, monkeypatch):
    async def fake_check(settings):
        return "~zod"

    monkeypatch.setattr(cli, "_check_connection", fake_check)
    result = runner.invoke(cli.app, ["check-connection"])
    assert result.exit_code == 0


def test_check_connection_failure_exits_nonzero(isolated_env, quiet_logging, monkeypatch):
    async def fake_check(settings):
        raise SessionError(SessionErrorKind.LOGIN_REJECTED, "Login failed with status 400", status=400)

    monkeypatch.setattr(cli, "_check_connection", fake_check)
    result = runner.invoke(cli.app, ["check-connection"])
    assert result.exit_code == 1


def test_serve_stdio_closes_session_after_run(isolated_env, quiet_logging, monkeypatch, service, fake_session):
    from tlon_mcp import app as app_module

    runs = []

    class StubServer:
        def run(self, transport):
            runs.append(transport)

    monkeypatch.setenv("TOOLS_LOG_ENABLED", "false")
    monkeypatch.setattr(cli, "_preflight", lambda settings: "~zod")
    monkeypatch.setattr(cli.rich_logger, "display_startup_banner", lambda *args, **kwargs: None)
    monkeypatch.setattr(app_module, "build_dm_service", lambda settings: service)
    monkeypatch.setattr(app_module, "build_mcp_server", lambda svc, settings: StubServer())

    result = runner.invoke(cli.app, ["serve-stdio"])

    assert result.exit_code == 0
    assert runs == ["stdio"]
    assert fake_session.closed
