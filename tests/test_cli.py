import base64
import json

import pytest
from click.testing import CliRunner

from feed_deploy import orchestrator
from feed_deploy.cli import main
from feed_deploy.sync import AccessResult, DeployResult


@pytest.fixture
def workdir(monkeypatch: pytest.MonkeyPatch, tmp_path):  # noqa: ANN001, ANN201
    monkeypatch.setenv("FEED_DEPLOY_SECRETS_KEY", base64.b64encode(bytes(range(32))).decode())
    monkeypatch.setenv("FEED_DEPLOY_STORE_PATH", "destinations.json")
    return tmp_path


def _invoke(workdir, *args: str):  # noqa: ANN001, ANN202
    return CliRunner().invoke(main, ["-C", str(workdir), *args])


def _create_webdav(workdir) -> str:  # noqa: ANN001
    result = _invoke(
        workdir, "create", "show-1", "--mode", "webdav",
        "--field", "url=https://dav.local", "--field", "username=u",
        "--field", "password=hunter22", "--field", "path=shows/demo",
    )
    assert result.exit_code == 0, result.output
    return result.output.strip().splitlines()[-1]


def _manifest(workdir) -> str:  # noqa: ANN001
    (workdir / "feed.xml").write_bytes(b"<rss/>")
    (workdir / "ep1.mp3").write_bytes(b"audio")
    path = workdir / "manifest.json"
    path.write_text(json.dumps({"feed": "feed.xml", "items": [{"id": "ep1", "audio": "ep1.mp3"}]}))
    return str(path)


def test_keygen_prints_32_byte_key() -> None:
    result = CliRunner().invoke(main, ["keygen"])

    assert result.exit_code == 0
    key = result.output.strip()
    assert len(base64.urlsafe_b64decode(key + "=" * (-len(key) % 4))) == 32


def test_create_show_list_delete(workdir) -> None:  # noqa: ANN001
    dest_id = _create_webdav(workdir)

    shown = _invoke(workdir, "show", dest_id)
    listed = _invoke(workdir, "list")

    assert shown.exit_code == 0
    assert "hunter22" not in shown.output
    assert "- password: ****er22" in shown.output
    assert "- path: shows/demo/" in shown.output
    assert dest_id in listed.output

    assert _invoke(workdir, "delete", dest_id).exit_code == 0
    assert "(none)" in _invoke(workdir, "list").output


def test_second_destination_for_collection_fails(workdir) -> None:  # noqa: ANN001
    _create_webdav(workdir)

    result = _invoke(workdir, "create", "show-1", "--mode", "ftp", "--field", "host=h",
                     "--field", "username=u", "--field", "password=p")

    assert result.exit_code == 1


def test_update_keeps_secrets(workdir) -> None:  # noqa: ANN001
    dest_id = _create_webdav(workdir)

    result = _invoke(workdir, "update", dest_id, "--field", "path=other")
    shown = _invoke(workdir, "show", dest_id)

    assert result.exit_code == 0
    assert "- path: other/" in shown.output
    assert "- password: ****er22" in shown.output


def test_test_command_exit_code(workdir, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    dest_id = _create_webdav(workdir)
    monkeypatch.setattr(
        orchestrator.remote_webdav, "test_access", lambda cfg, engine=None: AccessResult.failure("HTTP 401")
    )

    result = _invoke(workdir, "test", dest_id)

    assert result.exit_code == 1
    assert "HTTP 401" in result.output


def test_deploy_prints_summary_and_fails_on_errors(workdir, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    dest_id = _create_webdav(workdir)
    manifest = _manifest(workdir)
    outcomes = [DeployResult(uploaded=2), DeployResult(skipped=1, errors=["Item ep1 audio: HTTP 507"])]

    def fake_deploy(cfg, request, engine=None):  # noqa: ANN001, ANN202
        assert request.feed == b"<rss/>"
        assert request.items[0].audio_path == str(workdir / "ep1.mp3")
        return outcomes.pop(0)

    monkeypatch.setattr(orchestrator.remote_webdav, "deploy", fake_deploy)

    ok = _invoke(workdir, "deploy", dest_id, "--manifest", manifest)
    failed = _invoke(workdir, "deploy", dest_id, "--manifest", manifest)

    assert ok.exit_code == 0
    assert "Uploaded 2 file(s), skipped 0 unchanged." in ok.output
    assert failed.exit_code == 1
    assert "Item ep1 audio: HTTP 507" in failed.output


def test_plan_does_not_touch_network(workdir) -> None:  # noqa: ANN001
    dest_id = _create_webdav(workdir)

    result = _invoke(workdir, "plan", dest_id, "--manifest", _manifest(workdir))

    assert result.exit_code == 0
    assert "shows/demo/items/ep1.mp3" in result.output


def test_unknown_destination(workdir) -> None:  # noqa: ANN001
    result = _invoke(workdir, "show", "missing")

    assert result.exit_code == 1
