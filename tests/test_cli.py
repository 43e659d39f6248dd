import logging
import subprocess
import sys
from datetime import datetime

from click.testing import CliRunner

from kiln.cli import _find_slug, _post_template, cli, main


class MockQuestion:
    def __init__(self, answer):
        self.answer = answer

    def ask(self):
        return self.answer


def mock_prompts(monkeypatch, title="Hello World", tags="python web", draft=False):
    monkeypatch.setattr("kiln.cli.questionary.text", lambda message, **kw: MockQuestion(title if message == "Title:" else tags))
    monkeypatch.setattr("kiln.cli.questionary.confirm", lambda message, **kw: MockQuestion(draft))


def test_new_scaffolds_a_buildable_project(tmp_path):
    runner = CliRunner()
    target = tmp_path / "my-site"
    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code == 0, result.output
    assert (target / "_config.yml").read_text(encoding="utf-8").startswith("title: My Site")
    assert (target / "_layouts" / "post.html").exists()
    assert len(list((target / "_posts").glob("*-welcome.md"))) == 1

    result = runner.invoke(cli, ["build", "--source", str(target)])
    assert result.exit_code == 0, result.output
    index = (target / "_site" / "index.html").read_text(encoding="utf-8")
    assert "Welcome" in index
    assert "<header>" in index

    result = runner.invoke(cli, ["new", str(target)])
    assert result.exit_code != 0
    assert "non-empty" in result.output


def test_build_reports_errors_and_exits_1(make_site):
    site = make_site({"page.md": "---\nlayout: ghost\n---\nx"})
    result = CliRunner().invoke(cli, ["build", "--source", str(site)])
    assert result.exit_code == 1
    assert "Build failed" in result.output
    assert "page.md" in result.output
    assert "Unknown layout 'ghost'" in result.output
    assert not (site / "_site").exists()


def test_build_reports_undecodable_source(make_site):
    site = make_site({"index.md": "home"})
    (site / "bad.md").write_bytes(b"\xff\xfe bad")
    result = CliRunner().invoke(cli, ["build", "--source", str(site)])
    assert result.exit_code == 1
    assert "Build failed" in result.output
    assert "bad.md" in result.output
    assert "not valid UTF-8" in result.output


def test_verbose_flag_after_subcommand(monkeypatch, make_site):
    site = make_site({"index.md": "home"})
    root = logging.getLogger()
    monkeypatch.setattr(root, "level", root.level)
    result = CliRunner().invoke(cli, ["build", "--source", str(site), "-v"])
    assert result.exit_code == 0, result.output
    assert root.level == logging.DEBUG


def test_build_flags_are_forwarded(monkeypatch, tmp_path):
    called = {}

    def fake_build_site(source, include_drafts=False, include_future=False, destination=None):
        called.update(source=source, drafts=include_drafts, future=include_future, destination=destination)
        raise SystemExit(0)

    monkeypatch.setattr("kiln.build.build_site", fake_build_site)
    result = CliRunner().invoke(
        cli,
        ["build", "--source", str(tmp_path), "--destination", str(tmp_path / "out"), "--drafts", "--future"],
    )
    assert result.exit_code == 0
    assert called == {
        "source": tmp_path.resolve(),
        "drafts": True,
        "future": True,
        "destination": (tmp_path / "out").resolve(),
    }


def test_serve_forwards_options(monkeypatch, tmp_path):
    called = {}

    class DummyServer:
        def __init__(self, source, http_port=4000, ws_port=None, watch=True, options=None):
            called.update(source=source, port=http_port, ws_port=ws_port, watch=watch, options=options)

        def start(self):
            called["started"] = True

    monkeypatch.setattr("kiln.server.DevServer", DummyServer)
    result = CliRunner().invoke(
        cli,
        ["serve", "--source", str(tmp_path), "--port", "5050", "--ws-port", "5051", "--no-watch", "--drafts"],
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    assert called["port"] == 5050 and called["ws_port"] == 5051
    assert called["watch"] is False
    assert called["options"].drafts is True and called["options"].future is False
    assert called["started"]


def test_post_creates_dated_post(monkeypatch, make_site):
    site = make_site({"_config.yml": "title: x\n"})
    mock_prompts(monkeypatch)
    result = CliRunner().invoke(cli, ["post", "--source", str(site)])
    assert result.exit_code == 0, result.output
    created = list((site / "_posts").glob("*-hello-world.md"))
    assert len(created) == 1
    text = created[0].read_text(encoding="utf-8")
    assert 'title: "Hello World"' in text
    assert "tags: [python, web]" in text


def test_post_as_draft(monkeypatch, make_site):
    site = make_site({"_config.yml": "title: x\n"})
    mock_prompts(monkeypatch, title="Later", tags="", draft=True)
    result = CliRunner().invoke(cli, ["post", "--source", str(site)])
    assert result.exit_code == 0, result.output
    assert (site / "_drafts" / "later.md").exists()


def test_post_refuses_duplicate_slug(monkeypatch, make_site):
    site = make_site({"_config.yml": "title: x\n", "_posts/2020-01-01-hello-world.md": "x"})
    mock_prompts(monkeypatch)
    result = CliRunner().invoke(cli, ["post", "--source", str(site)])
    assert result.exit_code != 0
    assert "already exists" in result.output


def test_post_requires_project(tmp_path):
    result = CliRunner().invoke(cli, ["post", "--source", str(tmp_path)])
    assert result.exit_code != 0
    assert "_config.yml" in result.output


def test_post_aborts_when_prompt_cancelled(monkeypatch, make_site):
    site = make_site({"_config.yml": "title: x\n"})
    mock_prompts(monkeypatch, title=None)
    result = CliRunner().invoke(cli, ["post", "--source", str(site)])
    assert result.exit_code == 1


def test_post_helpers(make_site):
    site = make_site({"_drafts/my-idea.md": "x"})
    assert _find_slug(site, "my-idea") == site / "_drafts" / "my-idea.md"
    assert _find_slug(site, "other") is None
    text = _post_template('Say "hi"', [], datetime(2024, 1, 2, 3, 4, 5))
    assert text == '---\ntitle: "Say \\"hi\\""\ndate: 2024-01-02 03:04:05\n---\n\n'


def test_version_option():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "kiln" in result.output


def test_main_invokes_cli(monkeypatch):
    called = {}
    monkeypatch.setattr("kiln.cli.cli", lambda: called.setdefault("cli", True))
    main()
    assert called == {"cli": True}


def test_module_main_entrypoint():
    result = subprocess.run([sys.executable, "-m", "kiln", "--help"], capture_output=True, text=True)
    assert result.returncode == 0
    assert "build" in result.stdout
