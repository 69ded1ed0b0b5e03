"""Tests for the client repository sync and the virtualenv helper."""

from __future__ import annotations

from pathlib import Path

import pytest

from kin.commands import CommandError
from kin.launcher.repo import ClientRepository
from kin.launcher.venv import ClientVirtualenv, MissingRequirementsError

REPO_URL = "https://github.com/companionsand/raspberry-pi-client.git"


class TestClientRepository:
    def test_clone_when_missing(self, tmp_path: Path, fake_runner):
        path = tmp_path / "raspberry-pi-client"
        repo = ClientRepository(path, REPO_URL, "main", runner=fake_runner)

        repo.sync()

        assert fake_runner.calls == [["git", "clone", "-b", "main", REPO_URL, str(path)]]

    def test_hard_sync_when_present(self, tmp_path: Path, fake_runner):
        path = tmp_path / "raspberry-pi-client"
        path.mkdir()
        repo = ClientRepository(path, REPO_URL, "beta", runner=fake_runner)

        repo.sync()

        assert fake_runner.calls == [
            ["git", "stash", "--include-untracked"],
            ["git", "fetch", "origin", "beta"],
            ["git", "reset", "--hard", "origin/beta"],
        ]
        assert all(kwargs["cwd"] == path for kwargs in fake_runner.kwargs)

    def test_stash_failure_is_ignored(self, tmp_path: Path, fake_runner):
        path = tmp_path / "client"
        path.mkdir()
        fake_runner.add(["git", "stash"], returncode=1, stderr="You do not have the initial commit yet")
        repo = ClientRepository(path, REPO_URL, runner=fake_runner)

        repo.sync()

        assert fake_runner.called_with(["git", "reset", "--hard", "origin/main"])

    def test_fetch_failure_propagates_from_sync(self, tmp_path: Path, fake_runner):
        path = tmp_path / "client"
        path.mkdir()
        fake_runner.add(["git", "fetch"], returncode=128, stderr="Could not resolve host")
        repo = ClientRepository(path, REPO_URL, runner=fake_runner)

        with pytest.raises(CommandError):
            repo.sync()

    def test_update_available_when_revisions_differ(self, tmp_path: Path, fake_runner):
        fake_runner.add(["git", "rev-parse", "HEAD"], stdout="aaa111\n")
        fake_runner.add(["git", "rev-parse", "origin/main"], stdout="bbb222\n")
        repo = ClientRepository(tmp_path, REPO_URL, runner=fake_runner)

        assert repo.update_available() is True
        assert fake_runner.calls[0] == ["git", "fetch", "origin", "main"]

    def test_up_to_date(self, tmp_path: Path, fake_runner):
        fake_runner.add(["git", "rev-parse"], stdout="aaa111\n")
        repo = ClientRepository(tmp_path, REPO_URL, runner=fake_runner)

        assert repo.update_available() is False

    def test_fetch_failure_compares_last_known_state(self, tmp_path: Path, fake_runner):
        fake_runner.add(["git", "fetch"], returncode=1)
        fake_runner.add(["git", "rev-parse", "HEAD"], stdout="aaa111\n")
        fake_runner.add(["git", "rev-parse", "origin/main"], stdout="bbb222\n")
        repo = ClientRepository(tmp_path, REPO_URL, runner=fake_runner)

        assert repo.update_available() is True

    def test_rev_parse_failure_means_no_update(self, tmp_path: Path, fake_runner):
        fake_runner.add(["git", "rev-parse"], returncode=128)
        repo = ClientRepository(tmp_path, REPO_URL, runner=fake_runner)

        assert repo.update_available() is False

    def test_fast_forward(self, tmp_path: Path, fake_runner):
        ClientRepository(tmp_path, REPO_URL, "main", runner=fake_runner).fast_forward()
        assert fake_runner.calls == [["git", "reset", "--hard", "origin/main"]]


class TestClientVirtualenv:
    def test_creates_missing_venv(self, tmp_path: Path, fake_runner):
        venv = ClientVirtualenv(tmp_path / "venv", tmp_path, python="/usr/bin/python3", runner=fake_runner)

        assert venv.ensure() is True
        assert fake_runner.calls == [["/usr/bin/python3", "-m", "venv", str(tmp_path / "venv")]]

    def test_existing_venv_is_kept(self, tmp_path: Path, fake_runner):
        (tmp_path / "venv").mkdir()
        venv = ClientVirtualenv(tmp_path / "venv", tmp_path, runner=fake_runner)

        assert venv.ensure() is False
        assert fake_runner.calls == []

    def test_missing_requirements(self, tmp_path: Path, fake_runner):
        venv = ClientVirtualenv(tmp_path / "venv", tmp_path, runner=fake_runner)

        with pytest.raises(MissingRequirementsError, match="requirements.txt not found"):
            venv.install_requirements()

    def test_install_requirements(self, tmp_path: Path, fake_runner):
        (tmp_path / "requirements.txt").write_text("httpx\n", encoding="utf-8")
        venv = ClientVirtualenv(tmp_path / "venv", tmp_path, runner=fake_runner)
        pip = str(tmp_path / "venv" / "bin" / "pip")

        venv.install_requirements()

        assert fake_runner.calls == [
            [pip, "install", "--upgrade", "pip", "-q"],
            [pip, "install", "-r", str(tmp_path / "requirements.txt"), "-q"],
        ]

    def test_install_without_pip_upgrade(self, tmp_path: Path, fake_runner):
        (tmp_path / "requirements.txt").write_text("httpx\n", encoding="utf-8")
        venv = ClientVirtualenv(tmp_path / "venv", tmp_path, runner=fake_runner)

        venv.install_requirements(upgrade_pip=False)

        assert len(fake_runner.calls) == 1
        assert fake_runner.calls[0][1:3] == ["install", "-r"]
