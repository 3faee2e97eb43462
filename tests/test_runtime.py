"""
Docker, git and package-manager adapter tests (subprocess mocked).
"""

import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from tierup.errors import ResourceApplyFailure  # noqa: E402
from tierup.models import ContainerSpec, NetworkHandle, PortBinding, SourceSpec  # noqa: E402
from tierup.packages import PackageManager  # noqa: E402
from tierup.runtime import ContainerRuntime, build_run_args  # noqa: E402
from tierup.vcs import GitClient  # noqa: E402


def _spec() -> ContainerSpec:
    return ContainerSpec(
        name='mongodb',
        image='mongo:6.0',
        network='appnet',
        ports=(PortBinding(27017, 27017),),
        env={'MONGO_INITDB_ROOT_USERNAME': 'root', 'A': '1'},
        volumes={'mongo-data': '/data/db'},
        labels={'tierup.app': 'shop'},
    )


class TestBuildRunArgs:
    def test_contains_network_ports_volumes_and_hash_label(self):
        spec = _spec()
        args = build_run_args(spec, Path("/tmp/mongodb.env"))

        assert args[:7] == ['run', '-d', '--name', 'mongodb', '--network', 'appnet', '--restart']
        assert ['-p', '27017:27017'] == args[args.index('-p'):args.index('-p') + 2]
        assert '-v' in args and 'mongo-data:/data/db' in args
        assert ['--env-file', '/tmp/mongodb.env'] == args[args.index('--env-file'):args.index('--env-file') + 2]
        assert f"tierup.spec-hash={spec.fingerprint()}" in args
        assert args[-1] == 'mongo:6.0'

    def test_environment_never_on_command_line(self):
        args = build_run_args(_spec())

        assert '-e' not in args
        assert '--env-file' not in args
        assert not any('MONGO_INITDB_ROOT_USERNAME' in arg for arg in args)


class TestContainerRuntime:
    def test_mutation_failure_carries_stderr(self):
        runtime = ContainerRuntime()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=125,
                stdout="",
                stderr="docker: Error response from daemon: port is already allocated.\n",
            )
            with pytest.raises(ResourceApplyFailure) as exc:
                runtime.run_container(_spec())

        assert exc.value.message == "docker: Error response from daemon: port is already allocated."
        assert exc.value.resource == "container mongodb"
        assert exc.value.command[0] == "docker"

    def test_missing_binary_is_apply_failure(self):
        runtime = ContainerRuntime()
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ResourceApplyFailure, match="command not found"):
                runtime.create_network(NetworkHandle("appnet"))

    def test_dry_run_does_not_execute_mutations(self):
        runtime = ContainerRuntime(dry_run=True)
        with patch("subprocess.run") as mock_run:
            runtime.create_network(NetworkHandle("appnet", labels={'tierup.app': 'shop'}))
            runtime.run_container(_spec())
            runtime.remove_container("mongodb")
        mock_run.assert_not_called()

    def test_dry_run_echo_names_env_keys_only(self, capsys):
        runtime = ContainerRuntime(dry_run=True)
        runtime.run_container(_spec())

        out = capsys.readouterr().out
        assert "--env-file <A, MONGO_INITDB_ROOT_USERNAME>" in out
        assert "=root" not in out

    def test_env_passed_through_private_file_removed_after_run(self, capsys):
        seen = {}

        def _run(cmd, **kwargs):
            env_path = Path(cmd[cmd.index('--env-file') + 1])
            seen['path'] = env_path
            seen['mode'] = env_path.stat().st_mode & 0o777
            seen['content'] = env_path.read_text()
            return Mock(returncode=0, stdout="abc123\n", stderr="")

        with patch("subprocess.run", side_effect=_run):
            ContainerRuntime().run_container(_spec())

        assert seen['mode'] == 0o600
        assert seen['content'] == "A=1\nMONGO_INITDB_ROOT_USERNAME=root\n"
        assert not seen['path'].exists()
        assert "=root" not in capsys.readouterr().out

    def test_env_file_removed_when_run_fails(self):
        seen = {}

        def _run(cmd, **kwargs):
            seen['path'] = Path(cmd[cmd.index('--env-file') + 1])
            return Mock(returncode=125, stdout="", stderr="Conflict. The container name is already in use")

        with patch("subprocess.run", side_effect=_run):
            with pytest.raises(ResourceApplyFailure, match="already in use"):
                ContainerRuntime().run_container(_spec())
        assert not seen['path'].exists()

    def test_multiline_env_value_rejected(self):
        spec = ContainerSpec(name='backend', image='shop-backend:latest', network='appnet', env={'KEY': 'a\nb'})
        with patch("subprocess.run") as mock_run:
            with pytest.raises(ResourceApplyFailure, match="line break"):
                ContainerRuntime().run_container(spec)
        mock_run.assert_not_called()

    def test_missing_binary_is_not_installed(self):
        runtime = ContainerRuntime(binary="docker-not-installed-xyz")
        with patch("subprocess.run") as mock_run:
            assert runtime.is_installed() is False
        mock_run.assert_not_called()

    def test_installed_binary_checks_version(self):
        with patch("tierup.runtime.shutil.which", return_value="/usr/bin/docker"), patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="Docker version 24.0.7", stderr="")
            assert ContainerRuntime().is_installed() is True
        assert mock_run.call_args[0][0] == ['docker', '--version']

    def test_inspect_container_parses_docker_output(self):
        payload = [{
            'Name': '/mongodb',
            'Image': 'sha256:abc',
            'State': {'Running': True},
            'Config': {'Labels': {'tierup.spec-hash': '1234'}},
            'NetworkSettings': {'Networks': {'appnet': {}}},
        }]
        runtime = ContainerRuntime()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout=json.dumps(payload), stderr="")
            observed = runtime.inspect_container("mongodb")

        assert observed.name == 'mongodb'
        assert observed.image_id == 'sha256:abc'
        assert observed.running is True
        assert observed.spec_hash == '1234'
        assert observed.networks == ('appnet',)

    def test_inspect_missing_resource_returns_none(self):
        runtime = ContainerRuntime()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=1, stdout="[]", stderr="Error: No such network: appnet")
            assert runtime.inspect_network("appnet") is None
            assert runtime.inspect_container("backend") is None

    def test_daemon_info_failure(self):
        runtime = ContainerRuntime()
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=1, stdout="", stderr="Cannot connect to the Docker daemon"
            )
            with pytest.raises(ResourceApplyFailure, match="Cannot connect"):
                runtime.daemon_info()
            assert runtime.daemon_available() is False


class TestGitClient:
    def test_clone_command(self, tmp_path):
        source = SourceSpec("https://example.com/shop.git", "release", tmp_path / "app")
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="", stderr="")
            GitClient().clone(source)

        cmd = mock_run.call_args[0][0]
        assert cmd == [
            'git', 'clone', '--branch', 'release', '--single-branch', '--depth', '1',
            'https://example.com/shop.git', str(tmp_path / "app"),
        ]

    def test_clone_failure_keeps_stderr(self, tmp_path):
        source = SourceSpec("https://example.com/missing.git", "main", tmp_path / "app")
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(
                returncode=128, stdout="", stderr="fatal: repository not found\n"
            )
            with pytest.raises(ResourceApplyFailure) as exc:
                GitClient().clone(source)
        assert exc.value.message == "fatal: repository not found"

    def test_remove_tree(self, tmp_path):
        target = tmp_path / "app"
        (target / "src").mkdir(parents=True)
        GitClient().remove_tree(target)
        assert not target.exists()

    def test_head_commit_outside_checkout(self, tmp_path):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=128, stdout="", stderr="fatal: not a git repository")
            assert GitClient().head_commit(tmp_path) is None


class TestPackageManager:
    def test_unsupported_manager(self):
        with pytest.raises(ValueError, match="Unsupported package manager"):
            PackageManager("pacman")

    def test_apt_updates_once_then_installs(self):
        manager = PackageManager("apt-get")
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="", stderr="")
            manager.install(['docker.io'])
            manager.install(['git'])

        commands = [call[0][0] for call in mock_run.call_args_list]
        assert commands[0] == ['apt-get', 'update']
        assert commands[1][-1] == 'docker.io'
        assert commands[2][-1] == 'git'
        assert len(commands) == 3

    def test_install_failure(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=100, stdout="", stderr="E: Unable to locate package nope")
            with pytest.raises(ResourceApplyFailure, match="Unable to locate package"):
                PackageManager("dnf").install(['nope'])
