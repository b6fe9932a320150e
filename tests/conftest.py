import copy
from pathlib import Path

import pytest

from provision_config import load_settings, resolve_config
from provision_errors import CommandError
from provision_process import format_command

ALL_TOOLS = {
    'python': '/usr/bin/python',
    'cl': '/opt/msvc/bin/cl',
    'cmake': '/usr/bin/cmake',
    'ninja': '/usr/bin/ninja',
    'swig': '/usr/bin/swig',
    'makensis': '/usr/bin/makensis',
}


class FakeRunner:
    """Records child process invocations instead of executing them."""

    def __init__(self, outputs=None, fail_on=None, returncode=2):
        self.calls = []
        self.captures = []
        self.outputs = {'cmake': 'cmake version 3.27.9\n'}
        self.outputs.update(outputs or {})
        self.fail_on = fail_on
        self.returncode = returncode

    def run(self, command, cwd=None, env=None):
        command = [str(i) for i in command]
        self.calls.append(command)
        if self.fail_on is not None and self.fail_on(command):
            raise CommandError(format_command(command), self.returncode)

    def capture(self, command, env=None):
        command = [str(i) for i in command]
        self.captures.append(command)
        output = self.outputs.get(Path(command[0]).name)
        if callable(output):
            output = output(command)
        if output is None:
            raise CommandError(format_command(command), 1)
        return output

    def configure_calls(self):
        return [call for call in self.calls if '-S' in call]

    def build_calls(self):
        return [call for call in self.calls if '--build' in call]

    def install_calls(self):
        return [call for call in self.calls if '--install' in call]


def make_which(table):
    def which(name, path=None):
        return table.get(name)
    return which


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def make_config(settings, tmp_path):
    def factory(settings_overrides=None, environ=None, **kwargs):
        merged = copy.deepcopy(settings)
        merged.update(settings_overrides or {})
        kwargs.setdefault('workspace_path', str(tmp_path / 'workspace'))
        kwargs.setdefault('source_path', str(tmp_path / 'source'))
        return resolve_config(merged, environ or {}, **kwargs)
    return factory
