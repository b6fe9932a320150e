"""Locate a Python interpreter of a pinned minor version and the library to link against.

Everything in here is best effort: a failure prints a warning and the build
continues without the Python hints.
"""
from dataclasses import dataclass
import json
from pathlib import Path
import shutil

from provision_errors import CommandError
from provision_tools import expand_windows_variables

INTROSPECTION_SCRIPT = (
    'import json, sys, sysconfig; '
    'print(json.dumps({'
    '"executable": sys.executable, '
    '"version": "%d.%d" % sys.version_info[:2], '
    '"include": sysconfig.get_paths()["include"], '
    '"libdir": sysconfig.get_config_var("LIBDIR"), '
    '"ldlibrary": sysconfig.get_config_var("LDLIBRARY")}))')


@dataclass(frozen=True)
class PythonAbi:
    executable: Path
    include_dir: Path
    library: Path

    def cmake_arguments(self):
        return [f'-DPython3_EXECUTABLE={self.executable.as_posix()}',
                f'-DPython3_INCLUDE_DIR={self.include_dir.as_posix()}',
                f'-DPython3_LIBRARY={self.library.as_posix()}']


def candidate_commands(version, environment, which):
    path = environment.get('PATH')
    short_version = version.replace('.', '')
    for name in (f'python{version}', 'py', 'python3', 'python'):
        executable = which(name, path=path)
        if executable is None:
            continue
        if name == 'py':
            yield [executable, f'-{version}']
        else:
            yield [executable]
    for location in (f'%LOCALAPPDATA%/Programs/Python/Python{short_version}/python.exe',
                     f'%ProgramFiles%/Python{short_version}/python.exe',
                     f'%SystemDrive%/Python{short_version}/python.exe'):
        location = expand_windows_variables(location, environment)
        if location is not None and Path(location).is_file():
            yield [location]


def introspect(command, runner, environment):
    try:
        output = runner.capture(command + ['-c', INTROSPECTION_SCRIPT], env=environment)
        return json.loads(output.strip().splitlines()[-1])
    except (CommandError, ValueError, IndexError):
        return None


def library_name(info):
    # Windows builds may report the DLL here; linking needs the import library.
    if info.get('ldlibrary') and not info['ldlibrary'].lower().endswith('.dll'):
        return info['ldlibrary']
    major, minor = info['version'].split('.')
    return f'python{major}{minor}.lib'


def find_library(info):
    name = library_name(info)
    if info.get('libdir'):
        library = Path(info['libdir']) / name
        if library.is_file():
            return library
    # Standard Windows installs keep the import library next to the executable.
    library = Path(info['executable']).parent / 'libs' / name
    if library.is_file():
        return library
    return None


def resolve_python_abi(version, runner, environment, which=shutil.which):
    print(f'Resolving Python {version} interpreter and link library... ', end='')
    for command in candidate_commands(version, environment, which):
        info = introspect(command, runner, environment)
        if info is None or info.get('version') != version:
            continue
        library = find_library(info)
        if library is None:
            print(f'Warning: Found Python {version} in "{info["executable"]}", ' +
                  f'but cannot locate its link library "{library_name(info)}". Continuing without it.')
            return None
        abi = PythonAbi(executable=Path(info['executable']),
                        include_dir=Path(info['include']),
                        library=library)
        print(f'OK (found "{abi.executable}", linking "{abi.library}")')
        return abi
    print(f'Warning: Cannot locate a Python {version} interpreter. Continuing without Python hints.')
    return None


def copy_library(abi, install_path):
    target_path = Path(install_path) / 'lib'
    print(f'Copying "{abi.library}" to "{target_path}"... ', end='')
    try:
        target_path.mkdir(parents=True, exist_ok=True)
        shutil.copy2(abi.library, target_path / abi.library.name)
    except OSError as ex:
        print(f'Warning: Cannot copy Python library: {ex}')
        return False
    print('OK')
    return True
