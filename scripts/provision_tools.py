from dataclasses import dataclass
import os
from pathlib import Path
import re
import shutil
import sys
import sysconfig

from provision_errors import CommandError, MissingPrerequisiteError


def version_to_str(version):
    return '.'.join(map(str, version))


def parse_version_constraints(version_constraints):
    constraints = []
    for version_constraint in version_constraints.split(','):
        match_result = re.fullmatch(r'\s*(<=|>=|=|<|>)\s*(\d+(?:\.\d+)*)\s*', version_constraint)
        if match_result is None:
            raise ValueError(f"Malformed version constraint: '{version_constraints}'")
        constraints.append((match_result.group(1),
                            tuple(int(i) for i in match_result.group(2).split('.'))))
    return constraints


def check_version(version, version_constraints):
    for operator, reference_version in parse_version_constraints(version_constraints):
        actual_version = tuple(version[:len(reference_version)])
        actual_version += (0,) * (len(reference_version) - len(actual_version))
        match operator:
            case '=':
                if not actual_version == reference_version:
                    return False
            case '<':
                if not actual_version < reference_version:
                    return False
            case '<=':
                if not actual_version <= reference_version:
                    return False
            case '>':
                if not actual_version > reference_version:
                    return False
            case '>=':
                if not actual_version >= reference_version:
                    return False
    return True


def expand_windows_variables(value, environment):
    """Expand %VAR% references, returning None if one of them is not set."""
    missing = []

    def replace(match_result):
        name = match_result.group(1)
        if name not in environment:
            missing.append(name)
            return ''
        return environment[name]

    expanded = re.sub(r'%([^%]+)%', replace, value)
    if missing:
        return None
    return expanded.replace('\\', '/')


class ExecutableProbe:
    """Looks an executable up on the search path."""

    def __init__(self, name):
        self.name = name

    def __call__(self, checker):
        path = checker.which(self.name, path=checker.environment.get('PATH'))
        return None if path is None else Path(path)

    def __str__(self):
        return f'"{self.name}" on PATH'


class LocationProbe:
    """Checks a conventional install location, e.g. `%ProgramFiles%/CMake/bin/cmake.exe`."""

    def __init__(self, location):
        self.location = location

    def __call__(self, checker):
        location = expand_windows_variables(self.location, checker.environment)
        if location is None:
            return None
        path = Path(location)
        return path if path.is_file() else None

    def __str__(self):
        return f'"{self.location}"'


def probe_first(probes, checker):
    for probe in probes:
        path = probe(checker)
        if path is not None:
            return path
    return None


class PipInstaller:
    name = 'pip'

    def __init__(self, package, version_key=None):
        self.package = package
        self.version_key = version_key

    def command(self, checker):
        requirement = self.package
        version = checker.config.versions.get(self.version_key, '') if self.version_key else ''
        if version:
            requirement = f'{self.package}=={version}'
        return [checker.python_executable, '-m', 'pip', 'install',
                '--disable-pip-version-check', '--no-input', '--progress-bar', 'off',
                '--quiet', requirement]

    def install_directories(self, checker):
        # pip places console scripts next to the interpreter running it, which is often not on PATH.
        scripts_path = sysconfig.get_path('scripts')
        return [] if scripts_path is None else [Path(scripts_path).as_posix()]


class ChocolateyInstaller:
    name = 'chocolatey'
    probes = (ExecutableProbe('choco'),
              LocationProbe('%ChocolateyInstall%/bin/choco.exe'),
              LocationProbe('%ProgramData%/chocolatey/bin/choco.exe'))

    def __init__(self, package, version_key=None, install_arguments=None, package_parameters=None):
        self.package = package
        self.version_key = version_key
        self.install_arguments = install_arguments
        self.package_parameters = package_parameters

    def command(self, checker):
        choco_path = probe_first(self.probes, checker)
        if choco_path is None:
            return None
        command = [choco_path, 'install', self.package, '--yes', '--no-progress', '--limit-output']
        version = checker.config.versions.get(self.version_key, '') if self.version_key else ''
        if version:
            command += ['--version', version]
        if self.install_arguments:
            command += [f'--install-arguments={self.install_arguments}']
        if self.package_parameters:
            command += [f'--package-parameters={self.package_parameters}']
        return command

    def install_directories(self, checker):
        return []


@dataclass(frozen=True)
class Tool:
    key: str
    title: str
    probes: tuple
    installers: tuple = ()
    remedy: str = ''
    version_pattern: str = None


TOOLS = {
    'python': Tool(
        key='python',
        title='Python interpreter',
        probes=(ExecutableProbe('python'),
                ExecutableProbe('python3'),
                ExecutableProbe('py')),
        installers=(ChocolateyInstaller('python3'),),
        remedy='Install Python 3 from https://www.python.org/downloads/',
        version_pattern=r'Python (\d+)\.(\d+)\.(\d+)'),
    'compiler': Tool(
        key='compiler',
        title='C++ compiler toolchain',
        probes=(ExecutableProbe('cl'),
                LocationProbe('%ProgramFiles(x86)%/Microsoft Visual Studio/Installer/vswhere.exe'),
                ExecutableProbe('c++'),
                ExecutableProbe('g++'),
                ExecutableProbe('clang++')),
        installers=(ChocolateyInstaller(
            'visualstudio2022buildtools',
            package_parameters='--add Microsoft.VisualStudio.Workload.VCTools --includeRecommended --passive'),),
        remedy='Install Visual Studio 2022 with the "Desktop development with C++" workload'),
    'cmake': Tool(
        key='cmake',
        title='CMake',
        probes=(ExecutableProbe('cmake'),
                LocationProbe('%ProgramFiles%/CMake/bin/cmake.exe')),
        installers=(PipInstaller('cmake', 'cmake-pip'),
                    ChocolateyInstaller('cmake', 'cmake-choco',
                                        install_arguments='ADD_CMAKE_TO_PATH=System')),
        remedy='Install CMake from https://cmake.org/download/',
        version_pattern=r'cmake version (\d+)\.(\d+)\.(\d+)'),
    'ninja': Tool(
        key='ninja',
        title='Ninja',
        probes=(ExecutableProbe('ninja'),
                LocationProbe('%ProgramData%/chocolatey/bin/ninja.exe')),
        installers=(ChocolateyInstaller('ninja', 'ninja-choco'),),
        remedy='Install Ninja from https://github.com/ninja-build/ninja/releases',
        version_pattern=r'(\d+)\.(\d+)\.(\d+)'),
    'swig': Tool(
        key='swig',
        title='SWIG',
        probes=(ExecutableProbe('swig'),
                LocationProbe('%ProgramData%/chocolatey/bin/swig.exe')),
        installers=(ChocolateyInstaller('swig'),),
        remedy='Install SWIG from https://www.swig.org/download.html',
        version_pattern=r'SWIG Version (\d+)\.(\d+)\.(\d+)'),
    'nsis': Tool(
        key='nsis',
        title='NSIS',
        probes=(ExecutableProbe('makensis'),
                LocationProbe('%ProgramFiles(x86)%/NSIS/makensis.exe'),
                LocationProbe('%ProgramFiles%/NSIS/makensis.exe')),
        installers=(ChocolateyInstaller('nsis'),),
        remedy='Install NSIS from https://nsis.sourceforge.io/Download'),
}


class PrerequisiteChecker:
    def __init__(self, config, runner, environment, which=shutil.which):
        self.config = config
        self.runner = runner
        self.environment = environment
        self.which = which
        self.python_executable = sys.executable
        self.found = {}
        self.installed = []

    def probe(self, tool):
        path = probe_first(tool.probes, self)
        if path is None:
            return None
        version_constraints = self.config.expected_versions.get(tool.key)
        if version_constraints is None or tool.version_pattern is None:
            return path
        version = self.query_version(tool, path)
        if version is None:
            print(f'Warning: Cannot query {tool.title} version from executable "{path}". ', end='')
            return None
        if not check_version(version, version_constraints):
            print(f'Warning: Expected {tool.title} version {version_constraints}, ' +
                  f'but found version {version_to_str(version)} in "{path}". ', end='')
            return None
        return path

    def query_version(self, tool, path):
        try:
            output = self.runner.capture([path, '--version'], env=self.environment)
        except CommandError:
            return None
        search_result = re.search(tool.version_pattern, output)
        if search_result is None:
            return None
        return tuple(int(i) for i in search_result.groups())

    def ensure(self, tool):
        print(f'Checking availability of {tool.title}... ', end='')
        path = self.probe(tool)
        if path is not None:
            print(f'OK (found "{path}")')
            self.found[tool.key] = path
            return path
        if not self.config.allow_fallback_install:
            print('missing')
            raise MissingPrerequisiteError(
                tool.title, f'{tool.remedy} or rerun with --allow-fallback-install.')
        print('missing, trying to install it')
        for installer in tool.installers:
            command = installer.command(self)
            if command is None:
                print(f'Warning: {installer.name} is not available to install {tool.title}.')
                continue
            try:
                self.runner.run(command, env=self.environment)
            except CommandError as ex:
                print(f'Warning: {ex}')
                continue
            print(f'Installed {tool.title} via {installer.name}.')
            self.installed.append(tool.key)
            for directory in installer.install_directories(self):
                self.extend_path(directory)
            # The installer may not have updated our PATH, so this is informative only.
            path = probe_first(tool.probes, self)
            self.found[tool.key] = path
            return path
        raise MissingPrerequisiteError(
            tool.title, f'Automatic installation failed. {tool.remedy}.')

    def extend_path(self, directory):
        paths = [path for path in self.environment.get('PATH', '').split(os.pathsep) if path]
        if directory not in paths:
            self.environment['PATH'] = os.pathsep.join([directory] + paths)

    def ensure_all(self):
        for key in self.config.required_tools:
            self.ensure(TOOLS[key])
        return self.found

    def executable(self, key, default):
        path = self.found.get(key)
        return default if path is None else path
