import collections.abc
from dataclasses import dataclass
import json
import os
from pathlib import Path
from types import MappingProxyType

from jsonschema import validate
from jsonschema.exceptions import ValidationError

from provision_errors import ConfigError, ProvisioningError
from provision_tools import parse_version_constraints

scripts_path = Path(__file__).parent.absolute()
base_config_name = 'config-base.json'

BUILD_TYPES = ('Release', 'Debug', 'RelWithDebInfo', 'MinSizeRel')

# Environment variables consulted when the matching flag is not given.
BUILD_TYPE_VARIABLE = 'BUILD_TYPE'
JOBS_VARIABLE = 'NUM_JOBS'
VERSION_VARIABLES = {
    'cmake-pip': 'CMAKE_PIP_VERSION',
    'cmake-choco': 'CMAKE_CHOCO_VERSION',
    'ninja-choco': 'NINJA_CHOCO_VERSION',
}


class ConfigLoader:
    """Merges layered JSON config files, remembering where each setting came from."""

    def __init__(self):
        self.config = {}
        self.config_guard = {}

    def load(self, config_filename):
        config_filename = Path(config_filename)
        if not config_filename.is_absolute() and (scripts_path / config_filename).exists():
            config_filename = scripts_path / config_filename
        print(f'Loading config "{config_filename}"')
        try:
            with open(config_filename, 'r') as config_file:
                new_config = json.load(config_file)
        except OSError as ex:
            raise ConfigError(f'Cannot read config "{config_filename}": {ex.strerror}.') from ex
        except json.JSONDecodeError as ex:
            raise ConfigError(f'Malformed config "{config_filename}": {ex}.') from ex
        if not isinstance(new_config, collections.abc.Mapping):
            raise ConfigError(f'Config "{config_filename}" must contain a JSON object.')
        self.config = ConfigLoader._update_config(self.config, new_config,
                                                  self.config_guard, config_filename.name)
        return self.config

    def validate(self):
        with open(scripts_path / 'config.schema.json', 'r') as config_schema_file:
            config_schema = json.load(config_schema_file)
        try:
            validate(instance=self.config, schema=config_schema)
        except ValidationError as ex:
            location = '.'.join(str(i) for i in ex.absolute_path) or '<root>'
            raise ConfigError(f'Invalid config value at "{location}": {ex.message}') from ex

    @staticmethod
    def _update_config(config, new_config, config_guard, config_filename):
        for key, new_value in new_config.items():
            if isinstance(new_value, collections.abc.Mapping):
                if not isinstance(config.get(key), dict):
                    config[key] = {}
                if not isinstance(config_guard.get(key), dict):
                    config_guard[key] = {}
                config[key] = ConfigLoader._update_config(config[key], new_value,
                                                          config_guard[key], config_filename)
            else:
                # Keep track of where each setting originates from.
                if key in config_guard and config_guard[key] != base_config_name:
                    print(f'Warning: Config "{key}"="{config[key]}" previously set in "{config_guard[key]}" ' +
                          f'will be overwritten with "{key}"="{new_value}" set in "{config_filename}"!')
                config_guard[key] = config_filename
                config[key] = new_value
        return config


def load_settings(config_filenames=()):
    loader = ConfigLoader()
    loader.load(scripts_path / base_config_name)
    for config_filename in config_filenames:
        loader.load(config_filename)
    loader.validate()
    return loader.config


@dataclass(frozen=True)
class WorkspaceLayout:
    root: Path
    dependencies_build: Path
    dependencies_install: Path
    core_build: Path
    core_install: Path

    @classmethod
    def under(cls, root):
        root = Path(root)
        return cls(root=root,
                   dependencies_build=root / 'dependencies-build',
                   dependencies_install=root / 'dependencies-install',
                   core_build=root / 'core-build',
                   core_install=root / 'core-install')

    def paths(self):
        return (self.root, self.dependencies_build, self.dependencies_install,
                self.core_build, self.core_install)

    def create(self):
        for path in self.paths():
            if not path.exists():
                print(f'Creating non-existent path "{path}"... ', end='')
                try:
                    path.mkdir(parents=True, exist_ok=True)
                except OSError as ex:
                    print('Error')
                    raise ProvisioningError(f'Cannot create path "{path}": {ex.strerror}.') from ex
                print('OK')


@dataclass(frozen=True)
class BuildConfig:
    project_name: str
    build_type: str
    jobs: int
    branch: str
    disable_moco: bool
    with_moco: bool
    allow_fallback_install: bool
    resolve_python_abi: bool
    copy_python_library: bool
    python_abi_version: str
    source_path: Path
    workspace: WorkspaceLayout
    generator: str
    platform: str
    cl_mp_count: int
    tools: tuple
    versions: collections.abc.Mapping
    expected_versions: collections.abc.Mapping
    moco_definition: str
    dependencies_source_subdirectory: str
    dependencies_install_step: bool
    dependencies_definitions: tuple
    core_install_step: bool
    dependencies_dir_definition: str
    core_definitions: tuple

    @property
    def uses_visual_studio(self):
        return self.generator.startswith('Visual Studio')

    @property
    def uses_ninja(self):
        return 'Ninja' in self.generator

    @property
    def required_tools(self):
        tools = list(self.tools)
        if self.uses_ninja and 'ninja' not in tools:
            tools.append('ninja')
        return tuple(tools)

    def as_dict(self):
        return {
            'project-name': self.project_name,
            'build-type': self.build_type,
            'jobs': self.jobs,
            'branch': self.branch,
            'disable-moco': self.disable_moco,
            'with-moco': self.with_moco,
            'allow-fallback-install': self.allow_fallback_install,
            'resolve-python-abi': self.resolve_python_abi,
            'copy-python-library': self.copy_python_library,
            'python-abi-version': self.python_abi_version,
            'source-path': self.source_path.as_posix(),
            'workspace': {
                'root': self.workspace.root.as_posix(),
                'dependencies-build': self.workspace.dependencies_build.as_posix(),
                'dependencies-install': self.workspace.dependencies_install.as_posix(),
                'core-build': self.workspace.core_build.as_posix(),
                'core-install': self.workspace.core_install.as_posix(),
            },
            'generator': self.generator,
            'platform': self.platform,
            'cl-mp-count': self.cl_mp_count,
            'tools': list(self.required_tools),
            'versions': dict(self.versions),
            'expected-versions': dict(self.expected_versions),
            'dependencies': {
                'source-subdirectory': self.dependencies_source_subdirectory,
                'install': self.dependencies_install_step,
                'definitions': dict(self.dependencies_definitions),
            },
            'core': {
                'install': self.core_install_step,
                'dependencies-dir-definition': self.dependencies_dir_definition,
                'definitions': dict(self.core_definitions),
            },
        }


def _expand_path(value):
    return Path(os.path.expanduser(value.replace('\\', '/'))).absolute()


def _pick(flag_value, environ, variable, setting):
    if flag_value is not None:
        return flag_value
    if environ.get(variable):
        return environ[variable]
    return setting


def _parse_jobs(value):
    if isinstance(value, bool):
        raise ConfigError(f'Number of jobs must be a positive integer, got "{value}".')
    if isinstance(value, int):
        jobs = value
    else:
        try:
            jobs = int(str(value).strip())
        except ValueError:
            raise ConfigError(f'Number of jobs must be a positive integer, got "{value}".') from None
    if jobs < 1:
        raise ConfigError(f'Number of jobs must be at least 1, got {jobs}.')
    return jobs


def resolve_config(settings, environ=None, build_type=None, jobs=None, branch=None,
                   disable_moco=None, allow_fallback_install=None, resolve_python_abi=None,
                   source_path=None, workspace_path=None):
    """Produce the immutable BuildConfig.

    Command line values win over environment variables, which win over the
    merged settings. Nothing is created or executed here.
    """
    environ = os.environ if environ is None else environ

    build_type = _pick(build_type, environ, BUILD_TYPE_VARIABLE, settings['build-type'])
    if build_type not in BUILD_TYPES:
        raise ConfigError(f'Invalid build type "{build_type}". ' +
                          f'Expected one of: {", ".join(BUILD_TYPES)}.')
    jobs = _parse_jobs(_pick(jobs, environ, JOBS_VARIABLE, settings['jobs']))

    versions = dict(settings['versions'])
    for key, variable in VERSION_VARIABLES.items():
        if environ.get(variable):
            versions[key] = environ[variable]

    for tool, version_constraints in settings['expected-versions'].items():
        try:
            parse_version_constraints(version_constraints)
        except ValueError as ex:
            raise ConfigError(f'Invalid expected version for "{tool}": {ex}.') from ex

    disable_moco = settings['disable-moco'] if disable_moco is None else disable_moco
    # MOCO stays off whatever the flag says until the CasADi superbuild is supported here.
    with_moco = False

    workspace = WorkspaceLayout.under(_expand_path(workspace_path or settings['workspace-path']))

    return BuildConfig(
        project_name=settings['project-name'],
        build_type=build_type,
        jobs=jobs,
        branch=branch or settings['branch'],
        disable_moco=disable_moco,
        with_moco=with_moco,
        allow_fallback_install=(settings['allow-fallback-install']
                                if allow_fallback_install is None else allow_fallback_install),
        resolve_python_abi=(settings['resolve-python-abi']
                            if resolve_python_abi is None else resolve_python_abi),
        copy_python_library=settings['copy-python-library'],
        python_abi_version=settings['python-abi-version'],
        source_path=_expand_path(source_path or settings['source-path']),
        workspace=workspace,
        generator=settings['generator'],
        platform=settings['platform'],
        cl_mp_count=settings['cl-mp-count'],
        tools=tuple(settings['tools']),
        versions=MappingProxyType(versions),
        expected_versions=MappingProxyType(dict(settings['expected-versions'])),
        moco_definition=settings['moco-definition'],
        dependencies_source_subdirectory=settings['dependencies']['source-subdirectory'],
        dependencies_install_step=settings['dependencies']['install'],
        dependencies_definitions=tuple(settings['dependencies']['definitions'].items()),
        core_install_step=settings['core']['install'],
        dependencies_dir_definition=settings['core']['dependencies-dir-definition'],
        core_definitions=tuple(settings['core']['definitions'].items()),
    )
