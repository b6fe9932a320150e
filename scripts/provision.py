#!/usr/bin/env python

import argparse
import enum
import json
import os
from pathlib import Path
import platform
import shutil
import sys
from timeit import default_timer as timer
import traceback

from provision_build import BuildUnitRunner, build_units
from provision_config import BUILD_TYPES, load_settings, resolve_config
from provision_errors import ProvisioningError
from provision_process import CommandRunner
from provision_python import copy_library, resolve_python_abi
from provision_tools import PrerequisiteChecker


class Stage(enum.Enum):
    INIT = 'Init'
    CONFIG_RESOLVED = 'ConfigResolved'
    PREREQS_SATISFIED = 'PrereqsSatisfied'
    DEPENDENCIES_BUILT = 'DependenciesBuilt'
    DEPENDENCIES_INSTALLED = 'DependenciesInstalled'
    CORE_BUILT = 'CoreBuilt'
    CORE_INSTALLED = 'CoreInstalled'
    DONE = 'Done'
    FAILED = 'Failed'


def build_parser():
    parser = argparse.ArgumentParser(
        description='Install the build toolchain, then configure, build and install '
                    'the dependencies superbuild followed by the core project.')
    parser.add_argument('configs_json', nargs='*',
                        help='Additional config files applied on top of config-base.json.')
    parser.add_argument('-d', '--disable-moco', action='store_const', const=True, default=None,
                        help='Disable the MOCO module (currently always disabled).')
    parser.add_argument('-b', '--build-type', default=None,
                        help=f'One of {", ".join(BUILD_TYPES)} (default: Release, env: BUILD_TYPE).')
    parser.add_argument('-j', '--jobs', default=None,
                        help='Number of parallel build jobs (default: 4, env: NUM_JOBS).')
    parser.add_argument('-s', '--branch', default=None,
                        help='Source branch, recorded for reference only (default: main).')
    parser.add_argument('--allow-fallback-install', action='store_const', const=True, default=None,
                        help='Install missing tools via pip or Chocolatey instead of failing.')
    parser.add_argument('--resolve-python-abi', action='store_const', const=True, default=None,
                        help='Pass the pinned Python interpreter and link library to CMake.')
    parser.add_argument('--source-path', default=None,
                        help='Source tree of the core project.')
    parser.add_argument('--workspace-path', default=None,
                        help='Directory receiving the build and install trees.')
    return parser


class Provisioner:
    def __init__(self, config, runner, checker):
        self.config = config
        self.runner = runner
        self.checker = checker
        self.stage = Stage.CONFIG_RESOLVED
        self.history = [Stage.INIT, Stage.CONFIG_RESOLVED]
        self.python_abi = None

    def _advance(self, stage):
        print(f'\033]2;{self.config.project_name}: {stage.value}\007', end='')
        self.stage = stage
        self.history.append(stage)

    def filter_environment(self):
        environment = dict(self.checker.environment)
        paths = []
        cmake_path = self.checker.found.get('cmake')
        if cmake_path is not None:
            paths += [Path(cmake_path).parent.as_posix()]
        if self.python_abi is not None:
            paths += [self.python_abi.executable.parent.as_posix()]
        paths += [path for path in environment.get('PATH', '').split(os.pathsep) if path]
        environment['PATH'] = os.pathsep.join(paths)
        return environment

    def write_effective_config(self):
        config_filename = self.config.workspace.root / 'provision-config.json'
        with open(config_filename, 'w') as config_file:
            config_file.write(json.dumps(self.config.as_dict(), indent=4))
        print(f'Effective config written to "{config_filename}".')

    def run(self):
        try:
            self.checker.ensure_all()
            self._advance(Stage.PREREQS_SATISFIED)

            if self.config.resolve_python_abi:
                self.python_abi = resolve_python_abi(
                    self.config.python_abi_version, self.runner,
                    self.checker.environment, self.checker.which)

            self.config.workspace.create()
            self.write_effective_config()

            unit_runner = BuildUnitRunner(self.config, self.runner,
                                          self.checker.executable('cmake', 'cmake'),
                                          self.filter_environment())
            dependencies, core = build_units(self.config, self.python_abi)

            unit_runner.configure(dependencies)
            unit_runner.build(dependencies)
            self._advance(Stage.DEPENDENCIES_BUILT)
            if dependencies.install:
                unit_runner.install(dependencies)
            self._advance(Stage.DEPENDENCIES_INSTALLED)

            unit_runner.configure(core)
            unit_runner.build(core)
            self._advance(Stage.CORE_BUILT)
            if core.install:
                unit_runner.install(core)
                if self.python_abi is not None and self.config.copy_python_library:
                    copy_library(self.python_abi, core.install_path)
            self._advance(Stage.CORE_INSTALLED)
        except Exception:
            self._advance(Stage.FAILED)
            raise
        self._advance(Stage.DONE)
        print(f'Done. {self.config.project_name} ({self.config.build_type}) installed to ' +
              f'"{self.config.workspace.core_install}".')


def main(argv=None, environ=None, runner=None, which=shutil.which):
    environ = dict(os.environ if environ is None else environ)
    args = build_parser().parse_args(argv)

    start = timer()
    try:
        settings = load_settings(args.configs_json)
        config = resolve_config(settings, environ,
                                build_type=args.build_type,
                                jobs=args.jobs,
                                branch=args.branch,
                                disable_moco=args.disable_moco,
                                allow_fallback_install=args.allow_fallback_install,
                                resolve_python_abi=args.resolve_python_abi,
                                source_path=args.source_path,
                                workspace_path=args.workspace_path)
        print('Using config:')
        print(json.dumps(config.as_dict(), indent=4))
        if not config.disable_moco:
            print('Note: MOCO is currently always disabled, regardless of --disable-moco.')

        runner = CommandRunner() if runner is None else runner
        checker = PrerequisiteChecker(config, runner, environ, which)
        Provisioner(config, runner, checker).run()
    except ProvisioningError as ex:
        print(f'Error: {ex}')
        return ex.exit_code
    except Exception:
        print('Error')
        traceback.print_exc()
        return 1
    finally:
        end = timer()
        print(f'Script finished in {end - start:.1f} seconds')
    return 0


if __name__ == '__main__':
    if platform.system() == 'Windows':
        # Re-enable interpretation of VT100 escape sequences used for the window title.
        os.system('')
    sys.exit(main())
