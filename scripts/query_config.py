#!/usr/bin/env python

import argparse
import contextlib
import io
import sys

from provision_config import load_settings
from provision_errors import ConfigError


def query_settings(config, query):
    config_node = config
    for field in query.split('.'):
        if not isinstance(config_node, dict) or not field in config_node:
            return None, False
        config_node = config_node[field]
    return config_node, True


def format_queries(config, queries):
    results = []
    for query in queries:
        value, found = query_settings(config, query)
        results.append(str(value) if found else f'[{query}-unknown]')
    return '|'.join(results)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Query provisioning config settings.')
    parser.add_argument('-q', '--query', required=True, action='append')
    parser.add_argument('configs_json', nargs='*')
    args = parser.parse_args(argv)
    # Loading progress would pollute the answer, which callers parse.
    try:
        with contextlib.redirect_stdout(io.StringIO()):
            config = load_settings(args.configs_json)
    except ConfigError as ex:
        print(f'Error: {ex}', file=sys.stderr)
        return ex.exit_code
    print(format_queries(config, args.query))
    return 0


if __name__ == '__main__':
    sys.exit(main())
