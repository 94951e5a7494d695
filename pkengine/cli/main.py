"""
Main CLI entry point for pkengine

Provides a small CLI with short aliases:
- pkengine list / pkengine l
- pkengine search / pkengine s
- pkengine install / pkengine i
- pkengine remove / pkengine erase / pkengine e
- pkengine update / pkengine up / pkengine u
- pkengine repo / pkengine r
- pkengine history / pkengine h
"""

import argparse
import logging
import sqlite3
import sys
from datetime import datetime

from .. import __version__
from ..backend import Backend, TransactionFlag
from ..core.filters import Filter
from ..core.job import Info, Job
from ..core.package import build_package_id, split_package_id
from . import colors


class AliasedSubParsersAction(argparse._SubParsersAction):
    """Custom action to support command aliases in argparse."""

    def add_parser(self, name, **kwargs):
        aliases = kwargs.pop('aliases', [])
        parser = super().add_parser(name, **kwargs)

        # Register aliases
        for alias in aliases:
            self._name_parser_map[alias] = parser

        return parser


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all commands and aliases."""

    parser = argparse.ArgumentParser(
        prog='pkengine',
        description='Package query and transaction engine',
        epilog='Use "pkengine <command> --help" for command-specific help.'
    )

    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'pkengine {__version__}'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '--nocolor',
        action='store_true',
        help='Disable colored output'
    )
    parser.add_argument(
        '--base-dir',
        metavar='DIR',
        help='Directory holding the package database and lock file'
    )
    parser.add_argument(
        '--root',
        metavar='DIR',
        help='Filesystem root packages are installed under'
    )

    # Parent parser for filter options (inherited by query subparsers)
    filter_parent = argparse.ArgumentParser(add_help=False)
    filter_parent.add_argument(
        '--installed',
        action='store_true',
        help='Only installed packages'
    )
    filter_parent.add_argument(
        '--not-installed',
        action='store_true',
        help='Only packages that are not installed'
    )
    filter_parent.add_argument(
        '--arch',
        action='store_true',
        help='Only packages built for the native architecture'
    )
    filter_parent.add_argument(
        '--not-arch',
        action='store_true',
        help='Only packages built for another architecture'
    )

    # Parent parser for transaction options
    trans_parent = argparse.ArgumentParser(add_help=False)
    trans_parent.add_argument(
        '--simulate', '--test',
        action='store_true',
        help='Show what would be done without changing anything'
    )

    parser.register('action', 'parsers', AliasedSubParsersAction)

    subparsers = parser.add_subparsers(
        dest='command',
        title='commands',
        metavar='<command>'
    )

    # =========================================================================
    # Queries
    # =========================================================================
    subparsers.add_parser(
        'list', aliases=['l'],
        help='List packages',
        parents=[filter_parent]
    )

    search_parser = subparsers.add_parser(
        'search', aliases=['s'],
        help='Search packages by name',
        parents=[filter_parent]
    )
    search_parser.add_argument(
        'terms', nargs='+',
        help='Search terms (all must match)'
    )
    search_parser.add_argument(
        '--details', '-d',
        action='store_true',
        help='Also match package summaries'
    )

    resolve_parser = subparsers.add_parser(
        'resolve',
        help='Resolve exact package names',
        parents=[filter_parent]
    )
    resolve_parser.add_argument(
        'names', nargs='+',
        help='Package names'
    )

    subparsers.add_parser(
        'updates',
        help='List available updates',
        parents=[filter_parent]
    )

    # =========================================================================
    # Transactions
    # =========================================================================
    install_parser = subparsers.add_parser(
        'install', aliases=['i'],
        help='Install packages',
        parents=[trans_parent]
    )
    install_parser.add_argument(
        'packages', nargs='+',
        help='Package names, pkgvers or package ids'
    )

    remove_parser = subparsers.add_parser(
        'remove', aliases=['erase', 'e'],
        help='Remove packages',
        parents=[trans_parent]
    )
    remove_parser.add_argument(
        'packages', nargs='+',
        help='Package names'
    )
    remove_parser.add_argument(
        '--deps',
        action='store_true',
        help='Also remove packages depending on these'
    )
    remove_parser.add_argument(
        '--autoremove',
        action='store_true',
        help='Also remove dependencies nothing else needs'
    )

    update_parser = subparsers.add_parser(
        'update', aliases=['up', 'u'],
        help='Update packages (all installed packages if none given)',
        parents=[trans_parent]
    )
    update_parser.add_argument(
        'packages', nargs='*',
        help='Package names'
    )

    refresh_parser = subparsers.add_parser(
        'refresh',
        help='Re-read repository indexes'
    )
    refresh_parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Re-import even if an index is unchanged'
    )

    # =========================================================================
    # repo / r
    # =========================================================================
    repo_parser = subparsers.add_parser(
        'repo', aliases=['r'],
        help='Manage the repository pool'
    )
    repo_sub = repo_parser.add_subparsers(dest='repo_command', metavar='<subcommand>')
    repo_sub.add_parser('list', aliases=['ls'], help='List repositories')
    repo_add = repo_sub.add_parser('add', aliases=['a'], help='Add a repository')
    repo_add.add_argument('uri', help='Repository directory or file:// URI')
    repo_add.add_argument(
        '--priority', type=int, default=50,
        help='Pool position, lower comes first (default: 50)'
    )
    repo_remove = repo_sub.add_parser('remove', aliases=['rm'], help='Remove a repository')
    repo_remove.add_argument('uri', help='Repository URI')
    repo_enable = repo_sub.add_parser('enable', help='Use a repository again')
    repo_enable.add_argument('uri', help='Repository URI')
    repo_disable = repo_sub.add_parser('disable', help='Keep a repository but ignore it')
    repo_disable.add_argument('uri', help='Repository URI')

    # =========================================================================
    # history / h
    # =========================================================================
    history_parser = subparsers.add_parser(
        'history', aliases=['h'],
        help='Show transaction history'
    )
    history_parser.add_argument(
        'count', nargs='?', type=int, default=20,
        help='Number of transactions to show (default: 20)'
    )
    history_parser.add_argument(
        '--action', metavar='ACTION',
        help='Only transactions of this kind (install, remove, update, ...)'
    )
    history_parser.add_argument(
        '--detail', '-d', type=int, metavar='ID',
        help='Show the packages of transaction ID'
    )

    return parser


# =============================================================================
# Output
# =============================================================================

def format_package(info: Info, package_id: str, summary: str) -> str:
    name, version, arch, repository = split_package_id(package_id)
    label = f" [{repository}]" if repository else ""
    line = f"{colors.dim(f'{info.value:<10}')} {colors.state(info.value, name)}-{version}.{arch}{label}"
    if summary:
        line += f"  {summary}"
    return line


def print_error(kind, message: str):
    print(colors.error(f"Error ({kind.value}): {message.rstrip()}"), file=sys.stderr)


def make_job() -> Job:
    """Job printing notifications as they arrive."""
    def on_package(info, package_id, summary):
        print(format_package(info, package_id, summary))

    return Job(on_package=on_package, on_error=print_error)


def _filters(args) -> Filter:
    flags = Filter.NONE
    if getattr(args, 'installed', False):
        flags |= Filter.INSTALLED
    if getattr(args, 'not_installed', False):
        flags |= Filter.NOT_INSTALLED
    if getattr(args, 'arch', False):
        flags |= Filter.ARCH
    if getattr(args, 'not_arch', False):
        flags |= Filter.NOT_ARCH
    return flags


def _flags(args) -> TransactionFlag:
    return TransactionFlag.SIMULATE if getattr(args, 'simulate', False) else TransactionFlag.NONE


def _result(job: Job) -> int:
    return 1 if job.error else 0


# =============================================================================
# Commands
# =============================================================================

def cmd_list(args, backend: Backend) -> int:
    job = make_job()
    backend.get_packages(job, _filters(args))
    return _result(job)


def cmd_search(args, backend: Backend) -> int:
    job = make_job()
    if args.details:
        backend.search_details(job, _filters(args), args.terms)
    else:
        backend.search_names(job, _filters(args), args.terms)
    if not job.error and not job.packages:
        print(colors.warning(f"No package matching {' '.join(args.terms)}"))
    return _result(job)


def cmd_resolve(args, backend: Backend) -> int:
    job = make_job()
    backend.resolve(job, _filters(args), args.names)
    return _result(job)


def cmd_updates(args, backend: Backend) -> int:
    job = make_job()
    backend.get_updates(job, _filters(args))
    if not job.error and not job.packages:
        print(colors.success("All packages are up to date"))
    return _result(job)


def _install_ids(args, backend: Backend):
    """Turn names and pkgvers into package ids via resolve.

    Package ids given on the command line are passed through unchanged.
    """
    ids = [p for p in args.packages if ';' in p]
    names = [p for p in args.packages if ';' not in p]
    if not names:
        return ids, []

    job = Job()
    backend.resolve(job, Filter.NOT_INSTALLED, names)
    found = {split_package_id(pid)[0]: pid for _, pid, _ in job.packages}
    missing = []
    for name in names:
        pid = found.get(name)
        if pid is None:
            # pkgver given: resolve matched on the bare name
            pid = next((v for k, v in found.items()
                        if name.startswith(f"{k}-") and split_package_id(v)[1] == name[len(k) + 1:]),
                       None)
        if pid is None:
            missing.append(name)
        else:
            ids.append(pid)
    return ids, missing


def cmd_install(args, backend: Backend) -> int:
    ids, missing = _install_ids(args, backend)
    if missing:
        print(colors.error(f"Package not found: {', '.join(missing)}"), file=sys.stderr)
        return 1
    job = make_job()
    backend.install_packages(job, _flags(args), ids)
    return _result(job)


def _name_ids(names):
    # Removal and update only need the name field
    return [n if ';' in n else build_package_id(n, '', '', '') for n in names]


def cmd_remove(args, backend: Backend) -> int:
    job = make_job()
    backend.remove_packages(job, _flags(args), _name_ids(args.packages),
                            allow_deps=args.deps, autoremove=args.autoremove)
    return _result(job)


def cmd_update(args, backend: Backend) -> int:
    names = args.packages
    if not names:
        job = Job(on_error=print_error)
        backend.get_updates(job, Filter.NONE)
        if job.error:
            return 1
        names = [split_package_id(pid)[0] for _, pid, _ in job.packages]
        if not names:
            print(colors.success("Nothing to do"))
            return 0
    job = make_job()
    backend.update_packages(job, _flags(args), _name_ids(names))
    return _result(job)


def cmd_refresh(args, backend: Backend) -> int:
    job = make_job()
    backend.refresh_cache(job, force=args.force)
    if not job.error:
        print(colors.success("Repository indexes are up to date"))
    return _result(job)


def _open_store(backend: Backend):
    from ..core.local_store import LocalStore
    return LocalStore.from_config(backend.settings)


def cmd_repo_list(args, backend: Backend) -> int:
    store = _open_store(backend)
    try:
        repos = store.db.list_repositories()
        if not repos:
            print(colors.warning("No repositories set up"))
            return 0
        for repo in repos:
            state = colors.success("enabled") if repo['enabled'] else colors.dim("disabled")
            synced = "never synced" if not repo['last_sync'] else f"synced {repo['last_sync']}"
            print(f"{repo['priority']:>4}  {repo['uri']}  {state}  {colors.dim(synced)}")
        return 0
    finally:
        store.close()


def cmd_repo_add(args, backend: Backend) -> int:
    store = _open_store(backend)
    try:
        store.db.add_repository(args.uri, priority=args.priority)
    except sqlite3.IntegrityError:
        print(colors.error(f"Repository already exists: {args.uri}"), file=sys.stderr)
        return 1
    finally:
        store.close()
    print(colors.success(f"Added {args.uri}"))
    print(f"Run {colors.bold('pkengine refresh')} to import its index")
    return 0


def cmd_repo_remove(args, backend: Backend) -> int:
    store = _open_store(backend)
    try:
        removed = store.db.remove_repository(args.uri)
    finally:
        store.close()
    if not removed:
        print(colors.error(f"Unknown repository: {args.uri}"), file=sys.stderr)
        return 1
    print(colors.success(f"Removed {args.uri}"))
    return 0


def _set_repository_enabled(args, backend: Backend, enabled: bool) -> int:
    store = _open_store(backend)
    try:
        changed = store.db.enable_repository(args.uri, enabled)
    finally:
        store.close()
    if not changed:
        print(colors.error(f"Unknown repository: {args.uri}"), file=sys.stderr)
        return 1
    print(colors.success(f"{'Enabled' if enabled else 'Disabled'} {args.uri}"))
    return 0


def cmd_repo_enable(args, backend: Backend) -> int:
    return _set_repository_enabled(args, backend, True)


def cmd_repo_disable(args, backend: Backend) -> int:
    return _set_repository_enabled(args, backend, False)


def _color_action(action: str) -> str:
    if 'remove' in action:
        return colors.error(action)
    if 'update' in action or 'downgrade' in action:
        return colors.state('updating', action)
    return colors.success(action)


def _color_status(status: str) -> str:
    if status.strip() == 'interrupted':
        return colors.error(status)
    if status.strip() == 'running':
        return colors.warning(status)
    return status


def _show_transaction(trans: dict):
    when = datetime.fromtimestamp(trans['timestamp']).strftime('%Y-%m-%d %H:%M')
    trans_id = trans['id']
    print(f"{colors.bold(f'Transaction #{trans_id}')} - {when}")
    print(f"  Action:  {_color_action(trans['action'])}")
    print(f"  Status:  {_color_status(trans['status'])}")
    if trans['command']:
        print(f"  Targets: {trans['command']}")

    for title, packages in (('Explicit', trans['explicit']),
                            ('Dependencies', trans['dependencies'])):
        if not packages:
            continue
        print(f"\n  {colors.bold(f'{title} ({len(packages)}):')}")
        for p in packages:
            action = p['action']
            line = f"    {_color_action(f'{action:10}')} {p['pkgver']}"
            if p['previous_version']:
                line += colors.dim(f" (was {p['previous_version']})")
            print(line)


def cmd_history(args, backend: Backend) -> int:
    store = _open_store(backend)
    try:
        db = store.db
        if args.detail is not None:
            trans = db.get_transaction(args.detail)
            if trans is None:
                print(colors.error(f"Transaction #{args.detail} not found"), file=sys.stderr)
                return 1
            _show_transaction(trans)
            return 0

        history = db.list_history(limit=args.count, action_filter=args.action)
    finally:
        store.close()

    if not history:
        print(colors.warning("No transaction history"))
        return 0

    for h in history:
        date_str = datetime.fromtimestamp(h['timestamp']).strftime('%Y-%m-%d')
        explicit = h['explicit_pkgs'] or ''
        extra = h['pkg_count'] - len(explicit.split(',')) if explicit else h['pkg_count']
        info = explicit
        if extra > 0:
            info += colors.dim(f" (+{extra} deps)")
        action, status = h['action'], h['status']
        print(f"{h['id']:>4} | {date_str:10} | {_color_action(f'{action:14}')} | "
              f"{_color_status(f'{status:11}')} | {info}")
    return 0


COMMANDS = {
    'list': cmd_list, 'l': cmd_list,
    'search': cmd_search, 's': cmd_search,
    'resolve': cmd_resolve,
    'updates': cmd_updates,
    'install': cmd_install, 'i': cmd_install,
    'remove': cmd_remove, 'erase': cmd_remove, 'e': cmd_remove,
    'update': cmd_update, 'up': cmd_update, 'u': cmd_update,
    'refresh': cmd_refresh,
    'history': cmd_history, 'h': cmd_history,
}

REPO_COMMANDS = {
    'list': cmd_repo_list, 'ls': cmd_repo_list, None: cmd_repo_list,
    'add': cmd_repo_add, 'a': cmd_repo_add,
    'remove': cmd_repo_remove, 'rm': cmd_repo_remove,
    'enable': cmd_repo_enable,
    'disable': cmd_repo_disable,
}


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging based on verbose flag
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(name)s - %(levelname)s - %(message)s',
            stream=sys.stderr
        )

    colors.init(nocolor=args.nocolor)

    if not args.command:
        parser.print_help()
        return 1

    overrides = {}
    if args.base_dir:
        overrides['base_dir'] = args.base_dir
    if args.root:
        overrides['root_dir'] = args.root

    backend = Backend()
    try:
        backend.initialize(overrides)
    except (OSError, sqlite3.Error, RuntimeError) as e:
        print(colors.error(f"Cannot open package database: {e}"), file=sys.stderr)
        return 1

    try:
        if args.command in ('repo', 'r'):
            return REPO_COMMANDS[args.repo_command](args, backend)
        return COMMANDS[args.command](args, backend)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    finally:
        backend.destroy()


if __name__ == '__main__':
    sys.exit(main())
