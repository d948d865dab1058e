#!/usr/bin/env python3
"""
GCR Poller - Command-line interface

Checks registry connectivity and resolves the latest tag of an image outside
of the CD server, using the same code paths as the plugin.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .base import ImageTag
from .config import (
    DOCKER_IMAGE,
    DOCKER_TAG_FILTER,
    GCP_PROJECT,
    GCP_REGISTRY_URL,
    GCP_SERVICE_ACCOUNT,
    MaterialProperties,
    MaterialProperty,
    PackageConfig,
    RepositoryConfig,
    load_config,
)
from .credentials import GoogleCredentialService
from .errors import ConfigurationError, PollerError
from .gcr import GcrClient
from .messages import PackageRevision, to_json
from .plugin import PackageRepositoryMaterial, RequestName
from .poller import GcrPoller, PollFailed
from .resolver import NewRevision, Unchanged, compile_tag_filter

logger = logging.getLogger(__name__)


def _set(props: MaterialProperties, key: str, value) -> None:
    if value is not None:
        props.add(key, MaterialProperty(value=str(value)))


def build_properties(args):
    """
    Merge the config file (if any) with command-line overrides

    Returns:
        Tuple of (repository properties, package properties, previous ImageTag or None)
    """
    if args.config:
        config = load_config(args.config)
        repository = config['repository']
        package = config['package']
        previous = config['previous']
    else:
        repository = MaterialProperties()
        package = MaterialProperties()
        previous = None

    if args.service_account_file:
        try:
            _set(repository, GCP_SERVICE_ACCOUNT, Path(args.service_account_file).read_text())
        except OSError as e:
            raise PollerError(f"Cannot read service account file: {e}") from e
    _set(repository, GCP_PROJECT, args.project)
    _set(repository, GCP_REGISTRY_URL, args.registry_url)
    _set(package, DOCKER_IMAGE, getattr(args, 'image', None))
    _set(package, DOCKER_TAG_FILTER, getattr(args, 'tag_filter', None))

    previous_tag = getattr(args, 'previous_tag', None)
    previous_timestamp = getattr(args, 'previous_timestamp', None)
    if (previous_tag is None) != (previous_timestamp is None):
        raise ConfigurationError("--previous-tag and --previous-timestamp must be given together")
    if previous_tag is not None:
        if previous_timestamp < 0:
            raise ConfigurationError(f"Invalid previous timestamp: {previous_timestamp}")
        previous = ImageTag(name=previous_tag, uploaded_at_ms=previous_timestamp)

    return repository, package, previous


def _connect(args):
    repository_props, package_props, previous = build_properties(args)
    repository = RepositoryConfig.from_properties(repository_props)
    token = GoogleCredentialService().get_access_token(repository.service_account)
    poller = GcrPoller(GcrClient(timeout=args.timeout, skip_malformed=args.skip_malformed))
    return poller, repository, package_props, previous, token


def _print_revision(revision: PackageRevision, output_format: str) -> None:
    if output_format == 'json':
        print(json.dumps(revision.to_dict(), indent=2))
    else:
        print(f"{'Tag':<30} {'Uploaded':<30}")
        print("-" * 60)
        print(f"{revision.revision:<30} {revision.timestamp.isoformat():<30}")


def check_repository_command(args):
    """Check that the registry accepts the credential"""
    poller, repository, _, _, token = _connect(args)
    result = poller.check_repository_connection(repository, token)
    for message in result.messages:
        print(message)
    return 0 if result.success else 1


def check_package_command(args):
    """Check that the image's tags can be listed"""
    poller, repository, package_props, _, token = _connect(args)
    package = PackageConfig.from_properties(package_props)
    result = poller.check_package_connection(package, repository, token)
    for message in result.messages:
        print(message)
    return 0 if result.success else 1


def latest_revision_command(args):
    """Resolve the latest tag, optionally against a previous revision"""
    poller, repository, package_props, previous, token = _connect(args)
    package = PackageConfig.from_properties(package_props)

    if args.command == 'latest-revision-since' and previous is None:
        raise ConfigurationError(
            "No previous revision: pass --previous-tag/--previous-timestamp or set 'previous' in --config"
        )

    print(f"Resolving latest tag for {repository.project}/{package.image}...", file=sys.stderr)
    outcome = poller.latest_revision_since(package, repository, previous, token)

    if isinstance(outcome, PollFailed):
        print(f"Error: {outcome.reason}", file=sys.stderr)
        return 1
    if isinstance(outcome, NewRevision):
        _print_revision(PackageRevision.from_tag(outcome.tag), args.output_format)
    elif isinstance(outcome, Unchanged):
        print("No new revision since previous", file=sys.stderr)
    else:
        print("No matching tag found", file=sys.stderr)
    return 0


def list_tags_command(args):
    """List all tags of the image, newest first"""
    poller, repository, package_props, _, token = _connect(args)
    package = PackageConfig.from_properties(package_props)

    print(f"Fetching tags for {repository.project}/{package.image}...", file=sys.stderr)
    catalog = poller.fetch_catalog(package, repository, token)

    pattern = compile_tag_filter(package.tag_filter)
    tags = [t for t in catalog.tags() if pattern.search(t.name)]
    tags.sort(key=lambda t: t.uploaded_at_ms, reverse=True)

    # Output
    if args.output_format == 'json':
        tag_list = [
            {
                'name': tag.name,
                'uploaded': tag.created.isoformat(),
                'uploaded_ms': tag.uploaded_at_ms,
            }
            for tag in tags
        ]
        print(json.dumps(tag_list, indent=2))
    else:
        # CSV format
        print("tag,uploaded,uploaded_ms")
        for tag in tags:
            print(f"{tag.name},{tag.created.isoformat()},{tag.uploaded_at_ms}")

    return 0


def handle_command(args):
    """Run a raw plugin request, reading the JSON body from a file or stdin"""
    if args.body:
        body_path = Path(args.body)
        if not body_path.exists():
            print(f"Error: Body file not found: {body_path}", file=sys.stderr)
            return 1
        body = body_path.read_text()
    else:
        body = sys.stdin.read()

    plugin = PackageRepositoryMaterial(
        poller=GcrPoller(GcrClient(timeout=args.timeout, skip_malformed=args.skip_malformed))
    )
    response = plugin.handle(args.request_name, body)

    print(to_json({'code': response.code, 'body': response.body}))
    return 0 if response.code == 200 else 1


def _add_common_arguments(parser, with_package=True):
    parser.add_argument('--config', help='YAML config file with repository/package sections')
    parser.add_argument('--registry-url', help='Registry host or URL (e.g., gcr.io)')
    parser.add_argument('--project', help='GCP project id')
    parser.add_argument('--service-account-file', help='Path to service account JSON key')
    if with_package:
        parser.add_argument('--image', help='Image name within the project')
        parser.add_argument('--tag-filter', help='Tag filter regex (default: match all)')
    parser.add_argument('--timeout', type=float, default=30.0,
                        help='Request timeout in seconds (default: 30)')
    parser.add_argument('--skip-malformed', action='store_true',
                        help='Skip manifests with unparsable timestamps instead of failing')


def main(argv=None):
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description='GCR Poller - track the latest tag of a container image'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # check-repository command
    repo_parser = subparsers.add_parser('check-repository',
                                        help='Check connectivity to the registry')
    _add_common_arguments(repo_parser, with_package=False)

    # check-package command
    pkg_parser = subparsers.add_parser('check-package',
                                       help='Check the image tags can be listed')
    _add_common_arguments(pkg_parser)

    # latest-revision command
    latest_parser = subparsers.add_parser('latest-revision',
                                          help='Resolve the latest matching tag')
    _add_common_arguments(latest_parser)
    latest_parser.add_argument('--output-format', choices=['table', 'json'], default='table',
                               help='Output format (default: table)')

    # latest-revision-since command
    since_parser = subparsers.add_parser('latest-revision-since',
                                         help='Resolve the latest tag if it differs from a previous one')
    _add_common_arguments(since_parser)
    since_parser.add_argument('--previous-tag', help="Previously seen tag (overrides 'previous' in --config)")
    since_parser.add_argument('--previous-timestamp', type=int,
                              help='Upload time of the previous tag in epoch milliseconds')
    since_parser.add_argument('--output-format', choices=['table', 'json'], default='table',
                              help='Output format (default: table)')

    # list-tags command
    list_parser = subparsers.add_parser('list-tags', help='List matching tags, newest first')
    _add_common_arguments(list_parser)
    list_parser.add_argument('--output-format', choices=['csv', 'json'], default='csv',
                             help='Output format (default: csv)')

    # handle command
    handle_parser = subparsers.add_parser('handle', help='Run a raw plugin request')
    handle_parser.add_argument('request_name', choices=[r.value for r in RequestName],
                               help='Plugin request name')
    handle_parser.add_argument('--body', help='File with the JSON request body (default: stdin)')
    handle_parser.add_argument('--timeout', type=float, default=30.0,
                               help='Request timeout in seconds (default: 30)')
    handle_parser.add_argument('--skip-malformed', action='store_true',
                               help='Skip manifests with unparsable timestamps instead of failing')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        'check-repository': check_repository_command,
        'check-package': check_package_command,
        'latest-revision': latest_revision_command,
        'latest-revision-since': latest_revision_command,
        'list-tags': list_tags_command,
        'handle': handle_command,
    }

    try:
        return commands[args.command](args)
    except PollerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
