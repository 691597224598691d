"""CLI for the Quay registry client."""

import argparse
import sys
from pathlib import Path

import httpx
import structlog
import yaml

from .config import Config, RegistryAuth
from .exceptions import QuayClientError
from .factory import Factory, configure_logging
from .models.organization import OrgSet
from .models.tag import TagResults
from .output import OutputFormat, curl_command, render, write

__all__ = ["main", "run"]


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="qc",
        description=(
            "Query a Quay registry: organisations, repositories, tags and "
            "their vulnerabilities."
        ),
    )
    parser.add_argument(
        "-o", "--organisation", help="organisation name", default=""
    )
    parser.add_argument(
        "-r", "--repository", help="repository name", default=""
    )
    parser.add_argument(
        "-t",
        "--tag",
        help="tag name or regular expression matching tag names",
        default="",
    )
    parser.add_argument(
        "-x",
        "-rx",
        "--reporegex",
        help="regular expression matching repository names",
        default="",
    )
    parser.add_argument(
        "-u",
        "-url",
        "--registryurl",
        help="registry URL (default: $QUAYREGISTRY or config file)",
        default="",
    )
    parser.add_argument(
        "-s",
        "--secret",
        help="name of the secret holding the registry credential",
        default="",
    )
    parser.add_argument(
        "-n",
        "-sn",
        "--secret-namespace",
        help="namespace of the secret holding the registry credential",
        default="",
    )
    parser.add_argument(
        "-kc", "--kubeconfig", help="path to the kubeconfig file", default=""
    )
    parser.add_argument(
        "-un",
        "--username",
        help="username for basic auth (skips the secret lookup)",
        default=None,
    )
    parser.add_argument(
        "-p", "--password", help="password for basic auth", default=None
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=[f.value for f in OutputFormat],
        help="output format",
        default=OutputFormat.YAML.value,
    )
    parser.add_argument(
        "-ft",
        dest="format",
        action="store_const",
        const=OutputFormat.TEXT.value,
        help="shorthand for --format text",
    )
    parser.add_argument(
        "-fj",
        dest="format",
        action="store_const",
        const=OutputFormat.JSON.value,
        help="shorthand for --format json",
    )
    parser.add_argument(
        "-of",
        "--output-file",
        type=Path,
        help="write output to this file instead of stdout",
        default=None,
    )
    parser.add_argument(
        "-pp",
        "--prettyprint",
        action="store_true",
        help="indent JSON and use block-style YAML",
        default=False,
    )
    parser.add_argument(
        "-i",
        "--details",
        action="store_true",
        help="show tags and vulnerability details",
        default=False,
    )
    parser.add_argument(
        "--sev",
        "--severity",
        dest="severity",
        help="minimum severity (low, medium, high, critical)",
        default="",
    )
    parser.add_argument(
        "-b",
        "--basescore",
        type=float,
        help="only show vulnerabilities with a base score above this",
        default=0.0,
    )
    parser.add_argument(
        "-c",
        "--curlreq",
        action="store_true",
        help="print a curl command line with the bearer token",
        default=False,
    )
    parser.add_argument(
        "-gu",
        "--getusers",
        action="store_true",
        help="show the default permissions of the organisation",
        default=False,
    )
    parser.add_argument(
        "-gn",
        "--getnotifications",
        action="store_true",
        help="show the repository notifications of the organisation",
        default=False,
    )
    parser.add_argument(
        "-cc",
        "--create-config",
        action="store_true",
        help="write an example config file and exit",
        default=False,
    )
    parser.add_argument(
        "-d",
        "--delete",
        action="store_true",
        help="delete the tag given by -o, -r and -t",
        default=False,
    )
    parser.add_argument(
        "-fd",
        "--filter-delete-tags",
        action="store_true",
        help=(
            "print delete commands for tags not in use, filtered by -rx, "
            "-t, --sev and -a"
        ),
        default=False,
    )
    parser.add_argument(
        "-a",
        "--minage",
        type=int,
        help="minimum age in days of tags to delete",
        default=0,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable debug logging",
        default=False,
    )
    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> Config:
    return Config.load(
        url=args.registryurl,
        secret_name=args.secret,
        secret_namespace=args.secret_namespace,
        organisation=args.organisation,
        kubeconfig=args.kubeconfig,
    )


def _overview(orgs: OrgSet, tag_pattern: str) -> tuple[TagResults, str]:
    tags = [
        tag
        for org in orgs.organizations
        for repo in org.repositories
        for tag in repo.tags
    ]
    names = ", ".join(o.name for o in orgs.organizations)
    if tag_pattern:
        selection = f"the tags matching '{tag_pattern}' in each repo."
    else:
        selection = "the youngest tag of each repo."
    headline = f"Overview - From every repo of org: {names}, {selection}"
    return TagResults(tags=tags), headline


def _require_org(org: str, action: str) -> str:
    if not org:
        raise ValueError(f"Organisation name is required to {action}")
    return org


def _dispatch(args: argparse.Namespace, factory: Factory) -> None:
    cfg = factory.config
    org = cfg.organisation

    def emit(data: object, headline: str) -> None:
        write(
            render(
                data,
                args.format,
                headline=headline,
                prettyprint=args.prettyprint,
            ),
            args.output_file,
        )

    if args.curlreq:
        auth = factory.get_auth() or RegistryAuth()
        print(curl_command(auth, cfg.registry.url))
        return

    if args.delete:
        if not (org and args.repository and args.tag):
            raise ValueError(
                "Deleting a tag requires an organisation, a repository and "
                "a tag"
            )
        tags = factory.create_tag_service()
        tags.delete_tag(org, args.repository, args.tag)
        print(
            f"Successfully deleted tag {args.tag} from "
            f"{org}/{args.repository}"
        )
        return

    if args.getusers:
        orgs = factory.create_organization_service()
        emit(orgs.get_users(_require_org(org, "get users")), "Users")
        return

    if args.getnotifications:
        orgs = factory.create_organization_service()
        notifications = orgs.list_notifications(
            _require_org(org, "get notifications")
        )
        emit(notifications, "Notifications")
        return

    if args.filter_delete_tags:
        planner = factory.create_deletion_planner()
        planner.plan(
            _require_org(org, "plan tag deletions"),
            repo_pattern=args.reporegex,
            tag_pattern=args.tag,
            severity=args.severity,
            min_age=args.minage,
        )
        planner.report()
        return

    if not org:
        orgs = factory.create_organization_service()
        emit(orgs.list_organizations(), "Organizations")
        return

    if args.repository:
        results = factory.create_tag_service().list_tags(
            org,
            args.repository,
            args.tag,
            args.severity,
            args.basescore,
            details=args.details,
        )
        if not results.tags:
            print(f"No tags found for {org}/{args.repository}")
            return
        emit(results, "RepositoryTags")
        return

    orgs = factory.create_organization_service()
    if args.reporegex:
        listing = orgs.list_repositories_by_pattern(
            org, args.reporegex, args.details, tag_pattern=args.tag
        )
    else:
        listing = orgs.list_repositories(
            org, args.details, tag_pattern=args.tag
        )
    if args.details:
        emit(*_overview(listing, args.tag))
    else:
        emit(listing, "Repositories")


def run(argv: list[str] | None = None) -> int:
    """Run the client; returns the process exit status."""
    args = _parse_args(argv)
    configure_logging(args.verbose)
    logger = structlog.get_logger("quay_client")
    try:
        cfg = _load_config(args)
        if args.create_config:
            path = cfg.write_example()
            print(f"Config written to {path}")
            return 0
        factory = Factory(
            cfg,
            username=args.username,
            password=args.password,
            verbose=args.verbose,
            logger=logger,
        )
        try:
            _dispatch(args, factory)
        finally:
            factory.close()
    except (
        QuayClientError,
        httpx.HTTPError,
        OSError,
        ValueError,
        yaml.YAMLError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    """Entry point for the ``qc`` command."""
    sys.exit(run())
