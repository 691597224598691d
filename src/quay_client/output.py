"""Render results as text tables, JSON or YAML."""

import json
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

from .config import RegistryAuth
from .models.organization import Notification, OrgSet, Prototypes
from .models.tag import Tag, TagResults
from .models.vulnerability import Feature, Finding

__all__ = [
    "OutputFormat",
    "curl_command",
    "format_description",
    "render",
    "to_data",
    "write",
]

_LINE = "-" * 29

_TAG_HEADER = (
    "{:<30.30}  {:<20.20}  {:<7.7}  {:<9.9}  {:<5.5}  {:<10.10}  {:>7.7}  "
    "{:<19.19}  {:>10.10}  {:<71.71}"
)
_TAG_ROW = (
    "{:<30.30}  {:<20.20}  {:<7.7}  {:<9.9}  {:5.2f}  {:<10.10}  {:7d}  "
    "{:<19.19}  {:10.2f}  {}"
)
_USER_ROW = "{:<15.15}  {:<25.25} {:<10.10} {:<15.15} {:<25.25}"
_NOTIFICATION_ROW = "{!s:<5}  {:<30}  {:<50}  {:<20}"

_SENTENCE_END = re.compile(r"\. ")
_BLANK_LINES = re.compile(r"\n\s*\n")
_ESCAPED_NEWLINE = re.compile(r"\\n")


class _Dumper(yaml.SafeDumper):
    """Dump multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_Dumper.add_representer(str, _represent_str)


class OutputFormat(Enum):
    TEXT = "text"
    JSON = "json"
    YAML = "yaml"


def format_description(description: str) -> str:
    """Reflow a scanner description for reading in a terminal.

    Sentences go on their own lines, blank lines are squeezed, escaped
    newlines become real ones, and bullet asterisks are indented.
    """
    text = _SENTENCE_END.sub(".\n", description)
    text = _BLANK_LINES.sub("\n", text)
    text = _ESCAPED_NEWLINE.sub("\n", text)
    return text.replace("*", "  *")


def curl_command(auth: RegistryAuth, url: str) -> str:
    """A curl command line that queries ``url`` with the bearer token."""
    if not auth.has_token or auth.token is None:
        return "No Bearer token found in the provided secret."
    token = auth.token.get_secret_value()
    return f'curl -H "Authorization: Bearer {token}" {url}'


def to_data(data: Any) -> Any:
    """Convert models (or lists of them) to plain JSON-compatible data."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [to_data(item) for item in data]
    return data


def _json(data: Any, prettyprint: bool) -> str:
    if prettyprint:
        return json.dumps(to_data(data), indent=2) + "\n"
    return json.dumps(to_data(data)) + "\n"


def _yaml(data: Any, prettyprint: bool) -> str:
    if prettyprint:
        return yaml.dump(
            to_data(data),
            Dumper=_Dumper,
            sort_keys=False,
            indent=2,
            allow_unicode=True,
        )
    return yaml.dump(
        to_data(data),
        Dumper=_Dumper,
        sort_keys=False,
        default_flow_style=None,
        width=120,
    )


def _last_modified(tag: Tag) -> str:
    modified = tag.modified_at()
    if modified is None:
        return ""
    return modified.astimezone().strftime("%d.%m.%Y-%H:%M:%S")


def _feature_lines(feature: Feature) -> list[str]:
    scores = " ".join(f"{s:3.1f}" for s in feature.base_scores)
    lines = [
        f"        Feature: {feature.name} Version: {feature.version}  "
        f"BaseScore: [{scores}]"
    ]
    for finding in feature.findings:
        lines.extend(
            f"            {line}" for line in _finding_yaml(finding)
        )
    return lines


def _finding_yaml(finding: Finding) -> list[str]:
    data = finding.model_dump(by_alias=True)
    data["Description"] = format_description(finding.description)
    return yaml.dump(data, Dumper=_Dumper, sort_keys=False).splitlines()


def _tag_table(results: TagResults, headline: str) -> list[str]:
    overview = "Overview" in headline
    lines = [
        headline,
        "-" * 206,
        _TAG_HEADER.format(
            "Repo",
            "Tag",
            "Expired",
            "Status",
            "Score",
            "Severity",
            "Age [D]",
            "LastModified",
            "Size [Mb]",
            "Digest",
        ),
        _TAG_HEADER.format(*([_LINE] * 9), _LINE * 5),
    ]
    if overview:
        tags = sorted(results.tags, key=lambda t: t.repository)
    else:
        tags = sorted(results.tags, key=lambda t: t.age)
    for tag in tags:
        report = tag.vulnerabilities
        lines.append(
            _TAG_ROW.format(
                tag.repository,
                tag.name,
                "Yes" if tag.expired else "No",
                report.status if report else "",
                tag.highest_score,
                tag.highest_severity,
                tag.age,
                _last_modified(tag),
                tag.size_mb,
                tag.digest,
            )
        )
        if overview or report is None or not report.features:
            continue
        for feature in report.features:
            lines.extend(_feature_lines(feature))
    return lines


def _user_table(users: Prototypes, headline: str) -> list[str]:
    lines = [
        headline,
        _LINE * 3,
        _USER_ROW.format(
            "Kind", "Name", "Role", "AvatarKind", "AvatarName"
        ),
        _USER_ROW.format(*([_LINE] * 5)),
    ]
    for user in users.prototypes:
        delegate = user.delegate
        lines.append(
            _USER_ROW.format(
                delegate.kind,
                delegate.name,
                user.role,
                delegate.avatar.kind,
                delegate.avatar.name,
            )
        )
    return lines


def _org_list(orgs: OrgSet, headline: str) -> list[str]:
    width = max((len(o.name) for o in orgs.organizations), default=0)
    row = "{:<%d.%d}  {}" % (width, width)
    lines = [
        headline,
        row.format("Organisation", "Repository"),
        row.format(_LINE, _LINE * 4),
    ]
    for org in orgs.organizations:
        if not org.repositories:
            lines.append(org.name)
            continue
        for repo in sorted(org.repositories, key=lambda r: r.name):
            lines.append(row.format(org.name, repo.name))
    return lines


def _notification_table(
    notifications: list[Notification], headline: str
) -> list[str]:
    lines = [
        headline,
        _NOTIFICATION_ROW.format("ID", "Title", "Description", "Created At"),
        _NOTIFICATION_ROW.format(_LINE, _LINE, _LINE, _LINE),
    ]
    lines.extend(
        _NOTIFICATION_ROW.format(n.id, n.title, n.description, n.created_at)
        for n in notifications
    )
    return lines


def _text(data: Any, headline: str) -> str:
    match data:
        case TagResults():
            lines = _tag_table(data, headline)
        case Prototypes():
            lines = _user_table(data, headline)
        case OrgSet():
            lines = _org_list(data, headline)
        case list():
            lines = _notification_table(data, headline)
        case _:
            raise TypeError(
                f"No text rendering for {type(data).__name__}"
            )
    return "\n".join(lines) + "\n\n"


def render(
    data: Any,
    fmt: OutputFormat | str = OutputFormat.YAML,
    *,
    headline: str = "",
    prettyprint: bool = False,
) -> str:
    """Render a result in the requested format.

    Parameters
    ----------
    data
        A `TagResults`, `OrgSet`, `Prototypes` or list of `Notification`.
    fmt
        Output format.
    headline
        Title printed above text tables.  A headline containing
        ``Overview`` sorts tags by repository and leaves out findings.
    prettyprint
        Indent JSON, and use block style throughout YAML.
    """
    match OutputFormat(fmt):
        case OutputFormat.JSON:
            return _json(data, prettyprint)
        case OutputFormat.TEXT:
            return _text(data, headline)
        case OutputFormat.YAML:
            return _yaml(data, prettyprint)


def write(content: str, output_file: Path | None = None) -> None:
    """Write rendered output to a file, or to stdout if none is given."""
    if output_file is not None:
        output_file.write_text(content)
        return
    sys.stdout.write(content)
