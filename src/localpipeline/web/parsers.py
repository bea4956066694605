"""Tracker webhook payload parsers.

Each parser reduces one tracker's webhook body to a WorkItem, or returns
None when the event is not actionable (wrong event type, no assignee, ...).
GitHub additionally reports merged pull requests from agent branches, which
close the work item instead of dispatching it.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any, NamedTuple

from localpipeline.models.work_item import WorkItem
from localpipeline.trackers.base import CardStatus

Parser = Callable[[dict[str, Any]], "WorkItem | None"]

_AGENT_BRANCH = re.compile(r"^agent/(\w+)/(.+)$")
_COMPOUND_ID = re.compile(r"^([A-Z]+)-(\d+)")


class StatusChange(NamedTuple):
    """A tracker status change requested by a webhook event."""

    item_id: str
    status: CardStatus


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _label_names(labels: Any) -> list[str]:
    if not isinstance(labels, list):
        return []
    names = []
    for label in labels:
        name = label.get("name") if isinstance(label, dict) else label
        if isinstance(name, str) and name:
            names.append(name)
    return names


# ----------------------------------------------------------------------
# GitHub
# ----------------------------------------------------------------------


def parse_github(body: dict[str, Any]) -> WorkItem | None:
    """Issue ``assigned``/``labeled`` events become work items ``#<number>``."""
    if body.get("action") not in ("assigned", "labeled"):
        return None

    issue = _obj(body.get("issue"))
    number = issue.get("number")
    title = issue.get("title")
    if not number or not title:
        return None

    return WorkItem(
        id=f"#{number}",
        source_id=str(number),
        title=title,
        description=issue.get("body") or None,
        status=issue.get("state"),
        labels=_label_names(issue.get("labels")),
        source="GitHub",
        team=_obj(body.get("repository")).get("full_name"),
        url=issue.get("html_url"),
    )


def extract_item_id_from_branch(branch: str) -> str | None:
    """Recover the work item id from ``agent/{agent}/{id}-{slug}``.

    Compound ids (``LIN-42``) are recognized by an upper-case prefix
    followed by digits; anything else is the part before the first dash.

    Example:
        >>> extract_item_id_from_branch("agent/ember/LIN-42-fix-auth-flow")
        'LIN-42'
        >>> extract_item_id_from_branch("agent/tide/69932610-move-card")
        '69932610'
    """
    match = _AGENT_BRANCH.match(branch)
    if match is None:
        return None
    rest = match.group(2)

    compound = _COMPOUND_ID.match(rest)
    if compound is not None:
        return f"{compound.group(1)}-{compound.group(2)}"
    head = rest.split("-", 1)[0]
    return head or None


def parse_github_pr_merge(body: dict[str, Any]) -> StatusChange | None:
    """A merged pull request from an agent branch closes its work item."""
    if body.get("action") != "closed":
        return None
    pull_request = _obj(body.get("pull_request"))
    if not pull_request.get("merged"):
        return None

    branch = _obj(pull_request.get("head")).get("ref")
    if not isinstance(branch, str) or not branch:
        return None

    item_id = extract_item_id_from_branch(branch)
    if item_id is None:
        return None
    return StatusChange(item_id=item_id, status=CardStatus.DONE)


# ----------------------------------------------------------------------
# Linear
# ----------------------------------------------------------------------

_LINEAR_PRIORITIES = {0: None, 1: "Urgent", 2: "High", 3: "Medium", 4: "Low"}


def parse_linear(body: dict[str, Any]) -> WorkItem | None:
    """Issue ``create``/``update`` events with an assignee."""
    if body.get("type") != "Issue" or body.get("action") not in ("create", "update"):
        return None

    data = _obj(body.get("data"))
    identifier = data.get("identifier")
    title = data.get("title")
    if not identifier or not title or not data.get("assignee"):
        return None

    priority = data.get("priority")
    return WorkItem(
        id=identifier,
        source_id=data.get("id"),
        title=title,
        description=data.get("description") or None,
        status=_obj(data.get("state")).get("name"),
        priority=_LINEAR_PRIORITIES.get(priority) if isinstance(priority, int) else None,
        labels=_label_names(data.get("labels")),
        source="Linear",
        team=_obj(data.get("team")).get("key"),
        url=data.get("url") or body.get("url"),
    )


# ----------------------------------------------------------------------
# Jira
# ----------------------------------------------------------------------


def parse_jira(body: dict[str, Any]) -> WorkItem | None:
    """``jira:issue_created``/``jira:issue_updated`` events with an assignee."""
    if body.get("webhookEvent") not in ("jira:issue_created", "jira:issue_updated"):
        return None

    issue = _obj(body.get("issue"))
    fields = _obj(issue.get("fields"))
    key = issue.get("key")
    summary = fields.get("summary")
    if not key or not summary or not fields.get("assignee"):
        return None

    description = fields.get("description")
    return WorkItem(
        id=key,
        source_id=issue.get("id"),
        title=summary,
        description=description if isinstance(description, str) and description else None,
        status=_obj(fields.get("status")).get("name"),
        priority=_obj(fields.get("priority")).get("name"),
        labels=[label for label in fields.get("labels") or [] if isinstance(label, str)],
        source="Jira",
        team=_obj(fields.get("project")).get("key"),
        url=issue.get("self"),
    )


# ----------------------------------------------------------------------
# Trello
# ----------------------------------------------------------------------


def parse_trello(body: dict[str, Any]) -> WorkItem | None:
    """``addMemberToCard``/``createCard`` actions, keyed by card short link."""
    action = _obj(body.get("action"))
    if action.get("type") not in ("addMemberToCard", "createCard"):
        return None

    data = _obj(action.get("data"))
    card = _obj(data.get("card"))
    short_link = card.get("shortLink")
    name = card.get("name")
    if not short_link or not name:
        return None

    return WorkItem(
        id=short_link,
        source_id=card.get("id"),
        title=name,
        description=card.get("desc") or None,
        status=_obj(data.get("list")).get("name"),
        source="Trello",
        team=_obj(data.get("board")).get("name"),
        url=f"https://trello.com/c/{short_link}",
    )


PARSERS: dict[str, Parser] = {
    "github": parse_github,
    "linear": parse_linear,
    "jira": parse_jira,
    "trello": parse_trello,
}
