"""Task brief and workspace context generation using Jinja2 templates.

The ContextGenerator renders the two documents an agent receives:
- the task brief passed to the coding-agent subprocess as its prompt
- the context document (CLAUDE.md) written into the agent's workspace
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from localpipeline.models.work_item import WorkItem
from localpipeline.pipeline.worktree import CONTEXT_DOCUMENT_NAME

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"

DEFAULT_CONVENTIONS = [
    "Follow the existing structure, naming and style of the repository.",
    "Keep changes focused on the task; one concern per pull request.",
    "Add or update tests next to the code you change.",
    "Do not commit secrets, credentials or generated artifacts.",
]


class ContextGenerator:
    """Renders agent-facing documents from Jinja2 templates.

    Attributes:
        env: Jinja2 Environment loading from the template directory
        project_name: Heading of the context document
        conventions: Bullet list rendered into the context document
    """

    def __init__(
        self,
        template_dir: Path | None = None,
        project_name: str = "localpipeline workspace",
        conventions: list[str] | None = None,
    ) -> None:
        """Initialize the generator.

        Args:
            template_dir: Directory holding ``task_brief.md.j2`` and
                ``context_document.md.j2``. Defaults to the bundled templates.
            project_name: Heading of the context document.
            conventions: Conventions listed in the context document.
        """
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir or DEFAULT_TEMPLATE_DIR)),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.project_name = project_name
        self.conventions = conventions if conventions is not None else list(DEFAULT_CONVENTIONS)

    @staticmethod
    def display_name(agent: str) -> str:
        return agent.capitalize()

    def build_task_brief(self, item: WorkItem, agent: str) -> str:
        """Render the natural-language brief handed to the subprocess.

        Raises:
            jinja2.TemplateNotFound: If task_brief.md.j2 doesn't exist
        """
        template = self.env.get_template("task_brief.md.j2")
        return template.render(
            item=item,
            agent_display=self.display_name(agent),
            context_document=CONTEXT_DOCUMENT_NAME,
        )

    def build_context_document(self, agent: str, branch: str) -> str:
        """Render the CLAUDE.md written into the agent workspace.

        Raises:
            jinja2.TemplateNotFound: If context_document.md.j2 doesn't exist
        """
        template = self.env.get_template("context_document.md.j2")
        return template.render(
            project_name=self.project_name,
            conventions=self.conventions,
            agent_display=self.display_name(agent),
            branch=branch,
        )
